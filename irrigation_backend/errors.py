"""Exception hierarchy for the irrigation backend.

Every error carries the HTTP status the Flask error handler answers with::

    IrrigationError (500)
    ├── ValidationFailure (400: field out of range or wrong shape)
    ├── Unauthorized      (401: bad product key / device code)
    ├── LowWaterError     (403: motor command refused, tank too low)
    ├── NotFoundError     (404: machine, user or product key absent)
    └── ConflictError     (409: product key or email already taken)
"""

from __future__ import annotations


class IrrigationError(Exception):
    http_status: int = 500

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationFailure(IrrigationError):
    http_status = 400


class Unauthorized(IrrigationError):
    http_status = 401


class LowWaterError(IrrigationError):
    """Manual motor command issued while the tank is at or below the safety level."""

    http_status = 403


class NotFoundError(IrrigationError):
    http_status = 404


class ConflictError(IrrigationError):
    http_status = 409
