"""
Request Schemas
===============

Request bodies for the user, machine and device endpoints. Field aliases keep
the camelCase names devices and clients already send.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationFailure


def _as_list(value: Any) -> Any:
    """Single-probe devices send a scalar instead of a list."""
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class UserRegisterRequest(_Request):
    name: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., min_length=3, max_length=50, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=3, max_length=255)


class LoginRequest(_Request):
    email: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=3, max_length=255)


class MachineRegisterRequest(_Request):
    name: str = Field(..., min_length=1, max_length=20)
    product_key: str = Field(..., alias="productKey", min_length=15, max_length=15)
    address: str = Field(..., min_length=10, max_length=100)
    probe_count: Optional[int] = Field(default=None, alias="probeCount", ge=1, le=8)
    per_probe_control: bool = Field(default=True, alias="perProbeControl")


class AutoThresholdRequest(_Request):
    threshold_moisture: int = Field(..., alias="thresholdMoisture", ge=0, le=100)


class ManualMotorRequest(_Request):
    motor_on: List[bool] = Field(..., alias="motorOn", min_length=1)

    @field_validator("motor_on", mode="before")
    @classmethod
    def wrap_scalar(cls, v):
        return _as_list(v)


class TelemetryRequest(_Request):
    water_level: int = Field(..., alias="waterLevel", ge=0, le=100)
    soil_moisture: List[int] = Field(..., alias="soilMoisture", min_length=1)
    motor_on: List[bool] = Field(..., alias="motorOn", min_length=1)

    @field_validator("soil_moisture", "motor_on", mode="before")
    @classmethod
    def wrap_scalar(cls, v):
        return _as_list(v)

    @field_validator("soil_moisture")
    @classmethod
    def check_range(cls, values):
        for value in values:
            if not 0 <= value <= 100:
                raise ValueError("soil moisture must be between 0 and 100")
        return values


def parse(model, data):
    """Validate ``data`` into ``model`` or raise :class:`ValidationFailure`."""
    if data is None:
        raise ValidationFailure("request body must be JSON")
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise ValidationFailure(f"{location}: {first['msg']}") from exc
