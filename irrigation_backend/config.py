"""Runtime settings read from the environment."""

import os


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def load_config():
    return dict(
        SQLALCHEMY_DATABASE_URI=os.getenv("DATABASE_URL", "sqlite:///fallback.db"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        JWT_SECRET_KEY=os.getenv("JWT_SECRET", "super-secret-key-please-change"),
        MQTT_ENABLED=_env_bool("MQTT_ENABLED", True),
        MQTT_BROKER_URL=os.getenv("MQTT_BROKER_URL", "localhost"),
        MQTT_BROKER_PORT=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        LOCAL_UTC_OFFSET_MINUTES=int(os.getenv("LOCAL_UTC_OFFSET_MINUTES", "330")),
        DEFAULT_PROBE_COUNT=int(os.getenv("DEFAULT_PROBE_COUNT", "4")),
        LOG_RETENTION_DAYS=int(os.getenv("LOG_RETENTION_DAYS", "30")),
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
    )
