"""Single source of truth for relay configuration.

All modules import from here — never from os.environ directly.

Values come from the process environment, overlaid on a plain .env file
(``CALLRELAY_ENV_FILE``, default ``./.env``) when one exists.
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_INGEST_URL = "https://some.host:3000/api/upload"
DEFAULT_INGEST_API_KEY = "12345678"

_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


def _load_env_file(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file, or nothing if it does not exist."""
    path = Path(dotenv_path)
    if not path.is_file():
        return {}
    return dict(dotenv_values(path))


def _read_environment() -> dict[str, str]:
    values = {
        k: v
        for k, v in _load_env_file(os.environ.get("CALLRELAY_ENV_FILE", ".env")).items()
        if v is not None
    }
    values.update(os.environ)
    return values


_env = _read_environment()

# --- Watch ---
MONITORED_DIRECTORY: str = _env.get("MONITORED_DIRECTORY", "")
RELAY_DEDUP_WINDOW: str = _env.get("RELAY_DEDUP_WINDOW", "300")
RELAY_AUDIT_LOG_PATH: str = _env.get("RELAY_AUDIT_LOG_PATH", "")
RELAY_AUDIT_MAX_BYTES: str = _env.get("RELAY_AUDIT_MAX_BYTES", str(5 * 1024 * 1024))

# --- Ingestion endpoint ---
INGEST_URL: str = _env.get("INGEST_URL", DEFAULT_INGEST_URL)
INGEST_API_KEY: str = _env.get("INGEST_API_KEY", DEFAULT_INGEST_API_KEY)
INGEST_VERIFY_TLS: bool = _env.get("INGEST_VERIFY_TLS", "true").strip().lower() not in _FALSE_VALUES
INGEST_TIMEOUT: str = _env.get("INGEST_TIMEOUT", "30")


class Settings(BaseModel):
    """Validated runtime configuration, built once at startup."""

    monitored_directory: Path
    ingest_url: str = Field(min_length=1)
    api_key: str = Field(min_length=1)
    verify_tls: bool = True
    timeout: float = Field(default=30.0, gt=0)
    dedup_window: float = Field(default=300.0, ge=0, description="Seconds a pair stays claimed")
    audit_log_path: Path | None = None
    audit_max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)

    @field_validator("audit_log_path", mode="before")
    @classmethod
    def _empty_means_disabled(cls, value: object) -> object:
        if value == "":
            return None
        return value


def load_settings(**overrides: object) -> Settings:
    """Build :class:`Settings` from the environment plus explicit overrides.

    Overrides set to ``None`` fall back to the environment value.

    Raises:
        ConfigError: If the monitored directory is unset or missing, or any
            value fails validation.
    """
    raw: dict[str, object] = {
        "monitored_directory": MONITORED_DIRECTORY,
        "ingest_url": INGEST_URL,
        "api_key": INGEST_API_KEY,
        "verify_tls": INGEST_VERIFY_TLS,
        "timeout": INGEST_TIMEOUT,
        "dedup_window": RELAY_DEDUP_WINDOW,
        "audit_log_path": RELAY_AUDIT_LOG_PATH,
        "audit_max_bytes": RELAY_AUDIT_MAX_BYTES,
    }
    raw.update({k: v for k, v in overrides.items() if v is not None})

    if not raw["monitored_directory"]:
        raise ConfigError("MONITORED_DIRECTORY is not set (use --dir or the environment).")

    try:
        settings = Settings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc

    settings = settings.model_copy(
        update={"monitored_directory": settings.monitored_directory.absolute()}
    )
    if not settings.monitored_directory.is_dir():
        raise ConfigError(f"Monitored directory does not exist: {settings.monitored_directory}")
    return settings
