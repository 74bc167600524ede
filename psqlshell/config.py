"""App configuration loading helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import tomllib

from pydantic import BaseModel, Field, ValidationError, field_validator

from .models import DEFAULT_HOST, DEFAULT_PORT

LOG = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "psqlshell"
CONFIG_FILE = CONFIG_DIR / "config.toml"


class ConnectionDefaults(BaseModel):
    """Defaults offered when a connection field is prompted for."""

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, strict=True)
    database: str = "postgres"
    user: str = "postgres"


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    connection: ConnectionDefaults = Field(default_factory=ConnectionDefaults)
    metadata_ttl: float = Field(default=60.0, gt=0)
    default_schema: str = Field(default="public", min_length=1)
    timing: bool = Field(default=False, strict=True)
    log_dir: Path = Field(default_factory=lambda: CONFIG_DIR / "logs")
    history_file: Path | None = Field(default_factory=lambda: CONFIG_DIR / "history")

    @field_validator("metadata_ttl", mode="before")
    @classmethod
    def _reject_boolean_ttl(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("metadata_ttl must be a number of seconds")
        return value

    @field_validator("history_file", mode="before")
    @classmethod
    def _empty_history_disables(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("log_dir", "history_file")
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing.

    Invalid values are logged and replaced by their defaults; the rest of the
    file still applies.
    """

    config_path = path or CONFIG_FILE
    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError) as exc:
        LOG.warning("Ignoring unreadable config file", extra={"path": str(config_path), "error": str(exc)})
        return AppConfig()
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        LOG.warning(
            "Ignoring invalid config values",
            extra={"path": str(config_path), "fields": [_location(error["loc"]) for error in exc.errors()]},
        )
        return AppConfig.model_validate(_without_invalid(raw, exc))


def _without_invalid(raw: dict[str, Any], exc: ValidationError) -> dict[str, Any]:
    data = {key: dict(value) if isinstance(value, dict) else value for key, value in raw.items()}
    for error in exc.errors():
        target: dict[str, Any] = data
        path = error["loc"]
        for index, key in enumerate(path):
            value = target.get(key)
            if not isinstance(value, dict) or index == len(path) - 1:
                target.pop(key, None)
                break
            target = value
    return data


def _location(loc: tuple[int | str, ...]) -> str:
    return ".".join(str(part) for part in loc)


__all__ = ["AppConfig", "CONFIG_FILE", "ConnectionDefaults", "load_config"]
