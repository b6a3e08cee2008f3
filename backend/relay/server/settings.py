"""Relay server configuration via environment variables."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

if TYPE_CHECKING:
    from typing import Self


def parse_origins(value: str | list[str]) -> list[str]:
    """Accept origins as a list, a JSON array string or a comma-separated string."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            try:
                value = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON array: {e}") from e
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise ValueError("JSON value must be an array of strings")
        else:
            value = [item.strip() for item in stripped.split(",") if item.strip()]
    if not value:
        raise ValueError("at least one origin is required")
    return value


class RelayServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_", populate_by_name=True)

    host: str = "0.0.0.0"  # noqa: S104
    # Hosting platforms hand out the listen port as a bare PORT variable.
    port: int = Field(default=3000, ge=1, le=65535, validation_alias=AliasChoices("RELAY_PORT", "PORT"))
    # NoDecode keeps the CSV form intact; pydantic-settings would JSON-decode it first.
    cors_origins: Annotated[list[str], NoDecode] = ["*"]

    default_capacity: int = Field(default=2, ge=2)
    max_room_capacity: int = Field(default=8, ge=2)
    max_sessions: int = Field(default=100, ge=1)

    reconnect_grace_seconds: float = Field(default=300.0, gt=0)
    session_ttl_seconds: float = Field(default=3600.0, ge=60)
    sweep_interval_seconds: float = Field(default=30.0, gt=0)
    heartbeat_timeout_seconds: float = Field(default=60.0, gt=0)

    # Frames per second a single socket may sustain, and the burst it may spend at once.
    ws_rate_limit: float = Field(default=20.0, gt=0)
    ws_rate_burst: int = Field(default=40, ge=1)
    max_decode_errors: int = Field(default=5, ge=1)

    log_format: Literal["json", "console"] = Field(
        default="console",
        validation_alias=AliasChoices("RELAY_LOG_FORMAT", "LOG_FORMAT"),
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias=AliasChoices("RELAY_LOG_LEVEL", "LOG_LEVEL"),
    )
    log_dir: str | None = Field(default=None, min_length=1)
    static_dir: str | None = Field(default=None, min_length=1)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_origins(v)

    @field_validator("log_format", mode="before")
    @classmethod
    def _lower_log_format(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _validate_capacity(self) -> Self:
        if self.default_capacity > self.max_room_capacity:
            raise ValueError(
                f"default_capacity ({self.default_capacity}) exceeds max_room_capacity ({self.max_room_capacity})",
            )
        return self
