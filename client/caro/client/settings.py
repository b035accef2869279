"""Client configuration via environment variables."""

from typing import Literal, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

_LOG_LEVELS = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


class ClientSettings(BaseSettings):
    model_config = {"env_prefix": "CARO_"}

    api_base_url: str = Field(default="http://localhost:5000/api", min_length=1)
    socket_url: str = Field(default="http://localhost:5000", min_length=1)
    state_dir: str = Field(default=".caro", min_length=1)
    log_dir: str | None = None
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    reconciliation_delay_seconds: float = Field(default=0.15, ge=0)
    finish_grace_seconds: float = Field(default=0.1, ge=0)
    guest_history_limit: int = Field(default=50, ge=1)
    guest_name_max_length: int = Field(default=20, ge=1)
    reaction_ttl_seconds: float = Field(default=5.0, gt=0)
    max_reaction_length: int = Field(default=16, ge=1)

    # Socket.IO reconnection tuning
    reconnection_attempts: int = Field(default=10, ge=0)
    reconnection_delay_seconds: float = Field(default=1.0, gt=0)
    reconnection_delay_max_seconds: float = Field(default=10.0, gt=0)
    randomization_factor: float = Field(default=0.5, ge=0, le=1)
    connect_timeout_seconds: float = Field(default=20.0, gt=0)

    @field_validator("api_base_url", "socket_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return v

    @model_validator(mode="after")
    def validate_reconnection_window(self) -> Self:
        if self.reconnection_delay_max_seconds < self.reconnection_delay_seconds:
            raise ValueError("reconnection_delay_max_seconds must not be below reconnection_delay_seconds")
        return self
