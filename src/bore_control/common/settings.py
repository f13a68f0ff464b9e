"""Process-wide settings loaded from the environment."""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControlSettings(BaseSettings):
    """Settings for the control plane, read from ``BORE_CONTROL_*`` variables."""

    model_config = SettingsConfigDict(
        env_prefix="BORE_CONTROL_",
        env_file=".env",
        extra="ignore",
        str_strip_whitespace=True,
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root logging level"
    )
    log_json: bool = Field(default=False, description="Render logs as JSON")
    log_file: str | None = Field(default=None, description="Optional log file path")

    # Tunnel capability
    bore_binary: str | None = Field(
        default=None, description="Path to the bore binary (auto-detected if None)"
    )
    handshake_timeout: float = Field(
        default=10.0, gt=0, le=300, description="Seconds to wait for a tunnel handshake"
    )
    server_startup_delay: float = Field(
        default=0.5, ge=0, le=30, description="Seconds a bore server must survive to count as started"
    )

    # Lifecycle
    stop_grace: float = Field(
        default=0.1, ge=0, le=10, description="Grace period after aborting a tunnel task"
    )
    maintenance_interval: float = Field(
        default=5.0, gt=0, le=3600, description="Seconds between reaping passes"
    )

    # Webhooks
    webhook_timeout: float = Field(
        default=10.0, gt=0, le=120, description="Per-request webhook timeout"
    )
    webhook_max_attempts: int = Field(
        default=3, ge=1, le=10, description="Delivery attempts per webhook"
    )
    webhook_backoff_base: float = Field(
        default=0.1, ge=0, le=10, description="First retry delay, doubled per attempt"
    )

    # Dashboard
    subscriber_queue_size: int = Field(
        default=256, ge=1, le=100_000, description="Outbound messages buffered per subscriber"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lower-case level names."""
        return v.upper() if isinstance(v, str) else v
