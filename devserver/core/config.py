"""Dev server configuration using Pydantic Settings."""

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DevServerSettings(BaseSettings):
    """Dev server settings loaded from DEVSERVER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEVSERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Container naming
    namespace: str = Field(
        default="dev",
        min_length=1,
        description="Namespace used to derive runtime container names",
    )
    name_prefix: str = Field(
        default="noop",
        min_length=1,
        description="Prefix of derived runtime container names",
    )
    router_name: str = Field(
        default="localapp",
        min_length=1,
        description="Reserved runtime name of the router container (one per host)",
    )

    # Router ports
    router_port: int = Field(
        default=4443,
        ge=1,
        le=65535,
        description="External port the router listens on",
    )
    router_internal_port: int = Field(
        default=443,
        ge=1,
        le=65535,
        description="HTTPS port inside the router container",
    )
    router_http_port: int = Field(
        default=80,
        ge=1,
        le=65535,
        description="HTTP port exposed by the router container",
    )

    # Runtime
    docker_host: str | None = Field(
        default=None,
        description="Docker host URL (e.g., unix:///var/run/docker.sock). "
        "None uses DOCKER_HOST or the standard socket.",
    )
    network_name: str | None = Field(
        default=None,
        description="Docker network containers are attached to "
        "(defaults to '<name_prefix>-<namespace>')",
    )

    # Restart policy
    max_restart_attempts: int = Field(
        default=10,
        ge=0,
        description="Automatic restarts allowed before giving up on a container",
    )

    # Output
    output_label_width: int = Field(
        default=16,
        ge=1,
        le=64,
        description="Width of the container name label prefixed to output lines",
    )
    output_color: bool = Field(
        default=True,
        description="Colour the output label with ANSI escapes",
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_format: str = Field(
        default="text",
        description="Console log format: 'text' or 'json'",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Path for rotating log file (disabled when unset)",
    )
    log_file_max_bytes: int = Field(
        default=10485760,  # 10MB
        description="Maximum size of each log file in bytes",
    )
    log_file_backup_count: int = Field(
        default=3,
        description="Number of backup log files to keep",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure the level is one the logging module knows."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in ("text", "json"):
            raise ValueError(f"Invalid log format. Expected 'text' or 'json', got: {v}")
        return fmt

    @property
    def resolved_network_name(self) -> str:
        """Network name, derived from prefix and namespace when not set."""
        return self.network_name or f"{self.name_prefix}-{self.namespace}"


@lru_cache
def get_settings() -> DevServerSettings:
    """Get cached settings instance."""
    return DevServerSettings()
