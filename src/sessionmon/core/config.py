"""Configuration schema and loading for sessionmon.

This module defines the Pydantic models for YAML configuration files and
the environment overrides applied on top of them.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

# Environment variables recognized by MonitorConfig.with_env
ENV_DEBUG = "SESSIONMON_DEBUG"
ENV_MAX_RECONNECT_ATTEMPTS = "SESSIONMON_MAX_RECONNECT_ATTEMPTS"


class ReconnectConfig(BaseModel):
    """Reconnection backoff settings."""

    base_delay: float = 1.0
    """Delay before the first retry, in seconds."""

    max_delay: float = 30.0
    """Upper bound for any retry delay, in seconds."""

    jitter: float = 0.0
    """Fraction of each delay that may be randomly shaved off (0 disables)."""

    max_attempts: int = 10
    """Consecutive failures after which a connection is marked failed."""

    @field_validator("base_delay")
    @classmethod
    def _validate_base_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("base_delay must be positive")
        return v

    @field_validator("jitter")
    @classmethod
    def _validate_jitter(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("jitter must be between 0 and 1")
        return v

    @field_validator("max_attempts")
    @classmethod
    def _validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be positive")
        return v

    @model_validator(mode="after")
    def _validate_delay_bounds(self) -> ReconnectConfig:
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        return self


class TransportConfig(BaseModel):
    """Stream transport settings."""

    events_path: str = "/api/events"
    """Path of the event stream endpoint, appended to http(s) server URLs."""

    connect_timeout: float = 5.0
    """Timeout for establishing a stream, in seconds."""

    read_timeout: float | None = 300.0
    """Maximum silence on an open stream before it is dropped. None = wait forever."""

    headers: dict[str, str] = Field(default_factory=dict)
    """Extra HTTP headers sent when opening a stream."""

    @field_validator("events_path")
    @classmethod
    def _validate_events_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"events_path must start with '/': {v}")
        return v

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def _validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("timeouts must be positive")
        return v


class MonitorConfig(BaseModel):
    """Root sessionmon configuration."""

    version: str = "0.1"
    """Configuration schema version."""

    servers: list[str] = Field(default_factory=list)
    """Server URLs to connect to at startup."""

    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    """Reconnection backoff settings."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    """Stream transport settings."""

    debug: bool = False
    """Log every stream frame and state transition."""

    @field_validator("servers")
    @classmethod
    def _validate_servers(cls, v: list[str]) -> list[str]:
        for url in v:
            if "://" not in url:
                raise ValueError(f"Server URL must include a scheme: {url}")
        # Remove duplicates while preserving order
        return list(dict.fromkeys(v))

    @classmethod
    def from_yaml(cls, path: Path | str) -> MonitorConfig:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Parsed configuration

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If configuration invalid
        """
        import yaml

        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f)

        return cls.model_validate(data or {})

    def with_env(self, environ: Mapping[str, str] | None = None) -> MonitorConfig:
        """Return a copy with environment overrides applied.

        Args:
            environ: Environment mapping (default: os.environ)

        Raises:
            pydantic.ValidationError: If an override value is invalid
        """
        env = os.environ if environ is None else environ
        data = self.model_dump()

        if ENV_DEBUG in env:
            data["debug"] = env[ENV_DEBUG] == "1"
        if ENV_MAX_RECONNECT_ATTEMPTS in env:
            data["reconnect"]["max_attempts"] = env[ENV_MAX_RECONNECT_ATTEMPTS]

        return type(self).model_validate(data)
