"""Settings configuration for copilot-rotator."""

import logging
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from copilot_rotator.exceptions import ConfigurationError
from copilot_rotator.rotation.constants import (
    DEFAULT_CLIENT_VERSION,
    DEFAULT_EDITOR_PLUGIN_VERSION,
    DEFAULT_EDITOR_VERSION,
    DEFAULT_INTEGRATION_ID,
    DEFAULT_PROBE_USER_AGENT,
    DEFAULT_RETRY_AFTER_MS,
    MAX_RETRY_AFTER_MS,
    PROBE_TIMEOUT_SECONDS,
)


__all__ = [
    "RotatorSettings",
    "get_settings",
    "setup_logging",
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class RotatorSettings(BaseSettings):
    """
    Configuration settings for account rotation.

    Settings are loaded from environment variables (prefix ``COPILOT_ROTATOR_``)
    and an optional .env file. Environment variables take precedence over
    .env file values.
    """

    model_config = SettingsConfigDict(
        env_prefix="COPILOT_ROTATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    data_dir: Path = Field(
        default=Path("~/.local/share/opencode"),
        description="Directory holding the accounts file and the auth mirror",
    )
    accounts_file: str = Field(
        default="multi-copilot-accounts.json",
        description="Accounts file name inside data_dir",
    )
    auth_file: str = Field(
        default="auth.json",
        description="File that mirrors the top-priority account for other tools",
    )

    default_retry_after_ms: int = Field(
        default=DEFAULT_RETRY_AFTER_MS,
        ge=0,
        description="Rate limit window used when upstream gives no retry-after",
    )
    max_retry_after_ms: int = Field(
        default=MAX_RETRY_AFTER_MS,
        gt=0,
        description="Upper bound for any recorded rate limit window",
    )

    probe_timeout_seconds: float = Field(
        default=PROBE_TIMEOUT_SECONDS,
        gt=0,
        description="Timeout applied to each probe request",
    )

    client_version: str = Field(
        default=DEFAULT_CLIENT_VERSION,
        description="Version reported in the dispatch User-Agent",
    )
    editor_version: str = Field(default=DEFAULT_EDITOR_VERSION)
    editor_plugin_version: str = Field(default=DEFAULT_EDITOR_PLUGIN_VERSION)
    probe_user_agent: str = Field(default=DEFAULT_PROBE_USER_AGENT)
    integration_id: str = Field(default=DEFAULT_INTEGRATION_ID)

    log_level: str = Field(default="INFO", description="Minimum log level")
    log_json: bool = Field(default=False, description="Render logs as JSON lines")

    @field_validator("data_dir", mode="after")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        level = str(v).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level '{v}': expected one of {LOG_LEVELS}")
        return level

    @model_validator(mode="after")
    def check_retry_bounds(self) -> "RotatorSettings":
        if self.max_retry_after_ms < self.default_retry_after_ms:
            raise ValueError(
                "max_retry_after_ms must be greater than or equal to "
                "default_retry_after_ms"
            )
        return self

    @property
    def accounts_path(self) -> Path:
        """Full path of the accounts file."""
        return self.data_dir / self.accounts_file

    @property
    def auth_path(self) -> Path:
        """Full path of the auth mirror file."""
        return self.data_dir / self.auth_file


@lru_cache(maxsize=1)
def get_settings() -> RotatorSettings:
    """Get the process-wide settings instance.

    Call ``get_settings.cache_clear()`` to re-read the environment.

    Raises:
        ConfigurationError: If any setting fails validation
    """
    try:
        return RotatorSettings()
    except ValidationError as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog output and level filtering."""
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
