"""
Application settings.

Read from environment variables prefixed with ``HELPARO_`` (or a ``.env``
file) via pydantic-settings.
"""

import logging
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Attributes:
        poll_interval_seconds: Delay between two status polls.
        poll_timeout_seconds: How long a client waits for a helper before giving up.
        request_timeout_seconds: Timeout of a single status request.
        default_platform: Platform assumed when a token is registered without one.
        rate_limit_moderate: Per-user limit on device registration and preference
            changes, as a ``limits`` rate string.
        rate_limit_relaxed: Per-user limit on marking notifications read.
        log_level: Root log level name.
        sample_data_path: JSON file loaded into the store at startup, if set.
    """

    model_config = SettingsConfigDict(
        env_prefix="HELPARO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Status polling ---
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    poll_timeout_seconds: float = Field(default=300.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    # --- Notifications ---
    default_platform: str = Field(default="android")
    rate_limit_moderate: str = Field(default="30/minute")
    rate_limit_relaxed: str = Field(default="100/minute")

    # --- Runtime ---
    log_level: str = Field(default="INFO")
    sample_data_path: Path | None = None

    @computed_field
    @property
    def log_level_value(self) -> int:
        """Numeric logging level for ``log_level``; unknown names fall back to INFO."""
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


settings = Settings()
