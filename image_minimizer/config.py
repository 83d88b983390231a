"""
Configuration loader for the image minimizer.

Environment variables are centralized here to keep the rest of the code
focused on transform logic and to make operational tuning clear.
"""

from functools import lru_cache
import logging
import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _cpu_count() -> int:
    # os.cpu_count() may return None on exotic platforms.
    return os.cpu_count() or 1


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="IMAGE_MINIMIZER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling
    concurrency: int = Field(default_factory=_cpu_count, ge=1)

    # Shared encoder pool
    pool_workers: int = Field(default_factory=_cpu_count, ge=1)

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError("IMAGE_MINIMIZER_LOG_LEVEL must be a standard logging level name")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def resolve_concurrency(concurrency: Optional[int] = None, settings: Optional[Settings] = None) -> int:
    """Explicit concurrency wins; otherwise fall back to the configured limit."""
    if concurrency is not None:
        return concurrency
    settings = settings or get_settings()
    return settings.concurrency
