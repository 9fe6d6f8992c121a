"""
Centralized configuration management for studycore.
"""
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    DEFAULT_DAILY_TARGET_REWARD,
    DEFAULT_DESIRED_RETENTION,
    HIGH_PRIORITY_WEIGHT,
    MIN_ALLOCATION_REWARD,
    RECOMMENDED_RETENTION,
)


def get_default_db_path() -> Path:
    """Returns the default path for the database file."""
    return Path.home() / ".studycore" / "study.db"


class Settings(BaseSettings):
    """
    Application settings, loaded from ``STUDYCORE_*`` environment variables
    or a ``.env`` file. Every value can still be overridden at the call site.
    """

    model_config = SettingsConfigDict(
        env_prefix="STUDYCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Core Paths ---
    db_path: Path = Field(default_factory=get_default_db_path)

    # --- Study load ---
    # Seeds StudyState.daily_target_reward for a fresh database.
    daily_target_reward: int = Field(default=DEFAULT_DAILY_TARGET_REWARD, ge=0)
    min_allocation_reward: int = Field(default=MIN_ALLOCATION_REWARD, ge=0)
    high_priority_weight: float = Field(default=HIGH_PRIORITY_WEIGHT, gt=0)

    # --- Memory model ---
    desired_retention: float = Field(default=DEFAULT_DESIRED_RETENTION, gt=0, lt=1)
    deadline_retention: float = Field(default=RECOMMENDED_RETENTION, gt=0, lt=1)

    # --- Testing Configuration ---
    # When True, disables safety checks that prevent data loss during tests.
    # Should NEVER be enabled in production. Can be set via STUDYCORE_TESTING_MODE.
    testing_mode: bool = False


# Create a singleton instance of the settings
settings = Settings()
