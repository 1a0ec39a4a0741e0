"""Runtime settings for Dynaform.

Values are read from the environment (prefix ``DYNAFORM_``) or an optional
``.env`` file.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Package settings.

    Attributes:
        checkbox_allow_duplicates: Whether a checkbox payload may repeat an option value
        log_level: Level applied to the ``dynaform`` logger by ``configure_logging``
    """
    checkbox_allow_duplicates: bool = True
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(env_prefix="DYNAFORM_", env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process."""
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply the configured level to the package logger."""
    settings = settings or get_settings()
    logging.getLogger("dynaform").setLevel(settings.log_level.upper())


__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
]
