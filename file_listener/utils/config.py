"""
Configuration management for the file listener.

Uses pydantic-settings to load configuration from environment variables
(prefixed ``FILE_LISTENER_``) and .env files. A settings instance is
immutable for the lifetime of one watch session.
"""

import os
from functools import lru_cache
from pathlib import Path

from pydantic import NonNegativeInt, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from file_listener.models.schemas import ResourceType


class Settings(BaseSettings):
    """Watch session settings loaded from environment."""

    # Watch Configuration
    listening_path: Path = Path("/data")
    depth: NonNegativeInt = 0
    host_name: str = "localhost"

    # Service Account Configuration
    tenant_id: str = ""
    service_account_id: str = ""
    service_account_secret: str = ""

    # Event Policy Configuration
    missing_resource_type: ResourceType = ResourceType.FILE  # used when stat fails
    isolate_listener_errors: bool = True

    # Observer Configuration
    use_polling: bool = False
    polling_interval: float = 1.0  # seconds

    # Logging Configuration
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="FILE_LISTENER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @field_validator("listening_path")
    @classmethod
    def _absolute_listening_path(cls, value: Path) -> Path:
        """Expand and absolutize the root without requiring it to exist."""
        return Path(os.path.abspath(os.path.expanduser(value)))

    @property
    def listening_root(self) -> str:
        """Listening path as a string with no trailing separator."""
        return str(self.listening_path)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
