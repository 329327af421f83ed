"""
Testing environment configuration.
"""

from typing import Optional

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class TestingConfig(BaseConfig):
    """Testing configuration."""

    model_config = SettingsConfigDict(env_file=".env.testing")

    debug: bool = True
    log_level: str = "DEBUG"

    # No file handlers or process-wide logging changes in tests
    configure_logging: bool = False
    log_dir: Optional[str] = None

    # In-memory store only
    store_path: Optional[str] = None

    # Disable external services
    database_health_url: Optional[str] = None
    auth_health_url: Optional[str] = None
    escalation_webhook_url: Optional[str] = None
