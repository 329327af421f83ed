"""
Development environment configuration.
"""

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class DevelopmentConfig(BaseConfig):
    """Development configuration."""

    model_config = SettingsConfigDict(env_file=".env.development")

    debug: bool = True
    log_level: str = "DEBUG"
    log_format: str = "text"

    # Keep local state between runs
    store_path: str = "./resilience_dev_store.json"

    # Faster health feedback for development
    health_check_interval_seconds: float = 60
