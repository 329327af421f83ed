"""
Production environment configuration.
"""

from typing import List

from pydantic_settings import SettingsConfigDict

from .base import BaseConfig


class ProductionConfig(BaseConfig):
    """Production configuration."""

    model_config = SettingsConfigDict(env_file=".env.production")

    debug: bool = False
    log_level: str = "INFO"
    log_format: str = "json"

    # Production logging
    log_dir: str = "/var/log/rentaflux"
    store_path: str = "/var/lib/rentaflux/resilience_store.json"

    def validate_production_requirements(self) -> List[str]:
        """Additional validation for production."""
        issues = self.validate_required_secrets()

        if not self.database_health_url:
            issues.append("DATABASE_HEALTH_URL must be set in production")

        if not self.auth_health_url:
            issues.append("AUTH_HEALTH_URL must be set in production")

        if self.max_login_attempts > 10:
            issues.append("MAX_LOGIN_ATTEMPTS above 10 weakens brute-force protection")

        return issues
