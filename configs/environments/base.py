"""
Base configuration settings.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class BaseConfig(BaseSettings):
    """Base configuration for all environments."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "RentaFlux Resilience"
    app_version: str = "1.0.0"
    debug: bool = False

    # Login lockout
    max_login_attempts: int = Field(5, ge=1)
    lockout_window_seconds: float = 15 * 60

    # Retry
    retry_base_delay_seconds: float = Field(1.0, ge=0)
    default_max_retries: int = Field(3, ge=0)

    # Bounded stores
    error_history_capacity: int = 100
    security_event_capacity: int = 100
    audit_log_capacity: int = 100
    health_history_capacity: int = 24
    critical_alert_capacity: int = 10
    store_path: Optional[str] = None

    # Scheduler intervals
    health_check_interval_seconds: float = 5 * 60
    performance_sweep_interval_seconds: float = 60
    error_sweep_interval_seconds: float = 2 * 60
    resource_sweep_interval_seconds: float = 5 * 60
    cleanup_interval_seconds: float = 60 * 60
    data_retention_days: int = 7

    # Performance thresholds
    slow_response_ms: float = 2000
    high_memory_mb: float = 100
    slow_query_ms: float = 500
    metric_window_seconds: float = 60 * 60

    # Health probes
    database_backend_name: str = "supabase"
    database_health_url: Optional[str] = None
    auth_health_url: Optional[str] = None
    probe_timeout_seconds: float = 5.0

    # Escalation
    escalation_webhook_url: Optional[str] = None

    # Logging
    configure_logging: bool = True
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: Optional[str] = "logs"
    log_console_output: bool = True

    def validate_required_secrets(self) -> List[str]:
        """Validate that the escalation and probe settings are present."""
        missing = []

        if not self.escalation_webhook_url:
            missing.append("ESCALATION_WEBHOOK_URL")

        return missing
