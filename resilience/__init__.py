"""
Resilience and security monitoring layer.

This package provides:
- Error classification, error reports and exponential-backoff retries
- Login lockout and sliding-window abuse detection
- Capped security-event and audit-log streams
- Multi-probe health aggregation and alerting
- A periodic scheduler driving health checks and sweeps
"""

from .errors import Severity, ErrorCategory, ResilienceError, NetworkError, DatabaseError, AuthenticationError
from .clock import Clock, SystemClock
from .store import KeyValueStore, InMemoryStore, JsonFileStore
from .error_classifier import ErrorClassifier, ClassificationResult
from .error_manager import ErrorManager, ErrorContext, ErrorReport, handle_validation_error
from .retry_executor import RetryExecutor
from .audit_logger import AuditLogger, SecurityEvent, SecurityEventType, AuditLogEntry
from .security_monitor import SecurityMonitor, SuspiciousPattern, LoginState, sanitize_input
from .auth_security import SessionManager, Session, validate_password, is_valid_email
from .performance_monitor import PerformanceMonitor, PerformanceMetric
from .health_monitor import HealthMonitor, HealthCheck, SystemHealth, CheckStatus, HealthStatus
from .alert_manager import AlertManager, Alert, AlertType, EscalationSink, LogEscalationSink, WebhookEscalationSink
from .scheduler import PeriodicScheduler
from .monitoring_service import MonitoringService, build_monitoring_service

__all__ = [
    # Taxonomy
    'Severity', 'ErrorCategory', 'ResilienceError', 'NetworkError', 'DatabaseError', 'AuthenticationError',

    # Adapters
    'Clock', 'SystemClock', 'KeyValueStore', 'InMemoryStore', 'JsonFileStore',

    # Errors and retries
    'ErrorClassifier', 'ClassificationResult', 'ErrorManager', 'ErrorContext', 'ErrorReport',
    'handle_validation_error', 'RetryExecutor',

    # Security
    'AuditLogger', 'SecurityEvent', 'SecurityEventType', 'AuditLogEntry',
    'SecurityMonitor', 'SuspiciousPattern', 'LoginState', 'sanitize_input',
    'SessionManager', 'Session', 'validate_password', 'is_valid_email',

    # Health, performance and alerts
    'PerformanceMonitor', 'PerformanceMetric',
    'HealthMonitor', 'HealthCheck', 'SystemHealth', 'CheckStatus', 'HealthStatus',
    'AlertManager', 'Alert', 'AlertType', 'EscalationSink', 'LogEscalationSink', 'WebhookEscalationSink',

    # Service graph
    'PeriodicScheduler', 'MonitoringService', 'build_monitoring_service',
]
