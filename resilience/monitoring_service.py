"""
Explicit service graph for the resilience and security monitoring layer.

build_monitoring_service() wires every component from settings plus the
injected collaborators. MonitoringService is the surface application code
calls into.
"""

from typing import Dict, List, Optional, Any, Callable, Awaitable, Tuple
from datetime import timedelta
from pathlib import Path
import asyncio

from .alert_manager import (
    AlertManager, Alert, AlertType, EscalationSink, LogEscalationSink, WebhookEscalationSink
)
from .audit_logger import AuditLogger
from .auth_security import SessionManager, Session, PasswordValidationResult, validate_password
from .clock import Clock, SystemClock
from .error_classifier import ErrorClassifier
from .error_manager import ErrorManager, ErrorContext, ErrorReport
from .errors import Severity
from .health_monitor import (
    HealthMonitor, SystemHealth, DatabaseProbe, AuthServiceProbe, PerformanceProbe,
    MemoryProbe, ErrorRateProbe, SecurityProbe, http_reachability_probe, system_memory_usage
)
from .performance_monitor import PerformanceMonitor, PerformanceThresholds, BYTES_PER_MB
from .retry_executor import RetryExecutor, Operation, _MISSING
from .scheduler import PeriodicScheduler
from .security_monitor import SecurityMonitor
from .store import KeyValueStore, InMemoryStore, JsonFileStore
from configs.environments.base import BaseConfig
from configs.settings import get_settings
from utils.logging import get_logger, setup_logging, LogConfig

logger = get_logger(__name__)

SLOW_RESPONSE_ALERT_MS = 3000
LOW_CACHE_HIT_RATE = 50
ERROR_SPIKE_TOTAL = 50
MEMORY_CRITICAL_PERCENT = 90
MEMORY_HIGH_PERCENT = 75


class MonitoringService:
    """Facade over the wired components plus the periodic sweeps."""

    def __init__(
        self,
        clock: Clock,
        store: KeyValueStore,
        alert_manager: AlertManager,
        audit_logger: AuditLogger,
        error_manager: ErrorManager,
        retry_executor: RetryExecutor,
        security_monitor: SecurityMonitor,
        session_manager: SessionManager,
        performance_monitor: PerformanceMonitor,
        health_monitor: HealthMonitor,
        scheduler: PeriodicScheduler,
        memory_reader: Callable[[], Tuple[float, float]] = system_memory_usage,
        data_retention: timedelta = timedelta(days=7)
    ):
        self.clock = clock
        self.store = store
        self.alert_manager = alert_manager
        self.audit_logger = audit_logger
        self.error_manager = error_manager
        self.retry_executor = retry_executor
        self.security_monitor = security_monitor
        self.session_manager = session_manager
        self.performance_monitor = performance_monitor
        self.health_monitor = health_monitor
        self.scheduler = scheduler
        self.memory_reader = memory_reader
        self.data_retention = data_retention

    # Errors and retries

    def handle_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None,
        severity: Optional[Severity] = None,
        max_retries: Optional[int] = None
    ) -> ErrorReport:
        return self.error_manager.handle_error(error, context, severity=severity, max_retries=max_retries)

    async def retry_operation(
        self,
        operation: Operation,
        context: Optional[ErrorContext] = None,
        max_retries: Optional[int] = None
    ) -> Any:
        return await self.retry_executor.retry_operation(operation, context, max_retries)

    async def with_fallback(
        self,
        operation: Operation,
        fallback: Any = _MISSING,
        context: Optional[ErrorContext] = None
    ) -> Any:
        return await self.retry_executor.with_fallback(operation, fallback, context)

    async def handle_network_error(
        self,
        error: BaseException,
        original_request: Operation,
        fallback: Any = _MISSING
    ) -> Any:
        return await self.retry_executor.handle_network_error(error, original_request, fallback)

    # Authentication and abuse detection

    def check_login_attempts(self, identifier: str) -> bool:
        return self.security_monitor.check_login_attempts(identifier)

    def record_failed_login(self, identifier: str, user_id: Optional[str] = None) -> int:
        return self.security_monitor.record_failed_login(identifier, user_id)

    def record_successful_login(self, user_id: str, identifier: str) -> None:
        self.security_monitor.record_successful_login(user_id, identifier)

    def detect_suspicious_activity(
        self,
        user_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        return self.security_monitor.detect_suspicious_activity(user_id, action, metadata)

    def validate_password(self, password: str) -> PasswordValidationResult:
        return validate_password(password)

    async def validate_and_renew_session(self, session: Optional[Session]) -> bool:
        return await self.session_manager.validate_and_renew_session(session)

    # Health and alerts

    async def perform_health_check(self) -> SystemHealth:
        return await self.health_monitor.perform_health_check()

    def create_alert(
        self,
        alert_type: AlertType,
        severity: Severity,
        title: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Alert:
        return self.alert_manager.create_alert(alert_type, severity, title, description, metadata)

    def resolve_alert(self, alert_id: str, resolution: Optional[str] = None) -> bool:
        return self.alert_manager.resolve_alert(alert_id, resolution)

    async def get_system_metrics(self) -> Dict[str, Any]:
        """Snapshot of every monitored area, running a fresh health check."""
        health = await self.perform_health_check()

        return {
            'performance': self.performance_monitor.get_metrics(),
            'security': {
                'events': [e.to_dict() for e in self.audit_logger.get_security_events(limit=10)],
                'audits': [a.to_dict() for a in self.audit_logger.get_audit_logs(limit=10)]
            },
            'errors': self.error_manager.get_error_statistics(),
            'health': health.to_dict(),
            'alerts': [a.to_dict() for a in self.alert_manager.get_active_alerts(limit=20)]
        }

    # Scheduler

    def start(self) -> Dict[str, asyncio.Task]:
        """Start the periodic jobs; a second call returns the running handles."""
        return self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()

    # Sweeps

    def check_performance_alerts(self) -> List[Alert]:
        """Alert on slow average responses and a low cache hit rate."""
        metrics = self.performance_monitor.get_metrics()
        created = []

        if metrics['average_response_time'] > SLOW_RESPONSE_ALERT_MS:
            created.append(self.create_alert(
                AlertType.PERFORMANCE,
                Severity.HIGH,
                "Slow Response Times",
                f"Average response time is {metrics['average_response_time']:.0f}ms",
                metrics
            ))

        if metrics['cache_sample_count'] > 0 and metrics['cache_hit_rate'] < LOW_CACHE_HIT_RATE:
            created.append(self.create_alert(
                AlertType.PERFORMANCE,
                Severity.MEDIUM,
                "Low Cache Hit Rate",
                f"Cache hit rate is {metrics['cache_hit_rate']:.1f}%",
                metrics
            ))

        return created

    def check_error_patterns(self) -> List[Alert]:
        """Alert on any critical error and on error spikes."""
        stats = self.error_manager.get_error_statistics()
        critical = stats['errors_by_severity'].get(Severity.CRITICAL.value, 0)
        summary = {
            'total_errors': stats['total_errors'],
            'errors_by_severity': stats['errors_by_severity'],
            'errors_by_category': stats['errors_by_category']
        }
        created = []

        if critical > 0:
            created.append(self.create_alert(
                AlertType.ERROR,
                Severity.CRITICAL,
                "Critical Errors Detected",
                f"{critical} critical errors in the system",
                summary
            ))

        if stats['total_errors'] > ERROR_SPIKE_TOTAL:
            created.append(self.create_alert(
                AlertType.ERROR,
                Severity.HIGH,
                "High Error Rate",
                f"{stats['total_errors']} total errors detected",
                summary
            ))

        return created

    def check_resource_usage(self) -> Optional[Alert]:
        """Alert on high system memory usage."""
        used, total = self.memory_reader()
        if not total:
            return None

        usage = used / total * 100
        metadata = {
            'used_memory_mb': used / BYTES_PER_MB,
            'total_memory_mb': total / BYTES_PER_MB,
            'memory_usage': usage
        }

        if usage > MEMORY_CRITICAL_PERCENT:
            return self.create_alert(
                AlertType.SYSTEM,
                Severity.CRITICAL,
                "Critical Memory Usage",
                f"Memory usage is at {usage:.1f}%",
                metadata
            )

        if usage > MEMORY_HIGH_PERCENT:
            return self.create_alert(
                AlertType.SYSTEM,
                Severity.HIGH,
                "High Memory Usage",
                f"Memory usage is at {usage:.1f}%",
                metadata
            )

        return None

    def cleanup_old_data(self) -> Dict[str, int]:
        """Drop alerts and health snapshots older than the retention period, and stale samples."""
        removed = {
            'alerts': self.alert_manager.cleanup_old_alerts(self.data_retention),
            'health_history': self.health_monitor.cleanup_history(self.data_retention),
            'pattern_windows': self.security_monitor.prune_pattern_windows(),
            'performance_samples': self.performance_monitor.cleanup_old_data()
        }
        logger.info(f"Old monitoring data cleaned up: {removed}")
        return removed


def build_monitoring_service(
    settings: Optional[BaseConfig] = None,
    store: Optional[KeyValueStore] = None,
    clock: Optional[Clock] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    database_check: Optional[Callable[[], Awaitable[bool]]] = None,
    auth_check: Optional[Callable[[], Awaitable[bool]]] = None,
    sinks: Optional[List[EscalationSink]] = None,
    memory_reader: Optional[Callable[[], Tuple[float, float]]] = None,
    process_memory_reader: Optional[Callable[[], float]] = None,
    role_lookup: Optional[Callable[[str], Awaitable[Optional[str]]]] = None,
    security_measures: Optional[Callable[[str, str], None]] = None,
    session_refresh: Optional[Callable[[Session], Awaitable[bool]]] = None,
    session_logout: Optional[Callable[[Session], Awaitable[None]]] = None,
    scheduler_sleep: Optional[Callable[[float], Awaitable[None]]] = None
) -> MonitoringService:
    """
    Construct the monitoring service graph.

    Collaborators that are not passed in are derived from settings: a JSON
    file store when ``store_path`` is set, HTTP reachability checks for the
    configured health URLs, and a webhook sink for the escalation URL.
    """
    settings = settings or get_settings()

    if settings.configure_logging:
        setup_logging(LogConfig(
            level=settings.log_level,
            format_type=settings.log_format,
            log_dir=Path(settings.log_dir) if settings.log_dir else None,
            console_output=settings.log_console_output
        ))

    clock = clock or SystemClock()
    if store is None:
        store = JsonFileStore(settings.store_path) if settings.store_path else InMemoryStore()

    if sinks is None:
        sinks = [LogEscalationSink()]
        if settings.escalation_webhook_url:
            sinks.append(WebhookEscalationSink(settings.escalation_webhook_url, clock=clock))

    if database_check is None and settings.database_health_url:
        database_check = http_reachability_probe(settings.database_health_url, settings.probe_timeout_seconds)
    if auth_check is None and settings.auth_health_url:
        auth_check = http_reachability_probe(settings.auth_health_url, settings.probe_timeout_seconds)

    memory_reader = memory_reader or system_memory_usage

    alert_manager = AlertManager(
        store=store,
        clock=clock,
        sinks=sinks,
        critical_alert_capacity=settings.critical_alert_capacity
    )
    audit_logger = AuditLogger(
        store=store,
        clock=clock,
        alert_manager=alert_manager,
        security_event_capacity=settings.security_event_capacity,
        audit_log_capacity=settings.audit_log_capacity
    )
    error_manager = ErrorManager(
        classifier=ErrorClassifier(settings.database_backend_name),
        audit_logger=audit_logger,
        clock=clock,
        capacity=settings.error_history_capacity,
        default_max_retries=settings.default_max_retries
    )
    retry_executor = RetryExecutor(
        error_manager,
        audit_logger,
        base_delay=timedelta(seconds=settings.retry_base_delay_seconds),
        default_max_retries=settings.default_max_retries,
        sleep=sleep
    )
    security_monitor = SecurityMonitor(
        audit_logger,
        clock=clock,
        max_login_attempts=settings.max_login_attempts,
        lockout_window=timedelta(seconds=settings.lockout_window_seconds),
        security_measures=security_measures,
        role_lookup=role_lookup
    )
    session_manager = SessionManager(
        audit_logger,
        clock=clock,
        refresh=session_refresh,
        logout=session_logout
    )
    performance_monitor = PerformanceMonitor(
        clock=clock,
        thresholds=PerformanceThresholds(
            response_time_ms=settings.slow_response_ms,
            memory_usage_bytes=settings.high_memory_mb * BYTES_PER_MB,
            db_query_time_ms=settings.slow_query_ms
        ),
        retention=timedelta(seconds=settings.metric_window_seconds),
        memory_reader=process_memory_reader
    )
    health_monitor = HealthMonitor(
        probes=[
            DatabaseProbe(database_check),
            AuthServiceProbe(auth_check),
            PerformanceProbe(performance_monitor),
            MemoryProbe(memory_reader),
            ErrorRateProbe(error_manager),
            SecurityProbe(audit_logger),
        ],
        store=store,
        clock=clock,
        alert_manager=alert_manager,
        history_capacity=settings.health_history_capacity,
        version=settings.app_version
    )

    scheduler = PeriodicScheduler(sleep=scheduler_sleep)
    service = MonitoringService(
        clock=clock,
        store=store,
        alert_manager=alert_manager,
        audit_logger=audit_logger,
        error_manager=error_manager,
        retry_executor=retry_executor,
        security_monitor=security_monitor,
        session_manager=session_manager,
        performance_monitor=performance_monitor,
        health_monitor=health_monitor,
        scheduler=scheduler,
        memory_reader=memory_reader,
        data_retention=timedelta(days=settings.data_retention_days)
    )

    scheduler.add_job("health_check", timedelta(seconds=settings.health_check_interval_seconds),
                      service.perform_health_check)
    scheduler.add_job("performance_sweep", timedelta(seconds=settings.performance_sweep_interval_seconds),
                      service.check_performance_alerts)
    scheduler.add_job("error_pattern_sweep", timedelta(seconds=settings.error_sweep_interval_seconds),
                      service.check_error_patterns)
    scheduler.add_job("resource_sweep", timedelta(seconds=settings.resource_sweep_interval_seconds),
                      service.check_resource_usage)
    scheduler.add_job("cleanup", timedelta(seconds=settings.cleanup_interval_seconds),
                      service.cleanup_old_data)

    logger.info("Monitoring service initialized")
    return service
