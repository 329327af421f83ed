"""
Health probes and their aggregation into one system status.
"""

from typing import Dict, List, Optional, Any, Callable, Awaitable, Tuple
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
from abc import ABC, abstractmethod
import asyncio
import threading
import time

import psutil
import requests

from .audit_logger import AuditLogger
from .clock import Clock, SystemClock
from .error_manager import ErrorManager
from .errors import Severity
from .performance_monitor import PerformanceMonitor, BYTES_PER_MB
from .store import KeyValueStore, InMemoryStore, append_capped, read_json_list, filter_json_list
from utils.logging import get_logger, get_enhanced_logger, LogCategory

logger = get_logger(__name__)
health_logger = get_enhanced_logger(__name__, LogCategory.HEALTH)

HEALTH_HISTORY_KEY = "health_history"

ReachabilityCheck = Callable[[], Awaitable[bool]]


class CheckStatus(Enum):
    """Result of one probe."""
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class HealthStatus(Enum):
    """Overall system status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheck:
    """Outcome of one probe in one health cycle."""
    name: str
    status: CheckStatus
    duration_ms: float = 0.0
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'name': self.name,
            'status': self.status.value,
            'duration_ms': self.duration_ms,
            'message': self.message,
            'metadata': self.metadata
        }


@dataclass
class SystemHealth:
    """Aggregated result of one health cycle."""
    status: HealthStatus
    checks: List[HealthCheck]
    timestamp: datetime
    uptime: float  # seconds
    version: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'status': self.status.value,
            'checks': [check.to_dict() for check in self.checks],
            'timestamp': self.timestamp.isoformat(),
            'uptime': self.uptime,
            'version': self.version
        }


def aggregate_status(checks: List[HealthCheck]) -> HealthStatus:
    """Any fail is unhealthy, else any warn is degraded, else healthy."""
    if any(check.status == CheckStatus.FAIL for check in checks):
        return HealthStatus.UNHEALTHY
    if any(check.status == CheckStatus.WARN for check in checks):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class HealthProbe(ABC):
    """Base class for health probes."""

    def __init__(self, name: str):
        self.name = name
        self.enabled = True

    @abstractmethod
    async def check(self) -> HealthCheck:
        """Run the probe. May raise; the aggregator records that as a failure."""
        pass


class ReachabilityProbe(HealthProbe):
    """Probe backed by an injected async reachability check."""

    messages = {
        'missing': "No reachability probe configured",
        'fail': "Service is unreachable",
        'error': "Service check failed: {error}",
        'slow': "Service response time is slow",
        'pass': "Service is reachable",
    }

    def __init__(
        self,
        name: str,
        check_fn: Optional[ReachabilityCheck] = None,
        slow_threshold_ms: Optional[float] = None
    ):
        super().__init__(name)
        self.check_fn = check_fn
        self.slow_threshold_ms = slow_threshold_ms

    async def check(self) -> HealthCheck:
        if self.check_fn is None:
            return HealthCheck(self.name, CheckStatus.WARN, message=self.messages['missing'])

        start = time.perf_counter()
        try:
            reachable = await self.check_fn()
        except Exception as e:
            return HealthCheck(
                self.name,
                CheckStatus.FAIL,
                message=self.messages['error'].format(error=e)
            )
        duration_ms = (time.perf_counter() - start) * 1000

        if not reachable:
            return HealthCheck(self.name, CheckStatus.FAIL, duration_ms, self.messages['fail'])

        if self.slow_threshold_ms is not None and duration_ms > self.slow_threshold_ms:
            return HealthCheck(self.name, CheckStatus.WARN, duration_ms, self.messages['slow'])

        return HealthCheck(self.name, CheckStatus.PASS, duration_ms, self.messages['pass'])


class DatabaseProbe(ReachabilityProbe):
    """Remote database reachability; slow answers only warn."""

    messages = {
        'missing': "No database probe configured",
        'fail': "Database error: database is unreachable",
        'error': "Database connection failed: {error}",
        'slow': "Database response time is slow",
        'pass': "Database is responsive",
    }

    def __init__(self, check_fn: Optional[ReachabilityCheck] = None, slow_threshold_ms: float = 1000):
        super().__init__("database", check_fn, slow_threshold_ms)


class AuthServiceProbe(ReachabilityProbe):
    """Authentication service reachability."""

    messages = {
        'missing': "No authentication probe configured",
        'fail': "Auth service error: authentication service is unreachable",
        'error': "Auth service failed: {error}",
        'slow': "Authentication service response time is slow",
        'pass': "Authentication service is working",
    }

    def __init__(self, check_fn: Optional[ReachabilityCheck] = None):
        super().__init__("authentication", check_fn)


class PerformanceProbe(HealthProbe):
    """Aggregate response time and memory from the performance monitor."""

    def __init__(
        self,
        performance_monitor: PerformanceMonitor,
        fail_response_ms: Optional[float] = None,
        warn_response_ms: float = 1000,
        warn_memory_mb: Optional[float] = None
    ):
        super().__init__("performance")
        thresholds = performance_monitor.thresholds
        self.performance_monitor = performance_monitor
        self.fail_response_ms = fail_response_ms or thresholds.response_time_ms
        self.warn_response_ms = warn_response_ms
        self.warn_memory_mb = warn_memory_mb or thresholds.memory_usage_bytes / BYTES_PER_MB

    async def check(self) -> HealthCheck:
        metrics = self.performance_monitor.get_metrics()
        avg_response_time = metrics['average_response_time']
        memory_usage = metrics['memory_usage']
        metadata = {'avg_response_time': avg_response_time, 'memory_usage': memory_usage}

        if avg_response_time > self.fail_response_ms:
            return HealthCheck(self.name, CheckStatus.FAIL, message="Response times are too slow", metadata=metadata)

        if avg_response_time > self.warn_response_ms or memory_usage > self.warn_memory_mb:
            return HealthCheck(self.name, CheckStatus.WARN, message="Performance is degraded", metadata=metadata)

        return HealthCheck(self.name, CheckStatus.PASS, message="Performance is good", metadata=metadata)


def system_memory_usage() -> Tuple[float, float]:
    """(used, total) bytes of system memory."""
    memory = psutil.virtual_memory()
    return float(memory.total - memory.available), float(memory.total)


class MemoryProbe(HealthProbe):
    """Memory pressure as a percentage of total memory."""

    def __init__(
        self,
        memory_reader: Optional[Callable[[], Tuple[float, float]]] = None,
        warn_percent: float = 70.0,
        fail_percent: float = 90.0
    ):
        super().__init__("memory")
        self.memory_reader = memory_reader or system_memory_usage
        self.warn_percent = warn_percent
        self.fail_percent = fail_percent

    async def check(self) -> HealthCheck:
        used, total = self.memory_reader()
        if not total:
            return HealthCheck(self.name, CheckStatus.PASS, message="Memory monitoring not available")

        usage = used / total * 100
        metadata = {
            'used_memory_mb': used / BYTES_PER_MB,
            'total_memory_mb': total / BYTES_PER_MB,
            'memory_usage': usage
        }

        if usage > self.fail_percent:
            return HealthCheck(self.name, CheckStatus.FAIL, message="Memory usage is critically high", metadata=metadata)

        if usage > self.warn_percent:
            return HealthCheck(self.name, CheckStatus.WARN, message="Memory usage is high", metadata=metadata)

        return HealthCheck(self.name, CheckStatus.PASS, message="Memory usage is normal", metadata=metadata)


class ErrorRateProbe(HealthProbe):
    """Recent error counts from the error manager."""

    def __init__(self, error_manager: ErrorManager, max_high: int = 5, max_total: int = 20):
        super().__init__("error_rate")
        self.error_manager = error_manager
        self.max_high = max_high
        self.max_total = max_total

    async def check(self) -> HealthCheck:
        stats = self.error_manager.get_error_statistics()
        by_severity = stats['errors_by_severity']
        critical = by_severity.get(Severity.CRITICAL.value, 0)
        high = by_severity.get(Severity.HIGH.value, 0)
        total = stats['total_errors']
        metadata = {
            'total_errors': total,
            'errors_by_severity': by_severity,
            'errors_by_category': stats['errors_by_category']
        }

        if critical > 0:
            return HealthCheck(self.name, CheckStatus.FAIL, message=f"{critical} critical errors detected", metadata=metadata)

        if high > self.max_high or total > self.max_total:
            return HealthCheck(self.name, CheckStatus.WARN, message="High error rate detected", metadata=metadata)

        return HealthCheck(self.name, CheckStatus.PASS, message="Error rate is normal", metadata=metadata)


class SecurityProbe(HealthProbe):
    """High and critical security events in the last hour."""

    def __init__(self, audit_logger: AuditLogger, max_events: int = 3, window: timedelta = timedelta(hours=1)):
        super().__init__("security")
        self.audit_logger = audit_logger
        self.max_events = max_events
        self.window = window

    async def check(self) -> HealthCheck:
        recent = self.audit_logger.get_recent_security_events(window=self.window, min_severity=Severity.HIGH)
        count = len(recent)

        if count > self.max_events:
            return HealthCheck(
                self.name,
                CheckStatus.FAIL,
                message=f"{count} high-severity security events in the last hour",
                metadata={'recent_events': count}
            )

        if count > 0:
            return HealthCheck(
                self.name,
                CheckStatus.WARN,
                message=f"{count} security events detected",
                metadata={'recent_events': count}
            )

        return HealthCheck(
            self.name,
            CheckStatus.PASS,
            message="No security issues detected",
            metadata={'total_events': len(self.audit_logger.get_security_events())}
        )


def http_reachability_probe(url: str, timeout: float = 5.0) -> ReachabilityCheck:
    """Build a reachability check that GETs ``url`` off the event loop."""
    async def check() -> bool:
        response = await asyncio.to_thread(requests.get, url, timeout=timeout)
        return response.ok

    return check


class HealthMonitor:
    """
    Runs every probe once per cycle and folds the results into SystemHealth.

    Each cycle is appended to the capped ``health_history`` stream and handed
    to the alert manager.
    """

    def __init__(
        self,
        probes: List[HealthProbe],
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        alert_manager=None,
        history_capacity: int = 24,
        version: str = "1.0.0"
    ):
        self.probes = list(probes)
        self.store = store or InMemoryStore()
        self.clock = clock or SystemClock()
        self.alert_manager = alert_manager
        self.history_capacity = history_capacity
        self.version = version

        self.started_at = self.clock.now()
        self.last_health: Optional[SystemHealth] = None

        self._lock = threading.Lock()

    async def perform_health_check(self) -> SystemHealth:
        """Run one health cycle; never raises because of a probe."""
        checks = []
        for probe in self.probes:
            if probe.enabled:
                checks.append(await self._run_probe(probe))

        now = self.clock.now()
        health = SystemHealth(
            status=aggregate_status(checks),
            checks=checks,
            timestamp=now,
            uptime=(now - self.started_at).total_seconds(),
            version=self.version
        )

        with self._lock:
            self.last_health = health
            try:
                append_capped(self.store, HEALTH_HISTORY_KEY, health.to_dict(), self.history_capacity)
            except Exception as e:
                logger.error(f"Failed to store health check: {e}")

        health_logger.info(
            f"Health check completed: {health.status.value}",
            checks={check.name: check.status.value for check in checks}
        )

        if self.alert_manager is not None:
            try:
                self.alert_manager.evaluate_health(health)
            except Exception as e:
                logger.error(f"Failed to generate health alerts: {e}")

        return health

    def get_health_history(self) -> List[Dict[str, Any]]:
        with self._lock:
            return read_json_list(self.store, HEALTH_HISTORY_KEY)

    def cleanup_history(self, max_age: timedelta = timedelta(days=7)) -> int:
        """Remove stored health snapshots older than ``max_age``."""
        cutoff = self.clock.now() - max_age

        def keep(entry: Dict[str, Any]) -> bool:
            try:
                return datetime.fromisoformat(entry['timestamp']) > cutoff
            except (KeyError, TypeError, ValueError):
                return False

        with self._lock:
            removed = filter_json_list(self.store, HEALTH_HISTORY_KEY, keep)

        if removed:
            logger.info(f"Cleaned up {removed} old health snapshots")
        return removed

    # Private methods

    async def _run_probe(self, probe: HealthProbe) -> HealthCheck:
        start = time.perf_counter()
        try:
            result = await probe.check()
        except Exception as e:
            logger.error(f"Health probe {probe.name} failed: {e}")
            result = HealthCheck(probe.name, CheckStatus.FAIL, message=str(e))

        result.duration_ms = (time.perf_counter() - start) * 1000
        return result
