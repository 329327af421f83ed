"""
Performance metric sampling over a rolling one-hour window.
"""

from typing import Dict, List, Optional, Any, Callable, Awaitable
from datetime import datetime, timedelta
from dataclasses import dataclass
from enum import Enum
import functools
import inspect
import json
import os
import threading
import time
import uuid

import psutil

from .clock import Clock, SystemClock
from .errors import Severity
from utils.logging import get_logger, get_enhanced_logger, LogCategory

logger = get_logger(__name__)
perf_logger = get_enhanced_logger(__name__, LogCategory.PERFORMANCE)

BYTES_PER_MB = 1024 * 1024


class PerformanceAlertType(Enum):
    SLOW_RESPONSE = "slow_response"
    HIGH_MEMORY = "high_memory"
    SLOW_QUERY = "slow_query"
    ERROR_RATE = "error_rate"


@dataclass
class PerformanceThresholds:
    """Per-sample thresholds that raise performance alerts."""
    response_time_ms: float = 2000
    memory_usage_bytes: float = 100 * BYTES_PER_MB
    db_query_time_ms: float = 500
    error_rate: float = 0.05


@dataclass
class PerformanceMetric:
    """One performance sample."""
    timestamp: datetime
    response_time_ms: float = 0.0
    memory_usage_bytes: float = 0.0
    cpu_usage: float = 0.0
    db_query_time_ms: float = 0.0
    cache_hit_rate: Optional[float] = None
    endpoint: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'timestamp': self.timestamp.isoformat(),
            'response_time_ms': self.response_time_ms,
            'memory_usage_bytes': self.memory_usage_bytes,
            'cpu_usage': self.cpu_usage,
            'db_query_time_ms': self.db_query_time_ms,
            'cache_hit_rate': self.cache_hit_rate,
            'endpoint': self.endpoint,
            'user_id': self.user_id
        }


@dataclass
class PerformanceAlert:
    """A single sample that crossed a threshold."""
    id: str
    type: PerformanceAlertType
    threshold: float
    current_value: float
    timestamp: datetime
    severity: Severity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'type': self.type.value,
            'threshold': self.threshold,
            'current_value': self.current_value,
            'timestamp': self.timestamp.isoformat(),
            'severity': self.severity.value
        }


def process_memory_bytes() -> float:
    """Resident set size of the current process."""
    return float(psutil.Process(os.getpid()).memory_info().rss)


class PerformanceMonitor:
    """Records performance samples and keeps the last hour of them."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        thresholds: Optional[PerformanceThresholds] = None,
        retention: timedelta = timedelta(hours=1),
        memory_reader: Optional[Callable[[], float]] = None
    ):
        self.clock = clock or SystemClock()
        self.thresholds = thresholds or PerformanceThresholds()
        self.retention = retention
        self.memory_reader = memory_reader or process_memory_bytes

        self.metrics: List[PerformanceMetric] = []
        self.alerts: List[PerformanceAlert] = []

        self._lock = threading.Lock()

    def record_metric(
        self,
        response_time_ms: float = 0.0,
        memory_usage_bytes: Optional[float] = None,
        cpu_usage: float = 0.0,
        db_query_time_ms: float = 0.0,
        cache_hit_rate: Optional[float] = None,
        endpoint: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> PerformanceMetric:
        """Record one sample; memory defaults to the current process usage."""
        if memory_usage_bytes is None:
            memory_usage_bytes = self._current_memory_usage()

        metric = PerformanceMetric(
            timestamp=self.clock.now(),
            response_time_ms=response_time_ms,
            memory_usage_bytes=memory_usage_bytes,
            cpu_usage=cpu_usage,
            db_query_time_ms=db_query_time_ms,
            cache_hit_rate=cache_hit_rate,
            endpoint=endpoint,
            user_id=user_id
        )

        with self._lock:
            self.metrics.append(metric)

        self._check_thresholds(metric)
        self._cleanup_old_data()

        perf_logger.debug(
            f"Performance metric recorded for {endpoint or 'unnamed'}",
            performance_metrics=metric.to_dict()
        )
        return metric

    def start_timing(self, label: str) -> Callable[[], float]:
        """
        Start timing an operation.

        Returns:
            A function that records the elapsed time and returns it in ms
        """
        start = time.perf_counter()

        def stop() -> float:
            duration_ms = (time.perf_counter() - start) * 1000
            self.record_metric(response_time_ms=duration_ms, endpoint=label)
            return duration_ms

        return stop

    def timed(self, label: Optional[str] = None):
        """Decorator recording the response time of sync or async callables."""
        def decorator(func):
            name = label or f"{func.__module__}.{func.__name__}"

            if inspect.iscoroutinefunction(func):
                @functools.wraps(func)
                async def async_wrapper(*args, **kwargs):
                    stop = self.start_timing(name)
                    try:
                        return await func(*args, **kwargs)
                    finally:
                        stop()
                return async_wrapper

            @functools.wraps(func)
            def wrapper(*args, **kwargs):
                stop = self.start_timing(name)
                try:
                    return func(*args, **kwargs)
                finally:
                    stop()
            return wrapper

        return decorator

    async def monitor_database_query(self, query_name: str, query: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``query`` and record its duration as a database query time."""
        start = time.perf_counter()

        try:
            result = await query()
        except Exception:
            self.record_metric(
                db_query_time_ms=(time.perf_counter() - start) * 1000,
                endpoint=f"db:{query_name}:error"
            )
            raise

        query_time_ms = (time.perf_counter() - start) * 1000
        self.record_metric(db_query_time_ms=query_time_ms, endpoint=f"db:{query_name}")

        if query_time_ms > self.thresholds.db_query_time_ms:
            logger.warning(f"Slow database query: {query_name} took {query_time_ms:.2f}ms")

        return result

    def get_metrics(self) -> Dict[str, Any]:
        """Averages over every retained sample; zeros when there are none."""
        self._cleanup_old_data()
        with self._lock:
            metrics = list(self.metrics)

        count = len(metrics)
        cache_rates = [m.cache_hit_rate for m in metrics if m.cache_hit_rate is not None]

        if count == 0:
            return {
                'average_response_time': 0.0,
                'memory_usage': 0.0,
                'average_db_query_time': 0.0,
                'cache_hit_rate': 0.0,
                'sample_count': 0,
                'cache_sample_count': 0
            }

        return {
            'average_response_time': sum(m.response_time_ms for m in metrics) / count,
            'memory_usage': sum(m.memory_usage_bytes for m in metrics) / count / BYTES_PER_MB,
            'average_db_query_time': sum(m.db_query_time_ms for m in metrics) / count,
            'cache_hit_rate': sum(cache_rates) / len(cache_rates) if cache_rates else 0.0,
            'sample_count': count,
            'cache_sample_count': len(cache_rates)
        }

    def get_performance_summary(self, window: timedelta = timedelta(minutes=5)) -> Dict[str, Any]:
        """Averages, slowest endpoints and alert count for the last ``window``."""
        self._cleanup_old_data()
        cutoff = self.clock.now() - window
        with self._lock:
            recent = [m for m in self.metrics if m.timestamp > cutoff]
            alert_count = sum(1 for a in self.alerts if a.timestamp > cutoff)

        if not recent:
            return {
                'average_response_time': 0.0,
                'average_memory_usage': 0.0,
                'slowest_queries': [],
                'alert_count': 0
            }

        slowest = sorted(
            (m for m in recent if m.endpoint and m.response_time_ms > 100),
            key=lambda m: m.response_time_ms,
            reverse=True
        )[:10]

        return {
            'average_response_time': sum(m.response_time_ms for m in recent) / len(recent),
            'average_memory_usage': sum(m.memory_usage_bytes for m in recent) / len(recent),
            'slowest_queries': [{'endpoint': m.endpoint, 'time': m.response_time_ms} for m in slowest],
            'alert_count': alert_count
        }

    def get_current_status(self) -> Dict[str, Any]:
        """Good, warning or critical, with issues and recommendations."""
        summary = self.get_performance_summary()
        issues = []
        recommendations = []
        status = "good"

        if summary['average_response_time'] > self.thresholds.response_time_ms:
            issues.append(
                f"Average response time is {summary['average_response_time']:.0f}ms "
                f"(threshold: {self.thresholds.response_time_ms:.0f}ms)"
            )
            recommendations.append("Consider optimizing slow database queries and implementing caching")
            status = "warning"

        if summary['average_memory_usage'] > self.thresholds.memory_usage_bytes:
            issues.append(f"High memory usage: {summary['average_memory_usage'] / BYTES_PER_MB:.1f}MB")
            recommendations.append("Check for memory leaks and unbounded caches")
            status = "warning"

        cutoff = self.clock.now() - timedelta(minutes=5)
        with self._lock:
            critical = [a for a in self.alerts if a.severity == Severity.CRITICAL and a.timestamp > cutoff]

        if critical:
            status = "critical"
            issues.append(f"{len(critical)} critical performance alerts")
            recommendations.append("Immediate attention required for critical performance issues")

        return {'status': status, 'issues': issues, 'recommendations': recommendations}

    def get_alerts(self) -> List[PerformanceAlert]:
        self._cleanup_old_data()
        with self._lock:
            return list(self.alerts)

    def cleanup_old_data(self) -> int:
        """Drop samples and alerts outside the retention window; returns samples removed."""
        return self._cleanup_old_data()

    def export_performance_data(self, window: timedelta = timedelta(hours=1)) -> str:
        """Export recent samples, alerts and a summary as JSON text."""
        cutoff = self.clock.now() - window
        with self._lock:
            metrics = [m.to_dict() for m in self.metrics if m.timestamp > cutoff]
            alerts = [a.to_dict() for a in self.alerts if a.timestamp > cutoff]

        data = {
            'metrics': metrics,
            'alerts': alerts,
            'summary': self.get_performance_summary(window),
            'exported_at': self.clock.now().isoformat()
        }
        return json.dumps(data, indent=2, default=str)

    # Private methods

    def _current_memory_usage(self) -> float:
        try:
            return float(self.memory_reader())
        except Exception as e:
            logger.warning(f"Could not read memory usage: {e}")
            return 0.0

    def _check_thresholds(self, metric: PerformanceMetric) -> None:
        if metric.response_time_ms > self.thresholds.response_time_ms:
            self._create_alert(
                PerformanceAlertType.SLOW_RESPONSE,
                self.thresholds.response_time_ms,
                metric.response_time_ms,
                Severity.MEDIUM
            )

        if metric.memory_usage_bytes > self.thresholds.memory_usage_bytes:
            self._create_alert(
                PerformanceAlertType.HIGH_MEMORY,
                self.thresholds.memory_usage_bytes,
                metric.memory_usage_bytes,
                Severity.MEDIUM
            )

        if metric.db_query_time_ms > self.thresholds.db_query_time_ms:
            self._create_alert(
                PerformanceAlertType.SLOW_QUERY,
                self.thresholds.db_query_time_ms,
                metric.db_query_time_ms,
                Severity.MEDIUM
            )

    def _create_alert(
        self,
        alert_type: PerformanceAlertType,
        threshold: float,
        current_value: float,
        severity: Severity
    ) -> None:
        alert = PerformanceAlert(
            id=str(uuid.uuid4()),
            type=alert_type,
            threshold=threshold,
            current_value=current_value,
            timestamp=self.clock.now(),
            severity=severity
        )

        with self._lock:
            self.alerts.append(alert)

        perf_logger.warning(
            f"Performance alert: {alert_type.value} - {current_value:.1f} exceeds threshold {threshold:.1f}"
        )

    def _cleanup_old_data(self) -> int:
        cutoff = self.clock.now() - self.retention
        with self._lock:
            before = len(self.metrics)
            self.metrics = [m for m in self.metrics if m.timestamp > cutoff]
            self.alerts = [a for a in self.alerts if a.timestamp > cutoff]
            return before - len(self.metrics)
