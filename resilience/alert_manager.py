"""
Alert creation, resolution and escalation.
"""

from typing import Dict, List, Optional, Any, TYPE_CHECKING
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
from abc import ABC, abstractmethod
import threading
import uuid

import requests

from .clock import Clock, SystemClock
from .errors import Severity
from .store import KeyValueStore, InMemoryStore, append_capped
from utils.logging import get_logger, get_enhanced_logger, LogCategory

if TYPE_CHECKING:
    from .health_monitor import SystemHealth

logger = get_logger(__name__)
alert_logger = get_enhanced_logger(__name__, LogCategory.ALERT)

CRITICAL_ALERTS_KEY = "critical_alerts"
HEALTH_ALERT_SOURCE = "health_check"


class AlertType(Enum):
    """Types of alerts."""
    PERFORMANCE = "performance"
    SECURITY = "security"
    ERROR = "error"
    SYSTEM = "system"


@dataclass
class Alert:
    """Alert record. Open until resolved, manually or automatically."""
    id: str
    type: AlertType
    severity: Severity
    title: str
    description: str
    created_at: datetime
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolution: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def resolve(self, at: datetime, resolution: Optional[str] = None) -> None:
        """Resolve the alert."""
        self.resolved = True
        self.resolved_at = at
        self.resolution = resolution

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'id': self.id,
            'type': self.type.value,
            'severity': self.severity.value,
            'title': self.title,
            'description': self.description,
            'timestamp': self.created_at.isoformat(),
            'resolved': self.resolved,
            'resolved_at': self.resolved_at.isoformat() if self.resolved_at else None,
            'resolution': self.resolution,
            'metadata': self.metadata
        }


class EscalationSink(ABC):
    """Receives critical alerts at creation time (paging, chat, etc.)."""

    @abstractmethod
    def escalate(self, alert: Alert) -> bool:
        """Deliver the alert. Returns True on success."""
        pass


class LogEscalationSink(EscalationSink):
    """Writes critical alerts to the alert log."""

    def escalate(self, alert: Alert) -> bool:
        alert_logger.critical(
            f"CRITICAL ALERT: {alert.title} - {alert.description}",
            category=LogCategory.ALERT,
            alert_id=alert.id,
            alert_type=alert.type.value,
            alert_metadata=alert.metadata
        )
        return True


class WebhookEscalationSink(EscalationSink):
    """
    Posts critical alerts to a webhook as JSON.

    The request is blocking and runs inside ``create_alert``, which the
    health cycle reaches from the event loop, so the timeout is kept short.
    """

    def __init__(self, webhook_url: str, timeout: float = 3, clock: Optional[Clock] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.clock = clock or SystemClock()

    def escalate(self, alert: Alert) -> bool:
        """Send webhook alert."""
        try:
            payload = {
                'alert': alert.to_dict(),
                'timestamp': self.clock.now().isoformat()
            }

            response = requests.post(
                self.webhook_url,
                json=payload,
                timeout=self.timeout,
                headers={'Content-Type': 'application/json'}
            )

            if response.status_code < 300:
                logger.info(f"Webhook escalation sent for {alert.id}")
                return True

            logger.error(f"Webhook escalation failed with status {response.status_code}")
            return False

        except requests.RequestException as e:
            logger.error(f"Failed to send webhook escalation: {e}")
            return False


class AlertManager:
    """
    Central alert management.

    Every create_alert call produces a new alert; identical alerts are not
    merged. Critical alerts are persisted to the ``critical_alerts`` stream
    and handed to every escalation sink before create_alert returns.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        sinks: Optional[List[EscalationSink]] = None,
        critical_alert_capacity: int = 10,
        max_alerts: int = 1000
    ):
        self.store = store or InMemoryStore()
        self.clock = clock or SystemClock()
        self.sinks: List[EscalationSink] = list(sinks or [])
        self.critical_alert_capacity = critical_alert_capacity
        self.max_alerts = max_alerts

        # Insertion ordered, oldest first
        self.alerts: Dict[str, Alert] = {}

        self.alert_stats = {
            'total_alerts': 0,
            'resolved_alerts': 0,
            'escalations_sent': 0,
            'escalations_failed': 0,
            'alerts_by_severity': {severity.value: 0 for severity in Severity},
            'alerts_by_type': {alert_type.value: 0 for alert_type in AlertType}
        }

        self._lock = threading.Lock()

    def add_sink(self, sink: EscalationSink) -> None:
        """Register an escalation sink."""
        self.sinks.append(sink)
        logger.info(f"Escalation sink added: {type(sink).__name__}")

    def create_alert(
        self,
        alert_type: AlertType,
        severity: Severity,
        title: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Alert:
        """Create a new alert, escalating it when critical."""
        alert = Alert(
            id=self._generate_alert_id(),
            type=alert_type,
            severity=severity,
            title=title,
            description=description,
            created_at=self.clock.now(),
            metadata=dict(metadata or {})
        )

        with self._lock:
            self.alerts[alert.id] = alert
            self._trim_alerts()
            self.alert_stats['total_alerts'] += 1
            self.alert_stats['alerts_by_severity'][severity.value] += 1
            self.alert_stats['alerts_by_type'][alert_type.value] += 1

        alert_logger.log_at_severity(
            severity.value,
            f"System alert: {title} - {description}",
            alert_id=alert.id,
            alert_type=alert_type.value
        )

        if severity == Severity.CRITICAL:
            self._handle_critical_alert(alert)

        return alert

    def resolve_alert(self, alert_id: str, resolution: Optional[str] = None) -> bool:
        """
        Resolve an alert.

        Returns:
            True if the alert was open and is now resolved, False if it is
            unknown or was already resolved
        """
        with self._lock:
            alert = self.alerts.get(alert_id)
            if alert is None or alert.resolved:
                return False

            alert.resolve(self.clock.now(), resolution)
            self.alert_stats['resolved_alerts'] += 1

        logger.info(f"Alert resolved: {alert_id}")
        return True

    def evaluate_health(self, health: 'SystemHealth') -> Optional[Alert]:
        """
        Turn one health cycle into at most one alert.

        Unhealthy yields a critical alert naming the failed probes, degraded a
        medium alert naming the warning probes. A healthy cycle resolves the
        open health alerts.
        """
        status = health.status.value

        if status == "unhealthy":
            failed = [check.name for check in health.checks if check.status.value == "fail"]
            return self.create_alert(
                AlertType.SYSTEM,
                Severity.CRITICAL,
                "System Health Critical",
                f"{len(failed)} health checks failed",
                {'failed_checks': failed, 'source': HEALTH_ALERT_SOURCE}
            )

        if status == "degraded":
            warnings = [check.name for check in health.checks if check.status.value == "warn"]
            return self.create_alert(
                AlertType.SYSTEM,
                Severity.MEDIUM,
                "System Health Degraded",
                f"{len(warnings)} health checks showing warnings",
                {'warn_checks': warnings, 'source': HEALTH_ALERT_SOURCE}
            )

        for alert in self.get_active_alerts(limit=None):
            if alert.metadata.get('source') == HEALTH_ALERT_SOURCE:
                self.resolve_alert(alert.id, "System health recovered")
        return None

    def get_alert(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            return self.alerts.get(alert_id)

    def get_active_alerts(
        self,
        limit: Optional[int] = 20,
        severity: Optional[Severity] = None,
        alert_type: Optional[AlertType] = None
    ) -> List[Alert]:
        """Get the most recent open alerts, oldest first."""
        with self._lock:
            alerts = [a for a in self.alerts.values() if not a.resolved]

        if severity:
            alerts = [a for a in alerts if a.severity == severity]

        if alert_type:
            alerts = [a for a in alerts if a.type == alert_type]

        if limit is not None:
            alerts = alerts[-limit:]

        return alerts

    def get_all_alerts(self) -> List[Alert]:
        with self._lock:
            return list(self.alerts.values())

    def cleanup_old_alerts(self, max_age: timedelta = timedelta(days=7)) -> int:
        """Remove alerts created before ``now - max_age``."""
        cutoff = self.clock.now() - max_age
        with self._lock:
            expired = [alert_id for alert_id, alert in self.alerts.items() if alert.created_at <= cutoff]
            for alert_id in expired:
                del self.alerts[alert_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} old alerts")

        return len(expired)

    def get_alert_statistics(self) -> Dict[str, Any]:
        """Get alert statistics."""
        with self._lock:
            stats = {
                key: (dict(value) if isinstance(value, dict) else value)
                for key, value in self.alert_stats.items()
            }
            stats['active_alerts'] = sum(1 for a in self.alerts.values() if not a.resolved)
            stats['escalation_sinks'] = [type(sink).__name__ for sink in self.sinks]
            return stats

    # Private methods

    def _generate_alert_id(self) -> str:
        """Generate unique alert ID."""
        return str(uuid.uuid4())

    def _trim_alerts(self) -> None:
        while len(self.alerts) > self.max_alerts:
            oldest_id = next(iter(self.alerts))
            del self.alerts[oldest_id]

    def _handle_critical_alert(self, alert: Alert) -> None:
        try:
            append_capped(self.store, CRITICAL_ALERTS_KEY, alert.to_dict(), self.critical_alert_capacity)
        except Exception as e:
            logger.error(f"Failed to store critical alert {alert.id}: {e}")

        for sink in list(self.sinks):
            try:
                delivered = sink.escalate(alert)
            except Exception as e:
                logger.error(f"Escalation sink {type(sink).__name__} failed for {alert.id}: {e}")
                delivered = False

            with self._lock:
                key = 'escalations_sent' if delivered else 'escalations_failed'
                self.alert_stats[key] += 1
