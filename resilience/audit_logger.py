"""
Capped security-event and audit-log streams.

Each call appends exactly one entry to its stream in the key-value store.
Streams hold at most a fixed number of entries and evict the oldest first.
High and critical security events are mirrored into the alert manager.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
import threading
import uuid

from .alert_manager import AlertManager, AlertType
from .clock import Clock, SystemClock
from .errors import Severity
from .store import KeyValueStore, InMemoryStore, append_capped, read_json_list
from utils.logging import get_logger, get_enhanced_logger, LogCategory

logger = get_logger(__name__)
security_logger = get_enhanced_logger(__name__ + ".security", LogCategory.SECURITY)
audit_trail_logger = get_enhanced_logger(__name__ + ".audit", LogCategory.AUDIT)

SECURITY_EVENTS_KEY = "security_events"
AUDIT_LOGS_KEY = "audit_logs"


class SecurityEventType(Enum):
    """Types of security events."""
    LOGIN_ATTEMPT = "login_attempt"
    FAILED_LOGIN = "failed_login"
    DATA_ACCESS = "data_access"
    DATA_MODIFICATION = "data_modification"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


@dataclass
class SecurityEvent:
    """Write-once security event."""
    id: str
    user_id: str
    event_type: SecurityEventType
    description: str
    severity: Severity
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'event_type': self.event_type.value,
            'description': self.description,
            'severity': self.severity.value,
            'metadata': self.metadata,
            'created_at': self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SecurityEvent':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            event_type=SecurityEventType(data['event_type']),
            description=data['description'],
            severity=Severity(data['severity']),
            created_at=datetime.fromisoformat(data['created_at']),
            metadata=data.get('metadata') or {}
        )


@dataclass
class AuditLogEntry:
    """Write-once audit trail entry."""
    id: str
    user_id: str
    action: str
    resource_type: str
    created_at: datetime
    resource_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'old_values': self.old_values,
            'new_values': self.new_values,
            'created_at': self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogEntry':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            action=data['action'],
            resource_type=data['resource_type'],
            created_at=datetime.fromisoformat(data['created_at']),
            resource_id=data.get('resource_id'),
            old_values=data.get('old_values'),
            new_values=data.get('new_values')
        )


class AuditLogger:
    """Appends security events and audit entries to capped streams."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
        alert_manager: Optional[AlertManager] = None,
        security_event_capacity: int = 100,
        audit_log_capacity: int = 100
    ):
        self.store = store or InMemoryStore()
        self.clock = clock or SystemClock()
        self.alert_manager = alert_manager
        self.security_event_capacity = security_event_capacity
        self.audit_log_capacity = audit_log_capacity

        self.stats = {
            'security_events_logged': 0,
            'audit_entries_logged': 0,
            'store_failures': 0
        }

        # Serializes read-modify-write of the stored lists
        self._lock = threading.Lock()

    def log_security_event(
        self,
        user_id: Optional[str],
        event_type: SecurityEventType,
        description: str,
        severity: Severity,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SecurityEvent:
        """Record a security event; never raises on store failure."""
        event = SecurityEvent(
            id=str(uuid.uuid4()),
            user_id=user_id or "anonymous",
            event_type=event_type,
            description=description,
            severity=severity,
            created_at=self.clock.now(),
            metadata=dict(metadata or {})
        )

        security_logger.log_at_severity(
            severity.value,
            f"Security event: {description}",
            security_context={
                'event_id': event.id,
                'user_id': event.user_id,
                'event_type': event_type.value,
                'severity': severity.value,
                'metadata': event.metadata
            }
        )

        self._append(SECURITY_EVENTS_KEY, event.to_dict(), self.security_event_capacity)
        with self._lock:
            self.stats['security_events_logged'] += 1

        if self.alert_manager is not None and severity.at_least(Severity.HIGH):
            self._mirror_to_alerts(event)

        return event

    def log_audit_event(
        self,
        user_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None
    ) -> AuditLogEntry:
        """Record an audit trail entry; never raises on store failure."""
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            user_id=user_id or "anonymous",
            action=action,
            resource_type=resource_type,
            created_at=self.clock.now(),
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values
        )

        audit_trail_logger.audit(
            f"User {entry.user_id} {action} on {resource_type}",
            security_context={'audit_id': entry.id, 'resource_id': resource_id}
        )

        self._append(AUDIT_LOGS_KEY, entry.to_dict(), self.audit_log_capacity)
        with self._lock:
            self.stats['audit_entries_logged'] += 1

        return entry

    def get_security_events(self, limit: Optional[int] = None) -> List[SecurityEvent]:
        """Stored security events, oldest first."""
        events = self._read(SECURITY_EVENTS_KEY, SecurityEvent.from_dict)
        return events[-limit:] if limit else events

    def get_audit_logs(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Stored audit entries, oldest first."""
        entries = self._read(AUDIT_LOGS_KEY, AuditLogEntry.from_dict)
        return entries[-limit:] if limit else entries

    def get_recent_security_events(
        self,
        window: timedelta = timedelta(hours=1),
        min_severity: Severity = Severity.LOW,
        user_id: Optional[str] = None
    ) -> List[SecurityEvent]:
        """Security events newer than ``window`` at or above ``min_severity``."""
        now = self.clock.now()
        return [
            event for event in self.get_security_events()
            if now - event.created_at < window
            and event.severity.at_least(min_severity)
            and (user_id is None or event.user_id == user_id)
        ]

    def clear(self) -> None:
        """Drop both streams."""
        with self._lock:
            self.store.remove(SECURITY_EVENTS_KEY)
            self.store.remove(AUDIT_LOGS_KEY)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self.stats)

    # Private methods

    def _append(self, key: str, entry: Dict[str, Any], capacity: int) -> None:
        with self._lock:
            try:
                append_capped(self.store, key, entry, capacity)
            except Exception as e:
                self.stats['store_failures'] += 1
                logger.error(f"Failed to store entry in '{key}': {e}")

    def _read(self, key: str, parse) -> List[Any]:
        with self._lock:
            try:
                raw_entries = read_json_list(self.store, key)
            except Exception as e:
                logger.error(f"Failed to read '{key}': {e}")
                return []

        parsed = []
        for raw in raw_entries:
            try:
                parsed.append(parse(raw))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed entry in '{key}': {e}")
        return parsed

    def _mirror_to_alerts(self, event: SecurityEvent) -> None:
        try:
            self.alert_manager.create_alert(
                AlertType.SECURITY,
                event.severity,
                f"Security event: {event.event_type.value}",
                event.description,
                {
                    'event_id': event.id,
                    'user_id': event.user_id,
                    'event_type': event.event_type.value,
                    **event.metadata
                }
            )
        except Exception as e:
            logger.error(f"Failed to mirror security event {event.id} into alerts: {e}")
