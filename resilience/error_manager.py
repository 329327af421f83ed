"""
Error reports, bounded error history and user-facing error messages.
"""

from typing import Dict, List, Optional, Any, Callable
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass, field, replace
from collections import deque
import re
import threading
import traceback
import uuid

from .audit_logger import AuditLogger, SecurityEventType
from .clock import Clock, SystemClock
from .error_classifier import ErrorClassifier
from .errors import ErrorCategory, Severity
from utils.logging import get_logger, get_enhanced_logger, set_correlation_id, LogCategory

logger = get_logger(__name__)
error_logger = get_enhanced_logger(__name__, LogCategory.ERROR)


@dataclass
class ErrorContext:
    """Where and for whom a failure happened."""
    component: Optional[str] = None
    action: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'component': self.component,
            'action': self.action,
            'user_id': self.user_id,
            'session_id': self.session_id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'metadata': self.metadata
        }


@dataclass
class ErrorReport:
    """A classified failure kept in the in-memory error history."""
    id: str
    category: ErrorCategory
    severity: Severity
    message: str
    context: ErrorContext
    error: Optional[BaseException] = None
    stack_trace: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'id': self.id,
            'category': self.category.value,
            'severity': self.severity.value,
            'message': self.message,
            'error_type': type(self.error).__name__ if self.error else None,
            'context': self.context.to_dict(),
            'retry_count': self.retry_count,
            'max_retries': self.max_retries,
            'resolved': self.resolved
        }


# Checked in order, first match wins
VALIDATION_MESSAGES: List[tuple] = [
    ('required', "{field} is required"),
    ('invalid email', "Please enter a valid email address"),
    ('invalid phone', "Please enter a valid phone number"),
    ('too short', "{field} is too short"),
    ('too long', "{field} is too long"),
    ('already exists', "This {value} is already in use"),
    ('not found', "{item} not found"),
    ('unauthorized', "You do not have permission to perform this action"),
    ('network error', "Connection problem. Please check your internet connection and try again."),
    ('server error', "Server is temporarily unavailable. Please try again later."),
]

SENSITIVE_PATTERN = re.compile(r'password|token|key|secret', re.IGNORECASE)


def sanitize_error_message(message: str) -> str:
    """Redact credential-like words from an error message."""
    return SENSITIVE_PATTERN.sub('[REDACTED]', message)


def handle_validation_error(error: BaseException, field_name: Optional[str] = None) -> str:
    """
    Map a technical validation failure to a friendlier message.

    Falls back to a redacted copy of the original message when no known
    phrase matches.
    """
    message = str(error)
    lowered = message.lower()

    for phrase, template in VALIDATION_MESSAGES:
        if phrase in lowered:
            return template.format(
                field=field_name or "This field",
                value=field_name or "value",
                item=field_name or "Item"
            )

    return sanitize_error_message(message)


class ErrorManager:
    """
    Classifies failures into error reports and keeps the most recent ones.

    High and critical reports are also recorded as suspicious-activity
    security events.
    """

    def __init__(
        self,
        classifier: Optional[ErrorClassifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        capacity: int = 100,
        default_max_retries: int = 3,
        on_database_connection_error: Optional[Callable[[ErrorReport], None]] = None,
        on_invalid_session: Optional[Callable[[ErrorReport], None]] = None
    ):
        self.classifier = classifier or ErrorClassifier()
        self.audit_logger = audit_logger
        self.clock = clock or SystemClock()
        self.capacity = capacity
        self.default_max_retries = default_max_retries
        self.on_database_connection_error = on_database_connection_error
        self.on_invalid_session = on_invalid_session

        # Ring buffer, oldest evicted first
        self.error_history: deque = deque(maxlen=capacity)

        self.retry_stats = {
            'retried_operations': 0,
            'recovered_operations': 0
        }

        self._lock = threading.Lock()

    def handle_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None,
        severity: Optional[Severity] = None,
        max_retries: Optional[int] = None,
        retry_count: int = 0
    ) -> ErrorReport:
        """
        Classify, record and log a failure.

        Args:
            error: The raised failure
            context: Component/action/user the failure belongs to
            severity: Explicit severity overriding the heuristic
            max_retries: Retry budget recorded on the report
            retry_count: Retries already spent when the failure is reported

        Returns:
            The recorded ErrorReport
        """
        context = replace(context) if context else ErrorContext()
        if context.timestamp is None:
            context.timestamp = self.clock.now()
        elif context.timestamp.tzinfo is None:
            # Naive timestamps are taken as UTC
            context.timestamp = context.timestamp.replace(tzinfo=timezone.utc)

        classification = self.classifier.classify(error, severity)

        report = ErrorReport(
            id=str(uuid.uuid4()),
            category=classification.category,
            severity=classification.severity,
            message=str(error),
            context=context,
            error=error,
            stack_trace=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            retry_count=retry_count,
            max_retries=max_retries if max_retries is not None else self.default_max_retries
        )

        with self._lock:
            self.error_history.append(report)

        self._log_error(report)
        return report

    def handle_database_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None
    ) -> Optional[ErrorReport]:
        """Record a database failure at high severity; other errors are ignored."""
        if not self.classifier.is_database_error(error):
            return None

        context = replace(context) if context else ErrorContext()
        context.action = 'database_error'
        context.component = 'database_handler'
        report = self.handle_error(error, context, severity=Severity.HIGH)

        if self.classifier.is_connection_error(error):
            logger.warning("Database connection problem detected, attempting reconnection")
            if self.on_database_connection_error is not None:
                try:
                    self.on_database_connection_error(report)
                except Exception as e:
                    logger.error(f"Database reconnection hook failed: {e}")

        return report

    def handle_auth_error(
        self,
        error: BaseException,
        context: Optional[ErrorContext] = None
    ) -> bool:
        """
        Record an authentication failure at medium severity.

        Returns:
            True when the caller should send the user back to login
        """
        if not self.classifier.is_auth_error(error):
            return False

        context = replace(context) if context else ErrorContext()
        context.action = 'authentication_error'
        context.component = 'auth_handler'
        report = self.handle_error(error, context, severity=Severity.MEDIUM)

        if self.on_invalid_session is not None:
            try:
                self.on_invalid_session(report)
            except Exception as e:
                logger.error(f"Invalid session hook failed: {e}")

        message = str(error).lower()
        return any(k in message for k in ('unauthorized', 'invalid token', 'session expired'))

    def record_retry_outcome(self, recovered: bool) -> None:
        """Count one operation that needed retries."""
        with self._lock:
            self.retry_stats['retried_operations'] += 1
            if recovered:
                self.retry_stats['recovered_operations'] += 1

    def resolve_error(self, report_id: str) -> bool:
        with self._lock:
            for report in self.error_history:
                if report.id == report_id:
                    report.resolved = True
                    return True
            return False

    def get_recent_errors(
        self,
        window: timedelta = timedelta(hours=1),
        severity: Optional[Severity] = None
    ) -> List[ErrorReport]:
        """Get errors reported within ``window``."""
        cutoff = self.clock.now() - window
        with self._lock:
            recent = [r for r in self.error_history if r.context.timestamp >= cutoff]

        if severity:
            recent = [r for r in recent if r.severity == severity]

        return recent

    def get_error_statistics(self) -> Dict[str, Any]:
        """Counts over the retained error history."""
        with self._lock:
            reports = list(self.error_history)
            retried = self.retry_stats['retried_operations']
            recovered = self.retry_stats['recovered_operations']

        errors_by_category: Dict[str, int] = {}
        errors_by_severity: Dict[str, int] = {}
        for report in reports:
            errors_by_category[report.category.value] = errors_by_category.get(report.category.value, 0) + 1
            errors_by_severity[report.severity.value] = errors_by_severity.get(report.severity.value, 0) + 1

        return {
            'total_errors': len(reports),
            'errors_by_category': errors_by_category,
            'errors_by_severity': errors_by_severity,
            'recent_errors': [r.to_dict() for r in reports[-10:]],
            'retry_success_rate': (recovered / retried) * 100 if retried > 0 else 0.0
        }

    def clear_resolved_errors(self) -> int:
        """Drop resolved reports from the history."""
        with self._lock:
            kept = [r for r in self.error_history if not r.resolved]
            removed = len(self.error_history) - len(kept)
            self.error_history = deque(kept, maxlen=self.capacity)
            return removed

    # Private methods

    def _log_error(self, report: ErrorReport) -> None:
        if report.context.session_id:
            set_correlation_id(report.context.session_id)

        error_logger.log_at_severity(
            report.severity.value,
            f"Error captured: {report.id} - {report.severity.value} - "
            f"{report.category.value} - {sanitize_error_message(report.message)}",
            error_context={
                'error_id': report.id,
                'component': report.context.component,
                'action': report.context.action,
                'user_id': report.context.user_id,
                'retry_count': report.retry_count,
                'metadata': report.context.metadata
            }
        )

        if self.audit_logger is not None and report.severity.at_least(Severity.HIGH):
            self.audit_logger.log_security_event(
                report.context.user_id,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                f"{report.severity.value} error: {report.message}",
                report.severity,
                {
                    'category': report.category.value,
                    'component': report.context.component,
                    'action': report.context.action
                }
            )
