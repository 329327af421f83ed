"""
Brute-force and anomalous-usage detection.

Login attempts are tracked per identifier with a lockout window; generic
user actions are tracked per (user, action, pattern) in sliding time
windows that are pruned before every evaluation.
"""

from typing import Dict, List, Optional, Any, Callable, Awaitable, Tuple
from datetime import datetime, timedelta
from dataclasses import dataclass
from collections import deque
from enum import Enum
import re
import threading

from .audit_logger import AuditLogger, SecurityEventType
from .clock import Clock, SystemClock
from .errors import Severity
from utils.logging import get_logger

logger = get_logger(__name__)


class LoginState(Enum):
    """Lockout state of one login identifier."""
    CLEAR = "clear"
    WARMING = "warming"
    LOCKED = "locked"


@dataclass
class LoginAttemptCounter:
    """Failed login attempts for one identifier."""
    count: int
    last_attempt_at: datetime


@dataclass(frozen=True)
class SuspiciousPattern:
    """``threshold`` occurrences inside ``window`` mark an action as suspicious."""
    name: str
    threshold: int
    window: timedelta


DEFAULT_PATTERNS: List[SuspiciousPattern] = [
    SuspiciousPattern("rapid_requests", 10, timedelta(seconds=60)),
    SuspiciousPattern("failed_operations", 5, timedelta(minutes=5)),
    SuspiciousPattern("unusual_access", 3, timedelta(hours=1)),
]

# Role name -> allowed actions
ROLE_PERMISSIONS: Dict[str, List[str]] = {
    'landlord_premium': ['create', 'read', 'update', 'delete'],
    'landlord_free': ['create', 'read', 'update', 'delete'],
    'tenant': ['read'],
}

_SCRIPT_TAG = re.compile(r'<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>', re.IGNORECASE)
_JAVASCRIPT_URI = re.compile(r'javascript:', re.IGNORECASE)
_INLINE_HANDLER = re.compile(r'on\w+\s*=', re.IGNORECASE)
_ANGLE_BRACKETS = re.compile(r'[<>]')

ACCOUNT_LOCK_EVENT_COUNT = 3
ACCOUNT_LOCK_WINDOW = timedelta(hours=1)

WindowKey = Tuple[str, str, str]


def sanitize_input(value: Any) -> Any:
    """
    Strip script tags, ``javascript:`` URIs, inline event handlers and angle
    brackets from strings, recursing into lists and dicts.
    """
    if isinstance(value, str):
        value = _SCRIPT_TAG.sub('', value)
        value = _JAVASCRIPT_URI.sub('', value)
        value = _INLINE_HANDLER.sub('', value)
        value = _ANGLE_BRACKETS.sub('', value)
        return value.strip()

    if isinstance(value, list):
        return [sanitize_input(item) for item in value]

    if isinstance(value, dict):
        return {key: sanitize_input(item) for key, item in value.items()}

    return value


class SecurityMonitor:
    """Tracks login attempts and action patterns; reports into the audit streams."""

    def __init__(
        self,
        audit_logger: AuditLogger,
        clock: Optional[Clock] = None,
        max_login_attempts: int = 5,
        lockout_window: timedelta = timedelta(minutes=15),
        patterns: Optional[List[SuspiciousPattern]] = None,
        security_measures: Optional[Callable[[str, str], None]] = None,
        role_lookup: Optional[Callable[[str], Awaitable[Optional[str]]]] = None
    ):
        self.audit_logger = audit_logger
        self.clock = clock or SystemClock()
        self.max_login_attempts = max_login_attempts
        self.lockout_window = lockout_window
        self.patterns = list(patterns if patterns is not None else DEFAULT_PATTERNS)
        self.security_measures = security_measures
        self.role_lookup = role_lookup

        self.failed_login_attempts: Dict[str, LoginAttemptCounter] = {}
        self.pattern_windows: Dict[WindowKey, deque] = {}

        # Guards both maps; no awaits happen while it is held
        self._lock = threading.Lock()

    # Login attempts

    def check_login_attempts(self, identifier: str) -> bool:
        """Return False while the identifier is locked out."""
        return self.get_login_state(identifier) != LoginState.LOCKED

    def get_login_state(self, identifier: str) -> LoginState:
        now = self.clock.now()
        with self._lock:
            counter = self._current_counter(identifier, now)
            if counter is None:
                return LoginState.CLEAR
            if counter.count >= self.max_login_attempts:
                return LoginState.LOCKED
            return LoginState.WARMING

    def get_attempt_count(self, identifier: str) -> int:
        now = self.clock.now()
        with self._lock:
            counter = self._current_counter(identifier, now)
            return counter.count if counter else 0

    def record_failed_login(self, identifier: str, user_id: Optional[str] = None) -> int:
        """
        Count a failed login for ``identifier``.

        Returns:
            The attempt count after this failure
        """
        now = self.clock.now()
        with self._lock:
            counter = self._current_counter(identifier, now)
            if counter is None:
                counter = LoginAttemptCounter(count=0, last_attempt_at=now)
                self.failed_login_attempts[self._key(identifier)] = counter
            counter.count += 1
            counter.last_attempt_at = now
            count = counter.count

        locked = count >= self.max_login_attempts
        if locked:
            logger.warning(f"Login identifier locked after {count} failed attempts")

        self.audit_logger.log_security_event(
            user_id,
            SecurityEventType.FAILED_LOGIN,
            f"Failed login attempt {count}/{self.max_login_attempts}",
            Severity.HIGH if locked else Severity.MEDIUM,
            {'identifier': identifier, 'attempt_count': count}
        )
        return count

    def record_successful_login(self, user_id: str, identifier: str) -> None:
        """Clear the failure counter for ``identifier``."""
        with self._lock:
            self.failed_login_attempts.pop(self._key(identifier), None)

        self.audit_logger.log_security_event(
            user_id,
            SecurityEventType.LOGIN_ATTEMPT,
            "Successful login",
            Severity.LOW
        )

    # Pattern detection

    def detect_suspicious_activity(
        self,
        user_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """
        Record one occurrence of ``action`` and evaluate every pattern.

        Returns:
            Names of the patterns that fired for this call
        """
        fired = []

        for pattern in self.patterns:
            try:
                if not self._check_pattern(user_id, action, pattern):
                    continue

                fired.append(pattern.name)
                self.audit_logger.log_security_event(
                    user_id,
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    f"Suspicious pattern detected: {pattern.name}",
                    Severity.HIGH,
                    {'pattern': pattern.name, 'action': action, **(metadata or {})}
                )
                self._trigger_security_measures(user_id, pattern.name)

            except Exception as e:
                logger.error(f"Suspicious activity detection failed for pattern {pattern.name}: {e}")
                self.audit_logger.log_security_event(
                    user_id,
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    f"Suspicious activity detection failed: {e}",
                    Severity.HIGH,
                    {'pattern': pattern.name, 'action': action}
                )

        return fired

    def prune_pattern_windows(self) -> int:
        """Drop windows whose timestamps have all expired."""
        now = self.clock.now()
        windows_by_name = {pattern.name: pattern.window for pattern in self.patterns}
        removed = 0

        with self._lock:
            for key in list(self.pattern_windows.keys()):
                window = windows_by_name.get(key[2])
                timestamps = self.pattern_windows[key]
                if window is not None:
                    self._prune(timestamps, now, window)
                if not timestamps:
                    del self.pattern_windows[key]
                    removed += 1

        return removed

    # Data access

    async def validate_data_access(
        self,
        user_id: str,
        resource_type: str,
        resource_id: Optional[str],
        action: str
    ) -> bool:
        """Audit a data access attempt and check it against the user's role."""
        try:
            self.audit_logger.log_audit_event(
                user_id,
                f"{action}_{resource_type}",
                resource_type,
                resource_id
            )

            has_permission = await self._check_user_permissions(user_id, action)

            if not has_permission:
                self.audit_logger.log_security_event(
                    user_id,
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    f"Unauthorized {action} attempt on {resource_type}",
                    Severity.HIGH,
                    {'resource_type': resource_type, 'resource_id': resource_id, 'action': action}
                )

            return has_permission

        except Exception as e:
            logger.error(f"Data access validation failed: {e}")
            return False

    def is_account_locked(self, user_id: str) -> bool:
        """True after several high-severity events for the user within the last hour."""
        try:
            recent = [
                event for event in self.audit_logger.get_recent_security_events(
                    window=ACCOUNT_LOCK_WINDOW,
                    min_severity=Severity.HIGH,
                    user_id=user_id
                )
                if event.severity == Severity.HIGH
            ]
            return len(recent) >= ACCOUNT_LOCK_EVENT_COUNT
        except Exception as e:
            logger.error(f"Account lock check failed: {e}")
            return False

    def sanitize_input(self, value: Any) -> Any:
        return sanitize_input(value)

    # Private methods

    def _key(self, identifier: str) -> str:
        return identifier.strip().lower()

    def _current_counter(self, identifier: str, now: datetime) -> Optional[LoginAttemptCounter]:
        """Counter for ``identifier``, dropped first if the lockout window elapsed. Lock must be held."""
        key = self._key(identifier)
        counter = self.failed_login_attempts.get(key)
        if counter is None:
            return None

        if now - counter.last_attempt_at > self.lockout_window:
            del self.failed_login_attempts[key]
            return None

        return counter

    def _check_pattern(self, user_id: str, action: str, pattern: SuspiciousPattern) -> bool:
        now = self.clock.now()
        key = (user_id, action, pattern.name)

        with self._lock:
            timestamps = self.pattern_windows.setdefault(key, deque())
            self._prune(timestamps, now, pattern.window)
            timestamps.append(now)
            return len(timestamps) >= pattern.threshold

    @staticmethod
    def _prune(timestamps: deque, now: datetime, window: timedelta) -> None:
        while timestamps and now - timestamps[0] >= window:
            timestamps.popleft()

    def _trigger_security_measures(self, user_id: str, pattern_name: str) -> None:
        logger.warning(f"Security measures triggered for user {user_id}, pattern: {pattern_name}")
        if self.security_measures is None:
            return
        try:
            self.security_measures(user_id, pattern_name)
        except Exception as e:
            logger.error(f"Security measures hook failed for {user_id}: {e}")

    async def _check_user_permissions(self, user_id: str, action: str) -> bool:
        if self.role_lookup is None:
            logger.warning("No role lookup configured, denying data access")
            return False

        role = await self.role_lookup(user_id)
        if not role:
            return False

        return action in ROLE_PERMISSIONS.get(role, [])
