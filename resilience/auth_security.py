"""
Password policy, email format checks and session aging.
"""

from typing import List, Optional, Callable, Awaitable
from datetime import datetime, timedelta
from dataclasses import dataclass, field
import re

from .audit_logger import AuditLogger, SecurityEventType
from .clock import Clock, SystemClock
from .errors import Severity
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PasswordPolicy:
    """Password requirements."""
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True


@dataclass
class PasswordValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self):
        return {'is_valid': self.is_valid, 'errors': list(self.errors)}


COMMON_PASSWORDS = frozenset([
    'password', '123456', 'password123', 'admin', 'qwerty',
    'letmein', 'welcome', 'monkey', '1234567890'
])

SEQUENTIAL_RUNS = ('123', 'abc', 'qwe', 'asd', 'zxc')

_SPECIAL_CHARS = re.compile(r'[!@#$%^&*(),.?":{}|<>]')
_EMAIL = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)


def validate_password(password: str, policy: PasswordPolicy = PasswordPolicy()) -> PasswordValidationResult:
    """Check a password against the policy and report every violated rule."""
    errors = []

    if len(password) < policy.min_length:
        errors.append(f"Password must be at least {policy.min_length} characters long")

    if policy.require_uppercase and not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least one uppercase letter")

    if policy.require_lowercase and not re.search(r'[a-z]', password):
        errors.append("Password must contain at least one lowercase letter")

    if policy.require_numbers and not re.search(r'\d', password):
        errors.append("Password must contain at least one number")

    if policy.require_special_chars and not _SPECIAL_CHARS.search(password):
        errors.append("Password must contain at least one special character")

    if password.lower() in COMMON_PASSWORDS:
        errors.append("Password is too common and easily guessable")

    if has_sequential_chars(password):
        errors.append("Password should not contain sequential characters")

    return PasswordValidationResult(is_valid=not errors, errors=errors)


def has_sequential_chars(password: str) -> bool:
    lowered = password.lower()
    return any(run in lowered for run in SEQUENTIAL_RUNS)


def is_valid_email(email: str) -> bool:
    return len(email) <= 254 and _EMAIL.match(email) is not None


@dataclass(frozen=True)
class SessionConfig:
    max_age: timedelta = timedelta(hours=24)
    renew_threshold: timedelta = timedelta(hours=2)


@dataclass
class Session:
    """An authenticated session as seen by the monitoring layer."""
    user_id: str
    created_at: datetime
    session_id: Optional[str] = None


class SessionManager:
    """
    Validates session age and renews sessions close to expiry.

    Refresh and logout are performed by injected callables owned by the
    auth provider integration.
    """

    def __init__(
        self,
        audit_logger: AuditLogger,
        clock: Optional[Clock] = None,
        refresh: Optional[Callable[[Session], Awaitable[bool]]] = None,
        logout: Optional[Callable[[Session], Awaitable[None]]] = None,
        config: SessionConfig = SessionConfig()
    ):
        self.audit_logger = audit_logger
        self.clock = clock or SystemClock()
        self.refresh = refresh
        self.logout_callback = logout
        self.config = config

    async def validate_and_renew_session(self, session: Optional[Session]) -> bool:
        """
        Returns:
            True if the session is still usable, renewed if necessary
        """
        if session is None:
            return False

        age = self.clock.now() - session.created_at

        if age >= self.config.max_age:
            logger.info(f"Session for {session.user_id} expired")
            await self.logout(session)
            return False

        time_to_expiry = self.config.max_age - age
        if time_to_expiry >= self.config.renew_threshold:
            return True

        if not await self._renew(session):
            await self.logout(session)
            return False

        self.audit_logger.log_security_event(
            session.user_id,
            SecurityEventType.LOGIN_ATTEMPT,
            "Session renewed",
            Severity.LOW
        )
        return True

    async def logout(self, session: Session) -> None:
        """Record the logout and end the session with the auth provider."""
        self.audit_logger.log_security_event(
            session.user_id,
            SecurityEventType.LOGIN_ATTEMPT,
            "User logged out",
            Severity.LOW
        )

        if self.logout_callback is None:
            return

        try:
            await self.logout_callback(session)
        except Exception as e:
            logger.error(f"Secure logout failed: {e}")

    # Private methods

    async def _renew(self, session: Session) -> bool:
        if self.refresh is None:
            logger.warning("No session refresh configured, cannot renew session")
            return False

        try:
            return bool(await self.refresh(session))
        except Exception as e:
            logger.error(f"Session refresh failed: {e}")
            return False
