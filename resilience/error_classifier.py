"""
Error classification by ordered keyword groups.
"""

from typing import Dict, List, Optional, Tuple, Any
from dataclasses import dataclass
import traceback

from .errors import ErrorCategory, Severity, ResilienceError
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class KeywordGroup:
    """Keywords that select one error category."""
    category: ErrorCategory
    message_keywords: Tuple[str, ...] = ()
    stack_keywords: Tuple[str, ...] = ()

    def matches(self, message: str, stack: str) -> bool:
        """Check lower-cased message and stack text against this group."""
        if any(keyword in message for keyword in self.message_keywords):
            return True
        return any(keyword in stack for keyword in self.stack_keywords)


@dataclass
class ClassificationResult:
    """Result of error classification."""
    category: ErrorCategory
    severity: Severity
    source: str = "keyword"  # keyword, explicit or fallback

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'category': self.category.value,
            'severity': self.severity.value,
            'source': self.source
        }


# Severity keywords, checked from most to least severe
SEVERITY_KEYWORDS: List[Tuple[Severity, Tuple[str, ...]]] = [
    (Severity.CRITICAL, ('critical', 'fatal')),
    (Severity.HIGH, ('unauthorized', 'forbidden', 'network', 'connection')),
    (Severity.MEDIUM, ('validation', 'invalid')),
]

NETWORK_EXCEPTION_TYPES = (ConnectionError, TimeoutError)


class ErrorClassifier:
    """
    Maps a raised failure to an error category and severity.

    Categories are chosen by the first matching keyword group in the order
    network, authentication, database, validation, ui. Classification is a
    pure function of the error and never raises.
    """

    def __init__(self, database_backend: str = "supabase"):
        self.database_backend = database_backend.lower()
        self.groups: List[KeywordGroup] = [
            KeywordGroup(
                ErrorCategory.NETWORK,
                message_keywords=('network', 'fetch', 'connection', 'timeout')
            ),
            KeywordGroup(
                ErrorCategory.AUTHENTICATION,
                message_keywords=('unauthorized', 'forbidden', 'authentication', 'token')
            ),
            KeywordGroup(
                ErrorCategory.DATABASE,
                message_keywords=('database', 'sql', 'postgres', self.database_backend),
                stack_keywords=(self.database_backend,)
            ),
            KeywordGroup(
                ErrorCategory.VALIDATION,
                message_keywords=('validation', 'invalid', 'required', 'format')
            ),
            KeywordGroup(
                ErrorCategory.UI,
                stack_keywords=('react', 'component')
            ),
        ]

    def classify(
        self,
        error: BaseException,
        severity: Optional[Severity] = None,
        stack: Optional[str] = None
    ) -> ClassificationResult:
        """
        Classify an error.

        Args:
            error: The raised failure
            severity: Explicit severity, always overrides the heuristic
            stack: Stack text to search; taken from the traceback when omitted

        Returns:
            ClassificationResult, (unknown, high) if classification itself fails
        """
        try:
            if isinstance(error, ResilienceError) and error.category != ErrorCategory.UNKNOWN:
                category = error.category
                source = "explicit"
            else:
                category = self.categorize(error, stack)
                source = "keyword"

            if severity is None:
                severity = self.determine_severity(error)

            return ClassificationResult(category=category, severity=severity, source=source)

        except Exception as e:
            logger.error(f"Error classification failed: {e}")
            return ClassificationResult(
                category=ErrorCategory.UNKNOWN,
                severity=Severity.HIGH,
                source="fallback"
            )

    def categorize(self, error: BaseException, stack: Optional[str] = None) -> ErrorCategory:
        """Pick the category of the first matching keyword group."""
        message = _message_of(error).lower()
        stack_text = (stack if stack is not None else _stack_of(error)).lower()

        for group in self.groups:
            if group.matches(message, stack_text):
                return group.category

        return ErrorCategory.UNKNOWN

    def determine_severity(self, error: BaseException) -> Severity:
        """Heuristic severity from the error message."""
        if isinstance(error, ResilienceError) and error.severity is not None:
            return error.severity

        message = _message_of(error).lower()
        for level, keywords in SEVERITY_KEYWORDS:
            if any(keyword in message for keyword in keywords):
                return level

        return Severity.LOW

    def is_network_error(self, error: BaseException) -> bool:
        if isinstance(error, NETWORK_EXCEPTION_TYPES):
            return True
        if isinstance(error, ResilienceError) and error.category == ErrorCategory.NETWORK:
            return True
        message = _message_of(error).lower()
        return any(k in message for k in ('network', 'fetch', 'connection', 'timeout'))

    def is_database_error(self, error: BaseException) -> bool:
        if isinstance(error, ResilienceError) and error.category == ErrorCategory.DATABASE:
            return True
        message = _message_of(error).lower()
        return any(k in message for k in ('database', 'sql', 'postgres', self.database_backend))

    def is_connection_error(self, error: BaseException) -> bool:
        if isinstance(error, NETWORK_EXCEPTION_TYPES):
            return True
        message = _message_of(error).lower()
        return any(k in message for k in ('connection', 'connect', 'timeout', 'unreachable'))

    def is_auth_error(self, error: BaseException) -> bool:
        if isinstance(error, PermissionError):
            return True
        if isinstance(error, ResilienceError) and error.category == ErrorCategory.AUTHENTICATION:
            return True
        message = _message_of(error).lower()
        return any(k in message for k in ('unauthorized', 'forbidden', 'authentication', 'token'))


def _message_of(error: BaseException) -> str:
    if isinstance(error, ResilienceError):
        return error.message
    return str(error)


def _stack_of(error: BaseException) -> str:
    """Frame locations of the error traceback, without source lines."""
    if error.__traceback__ is None:
        return ""
    frames = traceback.extract_tb(error.__traceback__)
    return "\n".join(f"{frame.filename}:{frame.lineno} in {frame.name}" for frame in frames)
