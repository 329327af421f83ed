"""
Shared error taxonomy for the resilience layer.
"""

from typing import Dict, Any, Optional
from enum import Enum


class Severity(Enum):
    """Severity levels shared by errors, security events and alerts."""
    LOW = "low"              # Minor issues and informational events
    MEDIUM = "medium"        # Degraded non-critical functionality
    HIGH = "high"            # Failures affecting user operations
    CRITICAL = "critical"    # System-threatening, escalated immediately

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def at_least(self, other: 'Severity') -> bool:
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"                 # Connectivity and timeouts
    VALIDATION = "validation"           # Input validation errors
    AUTHENTICATION = "authentication"   # Authentication and authorization errors
    DATABASE = "database"               # Remote store and query errors
    UI = "ui"                           # Rendering layer errors
    UNKNOWN = "unknown"


class ResilienceError(Exception):
    """
    Base exception carrying an explicit category and severity.

    Raising a ResilienceError at the failure site bypasses keyword
    classification: the classifier uses the attributes as given.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: Optional[Severity] = None,
        metadata: Dict[str, Any] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.metadata = metadata or {}


class NetworkError(ResilienceError):
    """Connectivity failure talking to a remote collaborator."""

    def __init__(self, message: str, severity: Optional[Severity] = None, metadata: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.NETWORK, severity, metadata)


class DatabaseError(ResilienceError):
    """Failure reported by the remote database service."""

    def __init__(self, message: str, severity: Optional[Severity] = None, metadata: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.DATABASE, severity, metadata)


class AuthenticationError(ResilienceError):
    """Authentication or authorization failure."""

    def __init__(self, message: str, severity: Optional[Severity] = None, metadata: Dict[str, Any] = None):
        super().__init__(message, ErrorCategory.AUTHENTICATION, severity, metadata)
