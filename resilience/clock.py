"""
Wall-clock adapter. Every time-window computation in the resilience layer
reads "now" through a Clock so tests can drive time explicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware UTC datetime."""
        pass


class SystemClock(Clock):
    """Clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
