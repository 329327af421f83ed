"""
Pytest configuration and shared fixtures.
"""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from typing import List

from configs.environments.testing import TestingConfig
from resilience.alert_manager import AlertManager, EscalationSink
from resilience.audit_logger import AuditLogger
from resilience.clock import Clock
from resilience.error_classifier import ErrorClassifier
from resilience.error_manager import ErrorManager
from resilience.monitoring_service import build_monitoring_service
from resilience.security_monitor import SecurityMonitor
from resilience.store import InMemoryStore


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class RecordingSleep:
    """Async sleep replacement remembering the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


class RecordingSink(EscalationSink):
    """Escalation sink collecting every alert it receives."""

    def __init__(self, result: bool = True):
        self.result = result
        self.alerts = []

    def escalate(self, alert) -> bool:
        self.alerts.append(alert)
        return self.result


@pytest.fixture
def test_settings():
    """Test settings configuration."""
    return TestingConfig()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def alert_manager(store, clock, sink) -> AlertManager:
    return AlertManager(store=store, clock=clock, sinks=[sink])


@pytest.fixture
def audit_logger(store, clock, alert_manager) -> AuditLogger:
    return AuditLogger(store=store, clock=clock, alert_manager=alert_manager)


@pytest.fixture
def error_manager(audit_logger, clock) -> ErrorManager:
    return ErrorManager(classifier=ErrorClassifier(), audit_logger=audit_logger, clock=clock)


@pytest.fixture
def security_monitor(audit_logger, clock) -> SecurityMonitor:
    return SecurityMonitor(audit_logger, clock=clock)


@pytest.fixture
def memory_usage():
    """Mutable (used, total) system memory reading."""
    return {'used': 4 * 1024 ** 3, 'total': 16 * 1024 ** 3}


@pytest.fixture
def service(test_settings, store, clock, recording_sleep, sink, memory_usage):
    """Fully wired monitoring service with healthy reachability checks."""

    async def reachable() -> bool:
        return True

    return build_monitoring_service(
        test_settings,
        store=store,
        clock=clock,
        sleep=recording_sleep,
        database_check=reachable,
        auth_check=reachable,
        sinks=[sink],
        memory_reader=lambda: (memory_usage['used'], memory_usage['total']),
        process_memory_reader=lambda: 10 * 1024 * 1024
    )
