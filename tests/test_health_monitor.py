"""
Tests for health probes and health aggregation.
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import patch, MagicMock

from resilience.audit_logger import SecurityEventType
from resilience.errors import Severity
from resilience.health_monitor import (
    HealthMonitor, HealthProbe, HealthCheck, CheckStatus, HealthStatus, aggregate_status,
    DatabaseProbe, AuthServiceProbe, PerformanceProbe, MemoryProbe, ErrorRateProbe, SecurityProbe,
    http_reachability_probe
)
from resilience.performance_monitor import PerformanceMonitor, BYTES_PER_MB


class StaticProbe(HealthProbe):
    def __init__(self, name, status):
        super().__init__(name)
        self.status = status

    async def check(self):
        return HealthCheck(self.name, self.status)


class RaisingProbe(HealthProbe):
    async def check(self):
        raise RuntimeError("probe exploded")


async def reachable():
    return True


async def unreachable():
    return False


class TestAggregation:
    """Test status aggregation."""

    @pytest.mark.parametrize("statuses,expected", [
        ([CheckStatus.PASS, CheckStatus.PASS], HealthStatus.HEALTHY),
        ([CheckStatus.PASS, CheckStatus.WARN], HealthStatus.DEGRADED),
        ([CheckStatus.WARN, CheckStatus.FAIL], HealthStatus.UNHEALTHY),
        ([], HealthStatus.HEALTHY),
    ])
    def test_aggregate_status(self, statuses, expected):
        checks = [HealthCheck(f"p{i}", status) for i, status in enumerate(statuses)]
        assert aggregate_status(checks) == expected


class TestReachabilityProbes:
    """Test database and authentication probes."""

    @pytest.mark.asyncio
    async def test_missing_check_warns(self):
        result = await DatabaseProbe().check()
        assert result.status == CheckStatus.WARN
        assert result.message == "No database probe configured"

    @pytest.mark.asyncio
    async def test_reachable(self):
        assert (await DatabaseProbe(reachable).check()).status == CheckStatus.PASS
        assert (await AuthServiceProbe(reachable).check()).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_unreachable(self):
        result = await AuthServiceProbe(unreachable).check()
        assert result.status == CheckStatus.FAIL
        assert result.name == "authentication"

    @pytest.mark.asyncio
    async def test_check_raises(self):
        async def broken():
            raise ConnectionError("refused")

        result = await DatabaseProbe(broken).check()
        assert result.status == CheckStatus.FAIL
        assert "refused" in result.message

    @pytest.mark.asyncio
    async def test_slow_database_warns(self):
        async def slow():
            await asyncio.sleep(0.02)
            return True

        result = await DatabaseProbe(slow, slow_threshold_ms=1).check()
        assert result.status == CheckStatus.WARN

    @pytest.mark.asyncio
    async def test_http_probe(self):
        with patch('resilience.health_monitor.requests.get') as mock_get:
            mock_get.return_value = MagicMock(ok=True)
            assert await http_reachability_probe("https://db.example.com/health", timeout=2)()
            mock_get.assert_called_once_with("https://db.example.com/health", timeout=2)


class TestResourceProbes:
    """Test performance, memory, error and security probes."""

    @pytest.mark.asyncio
    async def test_performance_probe(self, clock):
        monitor = PerformanceMonitor(clock=clock, memory_reader=lambda: 10 * BYTES_PER_MB)
        probe = PerformanceProbe(monitor)

        assert (await probe.check()).status == CheckStatus.PASS

        monitor.record_metric(response_time_ms=1500)
        assert (await probe.check()).status == CheckStatus.WARN

        monitor.record_metric(response_time_ms=5000)
        assert (await probe.check()).status == CheckStatus.FAIL

    @pytest.mark.asyncio
    async def test_performance_probe_recovers_after_window(self, clock):
        monitor = PerformanceMonitor(clock=clock, memory_reader=lambda: 10 * BYTES_PER_MB)
        monitor.record_metric(response_time_ms=5000)
        probe = PerformanceProbe(monitor)
        assert (await probe.check()).status == CheckStatus.FAIL

        clock.advance(timedelta(hours=3))

        assert (await probe.check()).status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_performance_probe_memory(self, clock):
        monitor = PerformanceMonitor(clock=clock, memory_reader=lambda: 200 * BYTES_PER_MB)
        monitor.record_metric(response_time_ms=10)

        assert (await PerformanceProbe(monitor).check()).status == CheckStatus.WARN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("used,status", [
        (50, CheckStatus.PASS),
        (75, CheckStatus.WARN),
        (95, CheckStatus.FAIL),
    ])
    async def test_memory_probe(self, used, status):
        result = await MemoryProbe(lambda: (used, 100)).check()
        assert result.status == status
        assert result.metadata['memory_usage'] == used

    @pytest.mark.asyncio
    async def test_memory_probe_unavailable(self):
        result = await MemoryProbe(lambda: (0, 0)).check()
        assert result.status == CheckStatus.PASS
        assert result.message == "Memory monitoring not available"

    @pytest.mark.asyncio
    async def test_error_rate_probe(self, error_manager):
        probe = ErrorRateProbe(error_manager)
        assert (await probe.check()).status == CheckStatus.PASS

        for i in range(21):
            error_manager.handle_error(ValueError(f"glitch {i}"))
        assert (await probe.check()).status == CheckStatus.WARN

        error_manager.handle_error(ValueError("fatal"))
        assert (await probe.check()).status == CheckStatus.FAIL

    @pytest.mark.asyncio
    async def test_security_probe(self, audit_logger):
        probe = SecurityProbe(audit_logger)
        assert (await probe.check()).status == CheckStatus.PASS

        audit_logger.log_security_event("u", SecurityEventType.SUSPICIOUS_ACTIVITY, "x", Severity.LOW)
        assert (await probe.check()).status == CheckStatus.PASS

        audit_logger.log_security_event("u", SecurityEventType.SUSPICIOUS_ACTIVITY, "x", Severity.HIGH)
        result = await probe.check()
        assert result.status == CheckStatus.WARN
        assert result.message == "1 security events detected"

        for _ in range(3):
            audit_logger.log_security_event("u", SecurityEventType.SUSPICIOUS_ACTIVITY, "x", Severity.CRITICAL)
        assert (await probe.check()).status == CheckStatus.FAIL


class TestHealthMonitor:
    """Test health cycles."""

    @pytest.mark.asyncio
    async def test_cycle(self, store, clock, alert_manager):
        monitor = HealthMonitor(
            [StaticProbe("a", CheckStatus.PASS), StaticProbe("b", CheckStatus.WARN)],
            store=store, clock=clock, alert_manager=alert_manager, version="2.1.0"
        )
        clock.advance(timedelta(seconds=30))

        health = await monitor.perform_health_check()

        assert health.status == HealthStatus.DEGRADED
        assert [c.name for c in health.checks] == ["a", "b"]
        assert health.uptime == 30
        assert health.version == "2.1.0"
        assert monitor.last_health is health
        assert monitor.get_health_history()[-1]['status'] == "degraded"
        assert alert_manager.get_active_alerts()[-1].title == "System Health Degraded"

    @pytest.mark.asyncio
    async def test_raising_probe_fails(self, store, clock):
        monitor = HealthMonitor([RaisingProbe("broken"), StaticProbe("ok", CheckStatus.PASS)], store=store, clock=clock)

        health = await monitor.perform_health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert health.checks[0].status == CheckStatus.FAIL
        assert health.checks[0].message == "probe exploded"
        assert health.checks[1].status == CheckStatus.PASS

    @pytest.mark.asyncio
    async def test_disabled_probe_skipped(self, store, clock):
        disabled = StaticProbe("off", CheckStatus.FAIL)
        disabled.enabled = False
        monitor = HealthMonitor([disabled, StaticProbe("on", CheckStatus.PASS)], store=store, clock=clock)

        health = await monitor.perform_health_check()

        assert [c.name for c in health.checks] == ["on"]
        assert health.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_history_capped(self, store, clock):
        monitor = HealthMonitor([StaticProbe("a", CheckStatus.PASS)], store=store, clock=clock, history_capacity=24)

        for _ in range(30):
            await monitor.perform_health_check()
            clock.advance(timedelta(minutes=5))

        assert len(monitor.get_health_history()) == 24

    @pytest.mark.asyncio
    async def test_cleanup_history(self, store, clock):
        monitor = HealthMonitor([StaticProbe("a", CheckStatus.PASS)], store=store, clock=clock)
        await monitor.perform_health_check()
        clock.advance(timedelta(days=8))
        await monitor.perform_health_check()

        assert monitor.cleanup_history(timedelta(days=7)) == 1
        assert len(monitor.get_health_history()) == 1

    @pytest.mark.asyncio
    async def test_unhealthy_cycle_escalates(self, store, clock, alert_manager, sink):
        monitor = HealthMonitor([StaticProbe("database", CheckStatus.FAIL)], store=store, clock=clock, alert_manager=alert_manager)

        await monitor.perform_health_check()

        assert sink.alerts[-1].title == "System Health Critical"
        assert sink.alerts[-1].metadata['failed_checks'] == ["database"]
