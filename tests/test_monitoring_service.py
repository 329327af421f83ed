"""
End-to-end tests for the wired monitoring service.
"""

import asyncio
import pytest
from datetime import timedelta

from resilience.alert_manager import AlertType, LogEscalationSink, WebhookEscalationSink
from resilience.audit_logger import SecurityEventType
from resilience.errors import Severity
from resilience.error_manager import ErrorContext
from resilience.health_monitor import HealthStatus, CheckStatus
from resilience.monitoring_service import build_monitoring_service
from resilience.security_monitor import SecurityMonitor, SuspiciousPattern
from resilience.store import InMemoryStore, JsonFileStore, read_json_list


class TestEndToEnd:
    """Scenarios exercising several components together."""

    @pytest.mark.asyncio
    async def test_retry_recovers_with_one_audit_event(self, service, recording_sleep):
        attempts = []

        def load_properties():
            attempts.append(1)
            if len(attempts) <= 2:
                raise ValueError("upstream hiccup")
            return ["prop-1"]

        context = ErrorContext(component="PropertyList", action="load")
        result = await service.retry_operation(load_properties, context, 3)

        assert result == ["prop-1"]
        assert recording_sleep.delays == [1.0, 2.0]
        recovered = [
            e for e in service.audit_logger.get_security_events()
            if e.description == "Operation recovered after 3 attempts"
        ]
        assert len(recovered) == 1
        assert recovered[0].severity == Severity.LOW

    @pytest.mark.asyncio
    async def test_permanent_failure_backoff(self, service, recording_sleep):
        attempts = []

        def always_fails():
            attempts.append(1)
            raise ValueError("still broken")

        with pytest.raises(ValueError, match="still broken"):
            await service.retry_operation(always_fails, max_retries=3)

        assert len(attempts) == 4
        assert recording_sleep.delays == [1.0, 2.0, 4.0]

    def test_login_lockout(self, service, clock):
        for _ in range(5):
            service.record_failed_login("a@b.com")
            clock.advance(timedelta(seconds=10))

        assert not service.check_login_attempts("a@b.com")

        high = [
            e for e in service.audit_logger.get_security_events()
            if e.event_type == SecurityEventType.FAILED_LOGIN and e.severity == Severity.HIGH
        ]
        assert len(high) == 1
        assert high[0].metadata['attempt_count'] == 5

    def test_success_before_threshold_resets(self, service):
        for _ in range(4):
            service.record_failed_login("a@b.com")
        service.record_successful_login("user-1", "a@b.com")

        assert service.security_monitor.get_attempt_count("a@b.com") == 0
        assert service.check_login_attempts("a@b.com")

    def test_lockout_window_expiry(self, service, clock):
        for _ in range(5):
            service.record_failed_login("a@b.com")

        clock.advance(timedelta(minutes=15, seconds=1))
        assert service.check_login_attempts("a@b.com")

    def test_pattern_pruning(self, audit_logger, clock):
        pattern = SuspiciousPattern("failed_operations", 5, timedelta(seconds=60))
        monitor = SecurityMonitor(audit_logger, clock=clock, patterns=[pattern])

        for _ in range(5):
            assert monitor.detect_suspicious_activity("user-1", "spaced") == []
            clock.advance(timedelta(seconds=70))

        fired = []
        for _ in range(5):
            fired = monitor.detect_suspicious_activity("user-1", "burst")
            clock.advance(timedelta(seconds=2))
        assert fired == ["failed_operations"]

    def test_bounded_security_stream(self, service):
        for i in range(150):
            service.audit_logger.log_security_event("u", SecurityEventType.DATA_ACCESS, f"event {i}", Severity.LOW)

        events = service.audit_logger.get_security_events()
        assert len(events) == 100
        assert events[0].description == "event 50"
        assert events[-1].description == "event 149"

    def test_alerts_not_deduplicated(self, service):
        first = service.create_alert(AlertType.SYSTEM, Severity.LOW, "Same", "Same", {'k': 1})
        second = service.create_alert(AlertType.SYSTEM, Severity.LOW, "Same", "Same", {'k': 1})

        assert first.id != second.id
        assert service.resolve_alert(first.id, "done")
        assert not service.resolve_alert(first.id, "again")
        assert first.resolution == "done"

    def test_handle_error_and_password(self, service):
        report = service.handle_error(ValueError("Invalid email"), ErrorContext(component="SignupForm"))
        assert report.severity == Severity.MEDIUM

        result = service.validate_password("short")
        assert not result.is_valid

    @pytest.mark.asyncio
    async def test_with_fallback(self, service):
        def fails():
            raise ConnectionError("offline")

        assert await service.with_fallback(fails, fallback=[]) == []
        assert await service.handle_network_error(ConnectionError("offline"), fails, fallback={}) == {}


class TestHealth:
    """Test health cycles through the service."""

    @pytest.mark.asyncio
    async def test_healthy(self, service):
        health = await service.perform_health_check()

        assert health.status == HealthStatus.HEALTHY
        assert [c.name for c in health.checks] == [
            "database", "authentication", "performance", "memory", "error_rate", "security"
        ]

    @pytest.mark.asyncio
    async def test_single_fail_is_unhealthy(self, service, memory_usage, sink):
        memory_usage['used'] = 15.5 * 1024 ** 3

        health = await service.perform_health_check()

        assert health.status == HealthStatus.UNHEALTHY
        assert sum(1 for c in health.checks if c.status == CheckStatus.PASS) == 5
        assert sink.alerts[-1].title == "System Health Critical"

    @pytest.mark.asyncio
    async def test_recovery_resolves_health_alert(self, service, memory_usage):
        memory_usage['used'] = 12 * 1024 ** 3
        await service.perform_health_check()
        degraded = service.alert_manager.get_active_alerts()[-1]
        assert degraded.title == "System Health Degraded"

        memory_usage['used'] = 4 * 1024 ** 3
        await service.perform_health_check()

        assert degraded.resolved

    @pytest.mark.asyncio
    async def test_system_metrics(self, service):
        service.audit_logger.log_audit_event("user-1", "create", "lease")
        service.performance_monitor.record_metric(response_time_ms=120, endpoint="/leases")

        metrics = await service.get_system_metrics()

        assert set(metrics) == {'performance', 'security', 'errors', 'health', 'alerts'}
        assert metrics['performance']['sample_count'] == 1
        assert metrics['security']['audits'][0]['action'] == "create"
        assert metrics['errors']['total_errors'] == 0
        assert metrics['health']['status'] == "healthy"
        assert metrics['alerts'] == []


class TestSweeps:
    """Test the periodic sweeps."""

    def test_slow_responses(self, service):
        service.performance_monitor.record_metric(response_time_ms=4000)

        alerts = service.check_performance_alerts()

        assert [(a.title, a.severity) for a in alerts] == [("Slow Response Times", Severity.HIGH)]

    def test_low_cache_hit_rate(self, service):
        service.performance_monitor.record_metric(response_time_ms=10, cache_hit_rate=40)

        alerts = service.check_performance_alerts()

        assert [(a.title, a.severity) for a in alerts] == [("Low Cache Hit Rate", Severity.MEDIUM)]

    def test_no_cache_samples_no_alert(self, service):
        service.performance_monitor.record_metric(response_time_ms=10)
        assert service.check_performance_alerts() == []

    def test_critical_errors(self, service):
        service.handle_error(ValueError("fatal crash"))

        alerts = service.check_error_patterns()

        assert [a.title for a in alerts] == ["Critical Errors Detected"]
        assert alerts[0].type == AlertType.ERROR

    def test_error_spike(self, service):
        for i in range(51):
            service.handle_error(ValueError(f"glitch {i}"))

        alerts = service.check_error_patterns()

        assert [(a.title, a.severity) for a in alerts] == [("High Error Rate", Severity.HIGH)]

    @pytest.mark.parametrize("used_gb,expected", [
        (8, None),
        (13, ("High Memory Usage", Severity.HIGH)),
        (15, ("Critical Memory Usage", Severity.CRITICAL)),
    ])
    def test_resource_usage(self, service, memory_usage, used_gb, expected):
        memory_usage['used'] = used_gb * 1024 ** 3

        alert = service.check_resource_usage()

        if expected is None:
            assert alert is None
        else:
            assert (alert.title, alert.severity) == expected
            assert alert.type == AlertType.SYSTEM

    @pytest.mark.asyncio
    async def test_cleanup_old_data(self, service, clock):
        service.create_alert(AlertType.SYSTEM, Severity.LOW, "old", "x")
        await service.perform_health_check()
        service.detect_suspicious_activity("user-1", "export")

        clock.advance(timedelta(days=8))
        service.create_alert(AlertType.SYSTEM, Severity.LOW, "new", "x")

        removed = service.cleanup_old_data()

        assert removed['alerts'] == 1
        assert removed['health_history'] == 1
        assert removed['pattern_windows'] == 3
        assert removed['performance_samples'] == 0
        assert [a.title for a in service.alert_manager.get_all_alerts()] == ["new"]


class TestScheduling:
    """Test the scheduler wiring."""

    @pytest.mark.asyncio
    async def test_start_registers_jobs_once(self, service):
        first = service.start()
        second = service.start()

        assert set(first) == {
            "health_check", "performance_sweep", "error_pattern_sweep", "resource_sweep", "cleanup"
        }
        assert first == second

        await service.shutdown()
        assert all(task.done() for task in first.values())

    @pytest.mark.asyncio
    async def test_stop(self, service):
        tasks = service.start()
        service.stop()
        await asyncio.gather(*tasks.values(), return_exceptions=True)

        assert not service.scheduler.is_running
        assert all(task.cancelled() for task in tasks.values())

    def test_intervals(self, service):
        intervals = {name: job.interval for name, job in service.scheduler.jobs.items()}
        assert intervals == {
            "health_check": timedelta(minutes=5),
            "performance_sweep": timedelta(minutes=1),
            "error_pattern_sweep": timedelta(minutes=2),
            "resource_sweep": timedelta(minutes=5),
            "cleanup": timedelta(hours=1),
        }


class TestBuild:
    """Test graph construction from settings."""

    @pytest.mark.asyncio
    async def test_defaults_without_probes(self, test_settings, clock):
        service = build_monitoring_service(test_settings, clock=clock, memory_reader=lambda: (1, 10))

        assert isinstance(service.store, InMemoryStore)
        assert [type(s) for s in service.alert_manager.sinks] == [LogEscalationSink]

        health = await service.perform_health_check()
        assert health.status == HealthStatus.DEGRADED
        assert health.checks[0].message == "No database probe configured"

    def test_file_store_and_webhook(self, test_settings, clock, tmp_path):
        settings = test_settings.model_copy(update={
            'store_path': str(tmp_path / "store.json"),
            'escalation_webhook_url': "https://hooks.example.com/alerts",
        })

        service = build_monitoring_service(settings, clock=clock)

        assert isinstance(service.store, JsonFileStore)
        assert [type(s) for s in service.alert_manager.sinks] == [LogEscalationSink, WebhookEscalationSink]

    def test_settings_flow_into_components(self, test_settings, clock):
        settings = test_settings.model_copy(update={'max_login_attempts': 3, 'security_event_capacity': 5})

        service = build_monitoring_service(settings, clock=clock, sinks=[])

        for _ in range(3):
            service.record_failed_login("a@b.com")
        assert not service.check_login_attempts("a@b.com")
        assert service.audit_logger.security_event_capacity == 5

    def test_critical_alerts_persisted(self, service, store):
        service.create_alert(AlertType.SECURITY, Severity.CRITICAL, "Breach", "x")
        assert read_json_list(store, "critical_alerts")[0]['title'] == "Breach"
