"""
B2B-INTEGRATIONS — Monitoring Tests
Health state machine, metrics aggregation, alert thresholds, audit trail, retention.

Run: pytest tests/ -v
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from app.monitoring import health_service as health_module
from app.monitoring.alert_service import (
    AlertConfigService,
    AlertNotFoundError,
    evaluate_condition,
)
from app.monitoring.audit_log_service import AuditLogService
from app.monitoring.health_service import ConnectorHealthService
from app.monitoring.metrics_service import MAX_LATENCY_SAMPLES, IntegrationMetricsService, percentile
from app.monitoring.retention_service import LogRetentionService
from app.schemas.monitoring import (
    AlertSeverity,
    AlertStatus,
    AlertThresholdInput,
    AuditAction,
    AuditActor,
    AuditRequestContext,
    AuditResource,
    AuditResult,
    ConnectorHealthStatus,
    HealthCheckResult,
    TimeWindow,
)


class FakeClock:
    def __init__(self, start: datetime = None):
        self.now = start or datetime(2026, 1, 15, 10, 0, 5, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


OK = HealthCheckResult(success=True, response_time=42)


def failed(error: str = "Connection refused") -> HealthCheckResult:
    return HealthCheckResult(success=False, error=error)


# ─────────────────────────────────────────────────────────────
# CONNECTOR HEALTH
# ─────────────────────────────────────────────────────────────

class TestConnectorHealth:
    def setup_method(self):
        self.clock = FakeClock()
        self.service = ConnectorHealthService(clock=self.clock)

    def test_single_success_stays_unknown(self):
        check = self.service.record_health_check("t1", "qb", OK)
        assert check.status == ConnectorHealthStatus.UNKNOWN
        assert check.connectivity.reachable is True
        assert check.response_time == 42

    def test_two_successes_become_healthy(self):
        self.service.record_health_check("t1", "qb", OK)
        check = self.service.record_health_check("t1", "qb", OK)
        assert check.status == ConnectorHealthStatus.HEALTHY

    def test_one_failure_is_degraded(self):
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.status == ConnectorHealthStatus.DEGRADED

    def test_three_failures_are_unhealthy(self):
        for _ in range(3):
            check = self.service.record_health_check("t1", "qb", failed())
        assert check.status == ConnectorHealthStatus.UNHEALTHY

    def test_success_resets_failure_counter(self):
        for _ in range(2):
            self.service.record_health_check("t1", "qb", failed())
        self.service.record_health_check("t1", "qb", OK)
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.status == ConnectorHealthStatus.DEGRADED

    def test_custom_unhealthy_threshold(self):
        self.service.set_health_check_config("t1", "qb", unhealthy_threshold=1)
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.status == ConnectorHealthStatus.UNHEALTHY

    def test_config_defaults_and_merge(self):
        config = self.service.set_health_check_config("t1", "qb", interval_seconds=30)
        assert config.interval_seconds == 30
        assert config.timeout_seconds == 10
        config = self.service.set_health_check_config("t1", "qb", timeout_seconds=5)
        assert config.interval_seconds == 30
        assert config.timeout_seconds == 5
        assert config.enabled is True

    def test_recent_errors_are_deduplicated(self):
        self.service.record_health_check("t1", "qb", failed("Timeout"))
        self.clock.advance(minutes=1)
        check = self.service.record_health_check("t1", "qb", failed("Timeout"))
        assert len(check.recent_errors) == 1
        assert check.recent_errors[0].count == 2
        assert check.recent_errors[0].timestamp == self.clock.now

    def test_recent_errors_keep_last_ten(self):
        for i in range(12):
            check = self.service.record_health_check("t1", "qb", failed(f"error {i}"))
        assert len(check.recent_errors) == 10
        assert check.recent_errors[0].error == "error 2"
        assert check.recent_errors[-1].error == "error 11"

    def test_uptime_excludes_current_check(self):
        check = self.service.record_health_check("t1", "qb", OK)
        assert check.uptime.percentage == 100
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.uptime.percentage == 100
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.uptime.percentage == 50.0
        assert check.uptime.downtime_minutes == 1

    def test_last_successful_connection_is_kept(self):
        start = self.clock.now
        self.service.record_health_check("t1", "qb", OK)
        self.clock.advance(minutes=5)
        check = self.service.record_health_check("t1", "qb", failed())
        assert check.connectivity.last_successful_connection == start
        assert check.connectivity.reachable is False

    def test_auth_defaults_to_valid(self):
        check = self.service.record_health_check("t1", "qb", OK)
        assert check.authentication.valid is True
        assert check.authentication.last_refreshed is None
        check = self.service.record_health_check(
            "t1", "qb", HealthCheckResult(success=True, auth_valid=True)
        )
        assert check.authentication.last_refreshed == self.clock.now

    def test_mark_healthy_forces_status(self):
        for _ in range(3):
            self.service.record_health_check("t1", "qb", failed())
        check = self.service.mark_healthy("t1", "qb")
        assert check.status == ConnectorHealthStatus.HEALTHY

    def test_mark_unhealthy_records_reason(self):
        check = self.service.mark_unhealthy("t1", "qb", "Token revoked")
        assert check.status == ConnectorHealthStatus.DEGRADED
        assert check.recent_errors[0].error == "Token revoked"

    def test_get_all_with_status_filter(self):
        self.service.record_health_check("t1", "qb", failed())
        self.service.mark_healthy("t1", "ns")
        self.service.record_health_check("t2", "qb", failed())
        assert len(self.service.get_all_connector_health("t1")) == 2
        degraded = self.service.get_all_connector_health("t1", ConnectorHealthStatus.DEGRADED)
        assert [c.connector_id for c in degraded] == ["qb"]

    def test_health_summary(self):
        self.service.record_health_check("t1", "qb", failed())
        self.service.mark_healthy("t1", "ns")
        self.service.record_health_check("t1", "sap", OK)
        summary = self.service.get_health_summary("t1")
        assert summary.total == 3
        assert summary.degraded == 1
        assert summary.healthy == 1
        assert summary.unknown == 1

    def test_remove_connector(self):
        self.service.record_health_check("t1", "qb", OK)
        self.service.remove_connector("t1", "qb")
        assert self.service.get_connector_health("t1", "qb") is None
        assert self.service.history_size("t1") == 0

    def test_cleanup_old_history(self):
        self.service.record_health_check("t1", "qb", OK)
        self.clock.advance(days=2)
        self.service.record_health_check("t1", "qb", OK)
        assert self.service.cleanup_old_history(1) == 1
        assert self.service.history_size() == 1

    def test_history_is_capped(self, monkeypatch):
        monkeypatch.setattr(health_module, "MAX_HISTORY_ENTRIES", 3)
        for _ in range(5):
            self.service.record_health_check("t1", "qb", OK)
        assert self.service.history_size("t1") == 3


# ─────────────────────────────────────────────────────────────
# METRICS
# ─────────────────────────────────────────────────────────────

class TestIntegrationMetrics:
    def setup_method(self):
        self.clock = FakeClock()
        self.service = IntegrationMetricsService(clock=self.clock)

    def test_throughput_counts_and_rates(self):
        self.service.record_message_received("t1", event_type="order.created")
        self.service.record_message_received("t1", event_type="order.created")
        self.service.record_message_received("t1")
        self.service.record_message_processed("t1")
        self.service.record_message_processed("t1")
        self.service.record_message_failed("t1", "timeout")
        self.service.record_message_retried("t1")

        metrics = self.service.get_throughput_metrics("t1", TimeWindow.ONE_HOUR)
        assert metrics.messages_received == 3
        assert metrics.messages_processed == 2
        assert metrics.messages_failed == 1
        assert metrics.messages_retried == 1
        assert metrics.receive_rate == pytest.approx(3 / 60)
        assert metrics.failure_rate == pytest.approx(100 / 3)
        assert metrics.by_event_type == {"order.created": 2}

    def test_throughput_window_excludes_old_points(self):
        self.service.record_message_received("t1")
        self.clock.advance(hours=2)
        metrics = self.service.get_throughput_metrics("t1", TimeWindow.ONE_HOUR)
        assert metrics.messages_received == 0
        assert metrics.failure_rate == 0

    def test_throughput_by_connector_at_tenant_level(self):
        self.service.record_message_received("t1", "quickbooks")
        self.service.record_message_received("t1", "quickbooks")
        self.service.record_message_received("t1", "netsuite")
        metrics = self.service.get_throughput_metrics("t1", TimeWindow.ONE_DAY)
        assert metrics.by_connector == {"quickbooks": 2, "netsuite": 1}

        scoped = self.service.get_throughput_metrics("t1", TimeWindow.ONE_DAY, "quickbooks")
        assert scoped.messages_received == 2
        assert scoped.by_connector == {}

    def test_percentile_nearest_rank(self):
        values = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
        assert percentile(values, 50) == 50
        assert percentile(values, 95) == 100
        assert percentile([7], 1) == 7
        assert percentile([], 50) == 0

    def test_latency_metrics(self):
        for value in [50, 10, 100, 20, 90, 30, 80, 40, 70, 60]:
            self.service.record_latency("t1", "sync", value)
        self.service.record_latency("t1", "auth", 5)

        latency = self.service.get_latency_metrics("t1", TimeWindow.ONE_HOUR)
        assert latency.sample_count == 11
        assert latency.min == 5
        assert latency.max == 100
        assert latency.by_operation["sync"].count == 10
        assert latency.by_operation["sync"].p50 == 50
        assert latency.by_operation["sync"].p95 == 100
        assert latency.by_operation["sync"].avg == 55
        assert latency.by_operation["auth"].p99 == 5

    def test_latency_std_dev_is_population(self):
        for value in [2, 4, 4, 4, 5, 5, 7, 9]:
            self.service.record_message_processed("t1", latency_ms=value)
        latency = self.service.get_latency_metrics("t1", TimeWindow.ONE_HOUR)
        assert latency.avg == 5
        assert latency.std_dev == pytest.approx(2.0)

    def test_empty_latency_is_zero(self):
        latency = self.service.get_latency_metrics("t1", TimeWindow.ONE_HOUR)
        assert latency.sample_count == 0
        assert latency.p99 == 0
        assert latency.std_dev == 0

    def test_error_rate(self):
        for _ in range(4):
            self.service.record_message_received("t1")
        self.service.record_message_failed("t1", "timeout", error_message="Read timed out")
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.total_errors == 1
        assert errors.total_requests == 4
        assert errors.error_rate == 25

    def test_error_type_keeps_latest_sample(self):
        self.service.record_message_failed("t1", "timeout", error_message="first")
        self.clock.advance(minutes=1)
        self.service.record_message_failed("t1", "timeout", error_message="second")
        stats = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR).by_error_type["timeout"]
        assert stats.count == 2
        assert stats.sample == "second"
        assert stats.last_occurred == self.clock.now

    def test_error_trend_increasing(self):
        self.service.record_message_failed("t1", "timeout")
        self.clock.advance(minutes=40)
        for _ in range(3):
            self.service.record_message_failed("t1", "timeout")
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.trend == "increasing"
        assert errors.trend_percentage == pytest.approx(200)

    def test_error_trend_decreasing(self):
        for _ in range(4):
            self.service.record_message_failed("t1", "timeout")
        self.clock.advance(minutes=40)
        self.service.record_message_failed("t1", "timeout")
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.trend == "decreasing"
        assert errors.trend_percentage == pytest.approx(-75)

    def test_error_trend_only_recent(self):
        self.service.record_message_failed("t1", "timeout")
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.trend == "increasing"
        assert errors.trend_percentage == 100

    def test_error_trend_stable_without_errors(self):
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.trend == "stable"
        assert errors.trend_percentage == 0

    def test_errors_by_connector(self):
        self.service.record_message_received("t1", "quickbooks")
        self.service.record_message_received("t1", "quickbooks")
        self.service.record_message_failed("t1", "auth", "quickbooks")
        errors = self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR)
        assert errors.by_connector["quickbooks"].errors == 1
        assert errors.by_connector["quickbooks"].total == 2
        assert errors.by_connector["quickbooks"].rate == 50

    def test_time_series_buckets(self):
        for _ in range(3):
            self.service.record_message_received("t1")
        self.clock.advance(seconds=30)
        self.service.record_message_received("t1")
        self.clock.advance(seconds=60)
        self.service.record_message_received("t1")

        series = self.service.get_time_series("t1", "received", TimeWindow.ONE_HOUR, aggregation="sum")
        assert [p.value for p in series.data_points] == [4, 1]
        assert series.data_points[0].timestamp == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert series.data_points[1].timestamp == datetime(2026, 1, 15, 10, 1, tzinfo=timezone.utc)

        counted = self.service.get_time_series("t1", "received", TimeWindow.ONE_HOUR, aggregation="count")
        assert [p.value for p in counted.data_points] == [4, 1]

        averaged = self.service.get_time_series("t1", "received", TimeWindow.ONE_HOUR)
        assert [p.value for p in averaged.data_points] == [1, 1]

    def test_dashboard_top_errors(self):
        for index, error_type in enumerate(["a", "b", "c", "d", "e", "f"]):
            for _ in range(index + 1):
                self.service.record_message_failed("t1", error_type)
        kpis = self.service.get_dashboard_kpis("t1")
        assert [e.error_type for e in kpis.error_metrics.top_errors] == ["f", "e", "d", "c", "b"]
        assert kpis.error_metrics.errors_by_type["a"] == 1
        assert kpis.connector_health.total == 0
        assert kpis.alerts.total == 0
        assert kpis.period == TimeWindow.ONE_DAY

    def test_cleanup_old_data(self):
        self.service.record_message_received("t1")
        self.service.record_message_failed("t1", "timeout")
        self.clock.advance(days=10)
        self.service.record_message_received("t1")
        assert self.service.cleanup_old_data(7, dry_run=True) == 3
        assert self.service.cleanup_old_data(7) == 3
        assert self.service.count_data_points("t1") == 1

    def test_cleanup_scoped_to_tenant(self):
        self.service.record_message_received("t1")
        self.service.record_message_received("t2", "quickbooks")
        self.clock.advance(days=10)
        assert self.service.cleanup_old_data(7, tenant_id="t1") == 1
        assert self.service.count_data_points("t2") == 1

    def test_latency_samples_are_capped_per_key(self):
        for value in range(MAX_LATENCY_SAMPLES + 50):
            self.service.record_latency("t1", "sync", value)
        latency = self.service.get_latency_metrics("t1", TimeWindow.ONE_HOUR)
        assert latency.sample_count == MAX_LATENCY_SAMPLES
        assert latency.min == 50
        assert latency.max == MAX_LATENCY_SAMPLES + 49
        assert latency.by_operation["sync"].count == MAX_LATENCY_SAMPLES

    def test_cleanup_drops_request_counters_of_expired_keys(self):
        self.service.record_message_received("t1")
        self.service.record_message_received("t1", "quickbooks")
        self.clock.advance(days=10)
        self.service.record_message_received("t1", "quickbooks")

        self.service.cleanup_old_data(7, dry_run=True)
        assert self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR).total_requests == 1

        self.service.cleanup_old_data(7)
        assert self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR).total_requests == 0
        assert self.service.get_error_metrics("t1", TimeWindow.ONE_HOUR, "quickbooks").total_requests == 2


# ─────────────────────────────────────────────────────────────
# ALERTS
# ─────────────────────────────────────────────────────────────

def threshold_input(**overrides) -> AlertThresholdInput:
    data = {
        "name": "High error rate",
        "metric": "error_rate",
        "operator": "gt",
        "value": 10,
        "severity": AlertSeverity.ERROR,
    }
    data.update(overrides)
    return AlertThresholdInput(**data)


class TestAlertConfig:
    def setup_method(self):
        self.clock = FakeClock()
        self.service = AlertConfigService(clock=self.clock)

    def test_create_threshold_defaults(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        assert threshold.enabled is True
        assert threshold.cooldown_minutes == 15
        assert threshold.duration == 0
        assert threshold.created_by == "admin"
        assert self.service.get_threshold("t1", threshold.id) == threshold

    def test_threshold_is_tenant_scoped(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        assert self.service.get_threshold("t2", threshold.id) is None
        with pytest.raises(AlertNotFoundError):
            self.service.update_threshold("t2", threshold.id, value=20)

    def test_update_threshold(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        self.clock.advance(minutes=1)
        updated = self.service.update_threshold("t1", threshold.id, value=25, id="hijack")
        assert updated.value == 25
        assert updated.id == threshold.id
        assert updated.updated_at > threshold.updated_at

    def test_delete_threshold(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        self.service.delete_threshold("t1", threshold.id)
        assert self.service.get_threshold("t1", threshold.id) is None
        with pytest.raises(AlertNotFoundError) as exc_info:
            self.service.delete_threshold("t1", threshold.id)
        assert exc_info.value.status_code == 404

    def test_list_thresholds_filters(self):
        self.service.create_threshold("t1", "admin", threshold_input(connector_id="qb"))
        critical = self.service.create_threshold("t1", "admin", threshold_input(severity=AlertSeverity.CRITICAL))
        self.service.set_threshold_enabled("t1", critical.id, False)
        assert len(self.service.list_thresholds("t1")) == 2
        assert len(self.service.list_thresholds("t1", connector_id="qb")) == 1
        assert len(self.service.list_thresholds("t1", enabled=False)) == 1
        assert len(self.service.list_thresholds("t1", severity=AlertSeverity.CRITICAL)) == 1

    def test_evaluate_triggers_alert(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        alerts = self.service.evaluate_metrics("t1", {"error_rate": 12})
        assert len(alerts) == 1
        alert = alerts[0]
        assert alert.threshold_id == threshold.id
        assert alert.status == AlertStatus.ACTIVE
        assert alert.actual_value == 12
        assert alert.message == "High error rate: error_rate exceeded threshold. Current: 12, Threshold: 10"

    def test_evaluate_respects_cooldown(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        assert len(self.service.evaluate_metrics("t1", {"error_rate": 12})) == 1
        assert self.service.evaluate_metrics("t1", {"error_rate": 15}) == []
        self.clock.advance(minutes=16)
        assert len(self.service.evaluate_metrics("t1", {"error_rate": 15})) == 1

    def test_cooldown_is_per_connector(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        assert len(self.service.evaluate_metrics("t1", {"error_rate": 12}, connector_id="qb")) == 1
        assert len(self.service.evaluate_metrics("t1", {"error_rate": 12}, connector_id="ns")) == 1

    def test_evaluate_auto_resolves(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        alert = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]
        self.service.evaluate_metrics("t1", {"error_rate": 3})
        resolved = self.service.get_alert("t1", alert.id)
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_by == "system"

    def test_evaluate_skips_out_of_scope_thresholds(self):
        self.service.create_threshold("t1", "admin", threshold_input(connector_id="qb"))
        self.service.create_threshold("t1", "admin", threshold_input(event_type="order.created"))
        assert self.service.evaluate_metrics("t1", {"error_rate": 50}) == []
        alerts = self.service.evaluate_metrics("t1", {"error_rate": 50}, connector_id="qb")
        assert len(alerts) == 1
        assert alerts[0].connector_id == "qb"

    def test_evaluate_skips_missing_metric_and_disabled(self):
        threshold = self.service.create_threshold("t1", "admin", threshold_input())
        assert self.service.evaluate_metrics("t1", {"latency_p95": 900}) == []
        self.service.set_threshold_enabled("t1", threshold.id, False)
        assert self.service.evaluate_metrics("t1", {"error_rate": 50}) == []

    def test_operators(self):
        assert evaluate_condition(5, "gt", 4)
        assert evaluate_condition(4, "gte", 4)
        assert evaluate_condition(3, "lt", 4)
        assert evaluate_condition(4, "lte", 4)
        assert evaluate_condition(4, "eq", 4)
        assert evaluate_condition(5, "ne", 4)
        assert not evaluate_condition(4, "ne", 4)
        assert not evaluate_condition(4, "between", 4)

    def test_operator_text_in_message(self):
        self.service.create_threshold(
            "t1", "admin", threshold_input(name="Low stock", metric="stock", operator="lte", value=5.5)
        )
        alert = self.service.evaluate_metrics("t1", {"stock": 2})[0]
        assert alert.message == "Low stock: stock reached or dropped below threshold. Current: 2, Threshold: 5.5"

    def test_list_alerts_sorted_and_paginated(self):
        self.service.create_threshold("t1", "admin", threshold_input(cooldown_minutes=1))
        first = self.service.evaluate_metrics("t1", {"error_rate": 11})[0]
        self.clock.advance(minutes=2)
        second = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]

        alerts, total = self.service.list_alerts("t1")
        assert total == 2
        assert [a.id for a in alerts] == [second.id, first.id]

        page, total = self.service.list_alerts("t1", offset=1, limit=1)
        assert total == 2
        assert [a.id for a in page] == [first.id]

    def test_alert_lifecycle(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        alert = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]

        acknowledged = self.service.acknowledge_alert("t1", alert.id, "ops")
        assert acknowledged.status == AlertStatus.ACKNOWLEDGED
        assert acknowledged.acknowledged_by == "ops"

        resolved = self.service.resolve_alert("t1", alert.id, "ops")
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at == self.clock.now

        with pytest.raises(AlertNotFoundError):
            self.service.acknowledge_alert("t2", alert.id, "ops")

    def test_silence_and_unsilence(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        alert = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]
        silenced = self.service.silence_alert("t1", alert.id, 30)
        assert silenced.status == AlertStatus.SILENCED
        assert silenced.silenced_until == self.clock.now + timedelta(minutes=30)

        assert self.service.unsilence_expired_alerts() == 0
        self.clock.advance(minutes=31)
        assert self.service.unsilence_expired_alerts() == 1
        assert self.service.get_alert("t1", alert.id).status == AlertStatus.ACTIVE

    def test_alert_summary_counts_active(self):
        self.service.create_threshold("t1", "admin", threshold_input(severity=AlertSeverity.CRITICAL))
        self.service.create_threshold("t1", "admin", threshold_input(metric="latency", severity=AlertSeverity.WARNING))
        alerts = self.service.evaluate_metrics("t1", {"error_rate": 50, "latency": 50})
        self.service.resolve_alert("t1", alerts[1].id, "ops")
        summary = self.service.get_alert_summary("t1")
        assert summary.total == 1
        assert summary.critical == 1
        assert summary.warning == 0

    def test_cleanup_old_alerts(self):
        self.service.create_threshold("t1", "admin", threshold_input())
        old = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]
        self.service.resolve_alert("t1", old.id, "ops")
        self.clock.advance(days=8)
        fresh = self.service.evaluate_metrics("t1", {"error_rate": 12})[0]
        assert self.service.cleanup_old_alerts(7) == 1
        assert self.service.get_alert("t1", old.id) is None
        assert self.service.get_alert("t1", fresh.id) is not None


# ─────────────────────────────────────────────────────────────
# AUDIT LOG
# ─────────────────────────────────────────────────────────────

CONNECTOR = AuditResource(type="connector", id="conn-1", name="QuickBooks")
SUCCESS = AuditResult(success=True)


class TestAuditLog:
    def setup_method(self):
        self.clock = FakeClock()
        self.service = AuditLogService(clock=self.clock)

    def test_record_defaults_to_system_actor(self):
        entry = self.service.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        assert entry.actor.type == "system"
        assert entry.timestamp == self.clock.now
        assert entry.metadata == {}
        assert self.service.get_entry("t1", entry.id) == entry
        assert self.service.get_entry("t2", entry.id) is None

    def test_record_with_user_context(self):
        context = AuditRequestContext(user_id="u-1", user_name="Ana", ip="10.0.0.1", method="POST", path="/connectors")
        entry = self.service.record_with_context("t1", AuditAction.CONFIG_UPDATED, CONNECTOR, SUCCESS, context)
        assert entry.actor.type == "user"
        assert entry.actor.id == "u-1"
        assert entry.request.method == "POST"
        assert entry.request.path == "/connectors"

    def test_record_with_anonymous_context(self):
        entry = self.service.record_with_context(
            "t1", AuditAction.EVENT_PUBLISHED, CONNECTOR, SUCCESS, AuditRequestContext()
        )
        assert entry.actor.type == "api"
        assert entry.request.method == "UNKNOWN"
        assert entry.request.path == "UNKNOWN"

    def test_query_newest_first_with_pagination(self):
        ids = []
        for _ in range(3):
            ids.append(self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS).id)
            self.clock.advance(minutes=1)

        entries, total = self.service.query("t1")
        assert total == 3
        assert [e.id for e in entries] == list(reversed(ids))

        page, total = self.service.query("t1", offset=1, limit=1)
        assert total == 3
        assert [e.id for e in page] == [ids[1]]

    def test_query_filters(self):
        actor = AuditActor(type="user", id="u-1")
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS, actor=actor)
        self.service.record(
            "t1", AuditAction.WEBHOOK_FAILED, AuditResource(type="webhook", id="wh-1"),
            AuditResult(success=False, error="HTTP 500"),
        )
        assert self.service.query("t1", action=AuditAction.WEBHOOK_FAILED)[1] == 1
        assert self.service.query("t1", resource_type="connector")[1] == 1
        assert self.service.query("t1", actor_id="u-1")[1] == 1
        assert self.service.query("t1", success=False)[1] == 1
        assert len(self.service.get_failed_actions("t1")) == 1
        assert len(self.service.get_actor_activity("t1", "u-1")) == 1
        assert len(self.service.get_resource_history("t1", "webhook", "wh-1")) == 1

    def test_query_time_range(self):
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS)
        start = self.clock.now + timedelta(minutes=1)
        self.clock.advance(minutes=5)
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS)
        entries, total = self.service.query("t1", start_time=start)
        assert total == 1
        assert len(self.service.export_logs("t1", start, self.clock.now)) == 1

    def test_action_counts_and_statistics(self):
        actor = AuditActor(type="user", id="u-1")
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS, actor=actor)
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, AuditResult(success=False))
        self.service.record("t1", AuditAction.CONFIG_CREATED, CONNECTOR, SUCCESS)

        assert self.service.get_action_counts("t1") == {"connector.tested": 2, "config.created": 1}
        stats = self.service.get_statistics("t1")
        assert stats.total == 3
        assert stats.successful == 2
        assert stats.failed == 1
        assert stats.by_resource_type == {"connector": 3}
        assert stats.by_actor == {"u-1": 1}

    def test_delete_old_logs(self):
        self.service.record("t1", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS)
        self.service.record("t2", AuditAction.CONNECTOR_TESTED, CONNECTOR, SUCCESS)
        self.clock.advance(days=1)
        assert self.service.delete_old_logs("t1", self.clock.now) == 1
        assert self.service.count_entries() == 1

    def test_cleanup_honours_action_overrides(self):
        credential = self.service.record(
            "t1", AuditAction.CREDENTIAL_CREATED, AuditResource(type="credential", id="c-1"), SUCCESS
        )
        self.service.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        self.clock.advance(days=100)

        by_action = {"credential.created": 365}
        assert self.service.cleanup_old_logs(90, by_action, dry_run=True) == 1
        assert self.service.count_entries() == 2
        assert self.service.cleanup_old_logs(90, by_action) == 1
        assert self.service.get_entry("t1", credential.id) is not None


# ─────────────────────────────────────────────────────────────
# LOG RETENTION
# ─────────────────────────────────────────────────────────────

class TestLogRetention:
    def setup_method(self):
        self.clock = FakeClock()
        self.metrics = IntegrationMetricsService(clock=self.clock)
        self.health = ConnectorHealthService(clock=self.clock)
        self.alerts = AlertConfigService(clock=self.clock)
        self.audit = AuditLogService(clock=self.clock)
        self.service = LogRetentionService(self.metrics, self.health, self.alerts, self.audit)

    def test_default_policy(self):
        policy = self.service.get_policy("new-tenant")
        assert policy.tenant_id == "new-tenant"
        assert policy.metrics.raw_data_days == 7
        assert policy.metrics.aggregated_data_days == 30
        assert policy.metrics.summary_data_days == 365
        assert policy.audit_logs.default_days == 90
        assert policy.audit_logs.by_action["credential.created"] == 365
        assert policy.alerts.active_days == 30
        assert policy.alerts.resolved_days == 7
        assert policy.archive.enabled is False

    def test_set_policy_merges(self):
        self.service.set_policy("t1", {"metrics": {"raw_data_days": 14}})
        updated = self.service.set_policy("t1", {"audit_logs": {"default_days": 180}})
        assert updated.metrics.raw_data_days == 14
        assert updated.metrics.aggregated_data_days == 30
        assert updated.audit_logs.default_days == 180

    def test_set_policy_merges_by_action(self):
        self.service.set_policy("t1", {"audit_logs": {"by_action": {"connector.registered": 180}}})
        policy = self.service.get_policy("t1")
        assert policy.audit_logs.by_action["connector.registered"] == 180
        assert policy.audit_logs.by_action["credential.created"] == 365

    def test_set_policy_enables_archive(self):
        policy = self.service.set_policy(
            "t1", {"archive": {"enabled": True, "destination": "s3://bucket/archives", "format": "parquet"}}
        )
        assert policy.archive.enabled is True
        assert policy.archive.format == "parquet"

    def test_set_invalid_policy_raises(self):
        with pytest.raises(ValueError, match="raw_data_days"):
            self.service.set_policy("t1", {"metrics": {"raw_data_days": 400}})
        assert self.service.get_policy("t1").metrics.raw_data_days == 7

    def test_delete_policy_reverts_to_default(self):
        self.service.set_policy("t1", {"metrics": {"raw_data_days": 30}})
        self.service.delete_policy("t1")
        assert self.service.get_policy("t1").metrics.raw_data_days == 7

    def test_validate_policy(self):
        valid = {
            "metrics": {"raw_data_days": 7, "aggregated_data_days": 30, "summary_data_days": 365},
            "audit_logs": {"default_days": 90},
            "alerts": {"active_days": 30, "resolved_days": 7},
        }
        assert self.service.validate_policy(valid) == []

        errors = self.service.validate_policy({"metrics": {"aggregated_data_days": 800}})
        assert len(errors) == 1
        assert "metrics.aggregated_data_days" in errors[0]

        errors = self.service.validate_policy({"audit_logs": {"default_days": 1000}})
        assert "audit_logs.default_days" in errors[0]

        assert len(self.service.validate_policy({"alerts": {"active_days": 500, "resolved_days": 100}})) == 2
        below = {"metrics": {"raw_data_days": 0, "aggregated_data_days": 0, "summary_data_days": 0}}
        assert len(self.service.validate_policy(below)) == 3

    def test_run_cleanup_removes_expired_data(self):
        self.metrics.record_message_received("t1")
        self.health.record_health_check("t1", "qb", HealthCheckResult(success=True))
        self.audit.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        self.audit.record("t2", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        self.clock.advance(days=100)

        result = asyncio.run(self.service.run_cleanup("t1"))
        assert result.metrics_deleted == 1
        assert result.health_history_deleted == 1
        assert result.alerts_deleted == 0
        assert result.audit_logs_deleted == 1
        assert self.audit.count_entries("t2") == 1

    def test_run_cleanup_keeps_recent_data(self):
        self.audit.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        result = asyncio.run(self.service.run_cleanup("t1"))
        assert result.audit_logs_deleted == 0
        assert self.audit.count_entries("t1") == 1

    def test_archive_disabled(self):
        self.audit.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        result = asyncio.run(
            self.service.archive_data("t1", self.clock.now - timedelta(days=1), self.clock.now)
        )
        assert result.audit_logs_archived == 0
        assert result.archive_location is None
        assert result.entries == []

    def test_archive_enabled(self):
        self.service.set_policy("t1", {"archive": {"enabled": True, "destination": "s3://test-bucket", "format": "json"}})
        self.audit.record("t1", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        result = asyncio.run(
            self.service.archive_data("t1", self.clock.now - timedelta(days=1), self.clock.now + timedelta(days=1))
        )
        assert result.audit_logs_archived == 1
        assert result.archive_location == "s3://test-bucket"
        assert result.format == "json"
        assert [e.action for e in result.entries] == [AuditAction.CONNECTOR_REGISTERED]
        assert all(e.tenant_id == "t1" for e in result.entries)

    def test_retention_stats(self):
        for i in range(5):
            self.audit.record("t1", AuditAction.CONNECTOR_REGISTERED, AuditResource(type="connector", id=f"c-{i}"), SUCCESS)
        self.clock.advance(days=95)
        stats = self.service.get_retention_stats("t1")
        assert stats.policy.tenant_id == "t1"
        assert stats.current_data_counts["audit_logs"] == 5
        assert stats.estimated_deletion_counts["audit_logs"] == 5
        assert self.audit.count_entries("t1") == 5

    def test_scheduled_cleanup_survives_tenant_errors(self):
        self.service.set_policy("t1", {"metrics": {"raw_data_days": 7}})
        self.service.set_policy("t2", {"metrics": {"raw_data_days": 14}})
        self.audit.record("t2", AuditAction.CONNECTOR_REGISTERED, CONNECTOR, SUCCESS)
        self.clock.advance(days=100)

        with patch.object(self.metrics, "cleanup_old_data", side_effect=[RuntimeError("Cleanup failed"), 0]):
            asyncio.run(self.service.scheduled_cleanup())
        assert self.audit.count_entries("t2") == 0

    def test_scheduled_cleanup_unsilences_alerts(self):
        with patch.object(self.alerts, "unsilence_expired_alerts", return_value=0) as unsilence:
            asyncio.run(self.service.scheduled_cleanup())
        unsilence.assert_called_once()
