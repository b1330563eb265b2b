"""
B2B-INTEGRATIONS — Monitoring: IntegrationMetricsService
In-memory throughput, latency and error metrics per tenant or tenant:connector.

Storage keys:
    {key}:received | :processed | :failed | :retried   → data points (value 1)
    {key}:event:{type}                                  → received, by event type
    {key}:total                                         → request counter
    {key} and {key}:op:{operation}                      → latency samples (ms)
where key = tenant_id or tenant_id:connector_id.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.schemas.monitoring import (
    Aggregation,
    ConnectorErrorStats,
    DashboardKPIs,
    ErrorKPI,
    ErrorMetrics,
    ErrorTypeStats,
    LatencyKPI,
    LatencyMetrics,
    MetricDataPoint,
    OperationLatency,
    ThroughputKPI,
    ThroughputMetrics,
    TimeSeries,
    TimeWindow,
    TopError,
    window_duration,
)

logger = logging.getLogger(__name__)

TREND_THRESHOLD = 10
TOP_ERRORS_LIMIT = 5
MAX_LATENCY_SAMPLES = 1000


def build_key(tenant_id: str, connector_id: Optional[str] = None) -> str:
    return f"{tenant_id}:{connector_id}" if connector_id else tenant_id


def _owned(name: str, tenant_id: Optional[str]) -> bool:
    return tenant_id is None or name == tenant_id or name.startswith(f"{tenant_id}:")


def percentile(sorted_values: list, p: float) -> float:
    """Nearest-rank percentile over an already sorted list."""
    if not sorted_values:
        return 0
    index = math.ceil(p / 100 * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


def std_dev(values: list, mean: float) -> float:
    if not values:
        return 0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def aggregate(values: list, aggregation: str) -> float:
    if aggregation == "avg":
        return sum(values) / len(values)
    if aggregation == "min":
        return min(values)
    if aggregation == "max":
        return max(values)
    if aggregation == "count":
        return len(values)
    if aggregation == "percentile":
        return percentile(sorted(values), 95)
    return sum(values)


class IntegrationMetricsService:
    """
    Usage:
        metrics = IntegrationMetricsService()
        metrics.record_message_received("tenant-1", "quickbooks", "invoice.created")
        metrics.record_message_processed("tenant-1", "quickbooks", latency_ms=120)
        kpis = metrics.get_dashboard_kpis("tenant-1", TimeWindow.ONE_DAY)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._points: dict[str, list[MetricDataPoint]] = {}
        self._latencies: dict[str, list[float]] = {}
        self._errors: dict[str, list[dict]] = {}
        self._requests: dict[str, int] = {}

    # ═════════════════════════════════════════════════════════
    # RECORDING
    # ═════════════════════════════════════════════════════════

    def record_message_received(
        self,
        tenant_id: str,
        connector_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> None:
        key = build_key(tenant_id, connector_id)
        now = self.clock()
        self._add_point(f"{key}:received", now)
        if event_type:
            self._add_point(f"{key}:event:{event_type}", now)
        self._requests[f"{key}:total"] = self._requests.get(f"{key}:total", 0) + 1
        logger.debug(f"Recorded message received for tenant {tenant_id}")

    def record_message_processed(
        self,
        tenant_id: str,
        connector_id: Optional[str] = None,
        latency_ms: Optional[float] = None,
    ) -> None:
        key = build_key(tenant_id, connector_id)
        self._add_point(f"{key}:processed", self.clock())
        if latency_ms is not None:
            self._add_latency(key, latency_ms)
        logger.debug(f"Recorded message processed for tenant {tenant_id}")

    def record_message_failed(
        self,
        tenant_id: str,
        error_type: str,
        connector_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        key = build_key(tenant_id, connector_id)
        now = self.clock()
        self._add_point(f"{key}:failed", now)
        self._errors.setdefault(key, []).append({"type": error_type, "timestamp": now, "message": error_message})
        logger.debug(f"Recorded message failure for tenant {tenant_id}: {error_type}")

    def record_message_retried(self, tenant_id: str, connector_id: Optional[str] = None) -> None:
        key = build_key(tenant_id, connector_id)
        self._add_point(f"{key}:retried", self.clock())
        logger.debug(f"Recorded message retry for tenant {tenant_id}")

    def record_latency(
        self,
        tenant_id: str,
        operation: str,
        latency_ms: float,
        connector_id: Optional[str] = None,
    ) -> None:
        key = build_key(tenant_id, connector_id)
        self._add_latency(f"{key}:op:{operation}", latency_ms)
        self._add_latency(key, latency_ms)
        logger.debug(f"Recorded latency {latency_ms}ms for operation {operation}")

    # ═════════════════════════════════════════════════════════
    # THROUGHPUT
    # ═════════════════════════════════════════════════════════

    def get_throughput_metrics(
        self,
        tenant_id: str,
        period: TimeWindow,
        connector_id: Optional[str] = None,
    ) -> ThroughputMetrics:
        key = build_key(tenant_id, connector_id)
        window = window_duration(period)
        cutoff = self.clock() - window

        received = self._count_since(f"{key}:received", cutoff)
        processed = self._count_since(f"{key}:processed", cutoff)
        failed = self._count_since(f"{key}:failed", cutoff)
        retried = self._count_since(f"{key}:retried", cutoff)
        window_minutes = window.total_seconds() / 60

        event_prefix = f"{key}:event:"
        by_event_type = {
            name[len(event_prefix):]: self._count_since(name, cutoff)
            for name in self._points if name.startswith(event_prefix)
        }

        by_connector = {}
        if not connector_id:
            for name in self._points:
                parts = name.split(":")
                if name.startswith(f"{tenant_id}:") and name.endswith(":received") and len(parts) > 2:
                    by_connector[parts[1]] = self._count_since(name, cutoff)

        return ThroughputMetrics(
            tenant_id=tenant_id,
            connector_id=connector_id,
            period=period,
            timestamp=self.clock(),
            messages_received=received,
            messages_processed=processed,
            messages_failed=failed,
            messages_retried=retried,
            receive_rate=received / window_minutes,
            process_rate=processed / window_minutes,
            failure_rate=(failed / received * 100) if received else 0,
            by_event_type=by_event_type,
            by_connector=by_connector,
        )

    # ═════════════════════════════════════════════════════════
    # LATENCY
    # ═════════════════════════════════════════════════════════

    def get_latency_metrics(
        self,
        tenant_id: str,
        period: TimeWindow,
        connector_id: Optional[str] = None,
    ) -> LatencyMetrics:
        """Latency samples carry no timestamp, so every stored sample counts regardless of period."""
        key = build_key(tenant_id, connector_id)
        samples = sorted(self._latencies.get(key) or [])
        count = len(samples)
        avg = sum(samples) / count if count else 0

        op_prefix = f"{key}:op:"
        by_operation = {}
        for name, values in self._latencies.items():
            if not name.startswith(op_prefix):
                continue
            op_samples = sorted(values)
            by_operation[name[len(op_prefix):]] = OperationLatency(
                p50=percentile(op_samples, 50),
                p95=percentile(op_samples, 95),
                p99=percentile(op_samples, 99),
                avg=sum(op_samples) / len(op_samples) if op_samples else 0,
                count=len(op_samples),
            )

        return LatencyMetrics(
            tenant_id=tenant_id,
            connector_id=connector_id,
            period=period,
            timestamp=self.clock(),
            p50=percentile(samples, 50),
            p95=percentile(samples, 95),
            p99=percentile(samples, 99),
            avg=avg,
            min=samples[0] if samples else 0,
            max=samples[-1] if samples else 0,
            std_dev=std_dev(samples, avg),
            sample_count=count,
            by_operation=by_operation,
        )

    # ═════════════════════════════════════════════════════════
    # ERRORS
    # ═════════════════════════════════════════════════════════

    def get_error_metrics(
        self,
        tenant_id: str,
        period: TimeWindow,
        connector_id: Optional[str] = None,
    ) -> ErrorMetrics:
        key = build_key(tenant_id, connector_id)
        window = window_duration(period)
        now = self.clock()
        cutoff = now - window

        errors = [e for e in self._errors.get(key) or [] if e["timestamp"] >= cutoff]
        total_requests = self._requests.get(f"{key}:total", 0)

        by_error_type: dict[str, ErrorTypeStats] = {}
        for error in errors:
            stats = by_error_type.get(error["type"])
            if stats is None:
                stats = ErrorTypeStats(last_occurred=error["timestamp"], sample=error["message"])
                by_error_type[error["type"]] = stats
            stats.count += 1
            if error["timestamp"] > stats.last_occurred:
                stats.last_occurred = error["timestamp"]
                if error["message"]:
                    stats.sample = error["message"]

        by_connector: dict[str, ConnectorErrorStats] = {}
        if not connector_id:
            for name, connector_errors in self._errors.items():
                if not name.startswith(f"{tenant_id}:"):
                    continue
                cid = name.split(":")[1]
                total = self._requests.get(f"{tenant_id}:{cid}:total", 0)
                count = sum(1 for e in connector_errors if e["timestamp"] >= cutoff)
                by_connector[cid] = ConnectorErrorStats(
                    errors=count,
                    total=total,
                    rate=(count / total * 100) if total else 0,
                )

        midpoint = now - window / 2
        recent = sum(1 for e in errors if e["timestamp"] >= midpoint)
        older = len(errors) - recent
        trend, trend_percentage = "stable", 0.0
        if older > 0:
            trend_percentage = (recent - older) / older * 100
            if trend_percentage > TREND_THRESHOLD:
                trend = "increasing"
            elif trend_percentage < -TREND_THRESHOLD:
                trend = "decreasing"
        elif recent > 0:
            trend, trend_percentage = "increasing", 100.0

        return ErrorMetrics(
            tenant_id=tenant_id,
            connector_id=connector_id,
            period=period,
            timestamp=now,
            total_errors=len(errors),
            total_requests=total_requests,
            error_rate=(len(errors) / total_requests * 100) if total_requests else 0,
            by_error_type=by_error_type,
            by_connector=by_connector,
            trend=trend,
            trend_percentage=trend_percentage,
        )

    # ═════════════════════════════════════════════════════════
    # TIME SERIES / DASHBOARD
    # ═════════════════════════════════════════════════════════

    def get_time_series(
        self,
        tenant_id: str,
        metric: str,
        period: TimeWindow,
        connector_id: Optional[str] = None,
        aggregation: Aggregation = "avg",
        interval_seconds: int = 60,
    ) -> TimeSeries:
        key = build_key(tenant_id, connector_id)
        cutoff = self.clock() - window_duration(period)

        buckets: dict[float, list[float]] = {}
        for point in self._points.get(f"{key}:{metric}") or []:
            if point.timestamp < cutoff:
                continue
            bucket = math.floor(point.timestamp.timestamp() / interval_seconds) * interval_seconds
            buckets.setdefault(bucket, []).append(point.value)

        data_points = [
            MetricDataPoint(
                timestamp=datetime.fromtimestamp(bucket, tz=timezone.utc),
                value=aggregate(values, aggregation),
            )
            for bucket, values in sorted(buckets.items())
        ]
        return TimeSeries(
            metric=metric,
            tenant_id=tenant_id,
            connector_id=connector_id,
            period=period,
            data_points=data_points,
            aggregation=aggregation,
        )

    def get_dashboard_kpis(
        self,
        tenant_id: str,
        period: TimeWindow = TimeWindow.ONE_DAY,
        connector_id: Optional[str] = None,
    ) -> DashboardKPIs:
        """Health and alert sections are left zeroed; callers fill them from their own services."""
        throughput = self.get_throughput_metrics(tenant_id, period, connector_id)
        latency = self.get_latency_metrics(tenant_id, period, connector_id)
        errors = self.get_error_metrics(tenant_id, period, connector_id)

        top_errors = sorted(
            (
                TopError(error_type=name, count=stats.count, last_occurred=stats.last_occurred)
                for name, stats in errors.by_error_type.items()
            ),
            key=lambda e: e.count,
            reverse=True,
        )[:TOP_ERRORS_LIMIT]

        return DashboardKPIs(
            tenant_id=tenant_id,
            period=period,
            generated_at=self.clock(),
            messages_throughput=ThroughputKPI(
                total=throughput.messages_received,
                successful=throughput.messages_processed,
                failed=throughput.messages_failed,
                rate=throughput.receive_rate,
            ),
            error_metrics=ErrorKPI(
                total_errors=errors.total_errors,
                error_rate=errors.error_rate,
                errors_by_type={name: stats.count for name, stats in errors.by_error_type.items()},
                top_errors=top_errors,
            ),
            latency_metrics=LatencyKPI(
                p50=latency.p50,
                p95=latency.p95,
                p99=latency.p99,
                avg=latency.avg,
                min=latency.min,
                max=latency.max,
            ),
        )

    # ═════════════════════════════════════════════════════════
    # MAINTENANCE
    # ═════════════════════════════════════════════════════════

    def count_data_points(self, tenant_id: Optional[str] = None) -> int:
        points = sum(len(v) for k, v in self._points.items() if _owned(k, tenant_id))
        errors = sum(len(v) for k, v in self._errors.items() if _owned(k, tenant_id))
        return points + errors

    def cleanup_old_data(
        self,
        retention_days: int,
        tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> int:
        """Drop data points and errors older than retention_days. dry_run only counts them."""
        cutoff = self.clock() - timedelta(days=retention_days)
        cleaned = 0

        for name, points in self._points.items():
            if not _owned(name, tenant_id):
                continue
            kept = [p for p in points if p.timestamp >= cutoff]
            cleaned += len(points) - len(kept)
            if not dry_run:
                self._points[name] = kept

        for name, errors in self._errors.items():
            if not _owned(name, tenant_id):
                continue
            kept = [e for e in errors if e["timestamp"] >= cutoff]
            cleaned += len(errors) - len(kept)
            if not dry_run:
                self._errors[name] = kept

        if not dry_run:
            # Request counters go with the last received point of their key
            for name in [n for n in self._requests if _owned(n, tenant_id)]:
                if not self._points.get(f"{name.removesuffix(':total')}:received"):
                    del self._requests[name]
            logger.info(f"Cleaned up {cleaned} old metric data points")
        return cleaned

    def _add_latency(self, name: str, latency_ms: float) -> None:
        samples = self._latencies.setdefault(name, [])
        samples.append(latency_ms)
        if len(samples) > MAX_LATENCY_SAMPLES:
            del samples[: len(samples) - MAX_LATENCY_SAMPLES]

    def _add_point(self, name: str, timestamp: datetime) -> None:
        self._points.setdefault(name, []).append(MetricDataPoint(timestamp=timestamp, value=1))

    def _count_since(self, name: str, cutoff: datetime) -> int:
        return sum(1 for p in self._points.get(name) or [] if p.timestamp >= cutoff)


# Singleton instance
integration_metrics_service = IntegrationMetricsService()
