"""
B2B-INTEGRATIONS Monitoring Schemas
Health, metrics, alerting, audit and retention models for the integration hub.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class TimeWindow(str, Enum):
    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    ONE_HOUR = "1h"
    SIX_HOURS = "6h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"


WINDOW_DURATIONS = {
    TimeWindow.ONE_MINUTE: timedelta(minutes=1),
    TimeWindow.FIVE_MINUTES: timedelta(minutes=5),
    TimeWindow.FIFTEEN_MINUTES: timedelta(minutes=15),
    TimeWindow.ONE_HOUR: timedelta(hours=1),
    TimeWindow.SIX_HOURS: timedelta(hours=6),
    TimeWindow.ONE_DAY: timedelta(hours=24),
    TimeWindow.SEVEN_DAYS: timedelta(days=7),
    TimeWindow.THIRTY_DAYS: timedelta(days=30),
}


def window_duration(period: TimeWindow) -> timedelta:
    return WINDOW_DURATIONS[TimeWindow(period)]


class MetricType(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


class ConnectorHealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SILENCED = "silenced"


class AuditAction(str, Enum):
    CONNECTOR_REGISTERED = "connector.registered"
    CONNECTOR_UPDATED = "connector.updated"
    CONNECTOR_DELETED = "connector.deleted"
    CONNECTOR_ENABLED = "connector.enabled"
    CONNECTOR_DISABLED = "connector.disabled"
    CONNECTOR_TESTED = "connector.tested"
    CONFIG_CREATED = "config.created"
    CONFIG_UPDATED = "config.updated"
    CONFIG_DELETED = "config.deleted"
    CREDENTIAL_CREATED = "credential.created"
    CREDENTIAL_UPDATED = "credential.updated"
    CREDENTIAL_DELETED = "credential.deleted"
    CREDENTIAL_ROTATED = "credential.rotated"
    EVENT_PUBLISHED = "event.published"
    EVENT_DELIVERED = "event.delivered"
    EVENT_FAILED = "event.failed"
    EVENT_REPLAYED = "event.replayed"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_DELETED = "subscription.deleted"
    WEBHOOK_DELIVERED = "webhook.delivered"
    WEBHOOK_FAILED = "webhook.failed"
    WEBHOOK_RETRIED = "webhook.retried"
    ALERT_TRIGGERED = "alert.triggered"
    ALERT_ACKNOWLEDGED = "alert.acknowledged"
    ALERT_RESOLVED = "alert.resolved"
    REST_REQUEST_SENT = "rest.request.sent"
    REST_RESPONSE_RECEIVED = "rest.response.received"
    REST_REQUEST_FAILED = "rest.request.failed"


# ─────────────────────────────────────────────────────────────
# CONNECTOR HEALTH
# ─────────────────────────────────────────────────────────────

class Connectivity(BaseModel):
    reachable: bool
    latency: Optional[float] = None
    last_successful_connection: Optional[datetime] = None


class AuthenticationState(BaseModel):
    valid: bool = True
    expires_at: Optional[datetime] = None
    last_refreshed: Optional[datetime] = None


class RateLimitState(BaseModel):
    remaining: int
    limit: int
    resets_at: datetime


class RecentError(BaseModel):
    error: str
    timestamp: datetime
    count: int = 1


class Uptime(BaseModel):
    percentage: float = 100
    period: TimeWindow = TimeWindow.ONE_DAY
    downtime_minutes: int = 0


class ConnectorHealthCheck(BaseModel):
    connector_id: str
    tenant_id: str
    status: ConnectorHealthStatus
    checked_at: datetime
    response_time: Optional[float] = None
    connectivity: Connectivity
    authentication: AuthenticationState
    rate_limits: Optional[RateLimitState] = None
    recent_errors: list[RecentError] = Field(default_factory=list)
    uptime: Uptime = Field(default_factory=Uptime)
    details: dict[str, Any] = Field(default_factory=dict)


class HealthCheckResult(BaseModel):
    """Outcome of a single probe, as reported by the caller."""
    success: bool
    response_time: Optional[float] = None
    error: Optional[str] = None
    rate_limits: Optional[RateLimitState] = None
    auth_valid: Optional[bool] = None
    auth_expires_at: Optional[datetime] = None


class CustomCheck(BaseModel):
    name: str
    type: Literal["http", "tcp", "custom"]
    config: dict[str, Any] = Field(default_factory=dict)


class HealthCheckConfig(BaseModel):
    connector_id: str
    tenant_id: str
    enabled: bool = True
    interval_seconds: int = 60
    timeout_seconds: int = 10
    unhealthy_threshold: int = 3
    healthy_threshold: int = 2
    custom_checks: Optional[list[CustomCheck]] = None


class HealthSummary(BaseModel):
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    unhealthy: int = 0
    unknown: int = 0


# ─────────────────────────────────────────────────────────────
# METRICS
# ─────────────────────────────────────────────────────────────

class MetricDataPoint(BaseModel):
    timestamp: datetime
    value: float
    labels: dict[str, str] = Field(default_factory=dict)


Aggregation = Literal["sum", "avg", "min", "max", "count", "percentile"]


class TimeSeries(BaseModel):
    metric: str
    tenant_id: str
    connector_id: Optional[str] = None
    period: TimeWindow
    data_points: list[MetricDataPoint] = Field(default_factory=list)
    aggregation: Aggregation = "avg"


class ThroughputMetrics(BaseModel):
    tenant_id: str
    connector_id: Optional[str] = None
    period: TimeWindow
    timestamp: datetime
    messages_received: int = 0
    messages_processed: int = 0
    messages_failed: int = 0
    messages_retried: int = 0
    receive_rate: float = 0
    process_rate: float = 0
    failure_rate: float = 0
    by_event_type: dict[str, int] = Field(default_factory=dict)
    by_connector: dict[str, int] = Field(default_factory=dict)


class OperationLatency(BaseModel):
    p50: float = 0
    p95: float = 0
    p99: float = 0
    avg: float = 0
    count: int = 0


class LatencyMetrics(BaseModel):
    tenant_id: str
    connector_id: Optional[str] = None
    period: TimeWindow
    timestamp: datetime
    p50: float = 0
    p95: float = 0
    p99: float = 0
    avg: float = 0
    min: float = 0
    max: float = 0
    std_dev: float = 0
    sample_count: int = 0
    by_operation: dict[str, OperationLatency] = Field(default_factory=dict)


class ErrorTypeStats(BaseModel):
    count: int = 0
    last_occurred: datetime
    sample: Optional[str] = None


class ConnectorErrorStats(BaseModel):
    errors: int = 0
    total: int = 0
    rate: float = 0


class ErrorMetrics(BaseModel):
    tenant_id: str
    connector_id: Optional[str] = None
    period: TimeWindow
    timestamp: datetime
    total_errors: int = 0
    total_requests: int = 0
    error_rate: float = 0
    by_error_type: dict[str, ErrorTypeStats] = Field(default_factory=dict)
    by_connector: dict[str, ConnectorErrorStats] = Field(default_factory=dict)
    trend: Literal["increasing", "stable", "decreasing"] = "stable"
    trend_percentage: float = 0


class ThroughputKPI(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    rate: float = 0


class TopError(BaseModel):
    error_type: str
    count: int
    last_occurred: datetime


class ErrorKPI(BaseModel):
    total_errors: int = 0
    error_rate: float = 0
    errors_by_type: dict[str, int] = Field(default_factory=dict)
    top_errors: list[TopError] = Field(default_factory=list)


class LatencyKPI(BaseModel):
    p50: float = 0
    p95: float = 0
    p99: float = 0
    avg: float = 0
    min: float = 0
    max: float = 0


class AlertSummary(BaseModel):
    total: int = 0
    critical: int = 0
    error: int = 0
    warning: int = 0
    info: int = 0


class DashboardKPIs(BaseModel):
    tenant_id: str
    period: TimeWindow
    generated_at: datetime
    messages_throughput: ThroughputKPI
    error_metrics: ErrorKPI
    latency_metrics: LatencyKPI
    connector_health: HealthSummary = Field(default_factory=HealthSummary)
    alerts: AlertSummary = Field(default_factory=AlertSummary)


# ─────────────────────────────────────────────────────────────
# ALERTS
# ─────────────────────────────────────────────────────────────

ThresholdOperator = Literal["gt", "gte", "lt", "lte", "eq", "ne"]


class AlertThresholdInput(BaseModel):
    name: str
    description: Optional[str] = None
    metric: str
    operator: ThresholdOperator
    value: float
    duration: Optional[int] = None
    connector_id: Optional[str] = None
    event_type: Optional[str] = None
    severity: AlertSeverity
    cooldown_minutes: Optional[int] = None
    notification_channels: list[str] = Field(default_factory=list)


class AlertThreshold(BaseModel):
    id: str
    tenant_id: str
    name: str
    description: Optional[str] = None
    enabled: bool = True
    metric: str
    operator: ThresholdOperator
    value: float
    duration: int = 0
    connector_id: Optional[str] = None
    event_type: Optional[str] = None
    severity: AlertSeverity
    cooldown_minutes: int = 15
    notification_channels: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    created_by: str


class Alert(BaseModel):
    id: str
    threshold_id: str
    tenant_id: str
    severity: AlertSeverity
    status: AlertStatus = AlertStatus.ACTIVE
    metric: str
    actual_value: float
    threshold_value: float
    message: str
    connector_id: Optional[str] = None
    event_type: Optional[str] = None
    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    silenced_until: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_by: Optional[str] = None
    context: dict[str, Any] = Field(default_factory=dict)


# ─────────────────────────────────────────────────────────────
# AUDIT
# ─────────────────────────────────────────────────────────────

class AuditActor(BaseModel):
    type: Literal["user", "system", "api", "scheduler"] = "system"
    id: Optional[str] = None
    name: Optional[str] = None
    ip: Optional[str] = None


class AuditResource(BaseModel):
    type: str
    id: str
    name: Optional[str] = None


class AuditChanges(BaseModel):
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None


class AuditRequest(BaseModel):
    method: str
    path: str
    user_agent: Optional[str] = None
    correlation_id: Optional[str] = None


class AuditResult(BaseModel):
    success: bool
    error: Optional[str] = None
    duration: Optional[float] = None


class AuditRequestContext(BaseModel):
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    correlation_id: Optional[str] = None


class AuditLogEntry(BaseModel):
    id: str
    tenant_id: str
    action: AuditAction
    timestamp: datetime
    actor: AuditActor = Field(default_factory=AuditActor)
    resource: AuditResource
    changes: Optional[AuditChanges] = None
    request: Optional[AuditRequest] = None
    result: AuditResult
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditStatistics(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    by_action: dict[str, int] = Field(default_factory=dict)
    by_resource_type: dict[str, int] = Field(default_factory=dict)
    by_actor: dict[str, int] = Field(default_factory=dict)


# ─────────────────────────────────────────────────────────────
# RETENTION
# ─────────────────────────────────────────────────────────────

class MetricsRetention(BaseModel):
    raw_data_days: int = 7
    aggregated_data_days: int = 30
    summary_data_days: int = 365


class AuditLogRetention(BaseModel):
    default_days: int = 90
    by_action: dict[str, int] = Field(default_factory=dict)


class AlertRetention(BaseModel):
    active_days: int = 30
    resolved_days: int = 7


class ArchiveSettings(BaseModel):
    enabled: bool = False
    destination: Optional[str] = None
    format: Optional[Literal["json", "parquet", "csv"]] = None


class RetentionPolicy(BaseModel):
    tenant_id: str
    metrics: MetricsRetention = Field(default_factory=MetricsRetention)
    audit_logs: AuditLogRetention = Field(default_factory=AuditLogRetention)
    alerts: AlertRetention = Field(default_factory=AlertRetention)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)


class CleanupResult(BaseModel):
    metrics_deleted: int = 0
    health_history_deleted: int = 0
    alerts_deleted: int = 0
    audit_logs_deleted: int = 0


class ArchiveResult(BaseModel):
    audit_logs_archived: int = 0
    alerts_archived: int = 0
    archive_location: Optional[str] = None
    format: Optional[str] = None
    entries: list[AuditLogEntry] = Field(default_factory=list)


class RetentionStats(BaseModel):
    policy: RetentionPolicy
    current_data_counts: dict[str, int] = Field(default_factory=dict)
    estimated_deletion_counts: dict[str, int] = Field(default_factory=dict)
