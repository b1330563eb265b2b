"""
B2B-INTEGRATIONS — Monitoring: AlertConfigService
Alert thresholds per tenant and the alerts they raise.

Flow:
1. create_threshold() registers metric + operator + value (+ optional connector / event type scope)
2. evaluate_metrics() compares a metrics snapshot against every enabled threshold
3. Condition met and outside cooldown → new ACTIVE alert
4. Condition not met → ACTIVE alerts of that threshold are resolved by "system"
5. Operators acknowledge / resolve / silence alerts; expired silences go back to ACTIVE
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.schemas.monitoring import (
    Alert,
    AlertSeverity,
    AlertStatus,
    AlertSummary,
    AlertThreshold,
    AlertThresholdInput,
)

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MINUTES = 15

OPERATORS = {
    "gt": lambda value, limit: value > limit,
    "gte": lambda value, limit: value >= limit,
    "lt": lambda value, limit: value < limit,
    "lte": lambda value, limit: value <= limit,
    "eq": lambda value, limit: value == limit,
    "ne": lambda value, limit: value != limit,
}

OPERATOR_TEXT = {
    "gt": "exceeded",
    "gte": "reached or exceeded",
    "lt": "dropped below",
    "lte": "reached or dropped below",
    "eq": "equals",
    "ne": "changed from",
}

# Fields a threshold update may not touch
IMMUTABLE_FIELDS = {"id", "tenant_id", "created_at", "updated_at", "created_by"}


class AlertNotFoundError(Exception):
    def __init__(self, message: str, status_code: int = 404):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def evaluate_condition(value: float, operator: str, limit: float) -> bool:
    check = OPERATORS.get(operator)
    return check(value, limit) if check else False


def _number(value: float):
    return int(value) if float(value).is_integer() else value


def build_alert_message(threshold: AlertThreshold, actual_value: float) -> str:
    return (
        f"{threshold.name}: {threshold.metric} {OPERATOR_TEXT[threshold.operator]} threshold. "
        f"Current: {_number(actual_value)}, Threshold: {_number(threshold.value)}"
    )


class AlertConfigService:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._thresholds: dict[str, AlertThreshold] = {}
        self._alerts: dict[str, Alert] = {}
        self._last_alert_times: dict[str, datetime] = {}

    # ═════════════════════════════════════════════════════════
    # THRESHOLDS
    # ═════════════════════════════════════════════════════════

    def create_threshold(self, tenant_id: str, created_by: str, data: AlertThresholdInput) -> AlertThreshold:
        now = self.clock()
        threshold = AlertThreshold(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=data.name,
            description=data.description,
            metric=data.metric,
            operator=data.operator,
            value=data.value,
            duration=data.duration or 0,
            connector_id=data.connector_id,
            event_type=data.event_type,
            severity=data.severity,
            cooldown_minutes=data.cooldown_minutes or DEFAULT_COOLDOWN_MINUTES,
            notification_channels=list(data.notification_channels),
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        self._thresholds[threshold.id] = threshold
        logger.info(f"Created alert threshold: {threshold.name}")
        return threshold

    def update_threshold(self, tenant_id: str, threshold_id: str, **changes) -> AlertThreshold:
        threshold = self._owned_threshold(tenant_id, threshold_id)
        updates = {k: v for k, v in changes.items() if k not in IMMUTABLE_FIELDS}
        updates["updated_at"] = self.clock()
        updated = threshold.model_copy(update=updates)
        self._thresholds[threshold_id] = updated
        logger.info(f"Updated alert threshold: {updated.name}")
        return updated

    def delete_threshold(self, tenant_id: str, threshold_id: str) -> None:
        threshold = self._owned_threshold(tenant_id, threshold_id)
        del self._thresholds[threshold_id]
        logger.info(f"Deleted alert threshold: {threshold.name}")

    def get_threshold(self, tenant_id: str, threshold_id: str) -> Optional[AlertThreshold]:
        threshold = self._thresholds.get(threshold_id)
        if not threshold or threshold.tenant_id != tenant_id:
            return None
        return threshold

    def list_thresholds(
        self,
        tenant_id: str,
        connector_id: Optional[str] = None,
        enabled: Optional[bool] = None,
        severity: Optional[AlertSeverity] = None,
    ) -> list[AlertThreshold]:
        return [
            t for t in self._thresholds.values()
            if t.tenant_id == tenant_id
            and (not connector_id or t.connector_id == connector_id)
            and (enabled is None or t.enabled == enabled)
            and (not severity or t.severity == severity)
        ]

    def set_threshold_enabled(self, tenant_id: str, threshold_id: str, enabled: bool) -> AlertThreshold:
        return self.update_threshold(tenant_id, threshold_id, enabled=enabled)

    # ═════════════════════════════════════════════════════════
    # EVALUATION
    # ═════════════════════════════════════════════════════════

    def evaluate_metrics(
        self,
        tenant_id: str,
        metrics: dict[str, float],
        connector_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> list[Alert]:
        """
        Evaluate a snapshot of metric values against the tenant's enabled thresholds.

        Thresholds scoped to a connector or event type only apply when the
        context matches. Returns the alerts triggered by this evaluation.
        """
        triggered = []
        for threshold in self.list_thresholds(tenant_id, enabled=True):
            if threshold.connector_id and threshold.connector_id != connector_id:
                continue
            if threshold.event_type and threshold.event_type != event_type:
                continue
            value = metrics.get(threshold.metric)
            if value is None:
                continue

            if not evaluate_condition(value, threshold.operator, threshold.value):
                self._auto_resolve(threshold.id, connector_id)
                continue

            cooldown_key = f"{threshold.id}:{connector_id or 'global'}"
            last_alert = self._last_alert_times.get(cooldown_key)
            now = self.clock()
            if last_alert and now - last_alert < timedelta(minutes=threshold.cooldown_minutes):
                continue

            triggered.append(self.trigger_alert(threshold, value, connector_id, event_type))
            self._last_alert_times[cooldown_key] = now

        return triggered

    def trigger_alert(
        self,
        threshold: AlertThreshold,
        actual_value: float,
        connector_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> Alert:
        alert = Alert(
            id=str(uuid.uuid4()),
            threshold_id=threshold.id,
            tenant_id=threshold.tenant_id,
            severity=threshold.severity,
            metric=threshold.metric,
            actual_value=actual_value,
            threshold_value=threshold.value,
            message=build_alert_message(threshold, actual_value),
            connector_id=connector_id or threshold.connector_id,
            event_type=event_type or threshold.event_type,
            triggered_at=self.clock(),
        )
        self._alerts[alert.id] = alert
        logger.warning(f"Alert triggered: {alert.message}")
        return alert

    def _auto_resolve(self, threshold_id: str, connector_id: Optional[str]) -> None:
        for alert in self._alerts.values():
            if (
                alert.threshold_id == threshold_id
                and alert.status == AlertStatus.ACTIVE
                and (not connector_id or alert.connector_id == connector_id)
            ):
                alert.status = AlertStatus.RESOLVED
                alert.resolved_at = self.clock()
                alert.resolved_by = "system"
                logger.info(f"Alert {alert.id} auto-resolved")

    # ═════════════════════════════════════════════════════════
    # ALERTS
    # ═════════════════════════════════════════════════════════

    def get_alert(self, tenant_id: str, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        if not alert or alert.tenant_id != tenant_id:
            return None
        return alert

    def list_alerts(
        self,
        tenant_id: str,
        status: Optional[AlertStatus] = None,
        severity: Optional[AlertSeverity] = None,
        connector_id: Optional[str] = None,
        threshold_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> tuple[list[Alert], int]:
        results = [
            a for a in self._alerts.values()
            if a.tenant_id == tenant_id
            and (not status or a.status == status)
            and (not severity or a.severity == severity)
            and (not connector_id or a.connector_id == connector_id)
            and (not threshold_id or a.threshold_id == threshold_id)
            and (not start_time or a.triggered_at >= start_time)
            and (not end_time or a.triggered_at <= end_time)
        ]
        results.sort(key=lambda a: a.triggered_at, reverse=True)
        total = len(results)
        if offset:
            results = results[offset:]
        if limit:
            results = results[:limit]
        return results, total

    def get_alert_summary(self, tenant_id: str) -> AlertSummary:
        active, total = self.list_alerts(tenant_id, status=AlertStatus.ACTIVE)
        summary = AlertSummary(total=total)
        for alert in active:
            field = alert.severity.value
            setattr(summary, field, getattr(summary, field) + 1)
        return summary

    def acknowledge_alert(self, tenant_id: str, alert_id: str, acknowledged_by: str) -> Alert:
        alert = self._owned_alert(tenant_id, alert_id)
        alert.status = AlertStatus.ACKNOWLEDGED
        alert.acknowledged_at = self.clock()
        alert.acknowledged_by = acknowledged_by
        logger.info(f"Alert {alert_id} acknowledged by {acknowledged_by}")
        return alert

    def resolve_alert(self, tenant_id: str, alert_id: str, resolved_by: str) -> Alert:
        alert = self._owned_alert(tenant_id, alert_id)
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = self.clock()
        alert.resolved_by = resolved_by
        logger.info(f"Alert {alert_id} resolved by {resolved_by}")
        return alert

    def silence_alert(self, tenant_id: str, alert_id: str, duration_minutes: int) -> Alert:
        alert = self._owned_alert(tenant_id, alert_id)
        alert.status = AlertStatus.SILENCED
        alert.silenced_until = self.clock() + timedelta(minutes=duration_minutes)
        logger.info(f"Alert {alert_id} silenced for {duration_minutes} minutes")
        return alert

    # ═════════════════════════════════════════════════════════
    # MAINTENANCE
    # ═════════════════════════════════════════════════════════

    def count_alerts(self, tenant_id: Optional[str] = None) -> int:
        return sum(1 for a in self._alerts.values() if tenant_id is None or a.tenant_id == tenant_id)

    def cleanup_old_alerts(
        self,
        retention_days: int,
        tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> int:
        """Drops resolved and silenced alerts triggered before the retention cutoff."""
        cutoff = self.clock() - timedelta(days=retention_days)
        expired = [
            alert_id for alert_id, alert in self._alerts.items()
            if alert.status in (AlertStatus.RESOLVED, AlertStatus.SILENCED)
            and alert.triggered_at < cutoff
            and (tenant_id is None or alert.tenant_id == tenant_id)
        ]
        if dry_run:
            return len(expired)
        for alert_id in expired:
            del self._alerts[alert_id]
        logger.info(f"Cleaned up {len(expired)} old alerts")
        return len(expired)

    def unsilence_expired_alerts(self) -> int:
        now = self.clock()
        unsilenced = 0
        for alert in self._alerts.values():
            if alert.status == AlertStatus.SILENCED and alert.silenced_until and alert.silenced_until <= now:
                alert.status = AlertStatus.ACTIVE
                alert.silenced_until = None
                unsilenced += 1
        if unsilenced:
            logger.info(f"Unsilenced {unsilenced} alerts")
        return unsilenced

    def _owned_threshold(self, tenant_id: str, threshold_id: str) -> AlertThreshold:
        threshold = self.get_threshold(tenant_id, threshold_id)
        if threshold is None:
            raise AlertNotFoundError(f"Threshold {threshold_id} not found")
        return threshold

    def _owned_alert(self, tenant_id: str, alert_id: str) -> Alert:
        alert = self.get_alert(tenant_id, alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert {alert_id} not found")
        return alert


# Singleton instance
alert_config_service = AlertConfigService()
