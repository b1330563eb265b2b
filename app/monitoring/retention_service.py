"""
B2B-INTEGRATIONS — Monitoring: LogRetentionService
Per-tenant retention policies applied to metrics, health history, alerts and audit logs.

Flow:
1. set_policy(tenant, partial) deep-merges over the current (or default) policy
2. run_cleanup(tenant) deletes everything older than the policy allows
3. archive_data(tenant, start, end) exports audit logs when archiving is enabled
4. scheduled_cleanup() runs step 2 for every tenant with a policy, then unsilences expired alerts
"""

import logging
from datetime import datetime
from typing import Optional

from app.monitoring.alert_service import AlertConfigService, alert_config_service
from app.monitoring.audit_log_service import AuditLogService, audit_log_service
from app.monitoring.health_service import ConnectorHealthService, connector_health_service
from app.monitoring.metrics_service import IntegrationMetricsService, integration_metrics_service
from app.schemas.monitoring import (
    ArchiveResult,
    AuditAction,
    AuditLogRetention,
    CleanupResult,
    RetentionPolicy,
    RetentionStats,
)

logger = logging.getLogger(__name__)

CREDENTIAL_RETENTION_DAYS = 365

# (section, field, min, max)
POLICY_LIMITS = [
    ("metrics", "raw_data_days", 1, 365),
    ("metrics", "aggregated_data_days", 1, 730),
    ("metrics", "summary_data_days", 1, 1825),
    ("audit_logs", "default_days", 1, 730),
    ("alerts", "active_days", 1, 365),
    ("alerts", "resolved_days", 1, 90),
]


def default_policy(tenant_id: str) -> RetentionPolicy:
    by_action = {
        action.value: CREDENTIAL_RETENTION_DAYS
        for action in (
            AuditAction.CREDENTIAL_CREATED,
            AuditAction.CREDENTIAL_UPDATED,
            AuditAction.CREDENTIAL_DELETED,
            AuditAction.CREDENTIAL_ROTATED,
        )
    }
    return RetentionPolicy(tenant_id=tenant_id, audit_logs=AuditLogRetention(by_action=by_action))


def deep_merge(base: dict, updates: dict) -> dict:
    merged = dict(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_policy(policy: dict) -> list[str]:
    """Range checks on a (partial) policy dict. Returns one message per invalid field."""
    errors = []
    for section, field, low, high in POLICY_LIMITS:
        value = (policy.get(section) or {}).get(field)
        if value is None:
            continue
        if not low <= value <= high:
            errors.append(f"{section}.{field} must be between {low} and {high} days")
    return errors


class LogRetentionService:
    """
    Usage:
        retention = LogRetentionService()
        retention.set_policy("tenant-1", {"metrics": {"raw_data_days": 14}})
        result = await retention.run_cleanup("tenant-1")
    """

    def __init__(
        self,
        metrics: Optional[IntegrationMetricsService] = None,
        health: Optional[ConnectorHealthService] = None,
        alerts: Optional[AlertConfigService] = None,
        audit: Optional[AuditLogService] = None,
    ):
        self.metrics = metrics or integration_metrics_service
        self.health = health or connector_health_service
        self.alerts = alerts or alert_config_service
        self.audit = audit or audit_log_service
        self._policies: dict[str, RetentionPolicy] = {}

    # ═════════════════════════════════════════════════════════
    # POLICIES
    # ═════════════════════════════════════════════════════════

    def set_policy(self, tenant_id: str, updates: dict) -> RetentionPolicy:
        errors = validate_policy(updates)
        if errors:
            raise ValueError(f"Invalid retention policy: {'; '.join(errors)}")

        current = self.get_policy(tenant_id).model_dump()
        merged = deep_merge(current, updates)
        merged["tenant_id"] = tenant_id
        policy = RetentionPolicy.model_validate(merged)
        self._policies[tenant_id] = policy
        logger.info(f"Updated retention policy for tenant {tenant_id}")
        return policy

    def get_policy(self, tenant_id: str) -> RetentionPolicy:
        return self._policies.get(tenant_id) or default_policy(tenant_id)

    def delete_policy(self, tenant_id: str) -> None:
        self._policies.pop(tenant_id, None)
        logger.info(f"Deleted retention policy for tenant {tenant_id}")

    def validate_policy(self, policy: dict) -> list[str]:
        return validate_policy(policy)

    # ═════════════════════════════════════════════════════════
    # CLEANUP / ARCHIVE
    # ═════════════════════════════════════════════════════════

    async def run_cleanup(self, tenant_id: str) -> CleanupResult:
        policy = self.get_policy(tenant_id)
        result = self._sweep(tenant_id, policy, dry_run=False)
        logger.info(
            f"Retention cleanup for tenant {tenant_id}: "
            f"metrics={result.metrics_deleted} health={result.health_history_deleted} "
            f"alerts={result.alerts_deleted} audit={result.audit_logs_deleted}"
        )
        return result

    async def archive_data(self, tenant_id: str, start_time: datetime, end_time: datetime) -> ArchiveResult:
        """
        Export the audit logs in [start_time, end_time] for the archive destination.
        Nothing is written here: the entries come back on the result and the
        caller ships them to archive.destination in archive.format.
        """
        policy = self.get_policy(tenant_id)
        if not policy.archive.enabled:
            logger.debug(f"Archiving disabled for tenant {tenant_id}")
            return ArchiveResult()

        entries = self.audit.export_logs(tenant_id, start_time, end_time)
        logger.info(f"Exported {len(entries)} audit logs for tenant {tenant_id} for archive at {policy.archive.destination}")
        return ArchiveResult(
            audit_logs_archived=len(entries),
            archive_location=policy.archive.destination,
            format=policy.archive.format,
            entries=entries,
        )

    def get_retention_stats(self, tenant_id: str) -> RetentionStats:
        policy = self.get_policy(tenant_id)
        estimate = self._sweep(tenant_id, policy, dry_run=True)
        return RetentionStats(
            policy=policy,
            current_data_counts={
                "metrics": self.metrics.count_data_points(tenant_id),
                "health_history": self.health.history_size(tenant_id),
                "alerts": self.alerts.count_alerts(tenant_id),
                "audit_logs": self.audit.count_entries(tenant_id),
            },
            estimated_deletion_counts={
                "metrics": estimate.metrics_deleted,
                "health_history": estimate.health_history_deleted,
                "alerts": estimate.alerts_deleted,
                "audit_logs": estimate.audit_logs_deleted,
            },
        )

    async def scheduled_cleanup(self) -> None:
        """Cleanup pass over every tenant with a stored policy. One tenant failing does not stop the rest."""
        tenants = list(self._policies)
        logger.info(f"Scheduled retention cleanup for {len(tenants)} tenants")
        for tenant_id in tenants:
            try:
                await self.run_cleanup(tenant_id)
            except Exception as e:
                logger.exception(f"Retention cleanup failed for tenant {tenant_id}: {e}")
        self.alerts.unsilence_expired_alerts()

    def _sweep(self, tenant_id: str, policy: RetentionPolicy, dry_run: bool) -> CleanupResult:
        return CleanupResult(
            metrics_deleted=self.metrics.cleanup_old_data(
                policy.metrics.raw_data_days, tenant_id=tenant_id, dry_run=dry_run
            ),
            health_history_deleted=self.health.cleanup_old_history(
                policy.metrics.raw_data_days, tenant_id=tenant_id, dry_run=dry_run
            ),
            alerts_deleted=self.alerts.cleanup_old_alerts(
                policy.alerts.resolved_days, tenant_id=tenant_id, dry_run=dry_run
            ),
            audit_logs_deleted=self.audit.cleanup_old_logs(
                policy.audit_logs.default_days,
                by_action=policy.audit_logs.by_action,
                tenant_id=tenant_id,
                dry_run=dry_run,
            ),
        )


# Singleton instance
log_retention_service = LogRetentionService()
