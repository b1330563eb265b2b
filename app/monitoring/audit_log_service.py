"""
B2B-INTEGRATIONS — Monitoring: AuditLogService
Append-only audit trail of connector, credential, event and alert actions.
Entries are kept in memory, newest first on every query.
"""

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from app.schemas.monitoring import (
    AuditAction,
    AuditActor,
    AuditChanges,
    AuditLogEntry,
    AuditRequest,
    AuditRequestContext,
    AuditResource,
    AuditResult,
    AuditStatistics,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
EXPORT_LIMIT = 100000


class AuditLogService:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, AuditLogEntry] = {}

    # ═════════════════════════════════════════════════════════
    # RECORDING
    # ═════════════════════════════════════════════════════════

    def record(
        self,
        tenant_id: str,
        action: AuditAction,
        resource: AuditResource,
        result: AuditResult,
        actor: Optional[AuditActor] = None,
        changes: Optional[AuditChanges] = None,
        request: Optional[AuditRequest] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            action=action,
            timestamp=self.clock(),
            actor=actor or AuditActor(type="system"),
            resource=resource,
            changes=changes,
            request=request,
            result=result,
            metadata=metadata or {},
        )
        self._entries[entry.id] = entry

        message = (
            f"Audit: {entry.action.value} on {resource.type}/{resource.id} - "
            f"{'success' if result.success else 'failed'}"
        )
        if result.success:
            logger.debug(message)
        else:
            logger.warning(message)
        return entry

    def record_with_context(
        self,
        tenant_id: str,
        action: AuditAction,
        resource: AuditResource,
        result: AuditResult,
        context: AuditRequestContext,
        changes: Optional[AuditChanges] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Record an entry whose actor and request come from an incoming API call."""
        return self.record(
            tenant_id,
            action,
            resource,
            result,
            actor=AuditActor(
                type="user" if context.user_id else "api",
                id=context.user_id,
                name=context.user_name,
                ip=context.ip,
            ),
            changes=changes,
            request=AuditRequest(
                method=context.method or "UNKNOWN",
                path=context.path or "UNKNOWN",
                user_agent=context.user_agent,
                correlation_id=context.correlation_id,
            ),
            metadata=metadata,
        )

    # ═════════════════════════════════════════════════════════
    # QUERIES
    # ═════════════════════════════════════════════════════════

    def get_entry(self, tenant_id: str, entry_id: str) -> Optional[AuditLogEntry]:
        entry = self._entries.get(entry_id)
        if not entry or entry.tenant_id != tenant_id:
            return None
        return entry

    def query(
        self,
        tenant_id: str,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        success: Optional[bool] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> tuple[list[AuditLogEntry], int]:
        results = [
            e for e in self._in_range(tenant_id, start_time, end_time)
            if (not action or e.action == action)
            and (not resource_type or e.resource.type == resource_type)
            and (not resource_id or e.resource.id == resource_id)
            and (not actor_id or e.actor.id == actor_id)
            and (success is None or e.result.success == success)
        ]
        results.sort(key=lambda e: e.timestamp, reverse=True)
        total = len(results)
        if offset:
            results = results[offset:]
        if limit:
            results = results[:limit]
        return results, total

    def get_resource_history(
        self,
        tenant_id: str,
        resource_type: str,
        resource_id: str,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        entries, _ = self.query(
            tenant_id,
            resource_type=resource_type,
            resource_id=resource_id,
            limit=limit or DEFAULT_HISTORY_LIMIT,
        )
        return entries

    def get_actor_activity(
        self,
        tenant_id: str,
        actor_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        entries, _ = self.query(
            tenant_id,
            actor_id=actor_id,
            start_time=start_time,
            end_time=end_time,
            limit=limit or DEFAULT_HISTORY_LIMIT,
        )
        return entries

    def get_failed_actions(
        self,
        tenant_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[AuditLogEntry]:
        entries, _ = self.query(
            tenant_id,
            success=False,
            start_time=start_time,
            end_time=end_time,
            limit=limit or DEFAULT_HISTORY_LIMIT,
        )
        return entries

    def get_action_counts(
        self,
        tenant_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> dict[str, int]:
        return dict(Counter(e.action.value for e in self._in_range(tenant_id, start_time, end_time)))

    def get_statistics(
        self,
        tenant_id: str,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> AuditStatistics:
        stats = AuditStatistics()
        for entry in self._in_range(tenant_id, start_time, end_time):
            stats.total += 1
            if entry.result.success:
                stats.successful += 1
            else:
                stats.failed += 1
            stats.by_action[entry.action.value] = stats.by_action.get(entry.action.value, 0) + 1
            stats.by_resource_type[entry.resource.type] = stats.by_resource_type.get(entry.resource.type, 0) + 1
            if entry.actor.id:
                stats.by_actor[entry.actor.id] = stats.by_actor.get(entry.actor.id, 0) + 1
        return stats

    # ═════════════════════════════════════════════════════════
    # RETENTION
    # ═════════════════════════════════════════════════════════

    def export_logs(self, tenant_id: str, start_time: datetime, end_time: datetime) -> list[AuditLogEntry]:
        entries, _ = self.query(tenant_id, start_time=start_time, end_time=end_time, limit=EXPORT_LIMIT)
        return entries

    def count_entries(self, tenant_id: Optional[str] = None) -> int:
        return sum(1 for e in self._entries.values() if tenant_id is None or e.tenant_id == tenant_id)

    def delete_old_logs(self, tenant_id: str, before: datetime) -> int:
        expired = [
            entry_id for entry_id, e in self._entries.items()
            if e.tenant_id == tenant_id and e.timestamp < before
        ]
        for entry_id in expired:
            del self._entries[entry_id]
        logger.info(f"Deleted {len(expired)} old audit logs for tenant {tenant_id}")
        return len(expired)

    def cleanup_old_logs(
        self,
        retention_days: int,
        by_action: Optional[dict[str, int]] = None,
        tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> int:
        """
        Delete entries older than their retention window.

        by_action overrides the default number of days for specific actions
        (keyed by action value, e.g. "credential.created"). Without tenant_id
        every tenant is cleaned. dry_run only counts what would be deleted.
        """
        expired = [
            entry_id for entry_id, e in self._entries.items()
            if (tenant_id is None or e.tenant_id == tenant_id)
            and self._is_expired(e, retention_days, by_action)
        ]
        if dry_run:
            return len(expired)
        for entry_id in expired:
            del self._entries[entry_id]
        logger.info(f"Cleaned up {len(expired)} old audit logs")
        return len(expired)

    def _is_expired(self, entry: AuditLogEntry, retention_days: int, by_action: Optional[dict[str, int]]) -> bool:
        days = (by_action or {}).get(entry.action.value) or retention_days
        return entry.timestamp < self.clock() - timedelta(days=days)

    def _in_range(
        self,
        tenant_id: str,
        start_time: Optional[datetime],
        end_time: Optional[datetime],
    ) -> list[AuditLogEntry]:
        return [
            e for e in self._entries.values()
            if e.tenant_id == tenant_id
            and (not start_time or e.timestamp >= start_time)
            and (not end_time or e.timestamp <= end_time)
        ]


# Singleton instance
audit_log_service = AuditLogService()
