"""
B2B-INTEGRATIONS — Monitoring: ConnectorHealthService
Per-connector health derived from consecutive probe outcomes.

Flow:
1. record_health_check(tenant, connector, result) updates the counters
2. failures >= unhealthy_threshold → UNHEALTHY; any failure → DEGRADED;
   successes >= healthy_threshold → HEALTHY; otherwise status is kept
3. Distinct error messages are counted, last 10 kept
4. Every check is appended to the uptime history (max 10080 entries, one week at 1/min)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.schemas.monitoring import (
    AuthenticationState,
    Connectivity,
    ConnectorHealthCheck,
    ConnectorHealthStatus,
    HealthCheckConfig,
    HealthCheckResult,
    HealthSummary,
    RecentError,
    TimeWindow,
    Uptime,
    window_duration,
)

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 10080
MAX_RECENT_ERRORS = 10
DEFAULT_UNHEALTHY_THRESHOLD = 3
DEFAULT_HEALTHY_THRESHOLD = 2
FORCED_HEALTHY_SUCCESSES = 10

DOWN_STATUSES = (ConnectorHealthStatus.UNHEALTHY, ConnectorHealthStatus.DEGRADED)


def build_key(tenant_id: str, connector_id: str) -> str:
    return f"{tenant_id}:{connector_id}"


class ConnectorHealthService:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._checks: dict[str, ConnectorHealthCheck] = {}
        self._configs: dict[str, HealthCheckConfig] = {}
        self._history: dict[str, list[tuple[datetime, ConnectorHealthStatus]]] = {}
        self._failures: dict[str, int] = {}
        self._successes: dict[str, int] = {}

    # ═════════════════════════════════════════════════════════
    # QUERIES
    # ═════════════════════════════════════════════════════════

    def get_connector_health(self, tenant_id: str, connector_id: str) -> Optional[ConnectorHealthCheck]:
        return self._checks.get(build_key(tenant_id, connector_id))

    def get_all_connector_health(
        self,
        tenant_id: str,
        status: Optional[ConnectorHealthStatus] = None,
    ) -> list[ConnectorHealthCheck]:
        prefix = f"{tenant_id}:"
        return [
            check for key, check in self._checks.items()
            if key.startswith(prefix) and (status is None or check.status == status)
        ]

    def get_health_summary(self, tenant_id: str) -> HealthSummary:
        checks = self.get_all_connector_health(tenant_id)
        summary = HealthSummary(total=len(checks))
        for check in checks:
            field = check.status.value
            setattr(summary, field, getattr(summary, field) + 1)
        return summary

    # ═════════════════════════════════════════════════════════
    # RECORDING
    # ═════════════════════════════════════════════════════════

    def record_health_check(
        self,
        tenant_id: str,
        connector_id: str,
        result: HealthCheckResult,
    ) -> ConnectorHealthCheck:
        key = build_key(tenant_id, connector_id)
        now = self.clock()
        existing = self._checks.get(key)

        if result.success:
            self._successes[key] = self._successes.get(key, 0) + 1
            self._failures[key] = 0
        else:
            self._failures[key] = self._failures.get(key, 0) + 1
            self._successes[key] = 0

        config = self._configs.get(key)
        unhealthy_threshold = (config.unhealthy_threshold if config else None) or DEFAULT_UNHEALTHY_THRESHOLD
        healthy_threshold = (config.healthy_threshold if config else None) or DEFAULT_HEALTHY_THRESHOLD
        failures = self._failures[key]
        successes = self._successes[key]

        if failures >= unhealthy_threshold:
            status = ConnectorHealthStatus.UNHEALTHY
        elif failures > 0:
            status = ConnectorHealthStatus.DEGRADED
        elif successes >= healthy_threshold:
            status = ConnectorHealthStatus.HEALTHY
        elif existing:
            status = existing.status
        else:
            status = ConnectorHealthStatus.UNKNOWN

        recent_errors = [e.model_copy() for e in existing.recent_errors] if existing else []
        if not result.success and result.error:
            match = next((e for e in recent_errors if e.error == result.error), None)
            if match:
                match.count += 1
                match.timestamp = now
            else:
                recent_errors.append(RecentError(error=result.error, timestamp=now))
            recent_errors = recent_errors[-MAX_RECENT_ERRORS:]

        last_success = now if result.success else (existing.connectivity.last_successful_connection if existing else None)
        last_refreshed = now if result.auth_valid else (existing.authentication.last_refreshed if existing else None)

        check = ConnectorHealthCheck(
            connector_id=connector_id,
            tenant_id=tenant_id,
            status=status,
            checked_at=now,
            response_time=result.response_time,
            connectivity=Connectivity(
                reachable=result.success,
                latency=result.response_time,
                last_successful_connection=last_success,
            ),
            authentication=AuthenticationState(
                valid=True if result.auth_valid is None else result.auth_valid,
                expires_at=result.auth_expires_at,
                last_refreshed=last_refreshed,
            ),
            rate_limits=result.rate_limits,
            recent_errors=recent_errors,
            uptime=self.calculate_uptime(tenant_id, connector_id, TimeWindow.ONE_DAY),
        )
        self._checks[key] = check
        self._append_history(key, now, status)

        if existing and existing.status != status:
            logger.info(f"Connector {connector_id} ({tenant_id}) health {existing.status.value} → {status.value}")
        else:
            logger.debug(f"Recorded health check for connector {connector_id}: {status.value}")
        return check

    def mark_unhealthy(self, tenant_id: str, connector_id: str, reason: str) -> ConnectorHealthCheck:
        return self.record_health_check(tenant_id, connector_id, HealthCheckResult(success=False, error=reason))

    def mark_healthy(self, tenant_id: str, connector_id: str) -> ConnectorHealthCheck:
        """Forces HEALTHY regardless of the configured threshold."""
        key = build_key(tenant_id, connector_id)
        self._successes[key] = FORCED_HEALTHY_SUCCESSES
        self._failures[key] = 0
        return self.record_health_check(tenant_id, connector_id, HealthCheckResult(success=True))

    def remove_connector(self, tenant_id: str, connector_id: str) -> None:
        key = build_key(tenant_id, connector_id)
        for store in (self._checks, self._configs, self._history, self._failures, self._successes):
            store.pop(key, None)
        logger.debug(f"Removed health data for connector {connector_id}")

    # ═════════════════════════════════════════════════════════
    # CONFIG
    # ═════════════════════════════════════════════════════════

    def set_health_check_config(self, tenant_id: str, connector_id: str, **changes) -> HealthCheckConfig:
        key = build_key(tenant_id, connector_id)
        existing = self._configs.get(key) or HealthCheckConfig(connector_id=connector_id, tenant_id=tenant_id)
        updates = {k: v for k, v in changes.items() if v is not None}
        config = existing.model_copy(update=updates)
        self._configs[key] = config
        logger.debug(f"Updated health check config for connector {connector_id}")
        return config

    def get_health_check_config(self, tenant_id: str, connector_id: str) -> Optional[HealthCheckConfig]:
        return self._configs.get(build_key(tenant_id, connector_id))

    # ═════════════════════════════════════════════════════════
    # UPTIME
    # ═════════════════════════════════════════════════════════

    def calculate_uptime(self, tenant_id: str, connector_id: str, period: TimeWindow) -> Uptime:
        history = self._history.get(build_key(tenant_id, connector_id)) or []
        cutoff = self.clock() - window_duration(period)
        recent = [status for timestamp, status in history if timestamp >= cutoff]
        if not recent:
            return Uptime(percentage=100, period=period, downtime_minutes=0)

        down = sum(1 for status in recent if status in DOWN_STATUSES)
        percentage = (len(recent) - down) / len(recent) * 100
        return Uptime(percentage=round(percentage, 2), period=period, downtime_minutes=down)

    def history_size(self, tenant_id: Optional[str] = None) -> int:
        return sum(
            len(entries) for key, entries in self._history.items()
            if tenant_id is None or key.startswith(f"{tenant_id}:")
        )

    def cleanup_old_history(
        self,
        retention_days: int,
        tenant_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> int:
        cutoff = self.clock() - timedelta(days=retention_days)
        cleaned = 0
        for key, entries in self._history.items():
            if tenant_id is not None and not key.startswith(f"{tenant_id}:"):
                continue
            kept = [entry for entry in entries if entry[0] >= cutoff]
            cleaned += len(entries) - len(kept)
            if not dry_run:
                self._history[key] = kept
        if not dry_run:
            logger.info(f"Cleaned up {cleaned} old uptime history entries")
        return cleaned

    def _append_history(self, key: str, timestamp: datetime, status: ConnectorHealthStatus) -> None:
        entries = self._history.setdefault(key, [])
        entries.append((timestamp, status))
        if len(entries) > MAX_HISTORY_ENTRIES:
            del entries[: len(entries) - MAX_HISTORY_ENTRIES]


# Singleton instance
connector_health_service = ConnectorHealthService()
