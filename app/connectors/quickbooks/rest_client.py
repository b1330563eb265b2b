"""
B2B-INTEGRATIONS — QuickBooks Online: REST client
Thin httpx wrapper over the v3 accounting API. Every call answers with a
ConnectorResult; transport and API failures never escape as exceptions.

Paths carry a {realmId} placeholder, e.g. "/v3/company/{realmId}/invoice".
"""

import logging
import random
import string
import time
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from app.connectors.quickbooks.auth import QuickBooksAuthService, quickbooks_auth
from app.connectors.quickbooks.errors import is_retryable_response, parse_fault
from app.core.config import get_quickbooks_base_url
from app.schemas.connectors import (
    ConnectorResult,
    QueryOptions,
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksEnvironment,
    ResultMetadata,
)

logger = logging.getLogger(__name__)

QUERY_PATH = "/v3/company/{realmId}/query"

_BASE36 = string.digits + string.ascii_lowercase


def generate_request_id() -> str:
    suffix = "".join(random.choice(_BASE36) for _ in range(7))
    return f"qb-{int(time.time() * 1000)}-{suffix}"


class QuickBooksRestClient:
    def __init__(self, auth: Optional[QuickBooksAuthService] = None):
        self.auth = auth or quickbooks_auth

    @staticmethod
    def get_base_url(config: QuickBooksConnectionConfig) -> str:
        return get_quickbooks_base_url(config.environment != QuickBooksEnvironment.PRODUCTION.value)

    def build_url(
        self,
        config: QuickBooksConnectionConfig,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> str:
        url = f"{self.get_base_url(config)}{path}".replace("{realmId}", config.realm_id)
        query = {"minorversion": config.minor_version or 65}
        for key, value in (params or {}).items():
            if value is not None:
                query[key] = value
        return f"{url}?{urlencode(query)}"

    # ═════════════════════════════════════════════════════════
    # VERBS
    # ═════════════════════════════════════════════════════════

    async def get(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> ConnectorResult:
        return await self._request("GET", config, credentials, self.build_url(config, path, params))

    async def post(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        path: str,
        body: Any,
        params: Optional[dict[str, Any]] = None,
    ) -> ConnectorResult:
        return await self._request("POST", config, credentials, self.build_url(config, path, params), json_body=body)

    async def delete(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        path: str,
        body: Any = None,
    ) -> ConnectorResult:
        """QuickBooks deletes are POSTs with operation=delete."""
        url = self.build_url(config, path, {"operation": "delete"})
        return await self._request("POST", config, credentials, url, json_body=body)

    async def send(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        path: str,
        email: Optional[str] = None,
    ) -> ConnectorResult:
        url = self.build_url(config, f"{path}/send", {"sendTo": email})
        return await self._request(
            "POST", config, credentials, url,
            extra_headers={"Content-Type": "application/octet-stream"},
        )

    async def query(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        query: str,
        options: Optional[QueryOptions] = None,
    ) -> ConnectorResult:
        full_query = query
        if options:
            if options.order_by:
                full_query += f" ORDERBY {options.order_by}"
            if options.start_position:
                full_query += f" STARTPOSITION {options.start_position}"
            if options.max_results:
                full_query += f" MAXRESULTS {options.max_results}"

        if config.logging:
            logger.debug(f"QUERY: {full_query}")

        result = await self._request("GET", config, credentials, self.build_url(config, QUERY_PATH, {"query": full_query}))
        if not result.success:
            return result

        query_response = (result.data or {}).get("QueryResponse") or {}
        total = query_response.get("totalCount")
        start = query_response.get("startPosition")
        max_results = query_response.get("maxResults")
        result.metadata.total_results = total
        result.metadata.has_more = bool(start and max_results and start + max_results - 1 < (total or 0))
        return result

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
        url: str,
        json_body: Any = None,
        extra_headers: Optional[dict] = None,
    ) -> ConnectorResult:
        started = time.monotonic()
        request_id = generate_request_id()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            token = await self.auth.get_access_token(config, credentials)
            headers = {
                "Authorization": f"Bearer {token}",
                "Accept": "application/json",
                "Request-Id": request_id,
            }
            if method == "POST":
                headers["Content-Type"] = "application/json"
            headers.update(extra_headers or {})

            if config.logging:
                logger.debug(f"{method} {url} [{request_id}]")

            async with httpx.AsyncClient(timeout=config.timeout, verify=True) as client:
                response = await client.request(method, url, json=json_body, headers=headers)

        except httpx.TimeoutException:
            logger.error(f"QuickBooks {method} {url} timed out [{request_id}]")
            return ConnectorResult.failure(
                code="CONNECTOR_ERROR",
                message=f"QuickBooks did not respond within {config.timeout}s",
                request_id=request_id,
                duration_ms=elapsed(),
            )
        except httpx.ConnectError as e:
            logger.error(f"Could not connect to QuickBooks [{request_id}]: {e}")
            return ConnectorResult.failure(
                code="CONNECTOR_ERROR",
                message=f"Could not connect to QuickBooks: {e}",
                request_id=request_id,
                duration_ms=elapsed(),
            )
        except Exception as e:
            logger.exception(f"QuickBooks {method} failed [{request_id}]: {e}")
            return ConnectorResult.failure(
                code="CONNECTOR_ERROR",
                message=getattr(e, "message", None) or str(e),
                request_id=request_id,
                duration_ms=elapsed(),
            )

        if config.logging:
            logger.debug(f"{method} {url} completed in {elapsed()}ms [{request_id}]")

        try:
            body = response.json() if response.content else None
        except ValueError:
            body = {"raw": response.text[:500]}

        if not response.is_success:
            code, message, details = parse_fault(body)
            code = code or "UNKNOWN_ERROR"
            logger.warning(f"QuickBooks {method} HTTP {response.status_code} [{code}] [{request_id}]")
            return ConnectorResult.failure(
                code=code,
                message=message or f"HTTP {response.status_code}",
                retryable=is_retryable_response(response.status_code, code),
                request_id=request_id,
                details=details,
                duration_ms=elapsed(),
            )

        return ConnectorResult(
            success=True,
            data=body,
            metadata=ResultMetadata(request_id=request_id, duration_ms=elapsed()),
        )


# Singleton instance
quickbooks_rest_client = QuickBooksRestClient()
