"""
B2B-INTEGRATIONS — NetSuite: REST client
Record API and SuiteQL over httpx with TBA signing and retries.

Flow:
1. configure(config) resolves https://{account}.suitetalk.api.netsuite.com
2. Record calls → /services/rest/record/{version}/{endpoint}
3. SuiteQL     → POST /services/rest/query/v1/suiteql {"q": ...}, Prefer: transient
4. 429 / 5xx / timeout retried with exponential backoff + jitter
5. Anything else raises NetSuiteApiError with a normalized message

A 204 on create carries the new record in the Location header; the id is
returned as {"id": ...}.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlencode

import httpx

from app.connectors.netsuite.auth import NetSuiteAuthService, netsuite_auth
from app.connectors.netsuite.errors import NetSuiteApiError
from app.core.config import get_netsuite_base_url
from app.schemas.connectors import NetSuiteConnectionConfig, NetSuitePagination

logger = logging.getLogger(__name__)

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 30000


def calculate_backoff(attempt: int) -> float:
    """Milliseconds before retry number `attempt` (1-based)."""
    delay = min(BASE_DELAY_MS * 2 ** (attempt - 1), MAX_DELAY_MS)
    return delay + random.random() * 1000


def transform_error(status_code: Optional[int], body: Any, fallback: str) -> NetSuiteApiError:
    message = "NetSuite API request failed"
    error_code = None

    if isinstance(body, dict) and body.get("o:errorCode"):
        error_code = body["o:errorCode"]
        details = "; ".join(d.get("detail", "") for d in body.get("o:errorDetails") or [])
        message = f"NetSuite Error [{error_code}]: {details}"
    elif isinstance(body, dict) and isinstance(body.get("status"), dict) and body["status"].get("statusDetail"):
        first = body["status"]["statusDetail"][0]
        error_code = first.get("code")
        message = f"NetSuite Error [{error_code}]: {first.get('message')}"
    elif isinstance(body, dict) and body.get("title"):
        message = f"NetSuite Error: {body['title']}"
        if body.get("detail"):
            message += f" - {body['detail']}"
    elif fallback:
        message = f"NetSuite Error: {fallback}"

    return NetSuiteApiError(message, status_code=status_code, error_code=error_code, ns_response=body)


class NetSuiteRestClient:
    def __init__(
        self,
        auth: Optional[NetSuiteAuthService] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.auth = auth or netsuite_auth
        self._sleep = sleep or asyncio.sleep
        self.config: Optional[NetSuiteConnectionConfig] = None
        self.base_url: Optional[str] = None

    def configure(self, config: NetSuiteConnectionConfig) -> None:
        self.config = config
        self.base_url = config.base_url or get_netsuite_base_url(config.account_id)
        logger.debug(f"NetSuite REST client configured for account: {config.account_id}")

    def build_url(self, endpoint: str) -> str:
        version = (self.config.api_version if self.config else None) or "v1"
        return f"{self.base_url}/services/rest/record/{version}/{endpoint.lstrip('/')}"

    def build_suiteql_url(self) -> str:
        return f"{self.base_url}/services/rest/query/v1/suiteql"

    @staticmethod
    def _with_query(url: str, params: Optional[dict] = None, pagination: Optional[NetSuitePagination] = None) -> str:
        query = {k: str(v).lower() if isinstance(v, bool) else v for k, v in (params or {}).items()}
        if pagination:
            if pagination.offset is not None:
                query["offset"] = pagination.offset
            if pagination.limit is not None:
                query["limit"] = pagination.limit
        return f"{url}?{urlencode(query)}" if query else url

    # ═════════════════════════════════════════════════════════
    # VERBS
    # ═════════════════════════════════════════════════════════

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        pagination: Optional[NetSuitePagination] = None,
    ) -> dict:
        url = self._with_query(self.build_url(endpoint), params, pagination)
        return await self._execute("GET", url)

    async def post(self, endpoint: str, data: dict) -> dict:
        return await self._execute("POST", self.build_url(endpoint), json_body=data)

    async def patch(self, endpoint: str, data: dict) -> dict:
        return await self._execute("PATCH", self.build_url(endpoint), json_body=data)

    async def delete(self, endpoint: str) -> None:
        await self._execute("DELETE", self.build_url(endpoint))

    async def execute_suiteql(self, query: str, pagination: Optional[NetSuitePagination] = None) -> dict:
        url = self._with_query(self.build_suiteql_url(), pagination=pagination)
        return await self._execute("POST", url, json_body={"q": query}, extra_headers={"Prefer": "transient"})

    async def test_connection(self) -> dict:
        started = time.monotonic()
        try:
            await self.execute_suiteql("SELECT 1 AS test", NetSuitePagination(limit=1))
            return {
                "success": True,
                "message": "Successfully connected to NetSuite",
                "latency_ms": int((time.monotonic() - started) * 1000),
            }
        except Exception as e:
            return {
                "success": False,
                "message": getattr(e, "message", None) or str(e) or "Connection failed",
                "latency_ms": int((time.monotonic() - started) * 1000),
            }

    # ─────────────────────────────────────────────────────────
    # Internal
    # ─────────────────────────────────────────────────────────

    async def _execute(
        self,
        method: str,
        url: str,
        json_body: Any = None,
        extra_headers: Optional[dict] = None,
    ) -> Any:
        if not self.base_url:
            raise NetSuiteApiError("NetSuite REST client is not configured")

        max_attempts = self.config.retry_attempts if self.config else 3
        timeout = (self.config.timeout_ms if self.config else 30000) / 1000

        attempt = 1
        while True:
            headers = {
                "Authorization": self.auth.generate_authorization_header(method, url),
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            headers.update(extra_headers or {})

            logger.debug(f"NetSuite {method} {url} (attempt {attempt})")
            try:
                async with httpx.AsyncClient(timeout=timeout, verify=True) as client:
                    response = await client.request(method, url, json=json_body, headers=headers)
            except httpx.TimeoutException as e:
                if attempt < max_attempts:
                    await self._backoff(attempt, "timeout")
                    attempt += 1
                    continue
                logger.error(f"NetSuite {method} {url} timed out after {attempt} attempts")
                raise NetSuiteApiError(f"NetSuite Error: request timed out after {timeout}s") from e
            except httpx.ConnectError as e:
                logger.error(f"Could not connect to NetSuite: {e}")
                raise NetSuiteApiError(f"NetSuite Error: could not connect: {e}") from e

            if response.is_success:
                return self._parse_body(response)

            status = response.status_code
            if (status == 429 or status >= 500) and attempt < max_attempts:
                await self._backoff(attempt, f"HTTP {status}")
                attempt += 1
                continue

            try:
                body = response.json()
            except ValueError:
                body = None
            error = transform_error(status, body, response.text[:300] or f"HTTP {status}")
            logger.error(f"NetSuite {method} {url} failed: HTTP {status} [{error.error_code}]")
            raise error

    async def _backoff(self, attempt: int, reason: str) -> None:
        delay = calculate_backoff(attempt)
        logger.warning(f"NetSuite request failed ({reason}), retrying in {delay:.0f}ms")
        await self._sleep(delay / 1000)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            location = response.headers.get("Location") or response.headers.get("location")
            if location:
                return {"id": location.rstrip("/").rsplit("/", 1)[-1]}
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}


# Singleton instance
netsuite_rest_client = NetSuiteRestClient()
