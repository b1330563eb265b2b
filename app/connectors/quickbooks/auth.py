"""
B2B-INTEGRATIONS — QuickBooks Online: OAuth2 token management
Caches access tokens per realm/client and refreshes them against Intuit.

Flow:
1. get_access_token() returns a cached token while it is outside the refresh buffer
2. A caller-supplied access token is adopted when still valid
3. Otherwise the refresh token is exchanged at the Intuit bearer endpoint
4. The new pair is cached under "{realm_id}:{client_id}"
"""

import base64
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx

from app.core.config import QUICKBOOKS_URLS, get_quickbooks_base_url
from app.schemas.connectors import (
    QuickBooksConnectionConfig,
    QuickBooksCredentials,
    QuickBooksEnvironment,
    QuickBooksOAuth2Config,
    QuickBooksTokenResult,
)

logger = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(seconds=3600)


class QuickBooksAuthError(Exception):
    def __init__(self, message: str, status_code: int = 401, qb_response: dict = None):
        self.message = message
        self.status_code = status_code
        self.qb_response = qb_response or {}
        super().__init__(self.message)


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class QuickBooksAuthService:
    def __init__(self, timeout: float = 30.0, clock: Optional[Callable[[], datetime]] = None):
        self.timeout = timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._cache: dict[str, QuickBooksTokenResult] = {}

    @staticmethod
    def cache_key(realm_id: str, client_id: str) -> str:
        return f"{realm_id}:{client_id}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, verify=True)

    def _is_valid(self, expires_at: datetime) -> bool:
        return _utc(expires_at) - TOKEN_REFRESH_BUFFER > self.clock()

    # ═════════════════════════════════════════════════════════
    # TOKENS
    # ═════════════════════════════════════════════════════════

    async def get_access_token(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
    ) -> str:
        oauth2 = credentials.oauth2
        if not oauth2:
            raise QuickBooksAuthError("OAuth2 credentials are required")

        key = self.cache_key(config.realm_id, oauth2.client_id)
        cached = self._cache.get(key)
        if cached and self._is_valid(cached.expires_at):
            return cached.access_token

        expires_at = _utc(oauth2.expires_at) if oauth2.expires_at else self.clock() + DEFAULT_TOKEN_LIFETIME
        if oauth2.access_token and self._is_valid(expires_at):
            self._cache[key] = QuickBooksTokenResult(
                access_token=oauth2.access_token,
                refresh_token=oauth2.refresh_token,
                expires_at=expires_at,
            )
            return oauth2.access_token

        refresh_token = (cached.refresh_token if cached else None) or oauth2.refresh_token
        if not refresh_token:
            raise QuickBooksAuthError("No valid access token available")

        try:
            token = await self.refresh_access_token(oauth2, refresh_token)
        except QuickBooksAuthError as e:
            logger.error(f"QuickBooks token refresh failed for realm {config.realm_id}: {e.message}")
            raise QuickBooksAuthError(
                "Token refresh failed. Re-authorization may be required.",
                qb_response=e.qb_response,
            )

        self._cache[key] = token
        logger.info(f"QuickBooks token refreshed for realm {config.realm_id}")
        return token.access_token

    async def refresh_access_token(self, oauth2: QuickBooksOAuth2Config, refresh_token: str) -> QuickBooksTokenResult:
        basic = base64.b64encode(f"{oauth2.client_id}:{oauth2.client_secret}".encode("utf-8")).decode("ascii")
        headers = {
            "Authorization": f"Basic {basic}",
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}

        try:
            async with self._client() as client:
                response = await client.post(QUICKBOOKS_URLS["token"], data=data, headers=headers)
        except httpx.HTTPError as e:
            raise QuickBooksAuthError(f"OAuth2 token refresh failed: {e}", status_code=503)

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {"raw": response.text[:300]}
            raise QuickBooksAuthError("OAuth2 token refresh failed", status_code=response.status_code, qb_response=body)

        body = response.json()
        return QuickBooksTokenResult(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token", refresh_token),
            token_type=body.get("token_type", "Bearer"),
            expires_at=self.clock() + timedelta(seconds=int(body.get("expires_in", 3600))),
        )

    async def revoke_token(self, oauth2: QuickBooksOAuth2Config, token: str) -> bool:
        basic = base64.b64encode(f"{oauth2.client_id}:{oauth2.client_secret}".encode("utf-8")).decode("ascii")
        headers = {
            "Authorization": f"Basic {basic}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            async with self._client() as client:
                response = await client.post(QUICKBOOKS_URLS["revoke"], json={"token": token}, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"QuickBooks token revoke failed: {e}")
            return False
        return response.is_success

    def invalidate_token(self, realm_id: str, client_id: str) -> None:
        self._cache.pop(self.cache_key(realm_id, client_id), None)

    def clear_all_tokens(self) -> None:
        self._cache.clear()

    def update_token_cache(self, realm_id: str, client_id: str, token: QuickBooksTokenResult) -> None:
        self._cache[self.cache_key(realm_id, client_id)] = token

    def get_token_info(self, realm_id: str, client_id: str) -> dict:
        cached = self._cache.get(self.cache_key(realm_id, client_id))
        if not cached:
            return {"cached": False}
        remaining = _utc(cached.expires_at) - self.clock()
        return {
            "cached": True,
            "expires_at": cached.expires_at,
            "remaining_ms": int(remaining.total_seconds() * 1000),
        }

    # ═════════════════════════════════════════════════════════
    # VALIDATION
    # ═════════════════════════════════════════════════════════

    @staticmethod
    def validate_credentials(
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
    ) -> tuple[bool, list[str]]:
        errors = []
        if not config.realm_id:
            errors.append("Realm ID (Company ID) is required")
        if config.environment not in (QuickBooksEnvironment.SANDBOX.value, QuickBooksEnvironment.PRODUCTION.value):
            errors.append("Environment must be sandbox or production")

        oauth2 = credentials.oauth2
        if not oauth2:
            errors.append("OAuth2 credentials are required")
        else:
            if not oauth2.client_id:
                errors.append("OAuth2 client ID is required")
            if not oauth2.client_secret:
                errors.append("OAuth2 client secret is required")
            if not oauth2.access_token and not oauth2.refresh_token:
                errors.append("Either access token or refresh token is required")

        return len(errors) == 0, errors

    async def test_authentication(
        self,
        config: QuickBooksConnectionConfig,
        credentials: QuickBooksCredentials,
    ) -> tuple[bool, Optional[str]]:
        """Hit companyinfo for the realm; 200 means the token works."""
        try:
            token = await self.get_access_token(config, credentials)
        except QuickBooksAuthError as e:
            return False, e.message

        base = get_quickbooks_base_url(config.environment == QuickBooksEnvironment.SANDBOX.value)
        url = f"{base}/v3/company/{config.realm_id}/companyinfo/{config.realm_id}?minorversion={config.minor_version}"
        try:
            async with self._client() as client:
                response = await client.get(url, headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                })
        except httpx.TimeoutException:
            return False, f"QuickBooks did not respond within {self.timeout}s"
        except httpx.HTTPError as e:
            return False, f"Could not connect to QuickBooks: {e}"

        if response.status_code == 200:
            return True, None
        return False, f"Unexpected response status: {response.status_code}"


# Singleton instance
quickbooks_auth = QuickBooksAuthService()
