"""
B2B-INTEGRATIONS — NetSuite: Token-Based Authentication (OAuth 1.0a, HMAC-SHA256)

Flow:
1. Collect oauth_* params (consumer key, token, nonce, timestamp)
2. Merge with the URL query params, percent-encode, sort
3. Base string = METHOD&enc(url without query)&enc(param string)
4. Sign with key enc(consumer_secret)&enc(token_secret)
5. Authorization: OAuth realm="...", oauth_...="..."

JSON bodies are not part of the signature (only form bodies would be).
"""

import base64
import hashlib
import hmac
import logging
import secrets
import time
from typing import Callable, Optional
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from app.schemas.connectors import NetSuiteCredentials

logger = logging.getLogger(__name__)

SIGNATURE_METHOD = "HMAC-SHA256"
OAUTH_VERSION = "1.0"


class NetSuiteAuthError(Exception):
    def __init__(self, message: str, status_code: int = 401):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


def percent_encode(value: str) -> str:
    """RFC 3986 encoding, as OAuth 1.0a requires."""
    return quote(str(value), safe="~")


class NetSuiteAuthService:
    def __init__(
        self,
        nonce_factory: Optional[Callable[[], str]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.nonce_factory = nonce_factory or (lambda: secrets.token_hex(16))
        self.clock = clock or time.time
        self._credentials: Optional[NetSuiteCredentials] = None

    def set_credentials(self, credentials: Optional[NetSuiteCredentials]) -> None:
        self._credentials = credentials

    def has_credentials(self) -> bool:
        return self._credentials is not None

    @staticmethod
    def validate_credentials(credentials: NetSuiteCredentials) -> tuple[bool, list[str]]:
        errors = []
        if not credentials.consumer_key:
            errors.append("Consumer key is required")
        if not credentials.consumer_secret:
            errors.append("Consumer secret is required")
        if not credentials.token_id:
            errors.append("Token ID is required")
        if not credentials.token_secret:
            errors.append("Token secret is required")
        if not credentials.realm:
            errors.append("Realm (account ID) is required")
        return len(errors) == 0, errors

    # ═════════════════════════════════════════════════════════
    # SIGNING
    # ═════════════════════════════════════════════════════════

    @staticmethod
    def build_base_string(method: str, url: str, params: dict) -> str:
        parts = urlsplit(url)
        base_url = urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))

        pairs = [(percent_encode(k), percent_encode(v)) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
        pairs += [(percent_encode(k), percent_encode(v)) for k, v in params.items()]
        param_string = "&".join(f"{k}={v}" for k, v in sorted(pairs))

        return "&".join([method.upper(), percent_encode(base_url), percent_encode(param_string)])

    @staticmethod
    def sign(base_string: str, consumer_secret: str, token_secret: str) -> str:
        key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
        digest = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def generate_authorization_header(self, method: str, url: str) -> str:
        if not self._credentials:
            raise NetSuiteAuthError("NetSuite credentials not configured")
        creds = self._credentials

        oauth_params = {
            "oauth_consumer_key": creds.consumer_key,
            "oauth_token": creds.token_id,
            "oauth_nonce": self.nonce_factory(),
            "oauth_timestamp": str(int(self.clock())),
            "oauth_signature_method": SIGNATURE_METHOD,
            "oauth_version": OAUTH_VERSION,
        }
        base_string = self.build_base_string(method, url, oauth_params)
        oauth_params["oauth_signature"] = self.sign(base_string, creds.consumer_secret, creds.token_secret)

        header_params = ", ".join(f'{k}="{percent_encode(v)}"' for k, v in oauth_params.items())
        return f'OAuth realm="{creds.realm}", {header_params}'


# Singleton instance
netsuite_auth = NetSuiteAuthService()
