"""
B2B-INTEGRATIONS — QuickBooks Online: error handling
Maps Intuit fault codes and HTTP statuses onto categories, retry policy and
user-facing messages.
"""

import logging
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from app.schemas.connectors import ConnectorResult

logger = logging.getLogger(__name__)


class QuickBooksErrorCategory(str, Enum):
    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    NOT_FOUND = "NOT_FOUND"
    CONCURRENCY = "CONCURRENCY"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


# Intuit fault codes (Fault.Error[].code)
VALIDATION_ERROR = "2000"
DUPLICATE_NAME = "6240"
DUPLICATE_DOC_NUMBER = "6140"
INVALID_REFERENCE = "2500"
REQUIRED_FIELD_MISSING = "2010"
INVALID_FIELD_VALUE = "2050"
INVALID_TOKEN = "100"
TOKEN_EXPIRED = "102"
INVALID_GRANT = "103"
FORBIDDEN = "403"
NO_ACCESS = "610"
OBJECT_NOT_FOUND = "610"
NOT_FOUND = "404"
STALE_OBJECT = "3"
BUSINESS_VALIDATION = "6000"
THROTTLE = "5"
RATE_LIMIT = "429"
INTERNAL_ERROR = "500"
BAD_GATEWAY = "502"
SERVICE_UNAVAILABLE = "503"
GATEWAY_TIMEOUT = "504"
TEMPORARY_ERROR = "6160"

# Order matters: 610 is both NO_ACCESS and OBJECT_NOT_FOUND, authorization wins.
CODE_CATEGORIES = [
    ({VALIDATION_ERROR, DUPLICATE_NAME, DUPLICATE_DOC_NUMBER, INVALID_REFERENCE,
      REQUIRED_FIELD_MISSING, INVALID_FIELD_VALUE}, QuickBooksErrorCategory.VALIDATION),
    ({INVALID_TOKEN, TOKEN_EXPIRED, INVALID_GRANT}, QuickBooksErrorCategory.AUTHENTICATION),
    ({FORBIDDEN, NO_ACCESS}, QuickBooksErrorCategory.AUTHORIZATION),
    ({NOT_FOUND}, QuickBooksErrorCategory.NOT_FOUND),
    ({STALE_OBJECT, BUSINESS_VALIDATION}, QuickBooksErrorCategory.CONCURRENCY),
    ({THROTTLE, RATE_LIMIT}, QuickBooksErrorCategory.RATE_LIMIT),
    ({INTERNAL_ERROR, BAD_GATEWAY, SERVICE_UNAVAILABLE, GATEWAY_TIMEOUT, TEMPORARY_ERROR},
     QuickBooksErrorCategory.SERVER),
]

STATUS_CATEGORIES = {
    400: QuickBooksErrorCategory.VALIDATION,
    401: QuickBooksErrorCategory.AUTHENTICATION,
    403: QuickBooksErrorCategory.AUTHORIZATION,
    404: QuickBooksErrorCategory.NOT_FOUND,
    409: QuickBooksErrorCategory.CONCURRENCY,
    429: QuickBooksErrorCategory.RATE_LIMIT,
}

RETRYABLE_STATUSES = {429, 502, 503, 504}
RETRYABLE_CODES = {STALE_OBJECT, THROTTLE, NO_ACCESS, BUSINESS_VALIDATION, "6010", TEMPORARY_ERROR}


class QuickBooksApiError(Exception):
    """Non-2xx answer from the QuickBooks REST API."""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Any = None,
        qb_response: dict = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        self.qb_response = qb_response or {}
        super().__init__(self.message)


class QuickBooksParsedError(BaseModel):
    category: QuickBooksErrorCategory
    code: str
    message: str
    details: Any = None
    status_code: Optional[int] = None
    retryable: bool = False


def categorize(status_code: Optional[int] = None, code: Optional[str] = None) -> QuickBooksErrorCategory:
    if status_code:
        if status_code in STATUS_CATEGORIES:
            return STATUS_CATEGORIES[status_code]
        if status_code >= 500:
            return QuickBooksErrorCategory.SERVER

    if code:
        for codes, category in CODE_CATEGORIES:
            if code in codes:
                return category

    return QuickBooksErrorCategory.UNKNOWN


def is_retryable(category: QuickBooksErrorCategory, code: Optional[str] = None) -> bool:
    if category in (
        QuickBooksErrorCategory.RATE_LIMIT,
        QuickBooksErrorCategory.SERVER,
        QuickBooksErrorCategory.NETWORK,
    ):
        return True
    if code == STALE_OBJECT:
        return True
    return category == QuickBooksErrorCategory.AUTHENTICATION and code == TOKEN_EXPIRED


def is_retryable_response(status_code: Optional[int], code: Optional[str]) -> bool:
    """Retry flag attached to REST client failures."""
    return (status_code in RETRYABLE_STATUSES) or (code in RETRYABLE_CODES)


def get_retry_delay(category: QuickBooksErrorCategory, attempt: int) -> int:
    """Backoff in milliseconds for the given 1-based attempt."""
    if category == QuickBooksErrorCategory.RATE_LIMIT:
        return min(60000 * 2 ** (attempt - 1), 300000)
    return min(1000 * 2 ** (attempt - 1), 60000)


def parse_fault(body: Any) -> tuple[Optional[str], Optional[str], list]:
    """(code, message, details) from an Intuit {"Fault": {"Error": [...]}} body."""
    if not isinstance(body, dict):
        return None, None, []
    errors = (body.get("Fault") or {}).get("Error") or []
    if not errors:
        return None, None, []
    first = errors[0]
    details = [
        {"code": e.get("code"), "message": e.get("Message"), "detail": e.get("Detail"), "element": e.get("element")}
        for e in errors
    ]
    return first.get("code"), first.get("Message") or first.get("Detail"), details


def parse_error(error: Any) -> QuickBooksParsedError:
    if isinstance(error, QuickBooksApiError):
        code = error.code or str(error.status_code)
        category = categorize(error.status_code, code)
        return QuickBooksParsedError(
            category=category,
            code=code,
            message=error.message,
            details=error.details,
            status_code=error.status_code,
            retryable=is_retryable(category, code),
        )

    if isinstance(error, dict) and "Fault" in error:
        code, message, details = parse_fault(error)
        code = code or "UNKNOWN_ERROR"
        category = categorize(None, code)
        return QuickBooksParsedError(
            category=category,
            code=code,
            message=message or "QuickBooks returned a fault",
            details=details,
            retryable=is_retryable(category, code),
        )

    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return QuickBooksParsedError(
            category=QuickBooksErrorCategory.NETWORK,
            code="NETWORK_ERROR",
            message=str(error) or error.__class__.__name__,
            retryable=True,
        )

    if isinstance(error, Exception):
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        return QuickBooksParsedError(
            category=QuickBooksErrorCategory.UNKNOWN,
            code="CONNECTOR_ERROR",
            message=message,
        )

    return QuickBooksParsedError(
        category=QuickBooksErrorCategory.UNKNOWN,
        code="UNKNOWN_ERROR",
        message="An unknown error occurred",
        details=error,
    )


def format_error_for_logging(parsed: QuickBooksParsedError) -> str:
    return f"[{parsed.category.value}] {parsed.code}: {parsed.message}"


def create_user_friendly_message(parsed: QuickBooksParsedError) -> str:
    category = parsed.category
    if category == QuickBooksErrorCategory.VALIDATION:
        return f"Validation error: {parsed.message}. Please check your input and try again."
    if category == QuickBooksErrorCategory.AUTHENTICATION:
        return "Authentication failed. Please reconnect your QuickBooks account."
    if category == QuickBooksErrorCategory.AUTHORIZATION:
        return "You do not have permission to perform this action in QuickBooks."
    if category == QuickBooksErrorCategory.NOT_FOUND:
        return "The requested item was not found in QuickBooks."
    if category == QuickBooksErrorCategory.CONCURRENCY:
        return "The data was modified by another user. Please refresh and try again."
    if category == QuickBooksErrorCategory.RATE_LIMIT:
        return "Too many requests. Please wait a moment and try again."
    if category == QuickBooksErrorCategory.SERVER:
        return "QuickBooks is temporarily unavailable. Please try again later."
    if category == QuickBooksErrorCategory.NETWORK:
        return "Network error. Please check your connection and try again."
    return f"An error occurred: {parsed.message}"


def create_error_result(error: Any, request_id: Optional[str] = None, duration_ms: int = 0) -> ConnectorResult:
    parsed = parse_error(error)
    logger.error(f"QuickBooks {request_id or 'request'} failed: {format_error_for_logging(parsed)}")
    return ConnectorResult.failure(
        code=parsed.code,
        message=parsed.message,
        retryable=parsed.retryable,
        request_id=request_id,
        details=parsed.details,
        duration_ms=duration_ms,
    )
