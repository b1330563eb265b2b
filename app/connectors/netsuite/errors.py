"""
B2B-INTEGRATIONS — NetSuite: error catalogue and classification
"""

import logging
import re
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NetSuiteErrorCategory(str, Enum):
    AUTHENTICATION = "AUTHENTICATION"
    AUTHORIZATION = "AUTHORIZATION"
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"


class NetSuiteApiError(Exception):
    """Raised by the REST client once retries are exhausted."""
    def __init__(self, message: str, status_code: Optional[int] = None, error_code: Optional[str] = None,
                 ns_response: Any = None):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.ns_response = ns_response
        super().__init__(self.message)


class NetSuiteStructuredError(BaseModel):
    code: str
    category: NetSuiteErrorCategory
    message: str
    details: list[str] = Field(default_factory=list)
    retryable: bool = False
    suggested_action: Optional[str] = None


# code → (category, retryable, message)
NETSUITE_ERROR_CODES = {
    "INVALID_LOGIN_CREDENTIALS": (NetSuiteErrorCategory.AUTHENTICATION, False, "Invalid login credentials"),
    "INVALID_CREDENTIALS": (NetSuiteErrorCategory.AUTHENTICATION, False, "Invalid credentials provided"),
    "SSO_TOKEN_INVALID": (NetSuiteErrorCategory.AUTHENTICATION, False, "SSO token is invalid or expired"),
    "SESSION_TIMED_OUT": (NetSuiteErrorCategory.AUTHENTICATION, True, "Session has timed out"),

    "PERMISSION_VIOLATION": (NetSuiteErrorCategory.AUTHORIZATION, False, "Permission denied for this operation"),
    "INSUFFICIENT_PERMISSION": (NetSuiteErrorCategory.AUTHORIZATION, False, "Insufficient permissions"),
    "FEATURE_NOT_ENABLED": (NetSuiteErrorCategory.AUTHORIZATION, False, "Required feature is not enabled"),

    "INVALID_FLD_VALUE": (NetSuiteErrorCategory.VALIDATION, False, "Invalid field value"),
    "MISSING_REQD_FLD": (NetSuiteErrorCategory.VALIDATION, False, "Missing required field"),
    "INVALID_RCRD_TYPE": (NetSuiteErrorCategory.VALIDATION, False, "Invalid record type"),
    "INVALID_REF": (NetSuiteErrorCategory.VALIDATION, False, "Invalid reference"),
    "DUP_RCRD": (NetSuiteErrorCategory.VALIDATION, False, "Duplicate record"),
    "RCRD_DSNT_EXIST": (NetSuiteErrorCategory.NOT_FOUND, False, "Record does not exist"),

    "EXCEEDED_MAX_RECORDS": (NetSuiteErrorCategory.RATE_LIMIT, True, "Exceeded maximum records limit"),
    "EXCEEDED_CONCURRENCY_LIMIT": (NetSuiteErrorCategory.RATE_LIMIT, True, "Exceeded concurrency limit"),
    "REQUEST_LIMIT_EXCEEDED": (NetSuiteErrorCategory.RATE_LIMIT, True, "Request limit exceeded"),

    "UNEXPECTED_ERROR": (NetSuiteErrorCategory.SERVER_ERROR, True, "Unexpected server error"),
    "SERVER_BUSY": (NetSuiteErrorCategory.SERVER_ERROR, True, "Server is busy"),
    "SERVICE_UNAVAILABLE": (NetSuiteErrorCategory.SERVER_ERROR, True, "Service is temporarily unavailable"),
}

SUGGESTED_ACTIONS = {
    NetSuiteErrorCategory.AUTHENTICATION: "Check credentials and re-authenticate",
    NetSuiteErrorCategory.AUTHORIZATION: "Verify permissions and access rights",
    NetSuiteErrorCategory.VALIDATION: "Review and correct the input data",
    NetSuiteErrorCategory.NOT_FOUND: "Verify the resource exists and check the ID",
    NetSuiteErrorCategory.RATE_LIMIT: "Wait and retry with exponential backoff",
    NetSuiteErrorCategory.SERVER_ERROR: "Retry the request after a delay",
    NetSuiteErrorCategory.NETWORK: "Check network connectivity and retry",
    NetSuiteErrorCategory.UNKNOWN: "Review the error details and contact support if needed",
}

STATUS_ERRORS = {
    401: (NetSuiteErrorCategory.AUTHENTICATION, False, "Authentication failed"),
    403: (NetSuiteErrorCategory.AUTHORIZATION, False, "Access forbidden"),
    404: (NetSuiteErrorCategory.NOT_FOUND, False, "Resource not found"),
    429: (NetSuiteErrorCategory.RATE_LIMIT, True, "Rate limit exceeded"),
}

_BRACKET_CODE = re.compile(r"\[([A-Z_]+)\]")
_LABELLED_CODE = re.compile(r"Error Code:\s*([A-Z_]+)", re.IGNORECASE)


def get_suggested_action(category: NetSuiteErrorCategory) -> str:
    return SUGGESTED_ACTIONS.get(category, SUGGESTED_ACTIONS[NetSuiteErrorCategory.UNKNOWN])


def extract_error_code(message: str) -> Optional[str]:
    match = _BRACKET_CODE.search(message) or _LABELLED_CODE.search(message)
    return match.group(1) if match else None


def _from_catalogue(code: str, details: list[str]) -> NetSuiteStructuredError:
    category, retryable, message = NETSUITE_ERROR_CODES[code]
    return NetSuiteStructuredError(
        code=code,
        category=category,
        message=message,
        details=details,
        retryable=retryable,
        suggested_action=get_suggested_action(category),
    )


def _from_status(status_code: int, message: str) -> NetSuiteStructuredError:
    if status_code in STATUS_ERRORS:
        category, retryable, text = STATUS_ERRORS[status_code]
    elif status_code >= 500:
        category, retryable, text = NetSuiteErrorCategory.SERVER_ERROR, True, "Server error"
    else:
        return NetSuiteStructuredError(
            code=f"HTTP_{status_code}",
            category=NetSuiteErrorCategory.UNKNOWN,
            message=message,
        )
    return NetSuiteStructuredError(
        code=f"HTTP_{status_code}",
        category=category,
        message=text,
        details=[message],
        retryable=retryable,
        suggested_action=get_suggested_action(category),
    )


def _from_dict(error: dict) -> NetSuiteStructuredError:
    code = error.get("o:errorCode") or error.get("errorCode") or error.get("code")
    details = [d.get("detail") for d in error.get("o:errorDetails") or [] if d.get("detail")]

    status = error.get("status")
    status_detail = (status.get("statusDetail") or []) if isinstance(status, dict) else []
    if status_detail:
        first = status_detail[0]
        known = NETSUITE_ERROR_CODES.get(first.get("code"))
        return NetSuiteStructuredError(
            code=first.get("code") or "UNKNOWN_ERROR",
            category=known[0] if known else NetSuiteErrorCategory.UNKNOWN,
            message=first.get("message") or "Unknown error",
            details=[d.get("message") for d in status_detail if d.get("message")],
            retryable=known[1] if known else False,
            suggested_action=get_suggested_action(known[0]) if known else None,
        )

    known = NETSUITE_ERROR_CODES.get(code) if code else None
    return NetSuiteStructuredError(
        code=code or "UNKNOWN_ERROR",
        category=known[0] if known else NetSuiteErrorCategory.UNKNOWN,
        message=(
            error.get("title") or error.get("message") or error.get("detail")
            or (known[2] if known else None) or "Unknown error"
        ),
        details=details,
        retryable=known[1] if known else False,
        suggested_action=get_suggested_action(known[0]) if known else None,
    )


def parse_error(error: Any) -> NetSuiteStructuredError:
    if isinstance(error, (httpx.TimeoutException, httpx.NetworkError)):
        return NetSuiteStructuredError(
            code="NETWORK_ERROR",
            category=NetSuiteErrorCategory.NETWORK,
            message=str(error) or error.__class__.__name__,
            retryable=True,
            suggested_action=get_suggested_action(NetSuiteErrorCategory.NETWORK),
        )

    if isinstance(error, Exception):
        message = getattr(error, "message", None) or str(error)
        code = getattr(error, "error_code", None) or extract_error_code(message)
        if code and code in NETSUITE_ERROR_CODES:
            return _from_catalogue(code, [message])

        status_code = getattr(error, "status_code", None)
        if status_code:
            return _from_status(status_code, message)

        return NetSuiteStructuredError(
            code=code or "UNKNOWN_ERROR",
            category=NetSuiteErrorCategory.UNKNOWN,
            message=message,
        )

    if isinstance(error, dict):
        return _from_dict(error)

    if isinstance(error, str):
        return NetSuiteStructuredError(code="UNKNOWN_ERROR", category=NetSuiteErrorCategory.UNKNOWN, message=error)

    return NetSuiteStructuredError(
        code="UNKNOWN_ERROR",
        category=NetSuiteErrorCategory.UNKNOWN,
        message="An unknown error occurred",
    )


def is_retryable(error: Any) -> bool:
    return parse_error(error).retryable


def get_retry_delay(category: NetSuiteErrorCategory, attempt: int) -> int:
    """Backoff in milliseconds for the given 1-based attempt."""
    if category == NetSuiteErrorCategory.RATE_LIMIT:
        return min(60000, 10000 * 2 ** (attempt - 1))
    if category == NetSuiteErrorCategory.SERVER_ERROR:
        return min(30000, 1000 * 2 ** (attempt - 1))
    return min(10000, 1000 * 2 ** (attempt - 1))


def get_user_friendly_message(error: NetSuiteStructuredError) -> str:
    category = error.category
    if category == NetSuiteErrorCategory.AUTHENTICATION:
        return "Unable to authenticate with NetSuite. Please check your credentials."
    if category == NetSuiteErrorCategory.AUTHORIZATION:
        return "You do not have permission to perform this operation in NetSuite."
    if category == NetSuiteErrorCategory.VALIDATION:
        return f"The request contains invalid data: {error.message}"
    if category == NetSuiteErrorCategory.NOT_FOUND:
        return "The requested resource was not found in NetSuite."
    if category == NetSuiteErrorCategory.RATE_LIMIT:
        return "NetSuite rate limit exceeded. Please wait a moment and try again."
    if category == NetSuiteErrorCategory.SERVER_ERROR:
        return "NetSuite is experiencing temporary issues. Please try again later."
    return error.message


def log_error(error: NetSuiteStructuredError, context: Optional[dict] = None) -> None:
    text = f"NetSuite [{error.category.value}] {error.code}: {error.message}"
    if context:
        text += f" {context}"
    if error.category in (NetSuiteErrorCategory.SERVER_ERROR, NetSuiteErrorCategory.UNKNOWN):
        logger.error(text)
    else:
        logger.warning(text)
