"""Error taxonomy for toolstream.

Transport failures, protocol violations and cancellation are distinct
exception types so callers can tell "the model call failed" apart from
"the user cancelled".  Tool failures are never raised to the caller:
they are classified into human-readable text the model can react to.
"""

from __future__ import annotations

import enum
import re


class ToolstreamError(Exception):
    """Base class for all toolstream errors."""


class ConfigurationError(ToolstreamError):
    """Invalid settings or configuration (e.g. empty model name)."""


class RequestCancelled(ToolstreamError):
    """The caller's cancellation token fired during a run."""

    def __init__(self, message: str = "Request was aborted") -> None:
        super().__init__(message)


class ProtocolViolationError(ToolstreamError):
    """A provider-side invariant would be broken (e.g. tool id mismatch)."""


class ToolNotFoundError(ToolstreamError):
    """The requested tool is not registered."""

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        msg = f"Tool not found: {name}"
        if self.available:
            msg += f". Available: {', '.join(self.available)}"
        super().__init__(msg)


class ToolTimeoutError(ToolstreamError):
    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Tool execution timed out after {timeout_ms}ms")


class ToolCallRejected(ToolstreamError):
    """Raised by a tool callback whose message must reach the model verbatim."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class ErrorType(enum.Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    VALIDATION = "validation"
    SERVICE_UNAVAILABLE = "service_unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    MODEL_NOT_FOUND = "model_not_found"
    TOOL_ERROR = "tool_error"
    PARSING_ERROR = "parsing_error"
    UNKNOWN = "unknown"


# Checked in order; first match wins.
_ERROR_PATTERNS: list[tuple[ErrorType, re.Pattern[str]]] = [
    (ErrorType.AUTHENTICATION, re.compile(
        r"unauthorized|invalid.*api.*key|authentication.*failed|\b401\b", re.I)),
    (ErrorType.AUTHORIZATION, re.compile(
        r"forbidden|access.*denied|permission.*denied|\b403\b", re.I)),
    (ErrorType.RATE_LIMIT, re.compile(
        r"rate.*limit|too.*many.*requests|\b429\b", re.I)),
    (ErrorType.QUOTA_EXCEEDED, re.compile(
        r"quota.*exceeded|billing|insufficient.*credits|usage.*limit", re.I)),
    (ErrorType.MODEL_NOT_FOUND, re.compile(
        r"model.*not.*found|model.*does.*not.*exist|unknown.*model", re.I)),
    (ErrorType.SERVICE_UNAVAILABLE, re.compile(
        r"service.*unavailable|server.*error|\b50[234]\b|bad.*gateway", re.I)),
    (ErrorType.TIMEOUT, re.compile(r"timeout|timed.*out|deadline", re.I)),
    (ErrorType.NETWORK, re.compile(
        r"network|connection|fetch.*failed|econnrefused|enotfound|"
        r"connect.*error", re.I)),
    (ErrorType.VALIDATION, re.compile(
        r"invalid|validation|bad.*request|\b400\b|malformed", re.I)),
    (ErrorType.PARSING_ERROR, re.compile(r"parse|json|syntax", re.I)),
]

_STATUS_TYPES: dict[int, ErrorType] = {
    400: ErrorType.VALIDATION,
    401: ErrorType.AUTHENTICATION,
    403: ErrorType.AUTHORIZATION,
    404: ErrorType.MODEL_NOT_FOUND,
    408: ErrorType.TIMEOUT,
    429: ErrorType.RATE_LIMIT,
    500: ErrorType.SERVICE_UNAVAILABLE,
    502: ErrorType.SERVICE_UNAVAILABLE,
    503: ErrorType.SERVICE_UNAVAILABLE,
    504: ErrorType.TIMEOUT,
}


def classify_error(message: str, status_code: int | None = None) -> ErrorType:
    """Classify an error by HTTP status first, then by message pattern."""
    if status_code is not None and status_code in _STATUS_TYPES:
        return _STATUS_TYPES[status_code]
    for error_type, pattern in _ERROR_PATTERNS:
        if pattern.search(message or ""):
            return error_type
    return ErrorType.UNKNOWN


_USER_MESSAGES: dict[ErrorType, str] = {
    ErrorType.AUTHENTICATION:
        "Authentication failed. Please check your API key in settings.",
    ErrorType.AUTHORIZATION:
        "Access denied. Your API key may not have access to this model.",
    ErrorType.RATE_LIMIT:
        "Rate limit exceeded. Please wait a moment before trying again.",
    ErrorType.NETWORK:
        "Network error. Please check your internet connection.",
    ErrorType.TIMEOUT:
        "The request timed out. Please try again.",
    ErrorType.VALIDATION:
        "The request was rejected as invalid. Check the model name and parameters.",
    ErrorType.SERVICE_UNAVAILABLE:
        "The service is temporarily unavailable. Please try again later.",
    ErrorType.QUOTA_EXCEEDED:
        "Your usage quota has been exceeded. Check your billing details.",
    ErrorType.MODEL_NOT_FOUND:
        "The requested model or endpoint was not found. Check the model name.",
    ErrorType.TOOL_ERROR:
        "A tool failed to execute.",
    ErrorType.PARSING_ERROR:
        "The provider returned a response that could not be parsed.",
    ErrorType.UNKNOWN:
        "An unexpected error occurred.",
}


def user_message(error_type: ErrorType) -> str:
    return _USER_MESSAGES[error_type]


class ProviderError(ToolstreamError):
    """Non-2xx response or transport failure from a provider.

    ``body`` carries the raw response body; ``message`` is the text the
    adapter built from the status, the provider detail and a remediation hint.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        self.error_type = classify_error(body or message, status_code)
        self.user_message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Tool error text
# ---------------------------------------------------------------------------

_TOOL_ERROR_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"timeout|timed out", re.I),
     'Tool "{name}" timed out. The operation took too long to complete. {err}'),
    (re.compile(r"not found|unknown tool|does not exist", re.I),
     'Tool "{name}" is not available. {err}'),
    (re.compile(r"network|connection|econnrefused|fetch", re.I),
     'Tool "{name}" failed due to a network error. {err}'),
    (re.compile(r"invalid.*argument|invalid.*param|missing.*required|validation", re.I),
     'Tool "{name}" received invalid arguments. {err}'),
    (re.compile(r"rate.?limit|too many requests", re.I),
     'Tool "{name}" was rate limited. Try again later. {err}'),
    (re.compile(r"unauthorized|forbidden|permission", re.I),
     'Tool "{name}" is not authorized to perform this operation. {err}'),
]


def format_tool_error(name: str, exc: BaseException | str) -> str:
    """Turn a tool failure into text the model can read and react to."""
    err = str(exc) or type(exc).__name__
    for pattern, template in _TOOL_ERROR_PATTERNS:
        if pattern.search(err):
            return template.format(name=name, err=err)
    return f'Tool "{name}" failed: {err}'
