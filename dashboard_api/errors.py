"""
Dashboard API Client Error Classes

Every failure the client surfaces is a DashboardApiError. Transport
failures carry a ``kind`` of ``network``, ``timeout`` or ``http`` so the
retry policy can classify them without inspecting httpx exceptions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class DashboardApiError(Exception):
    """Base error class for the dashboard API client."""

    kind = "client"

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.request_id = request_id
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class NetworkError(DashboardApiError):
    """Connection failure before any HTTP response was received."""

    kind = "network"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("NETWORK_ERROR", message, 0, details)


class RequestTimeoutError(NetworkError):
    """The attempt exceeded its deadline and was aborted."""

    kind = "timeout"

    def __init__(self, message: str = "Request timeout", timeout: Optional[float] = None):
        super().__init__(message, {"timeout": timeout} if timeout is not None else None)
        self.code = "TIMEOUT"
        self.timeout = timeout


class HttpError(DashboardApiError):
    """Non-2xx response from the backend."""

    kind = "http"
    default_code = "HTTP_ERROR"

    def __init__(
        self,
        status: int,
        message: Optional[str] = None,
        body: Any = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        details = body if isinstance(body, dict) else ({"raw": body} if body else None)
        super().__init__(
            code or self.default_code,
            message or f"Request failed with status {status}",
            status,
            details,
            request_id,
        )
        self.status = status
        self.body = body

    @classmethod
    def from_response(
        cls,
        status: int,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> "HttpError":
        """Build the matching HttpError subclass for a status and error body."""
        headers = headers or {}
        message = _error_message(body) or f"HTTP error {status}"
        code = body.get("code") if isinstance(body, dict) and isinstance(body.get("code"), str) else None
        request_id = headers.get("x-request-id")

        if status == 400:
            return ValidationError(message, body, code, request_id)
        if status == 401:
            return AuthenticationError(message, body, code, request_id)
        if status == 403:
            return AuthorizationError(message, body, code, request_id)
        if status == 404:
            return NotFoundError(message, body, code, request_id)
        if status == 429:
            return RateLimitError(message, body, _parse_retry_after(headers.get("retry-after")), request_id)
        if 500 <= status < 600:
            return ServerError(status, message, body, code, request_id)
        return cls(status, message, body, code, request_id)


class ValidationError(HttpError):
    """Validation error (invalid input)."""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, body: Any = None, code: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(400, message, body, code, request_id)


class AuthenticationError(HttpError):
    """Raw 401 from the backend (before or without a refresh)."""

    default_code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str, body: Any = None, code: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(401, message, body, code, request_id)


class AuthorizationError(HttpError):
    """Authorization error (insufficient permissions)."""

    default_code = "FORBIDDEN"

    def __init__(self, message: str, body: Any = None, code: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(403, message, body, code, request_id)


class NotFoundError(HttpError):
    default_code = "NOT_FOUND"

    def __init__(self, message: str, body: Any = None, code: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(404, message, body, code, request_id)


class RateLimitError(HttpError):
    """Server-side rate limit (429). Surfaced, not retried."""

    default_code = "RATE_LIMITED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        body: Any = None,
        retry_after: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(429, message, body, None, request_id)
        self.retry_after = retry_after


class ServerError(HttpError):
    """5xx response."""

    default_code = "SERVER_ERROR"


class UnauthenticatedError(DashboardApiError):
    """
    The session can no longer be authenticated.

    Raised when a refresh fails, when no refresh token is available, or
    when a request is still rejected after its post-refresh replay. The
    token store has already been cleared when this is raised.
    """

    kind = "unauthenticated"

    def __init__(self, message: str = "Authentication expired. Please log in again.", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHENTICATED", message, 401, details)


class QueueTimeoutError(DashboardApiError):
    """Waited too long for an admission slot."""

    kind = "queue_timeout"

    def __init__(self, waited: float):
        super().__init__(
            "QUEUE_TIMEOUT",
            f"Request was not admitted within {waited:.2f}s",
            0,
            {"waited": waited},
        )
        self.waited = waited


class ConfigurationError(DashboardApiError):
    """Configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, 0, details)


def _error_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            # {"error": {"message": ...}} style bodies
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
        return None
    if isinstance(body, str) and body.strip():
        return body.strip()[:200]
    return None


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def is_dashboard_api_error(error: Any) -> bool:
    """Check if error is a DashboardApiError."""
    return isinstance(error, DashboardApiError)


def is_retryable_error(error: Any) -> bool:
    """Network failures, timeouts and 5xx responses are retryable; nothing else is."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, HttpError):
        return 500 <= error.status < 600
    return False
