"""
Dashboard API Client Type Definitions

Configuration, credentials and the request/response shapes shared by the
client, the admission queue and the auth coordinator.
"""

import itertools
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Literal,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)
from urllib.parse import urlparse

from .errors import ConfigurationError, DashboardApiError, UnauthenticatedError


T = TypeVar("T")

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

ENV_PREFIX = "DASHBOARD_API_"


@dataclass
class Credentials:
    """Access/refresh token pair owned by a TokenStorage."""

    access_token: str
    refresh_token: str
    # Epoch seconds; None when the backend does not report a lifetime
    expires_at: Optional[float] = None
    # Seconds the token was valid for when issued
    lifetime: Optional[float] = None

    def is_expiring(self, threshold: float = 0.0, now: Optional[float] = None) -> bool:
        """
        True when fewer than ``threshold`` seconds of validity remain.

        The threshold is capped at half the token lifetime, so a freshly
        issued short-lived token is never already expiring.
        """
        if self.expires_at is None:
            return False
        if self.lifetime is not None:
            threshold = min(threshold, self.lifetime / 2)
        current = time.time() if now is None else now
        return current >= self.expires_at - threshold

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "lifetime": self.lifetime,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=data.get("expires_at"),
            lifetime=data.get("lifetime"),
        )

    @classmethod
    def from_token_response(
        cls, data: Dict[str, Any], previous_refresh: Optional[str] = None
    ) -> "Credentials":
        """
        Build credentials from a login or refresh response.

        Accepts both ``{"access", "refresh"}`` and
        ``{"access_token", "refresh_token", "expires_in"}`` shapes. A refresh
        response without a rotated refresh token keeps ``previous_refresh``.
        """
        access = data.get("access") or data.get("access_token")
        if not access:
            raise UnauthenticatedError("Token response did not contain an access token")
        refresh = data.get("refresh") or data.get("refresh_token") or previous_refresh or ""
        expires_in = data.get("expires_in")
        if not expires_in:
            return cls(access_token=access, refresh_token=refresh)
        lifetime = float(expires_in)
        return cls(access_token=access, refresh_token=refresh, expires_at=time.time() + lifetime, lifetime=lifetime)


@runtime_checkable
class TokenStorage(Protocol):
    """Token storage interface for custom implementations."""

    def get(self) -> Optional[Credentials]:
        """Return the latest stored credentials, if any."""
        ...

    def set(self, credentials: Credentials) -> None:
        """Replace the stored credentials."""
        ...

    def clear(self) -> None:
        """Forget the stored credentials."""
        ...


@dataclass
class ClientConfig:
    """Client configuration. ``base_url`` has no default on purpose; use ``from_env``."""

    # Backend origin, e.g. https://api.example.com
    base_url: str
    # Path prefix prepended to every relative path
    prefix: str = "/api/v1"
    # Per-attempt timeout in seconds
    timeout: float = 30.0
    # Per-attempt timeout for multipart uploads
    upload_timeout: float = 60.0
    # Admission queue
    max_concurrent: int = 6
    max_per_second: Optional[int] = None
    queue_timeout: float = 30.0
    # Retry policy
    max_attempts: int = 3
    base_delay: float = 0.3
    backoff_multiplier: float = 2.0
    max_delay: float = 8.0
    # Token lifecycle
    refresh_path: str = "/auth/token/refresh/"
    auto_refresh: bool = True
    refresh_threshold: float = 30.0
    storage: Optional[TokenStorage] = None
    on_unauthenticated: Optional[Callable[[UnauthenticatedError], None]] = None
    # Attach an Idempotency-Key header to mutating requests
    idempotency_keys: bool = True
    # Custom headers to include in requests
    headers: Optional[Dict[str, str]] = None
    debug: bool = False

    def validate(self) -> None:
        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                "base_url must be an absolute http(s) URL",
                {"base_url": self.base_url},
            )
        if self.max_concurrent < 1:
            raise ConfigurationError("max_concurrent must be at least 1")
        if self.max_per_second is not None and self.max_per_second < 1:
            raise ConfigurationError("max_per_second must be at least 1 when set")
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("retry delays must not be negative")

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "ClientConfig":
        """Read configuration from ``DASHBOARD_API_*`` environment variables."""
        env = os.environ if environ is None else environ

        base_url = env.get(f"{ENV_PREFIX}BASE_URL", "").strip()
        if not base_url:
            raise ConfigurationError(f"{ENV_PREFIX}BASE_URL is required")

        values: Dict[str, Any] = {"base_url": base_url}
        prefix = env.get(f"{ENV_PREFIX}PREFIX")
        if prefix is not None:
            values["prefix"] = prefix.strip()
        for key, name, cast in (
            ("timeout", "TIMEOUT", float),
            ("upload_timeout", "UPLOAD_TIMEOUT", float),
            ("max_concurrent", "MAX_CONCURRENT", int),
            ("max_per_second", "MAX_PER_SECOND", int),
            ("queue_timeout", "QUEUE_TIMEOUT", float),
            ("max_attempts", "MAX_ATTEMPTS", int),
        ):
            value = _get_env_number(env, f"{ENV_PREFIX}{name}", cast)
            if value is not None:
                values[key] = value

        values["debug"] = is_truthy(env.get(f"{ENV_PREFIX}DEBUG"))

        token_file = env.get(f"{ENV_PREFIX}TOKEN_FILE", "").strip()
        if token_file:
            from .storage import FileStorage

            values["storage"] = FileStorage(token_file)

        values.update(overrides)
        return cls(**values)


def is_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_number(env: Any, key: str, cast: Callable[[str], Any]) -> Any:
    raw = (env.get(key) or "").strip()
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a {cast.__name__} value.", {"value": raw})


@dataclass
class RequestConfig:
    """Per-call options."""

    # Login, register and public lookups: no bearer header, no refresh on 401
    skip_auth: bool = False
    skip_retry: bool = False
    # Per-attempt deadline in seconds, overrides ClientConfig.timeout
    timeout: Optional[float] = None
    headers: Optional[Dict[str, str]] = None
    # Supply to deduplicate a logical operation across separate calls
    idempotency_key: Optional[str] = None


_request_ids = itertools.count(1)


@dataclass
class PendingRequest:
    """One logical call, alive from the facade entry until it settles."""

    method: HttpMethod
    path: str
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    files: Any = None
    data: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    skip_auth: bool = False
    skip_retry: bool = False
    timeout: Optional[float] = None
    idempotency_key: Optional[str] = None
    id: int = field(default_factory=lambda: next(_request_ids))
    attempt_count: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)
    # Bearer token used on the most recent attempt
    sent_token: Optional[str] = None

    @property
    def is_mutating(self) -> bool:
        return self.method in MUTATING_METHODS

    def ensure_idempotency_key(self) -> str:
        if self.idempotency_key is None:
            self.idempotency_key = uuid.uuid4().hex
        return self.idempotency_key

    def describe(self) -> str:
        return f"#{self.id} {self.method} {self.path}"


@dataclass
class RetryDecision:
    """Outcome of RetryPolicy.decide for a single failed attempt."""

    should_retry: bool
    # Seconds to wait before the next attempt
    delay: float
    reason: str


@dataclass
class PaginatedResponse(Generic[T]):
    """List endpoint envelope: ``{count, next, previous, results}``."""

    count: int
    next: Optional[str]
    previous: Optional[str]
    results: List[T] = field(default_factory=list)

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], item: Optional[Callable[[Any], T]] = None
    ) -> "PaginatedResponse[T]":
        if not isinstance(data, dict):
            raise DashboardApiError(
                "INVALID_RESPONSE",
                f"Expected a paginated object, got {type(data).__name__}",
            )
        raw_results = data.get("results") or []
        results = [item(entry) for entry in raw_results] if item else list(raw_results)
        return cls(
            count=data.get("count", len(results)),
            next=data.get("next"),
            previous=data.get("previous"),
            results=results,
        )

    @property
    def has_next(self) -> bool:
        return bool(self.next)
