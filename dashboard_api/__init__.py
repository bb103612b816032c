"""
Dashboard API Client

Typed async client for the multi-tenant dashboard REST API with
single-flight token refresh, bounded-concurrency request admission and
retry with exponential backoff.
"""

from .client import ApiClient, AuthNamespace, ErrorInterceptor, ResourceApi, create_api_client
from .auth import AuthCoordinator
from .limiter import RequestQueue
from .retry import RetryPolicy
from .transport import CoreTransport, RequestInterceptor, ResponseInterceptor
from .types import (
    ClientConfig,
    Credentials,
    PaginatedResponse,
    PendingRequest,
    RequestConfig,
    RetryDecision,
    TokenStorage,
)
from .errors import (
    DashboardApiError,
    NetworkError,
    RequestTimeoutError,
    HttpError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    RateLimitError,
    ServerError,
    UnauthenticatedError,
    QueueTimeoutError,
    ConfigurationError,
    is_dashboard_api_error,
    is_retryable_error,
)
from .storage import MemoryStorage, FileStorage

__version__ = "0.1.0"
__all__ = [
    # Client
    "ApiClient",
    "AuthNamespace",
    "ResourceApi",
    "create_api_client",
    "ErrorInterceptor",
    # Resilience layer
    "AuthCoordinator",
    "RequestQueue",
    "RetryPolicy",
    "CoreTransport",
    "RequestInterceptor",
    "ResponseInterceptor",
    # Types
    "ClientConfig",
    "Credentials",
    "PaginatedResponse",
    "PendingRequest",
    "RequestConfig",
    "RetryDecision",
    "TokenStorage",
    # Errors
    "DashboardApiError",
    "NetworkError",
    "RequestTimeoutError",
    "HttpError",
    "ValidationError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "RateLimitError",
    "ServerError",
    "UnauthenticatedError",
    "QueueTimeoutError",
    "ConfigurationError",
    "is_dashboard_api_error",
    "is_retryable_error",
    # Storage
    "MemoryStorage",
    "FileStorage",
]
