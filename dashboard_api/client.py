"""
Dashboard API Client

Async client used by every dashboard domain module. Each call is admitted
by the RequestQueue, sent once by the CoreTransport, refreshed and replayed
on 401 by the AuthCoordinator, and retried with backoff on network, timeout
and 5xx failures.
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import httpx

from .auth import AuthCoordinator
from .errors import (
    AuthenticationError,
    DashboardApiError,
    UnauthenticatedError,
)
from .limiter import RequestQueue
from .retry import RetryPolicy
from .storage import MemoryStorage
from .transport import CoreTransport, RequestInterceptor, ResponseInterceptor
from .types import (
    ClientConfig,
    Credentials,
    HttpMethod,
    PaginatedResponse,
    PendingRequest,
    RequestConfig,
)


logger = logging.getLogger("dashboard_api")

T = TypeVar("T")

Parser = Callable[[Any], T]

ErrorInterceptor = Callable[[DashboardApiError], Optional[DashboardApiError]]


class ResourceApi(Generic[T]):
    """Typed CRUD pass-through for one REST collection."""

    def __init__(self, client: "ApiClient", base_path: str, item: Optional[Parser[T]] = None) -> None:
        self._client = client
        self._base_path = base_path.rstrip("/")
        self._item = item

    def _detail(self, resource_id: Any) -> str:
        return f"{self._base_path}/{resource_id}/"

    async def list(
        self, params: Optional[Dict[str, Any]] = None, config: Optional[RequestConfig] = None
    ) -> PaginatedResponse[T]:
        return await self._client.list(self._base_path + "/", self._item, params, config)

    async def get(self, resource_id: Any, config: Optional[RequestConfig] = None) -> T:
        return await self._client.get(self._detail(resource_id), config=config, parse=self._item)

    async def create(self, body: Any, config: Optional[RequestConfig] = None) -> T:
        return await self._client.post(self._base_path + "/", body, config, parse=self._item)

    async def update(self, resource_id: Any, body: Any, config: Optional[RequestConfig] = None) -> T:
        return await self._client.patch(self._detail(resource_id), body, config, parse=self._item)

    async def replace(self, resource_id: Any, body: Any, config: Optional[RequestConfig] = None) -> T:
        return await self._client.put(self._detail(resource_id), body, config, parse=self._item)

    async def delete(self, resource_id: Any, config: Optional[RequestConfig] = None) -> None:
        await self._client.delete(self._detail(resource_id), config)


class AuthNamespace:
    """Authentication endpoints (login, register, current user)."""

    def __init__(self, client: "ApiClient") -> None:
        self._client = client

    async def login(self, email: str, password: str) -> Credentials:
        """Exchange email/password for a token pair and store it."""
        self._client._log("Login attempt")
        response = await self._client.post(
            "/auth/token/",
            {"email": email, "password": password},
            RequestConfig(skip_auth=True),
        )
        credentials = Credentials.from_token_response(response or {})
        self._client._storage.set(credentials)
        self._client._log("Login successful")
        return credentials

    async def register(self, email: str, password: str, full_name: str) -> Dict[str, Any]:
        """Register a new user. Does not log in."""
        return await self._client.post(
            "/users/register/",
            {"email": email, "password": password, "full_name": full_name},
            RequestConfig(skip_auth=True),
        )

    async def current_user(self) -> Dict[str, Any]:
        """Fetch the authenticated user."""
        return await self._client.get("/users/me/")

    def logout(self) -> None:
        """Forget the stored tokens."""
        self._client._log("Logout")
        self._client.clear_tokens()


class ApiClient:
    """
    Dashboard API Client - async SDK entry point.

    One instance is one session: it owns its token storage, refresh
    coordinator, admission queue and retry policy.
    """

    def __init__(
        self,
        config: ClientConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Optional[Callable[[], float]] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the client."""
        config.validate()

        self._config = config
        self._debug = config.debug
        self._sleep = sleep
        self._storage = config.storage if config.storage is not None else MemoryStorage()

        self.transport = CoreTransport(
            config.base_url,
            prefix=config.prefix,
            timeout=config.timeout,
            headers=config.headers,
            idempotency_keys=config.idempotency_keys,
            http_client=http_client,
        )
        self.coordinator = AuthCoordinator(
            self._storage,
            self.transport,
            refresh_path=config.refresh_path,
            on_unauthenticated=config.on_unauthenticated,
        )
        self.queue = RequestQueue(
            max_concurrent=config.max_concurrent,
            queue_timeout=config.queue_timeout,
            max_per_second=config.max_per_second,
            clock=clock,
            sleep=sleep,
        )
        self.retry_policy = RetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.backoff_multiplier,
            max_delay=config.max_delay,
            jitter=jitter,
        )

        self._error_interceptors: List[ErrorInterceptor] = []
        if config.debug:
            self.add_request_interceptor(_log_request)
            self.add_error_interceptor(_log_error)

        # Namespaces
        self.auth = AuthNamespace(self)

        self._log(f"ApiClient initialized (base_url={config.base_url})")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[dashboard_api] {message}", *args)

    # =========================================================================
    # HTTP Verbs
    # =========================================================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        config: Optional[RequestConfig] = None,
        parse: Optional[Parser[T]] = None,
    ) -> Any:
        """GET ``path`` with optional query parameters."""
        payload = await self._request("GET", path, params=params, config=config)
        return parse(payload) if parse else payload

    async def post(
        self,
        path: str,
        body: Any = None,
        config: Optional[RequestConfig] = None,
        parse: Optional[Parser[T]] = None,
    ) -> Any:
        """POST a JSON body."""
        payload = await self._request("POST", path, body=body, config=config)
        return parse(payload) if parse else payload

    async def put(
        self,
        path: str,
        body: Any = None,
        config: Optional[RequestConfig] = None,
        parse: Optional[Parser[T]] = None,
    ) -> Any:
        """PUT a JSON body."""
        payload = await self._request("PUT", path, body=body, config=config)
        return parse(payload) if parse else payload

    async def patch(
        self,
        path: str,
        body: Any = None,
        config: Optional[RequestConfig] = None,
        parse: Optional[Parser[T]] = None,
    ) -> Any:
        """PATCH a JSON body."""
        payload = await self._request("PATCH", path, body=body, config=config)
        return parse(payload) if parse else payload

    async def delete(self, path: str, config: Optional[RequestConfig] = None) -> Any:
        """DELETE ``path``. Returns the response payload, usually None."""
        return await self._request("DELETE", path, config=config)

    async def upload(
        self,
        path: str,
        files: Any,
        data: Optional[Dict[str, Any]] = None,
        config: Optional[RequestConfig] = None,
        parse: Optional[Parser[T]] = None,
    ) -> Any:
        """
        POST a multipart form.

        Args:
            files: Anything httpx accepts as ``files=``, e.g.
                ``{"file": ("receipt.pdf", content, "application/pdf")}``.
            data: Extra form fields.
        """
        payload = await self._request(
            "POST",
            path,
            files=files,
            form=data,
            config=config,
            default_timeout=self._config.upload_timeout,
        )
        return parse(payload) if parse else payload

    async def list(
        self,
        path: str,
        item: Optional[Parser[T]] = None,
        params: Optional[Dict[str, Any]] = None,
        config: Optional[RequestConfig] = None,
    ) -> PaginatedResponse[T]:
        """GET a paginated collection."""
        payload = await self._request("GET", path, params=params, config=config)
        return PaginatedResponse.from_dict(payload or {}, item)

    def crud(self, base_path: str, item: Optional[Parser[T]] = None) -> ResourceApi[T]:
        """Create a typed CRUD API for a resource collection."""
        return ResourceApi(self, base_path, item)

    # =========================================================================
    # Interceptors
    # =========================================================================

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> Callable[[], None]:
        """
        Run ``interceptor`` on every outgoing ``httpx.Request``, including
        retries, replays and the token refresh call.

        The interceptor may return a replacement request, or None to keep
        the one it was given. Returns a callable that removes it again.
        """
        return _register(self.transport.request_interceptors, interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> Callable[[], None]:
        """Run ``interceptor`` on every ``httpx.Response`` before it is decoded."""
        return _register(self.transport.response_interceptors, interceptor)

    def add_error_interceptor(self, interceptor: ErrorInterceptor) -> Callable[[], None]:
        """
        Run ``interceptor`` on the error of every failed attempt.

        Returning a different DashboardApiError replaces the original one
        for the rest of the request lifecycle.
        """
        return _register(self._error_interceptors, interceptor)

    # =========================================================================
    # Token Methods
    # =========================================================================

    def set_tokens(self, access_token: str, refresh_token: str, expires_in: Optional[float] = None) -> None:
        """Store a token pair obtained elsewhere (e.g. an OAuth callback)."""
        if not expires_in:
            self._storage.set(Credentials(access_token, refresh_token))
            return
        self._storage.set(
            Credentials(access_token, refresh_token, time.time() + expires_in, lifetime=expires_in)
        )

    def clear_tokens(self) -> None:
        self._storage.clear()

    def get_access_token(self) -> Optional[str]:
        credentials = self._storage.get()
        return credentials.access_token if credentials else None

    def get_credentials(self) -> Optional[Credentials]:
        return self._storage.get()

    def is_authenticated(self) -> bool:
        """True when an access token is stored."""
        return bool(self.get_access_token())

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _request(
        self,
        method: HttpMethod,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        files: Any = None,
        form: Optional[Dict[str, Any]] = None,
        config: Optional[RequestConfig] = None,
        default_timeout: Optional[float] = None,
    ) -> Any:
        """Make HTTP request with admission, refresh-on-401 and retry."""
        config = config or RequestConfig()
        request = PendingRequest(
            method=method,
            path=path,
            params=params,
            json=body,
            files=files,
            data=form,
            headers=dict(config.headers or {}),
            skip_auth=config.skip_auth,
            skip_retry=config.skip_retry,
            timeout=config.timeout if config.timeout is not None else default_timeout,
            idempotency_key=config.idempotency_key,
        )

        generation = self.coordinator.generation
        if not request.skip_auth:
            await self._refresh_if_expiring()

        attempt = 1
        replayed = False
        priority = False

        while True:
            try:
                return await self._attempt(request, priority, generation)
            except UnauthenticatedError:
                raise
            except AuthenticationError as error:
                if request.skip_auth:
                    raise
                if replayed:
                    unauthenticated = UnauthenticatedError(
                        "Request was rejected after refreshing the session."
                    )
                    self.coordinator.end_session(unauthenticated, generation)
                    raise unauthenticated from error
                self._log(f"{request.describe()} got 401; refreshing session")
                await self.coordinator.refresh(request.sent_token, generation)
                replayed = True
                priority = True
                continue
            except DashboardApiError as error:
                if request.skip_retry:
                    raise
                decision = self.retry_policy.decide(error, attempt)
                if not decision.should_retry:
                    if attempt > 1:
                        logger.warning(
                            "Giving up on %s after %s attempts: %s",
                            request.describe(),
                            attempt,
                            decision.reason,
                        )
                    raise
                logger.warning(
                    "Retrying %s after %.2fs (%s, attempt %s/%s)",
                    request.describe(),
                    decision.delay,
                    decision.reason,
                    attempt + 1,
                    self.retry_policy.max_attempts,
                )
                await self._sleep(decision.delay)
                attempt += 1
                priority = False

    async def _attempt(self, request: PendingRequest, priority: bool, generation: int) -> Any:
        async with self.queue.slot(priority):
            credentials = None if request.skip_auth else self._storage.get()
            if (
                not request.skip_auth
                and credentials is None
                and generation != self.coordinator.generation
            ):
                # The session ended while this request was waiting for a slot
                raise UnauthenticatedError("Session ended. Please log in again.")

            request.attempt_count += 1
            token = credentials.access_token if credentials else None
            try:
                return await self.transport.send(request, token)
            except DashboardApiError as error:
                replacement = self._intercept_error(error)
                if replacement is error:
                    raise
                raise replacement from error

    def _intercept_error(self, error: DashboardApiError) -> DashboardApiError:
        for interceptor in list(self._error_interceptors):
            replacement = interceptor(error)
            if replacement is not None:
                error = replacement
        return error

    async def _refresh_if_expiring(self) -> None:
        if not self._config.auto_refresh:
            return
        credentials = self._storage.get()
        if (
            credentials is not None
            and credentials.refresh_token
            and credentials.is_expiring(self._config.refresh_threshold)
        ):
            self._log("Access token is expiring; refreshing before request")
            await self.coordinator.refresh()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.transport.close()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def _register(interceptors: List[Any], interceptor: Any) -> Callable[[], None]:
    interceptors.append(interceptor)

    def remove() -> None:
        if interceptor in interceptors:
            interceptors.remove(interceptor)

    return remove


def _log_request(request: httpx.Request) -> None:
    logger.debug("[dashboard_api] %s %s", request.method, request.url)


def _log_error(error: DashboardApiError) -> None:
    logger.debug("[dashboard_api] error %s: %s", error.code, error.message)


# =============================================================================
# Factory Functions
# =============================================================================

def create_api_client(config: Optional[ClientConfig] = None, **kwargs: Any) -> ApiClient:
    """Create a client, reading ClientConfig from the environment when none is given."""
    return ApiClient(config if config is not None else ClientConfig.from_env(), **kwargs)
