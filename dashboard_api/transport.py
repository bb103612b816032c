"""
Core HTTP transport.

Performs exactly one HTTP exchange per call and normalizes every failure
into a DashboardApiError. Retries, refreshes and admission are the
caller's business.
"""

from typing import Any, Callable, Dict, List, Optional

import httpx

from .errors import HttpError, NetworkError, RequestTimeoutError
from .types import PendingRequest


RequestInterceptor = Callable[[httpx.Request], Optional[httpx.Request]]
ResponseInterceptor = Callable[[httpx.Response], Optional[httpx.Response]]


class CoreTransport:
    """Builds and sends a single request over a shared httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        prefix: str = "",
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        idempotency_keys: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._prefix = "/" + prefix.strip("/") if prefix and prefix.strip("/") else ""
        self._timeout = timeout
        self._custom_headers = headers or {}
        self._idempotency_keys = idempotency_keys
        self._owns_client = http_client is None
        self._http_client = http_client
        self.request_interceptors: List[RequestInterceptor] = []
        self.response_interceptors: List[ResponseInterceptor] = []

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def build_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url}{self._prefix}{path}"

    def build_headers(self, request: PendingRequest, access_token: Optional[str]) -> Dict[str, str]:
        headers: Dict[str, str] = {
            "Accept": "application/json",
            **self._custom_headers,
            **request.headers,
        }
        if access_token and not request.skip_auth:
            headers["Authorization"] = f"Bearer {access_token}"
        if self._idempotency_keys and request.is_mutating:
            headers["Idempotency-Key"] = request.ensure_idempotency_key()
        return headers

    async def send(self, request: PendingRequest, access_token: Optional[str] = None) -> Any:
        """
        Perform one attempt of ``request``.

        Returns:
            The decoded JSON payload, the response text for non-JSON bodies,
            or None for empty responses.

        Raises:
            RequestTimeoutError: The attempt exceeded its deadline.
            NetworkError: The connection failed.
            HttpError: The backend answered with a 4xx/5xx status.
        """
        url = self.build_url(request.path)
        headers = self.build_headers(request, access_token)
        request.sent_token = access_token if not request.skip_auth else None
        timeout = request.timeout if request.timeout is not None else self._timeout

        client = self._get_client()
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
        if request.params:
            kwargs["params"] = {k: _query_value(v) for k, v in request.params.items() if v is not None}
        if request.files is not None:
            kwargs["files"] = request.files
            if request.data:
                kwargs["data"] = request.data
        elif request.json is not None:
            kwargs["json"] = request.json

        http_request = client.build_request(request.method, url, **kwargs)
        for interceptor in list(self.request_interceptors):
            replacement = interceptor(http_request)
            if replacement is not None:
                http_request = replacement

        try:
            response = await client.send(http_request)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Request timed out after {timeout}s", timeout) from exc
        except httpx.RequestError as exc:
            raise NetworkError(str(exc) or type(exc).__name__, {"url": url}) from exc

        for interceptor in list(self.response_interceptors):
            replaced = interceptor(response)
            if replaced is not None:
                response = replaced

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Any:
        """Decode a successful body or raise the matching HttpError."""
        body = _decode_body(response)

        if response.is_success:
            return body

        raise HttpError.from_response(response.status_code, body, dict(response.headers))

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


def _decode_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value
