from typing import Any, Callable, List, Optional

import httpx
import pytest

from dashboard_api import ApiClient, ClientConfig, MemoryStorage


BASE_URL = "https://api.example.com"
API_ROOT = f"{BASE_URL}/api/v1"


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def make_client(sleeps: SleepRecorder, storage: MemoryStorage) -> Callable[..., ApiClient]:
    """Build an ApiClient with recorded sleeps and zero jitter.

    Pass ``handler`` to route traffic through an httpx.MockTransport;
    otherwise the client's own AsyncClient is used (for respx).
    """

    def factory(handler: Optional[Callable[[httpx.Request], Any]] = None, **overrides: Any) -> ApiClient:
        overrides.setdefault("storage", storage)
        config = ClientConfig(base_url=BASE_URL, **overrides)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
        return ApiClient(config, http_client=http_client, sleep=sleeps, jitter=lambda: 0.0)

    return factory
