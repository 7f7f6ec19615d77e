"""
Shared fixtures for retailer access service tests.
"""

import json
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import httpx
import pytest

from service_retailer.app.auth.token_manager import ClientCredentials, TokenManager
from service_retailer.app.caching.persistent_store import PersistentStore
from service_retailer.app.caching.response_cache import ResponseCache
from service_retailer.app.adapters.retailer_client import RetailerApiClient


TOKEN_URL = "https://login.partner.test/token"
API_BASE = "https://api.partner.test"

StubResponse = Tuple[int, Any, Dict[str, str]]


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PartnerStub:
    """Token authority plus partner API behind one MockTransport.

    Queued responses are consumed in order; once a queue is empty the default
    (a fresh token, or ``{}`` for the API) is returned.
    """

    def __init__(self):
        self.token_requests: List[httpx.Request] = []
        self.api_requests: List[httpx.Request] = []
        self.token_queue: Deque[StubResponse] = deque()
        self.api_queue: Deque[StubResponse] = deque()
        self.api_default: StubResponse = (200, {}, {})
        self.token_error: Optional[Exception] = None
        self.api_error: Optional[Exception] = None

    def queue_token(self, status: int, body: Any, headers: Optional[Dict[str, str]] = None) -> None:
        self.token_queue.append((status, body, headers or {}))

    def queue_api(self, status: int, body: Any, headers: Optional[Dict[str, str]] = None) -> None:
        self.api_queue.append((status, body, headers or {}))

    @staticmethod
    def _build(request: httpx.Request, spec: StubResponse) -> httpx.Response:
        status, body, headers = spec
        if isinstance(body, (dict, list)):
            content = json.dumps(body).encode("utf-8")
            headers = {"Content-Type": "application/json", **headers}
        elif body is None:
            content = b""
        else:
            content = str(body).encode("utf-8")
        return httpx.Response(status, content=content, headers=headers, request=request)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == TOKEN_URL:
            self.token_requests.append(request)
            if self.token_error is not None:
                raise self.token_error
            if self.token_queue:
                return self._build(request, self.token_queue.popleft())
            n = len(self.token_requests)
            return self._build(request, (200, {"access_token": f"token-{n}", "expires_in": 3600}, {}))

        self.api_requests.append(request)
        if self.api_error is not None:
            raise self.api_error
        if self.api_queue:
            return self._build(request, self.api_queue.popleft())
        return self._build(request, self.api_default)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def partner():
    return PartnerStub()


@pytest.fixture
def http_client(partner):
    return partner.client()


@pytest.fixture
def credentials():
    return ClientCredentials("client-id-123", "client-secret-456")


@pytest.fixture
def token_manager(http_client, credentials, clock):
    return TokenManager(TOKEN_URL, credentials, http_client=http_client, clock=clock)


@pytest.fixture
def store(tmp_path, clock):
    return PersistentStore(tmp_path / "api-cache.json", clock=clock)


@pytest.fixture
def cache(store, clock):
    return ResponseCache(store, clock=clock)


@pytest.fixture
def api_client(token_manager, cache, http_client):
    async def no_sleep(_seconds):
        return None

    return RetailerApiClient(
        API_BASE,
        token_manager,
        cache,
        http_client=http_client,
        sleep=no_sleep,
    )
