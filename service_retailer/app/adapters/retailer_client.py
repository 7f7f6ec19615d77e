"""
Partner API client for the retailer access layer.

Every proxy route goes through :meth:`RetailerApiClient.execute`, which
answers cacheable GETs from the response cache, attaches a bearer token,
recovers once from a stale token (401) and turns quota exhaustion (429) into
a :class:`RateLimitError` carrying the retry interval.
"""

import asyncio
import json
import math
import re
import time
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from shared.errors import CredentialsError, NetworkError, RateLimitError, RequestFailedError
from shared.logging import get_logger
from ..auth.token_manager import TokenManager
from ..caching.entries import make_cache_key, split_endpoint
from ..caching.response_cache import ResponseCache

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_MEDIA_TYPE = "application/vnd.retailer.v10+json"
DEFAULT_RETRY_AFTER_SECONDS = 60
RETRY_IN_PATTERN = re.compile(r"retry in (\d+) seconds", re.IGNORECASE)


def parse_retry_after(response: httpx.Response) -> int:
    """Seconds until the partner accepts requests again.

    Uses the ``Retry-After`` header (delta-seconds or HTTP date), then a
    ``retry in N seconds`` phrase in the body's ``detail``/``message``/``title``,
    then 60.
    """
    header = response.headers.get("Retry-After")
    if header:
        header = header.strip()
        if header.isdigit():
            return int(header)
        try:
            when = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max(0, math.ceil((when - datetime.now(timezone.utc)).total_seconds()))

    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for field in ("detail", "message", "title"):
            text = body.get(field)
            if isinstance(text, str):
                match = RETRY_IN_PATTERN.search(text)
                if match:
                    return int(match.group(1))

    return DEFAULT_RETRY_AFTER_SECONDS


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class RetailerApiClient:
    """Authenticated, cache-aware client for the partner REST API."""

    def __init__(
        self,
        base_url: str,
        token_manager: TokenManager,
        cache: ResponseCache,
        *,
        media_type: str = DEFAULT_MEDIA_TYPE,
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = 10.0,
        token_retry_delay: float = 0.5,
        metrics: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip('/')
        self.token_manager = token_manager
        self.cache = cache
        self.media_type = media_type
        self.token_retry_delay = token_retry_delay
        self.metrics = metrics
        self.logger = get_logger("retailer.api_client")
        self._sleep = sleep
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout)
        self._inflight: Dict[str, "asyncio.Future[Any]"] = {}

    async def execute(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        use_cache: bool = True,
    ) -> Any:
        """Call ``endpoint`` (path plus query string) and return the parsed JSON body.

        Raises CredentialsError, NetworkError, RateLimitError or
        RequestFailedError. Only successful GETs with ``use_cache`` touch the
        cache.
        """
        method = method.upper()
        if method != "GET" or not use_cache:
            return await self._fetch(endpoint, method, headers, body, cache_result=False)

        path, params = split_endpoint(endpoint)
        cached = await self.cache.read(path, params)
        if cached is not None:
            self.logger.debug("Serving partner response from cache", endpoint=path)
            return cached

        key = make_cache_key(path, params)
        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(
                self._fetch(endpoint, method, headers, body, cache_result=True)
            )
            self._inflight[key] = pending
            pending.add_done_callback(lambda _f, k=key: self._release(k, _f))
        else:
            self.logger.debug("Joining in-flight partner request", endpoint=path)
        return await asyncio.shield(pending)

    def _release(self, key: str, future: "asyncio.Future[Any]") -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]

    async def _fetch(
        self,
        endpoint: str,
        method: str,
        headers: Optional[Mapping[str, str]],
        body: Any,
        *,
        cache_result: bool,
    ) -> Any:
        token = await self.token_manager.get()
        response = await self._send(endpoint, method, headers, body, token)

        if response.status_code == 401:
            self.logger.warning("Partner API returned 401, refreshing access token", endpoint=endpoint)
            self.token_manager.invalidate()
            await self._sleep(self.token_retry_delay)
            token = await self.token_manager.get()
            response = await self._send(endpoint, method, headers, body, token)

            if response.status_code == 401:
                self.token_manager.invalidate()
                detail = _error_body(response)
                self.logger.error("Partner API rejected refreshed token", endpoint=endpoint)
                raise CredentialsError(
                    "Token refresh failed, check that the API credentials are correct",
                    details={"status_code": 401, "body": detail},
                )

        if response.status_code == 429:
            retry_after = parse_retry_after(response)
            if self.metrics:
                self.metrics.increment_counter("rate_limit_errors_total")
            self.logger.warning("Partner API rate limit reached", endpoint=endpoint, retry_after=retry_after)
            minutes = math.ceil(retry_after / 60)
            raise RateLimitError(
                f"Rate limit reached. Retry in {minutes} minute(s) ({retry_after} seconds).",
                retry_after_seconds=retry_after,
                status=429,
            )

        if not response.is_success:
            detail = _error_body(response)
            self.logger.error(
                "Partner API request failed",
                endpoint=endpoint,
                method=method,
                status_code=response.status_code,
            )
            raise RequestFailedError(
                response.status_code,
                detail,
                message=f"API request failed: {response.status_code}",
            )

        data = self._parse(response)
        # An empty body reads back as a miss, so it is never cached
        if cache_result and data is not None:
            path, params = split_endpoint(endpoint)
            await self.cache.write(path, data, params, method=method)
        return data

    def _build_headers(self, headers: Optional[Mapping[str, str]], token: str) -> httpx.Headers:
        merged = httpx.Headers({
            "Accept": self.media_type,
            "Content-Type": self.media_type,
        })
        for name, value in (headers or {}).items():
            if name.lower() != "authorization":
                merged[name] = value
        merged["Authorization"] = f"Bearer {token}"
        return merged

    async def _send(
        self,
        endpoint: str,
        method: str,
        headers: Optional[Mapping[str, str]],
        body: Any,
        token: str,
    ) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        content: Optional[bytes] = None
        if body is not None:
            if isinstance(body, (bytes, bytearray)):
                content = bytes(body)
            elif isinstance(body, str):
                content = body.encode("utf-8")
            else:
                content = json.dumps(body).encode("utf-8")

        start = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._build_headers(headers, token),
                content=content,
            )
        except httpx.HTTPError as exc:
            self.logger.error("Partner API unreachable", url=url, error=str(exc))
            if self.metrics:
                self.metrics.increment_counter("upstream_requests_total", method=method, status_code="error")
            raise NetworkError(
                f"Network error: cannot reach partner API ({exc})",
                details={"url": url, "cause": repr(exc)},
            ) from exc

        if self.metrics:
            self.metrics.increment_counter(
                "upstream_requests_total", method=method, status_code=str(response.status_code)
            )
            self.metrics.observe_histogram(
                "upstream_request_duration_seconds", time.perf_counter() - start, method=method
            )
        return response

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def close(self) -> None:
        """Close the underlying HTTP client if this client created it."""
        if self._owns_client:
            await self._client.aclose()
