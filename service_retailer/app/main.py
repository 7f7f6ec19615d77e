"""
Retailer access service: FastAPI surface over the partner API pipeline.
"""

import time
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AccessLayerException, CredentialsError, RateLimitError
from .adapters.retailer_client import RetailerApiClient
from .auth.token_manager import ClientCredentials, TokenManager
from .caching.entries import split_endpoint
from .caching.persistent_store import PersistentStore
from .caching.response_cache import ResponseCache
from .ratelimit.registry import RateLimitRegistry, default_registry


MIN_CREDENTIAL_LENGTH = 10
CREDENTIALS_PROBE_ENDPOINT = "/retailer/orders?fulfilment-method=ALL&status=OPEN&page=1"


class CredentialsUpdate(BaseModel):
    """Body of ``POST /api/settings``."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class RetailerAccessService(BaseService):
    """Proxy service for the partner retailer API."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        registry: Optional[RateLimitRegistry] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("retailer", 8000, config)
        self.registry = registry or default_registry

        credentials = ClientCredentials(self.config.client_id, self.config.client_secret)
        self.credentials_source: Optional[str] = "environment" if credentials.is_complete else None

        self.token_manager = TokenManager(
            self.config.token_url,
            credentials,
            http_client=http_client,
            http_timeout=self.config.http_timeout_seconds,
            clock=clock,
            metrics=self.metrics,
        )

        store = None
        if self.config.enable_persistent_cache:
            store = PersistentStore(self.config.cache_file, clock=clock)
        self.cache = ResponseCache(store, registry=self.registry, clock=clock, metrics=self.metrics)

        self.api_client = RetailerApiClient(
            self.config.api_base_url,
            self.token_manager,
            self.cache,
            media_type=self.config.media_type,
            http_client=http_client,
            http_timeout=self.config.http_timeout_seconds,
            token_retry_delay=self.config.token_retry_delay_seconds,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.api_client.close()
            await self.token_manager.close()

        self._setup_retailer_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.retailer_service = self

    async def _check_dependencies(self) -> Dict[str, Any]:
        status = self.token_manager.status()
        return {
            "credentials": "ok" if status["has_credentials"] else "missing",
            "token": "ok" if status["has_token"] else "empty",
        }

    def _setup_retailer_routes(self):
        """Set up token, rate limit, settings, cache and proxy routes."""

        @self.app.get("/api/token")
        async def token_status():
            """Check that a token can be obtained (uses the cached one when valid)."""
            if not self.token_manager.credentials.is_complete:
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": "Credentials not configured",
                        "message": "API credentials are not configured, set them under /api/settings.",
                        "has_credentials": False,
                    },
                )
            token = await self.token_manager.get()
            return {
                "success": True,
                "message": "Token is valid",
                "has_token": bool(token),
                "has_credentials": True,
            }

        @self.app.post("/api/token")
        async def refresh_token():
            """Force a token refresh."""
            self.token_manager.invalidate()
            token = await self.token_manager.get()
            return {"success": True, "message": "Token refreshed", "has_token": bool(token)}

        @self.app.get("/api/ratelimits")
        async def rate_limit_info(
            endpoint: Optional[str] = Query(None),
            method: str = Query("GET"),
        ):
            """Describe the quota rule for an endpoint and the timings derived from it."""
            if not endpoint:
                raise HTTPException(
                    status_code=400,
                    detail={
                        "error": "Missing endpoint parameter",
                        "message": "Provide ?endpoint=/retailer/orders",
                    },
                )

            rule = self.registry.lookup(endpoint, method)
            if rule is None:
                return {
                    "success": False,
                    "message": "Rate limit info not found for this endpoint",
                    "endpoint": endpoint,
                    "method": method,
                }

            ttl = self.registry.compute_optimal_ttl(endpoint, method)
            interval = self.registry.compute_safe_interval(endpoint, method)
            return {
                "success": True,
                "data": {
                    "rate_limit": rule.to_dict(),
                    "optimal_cache_ttl_seconds": ttl,
                    "optimal_cache_ttl_minutes": round(ttl / 60, 1),
                    "safe_request_interval_seconds": interval,
                    "info": self.registry.describe(endpoint, method),
                },
            }

        @self.app.get("/api/settings")
        async def get_settings():
            """Report whether credentials are configured; the secret is never returned."""
            credentials = self.token_manager.credentials
            if not credentials.is_complete:
                return {"success": True, "data": {"has_credentials": False}}
            return {
                "success": True,
                "data": {
                    "client_id": credentials.client_id,
                    "has_credentials": True,
                    "source": self.credentials_source,
                },
            }

        @self.app.post("/api/settings")
        async def update_settings(update: CredentialsUpdate):
            """Store new client credentials for this process."""
            client_id = (update.client_id or "").strip()
            client_secret = (update.client_secret or "").strip()
            if not client_id or not client_secret:
                raise HTTPException(
                    status_code=400,
                    detail={"error": "Missing credentials", "message": "Client id and secret are required"},
                )
            if len(client_id) < MIN_CREDENTIAL_LENGTH or len(client_secret) < MIN_CREDENTIAL_LENGTH:
                raise HTTPException(
                    status_code=400,
                    detail={"error": "Invalid credentials", "message": "Client id and secret look invalid"},
                )

            self.token_manager.set_credentials(client_id, client_secret)
            self.credentials_source = "stored"
            # Cached responses belong to the previous account
            await self.cache.clear()
            return {"success": True, "message": "Credentials saved"}

        @self.app.post("/api/settings/test")
        async def test_settings():
            """Probe the partner API with the configured credentials."""
            try:
                response = await self.api_client.execute(CREDENTIALS_PROBE_ENDPOINT)
            except RateLimitError:
                return {
                    "success": True,
                    "message": "API credentials are valid (rate limit reached)",
                    "data": {"test_result": "rate_limited"},
                }
            except CredentialsError as exc:
                return JSONResponse(
                    status_code=401,
                    content={"error": "Invalid credentials", "message": exc.message},
                )
            except AccessLayerException as exc:
                return JSONResponse(
                    status_code=500,
                    content={"error": "Test failed", "message": exc.message, "code": exc.code.value},
                )

            orders = response.get("orders") if isinstance(response, dict) else None
            return {
                "success": True,
                "message": "API credentials are valid",
                "data": {"test_result": "success", "orders_count": len(orders or [])},
            }

        @self.app.get("/api/cache/stats")
        async def cache_stats():
            """Response cache introspection."""
            persistent = None
            if self.cache.store is not None:
                persistent = await self.cache.store.stats()
            return {"memory": self.cache.stats(), "persistent": persistent}

        @self.app.delete("/api/cache")
        async def clear_cache(prefix: Optional[str] = Query(None)):
            """Clear cached responses, optionally only those under ``prefix``."""
            removed = await self.cache.clear(prefix)
            return {"success": True, "removed": removed, "prefix": prefix}

        @self.app.api_route("/api/retailer/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
        async def proxy(path: str, request: Request):
            """Forward a call to ``/retailer/{path}`` on the partner API."""
            endpoint = f"/retailer/{path}"
            if request.url.query:
                endpoint = f"{endpoint}?{request.url.query}"
            method = request.method.upper()

            if method != "GET":
                raw = await request.body()
                data = await self.api_client.execute(endpoint, method=method, body=raw or None, use_cache=False)
                return {"success": True, "data": data}

            use_cache = "no-cache" not in request.headers.get("Cache-Control", "").lower()
            cache_path, params = split_endpoint(endpoint)
            if use_cache:
                cached = await self.cache.read(cache_path, params)
                if cached is not None:
                    return {"success": True, "data": cached, "cached": True}

            try:
                data = await self.api_client.execute(endpoint, use_cache=use_cache)
            except AccessLayerException as exc:
                cached = await self.cache.read(cache_path, params)
                if cached is None:
                    raise
                self.logger.warning(
                    "Serving cached data after partner API error",
                    endpoint=cache_path,
                    code=exc.code.value,
                )
                return {
                    "success": True,
                    "data": cached,
                    "cached": True,
                    "warning": f"Showing cached data. {exc.message}",
                }
            return {"success": True, "data": data, "cached": False}


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = RetailerAccessService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = RetailerAccessService()
    service.run()
