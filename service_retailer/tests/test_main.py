"""
Unit tests for the retailer access service HTTP surface.
"""

import json

import pytest
from fastapi.testclient import TestClient

from service_retailer.app.main import RetailerAccessService, create_app
from shared.config import get_config

from conftest import API_BASE, TOKEN_URL


def _config(tmp_path, **overrides):
    settings = dict(
        client_id="client-id-123",
        client_secret="client-secret-456",
        api_base_url=API_BASE,
        token_url=TOKEN_URL,
        cache_file=str(tmp_path / "api-cache.json"),
        token_retry_delay_seconds=0,
    )
    settings.update(overrides)
    return get_config("retailer", 8000, **settings)


class TestRetailerAccessService:
    """Routes of the retailer access service."""

    @pytest.fixture
    def service(self, tmp_path, http_client, clock):
        return RetailerAccessService(_config(tmp_path), http_client=http_client, clock=clock)

    @pytest.fixture
    def client(self, service):
        with TestClient(service.app) as test_client:
            yield test_client

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "retailer"
        assert data["dependencies"]["credentials"] == "ok"
        assert "X-Request-ID" in response.headers

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_rate_limit_info(self, client):
        response = client.get("/api/ratelimits", params={"endpoint": "/retailer/orders"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["rate_limit"]["max_capacity"] == 25
        assert data["rate_limit"]["unit"] == "MINUTES"
        assert data["optimal_cache_ttl_seconds"] == 48.0
        assert data["optimal_cache_ttl_minutes"] == 0.8
        assert data["safe_request_interval_seconds"] == pytest.approx(2.64)
        assert data["info"] == "25 requests per 1 minute(s)"

    def test_rate_limit_info_unknown_endpoint(self, client):
        response = client.get("/api/ratelimits", params={"endpoint": "/retailer/unknown"})

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_rate_limit_info_requires_endpoint(self, client):
        assert client.get("/api/ratelimits").status_code == 400

    def test_token_status(self, client, partner):
        response = client.get("/api/token")

        assert response.status_code == 200
        assert response.json()["has_token"] is True
        assert len(partner.token_requests) == 1

    def test_token_refresh(self, client, partner):
        client.get("/api/token")
        response = client.post("/api/token")

        assert response.status_code == 200
        assert len(partner.token_requests) == 2

    def test_token_rejected(self, client, partner):
        partner.queue_token(401, {"error": "invalid_client"})

        response = client.get("/api/token")

        assert response.status_code == 401
        assert response.json()["code"] == "CREDENTIALS_ERROR"

    def test_settings_hide_secret(self, client):
        data = client.get("/api/settings").json()["data"]

        assert data == {"client_id": "client-id-123", "has_credentials": True, "source": "environment"}

    def test_update_settings(self, client, service, partner):
        response = client.post(
            "/api/settings",
            json={"client_id": "new-client-id", "client_secret": "new-client-secret"},
        )

        assert response.status_code == 200
        data = client.get("/api/settings").json()["data"]
        assert data["client_id"] == "new-client-id"
        assert data["source"] == "stored"
        assert service.token_manager.credentials.client_secret == "new-client-secret"

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"client_id": "new-client-id"},
            {"client_id": "short", "client_secret": "new-client-secret"},
        ],
    )
    def test_update_settings_validation(self, client, service, body):
        response = client.post("/api/settings", json=body)

        assert response.status_code == 400
        assert service.token_manager.credentials.client_id == "client-id-123"

    def test_credentials_probe(self, client, partner):
        partner.queue_api(200, {"orders": [{"orderId": "1"}, {"orderId": "2"}]})

        response = client.post("/api/settings/test")

        assert response.status_code == 200
        assert response.json()["data"] == {"test_result": "success", "orders_count": 2}
        assert partner.api_requests[0].url.params["status"] == "OPEN"

    def test_credentials_probe_rate_limited_counts_as_valid(self, client, partner):
        partner.queue_api(429, {"detail": "retry in 30 seconds"})

        response = client.post("/api/settings/test")

        assert response.status_code == 200
        assert response.json()["data"]["test_result"] == "rate_limited"

    def test_credentials_probe_rejected(self, client, partner):
        partner.queue_token(401, {"error": "invalid_client"})

        assert client.post("/api/settings/test").status_code == 401

    def test_proxy_get_is_cached(self, client, partner):
        partner.queue_api(200, {"orders": ["a"]})

        first = client.get("/api/retailer/orders", params={"status": "OPEN"})
        second = client.get("/api/retailer/orders", params={"status": "OPEN"})

        assert first.json() == {"success": True, "data": {"orders": ["a"]}, "cached": False}
        assert second.json() == {"success": True, "data": {"orders": ["a"]}, "cached": True}
        assert len(partner.api_requests) == 1

    def test_proxy_no_cache_header(self, client, partner):
        partner.queue_api(200, {"orders": ["a"]})
        partner.queue_api(200, {"orders": ["b"]})

        client.get("/api/retailer/orders")
        response = client.get("/api/retailer/orders", headers={"Cache-Control": "no-cache"})

        assert response.json()["data"] == {"orders": ["b"]}
        assert len(partner.api_requests) == 2

    def test_proxy_rate_limit_without_cache(self, client, partner):
        partner.queue_api(429, {"title": "Too Many Requests"}, {"Retry-After": "90"})

        response = client.get("/api/retailer/orders")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "90"
        body = response.json()
        assert body["code"] == "RATE_LIMIT_ERROR"
        assert body["details"]["retry_after_seconds"] == 90

    def test_proxy_rate_limit_falls_back_to_cache(self, client, partner):
        partner.queue_api(200, {"orders": ["a"]})
        partner.queue_api(429, {"title": "Too Many Requests"}, {"Retry-After": "90"})

        client.get("/api/retailer/orders")
        response = client.get("/api/retailer/orders", headers={"Cache-Control": "no-cache"})

        assert response.status_code == 200
        body = response.json()
        assert body["cached"] is True
        assert body["data"] == {"orders": ["a"]}
        assert body["warning"].startswith("Showing cached data.")

    def test_proxy_upstream_failure(self, client, partner):
        partner.queue_api(404, {"title": "Not Found"})

        response = client.get("/api/retailer/orders/999")

        assert response.status_code == 404
        assert response.json()["code"] == "REQUEST_FAILED"

    def test_proxy_put_forwards_body(self, client, partner):
        partner.queue_api(202, {"processStatusId": "7"})

        response = client.put("/api/retailer/offers/1", json={"onHoldByRetailer": True})

        assert response.json() == {"success": True, "data": {"processStatusId": "7"}}
        request = partner.api_requests[0]
        assert request.method == "PUT"
        assert json.loads(request.content) == {"onHoldByRetailer": True}

    def test_cache_stats_and_clear(self, client, partner):
        client.get("/api/retailer/orders")
        client.get("/api/retailer/returns")

        stats = client.get("/api/cache/stats").json()
        assert stats["memory"]["size"] == 2
        assert stats["persistent"]["size"] == 2

        response = client.delete("/api/cache", params={"prefix": "/retailer/orders"})
        assert response.json()["removed"] == 1

        stats = client.get("/api/cache/stats").json()
        assert stats["memory"]["keys"] == ["/retailer/returns"]


class TestWithoutCredentials:

    @pytest.fixture
    def client(self, tmp_path, http_client, clock):
        config = _config(tmp_path, client_id=None, client_secret=None, enable_persistent_cache=False)
        with TestClient(create_app(config, http_client=http_client, clock=clock)) as test_client:
            yield test_client

    def test_token_status_reports_missing_credentials(self, client, partner):
        response = client.get("/api/token")

        assert response.status_code == 400
        assert response.json()["has_credentials"] is False
        assert partner.token_requests == []

    def test_settings_report_missing_credentials(self, client):
        assert client.get("/api/settings").json()["data"] == {"has_credentials": False}

    def test_proxy_requires_credentials(self, client):
        response = client.get("/api/retailer/orders")

        assert response.status_code == 401
        assert response.json()["code"] == "CREDENTIALS_ERROR"

    def test_cache_stats_memory_only(self, client):
        assert client.get("/api/cache/stats").json()["persistent"] is None
