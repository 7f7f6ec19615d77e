"""
Unit tests for the partner rate limit registry.
"""

import pytest

from service_retailer.app.ratelimit.registry import (
    RATE_LIMITS,
    RateLimitRegistry,
    RateLimitRule,
    WindowUnit,
    compute_optimal_ttl,
    lookup,
)


class TestLookup:
    """Rule matching."""

    @pytest.fixture
    def registry(self):
        return RateLimitRegistry()

    def test_exact_path(self, registry):
        rule = registry.lookup("/retailer/orders", "GET")
        assert rule is not None
        assert rule.path == "/retailer/orders"
        assert rule.max_capacity == 25
        assert rule.unit is WindowUnit.MINUTES

    def test_query_string_is_ignored(self, registry):
        rule = registry.lookup("/retailer/orders?status=OPEN&page=2", "GET")
        assert rule.path == "/retailer/orders"

    def test_wildcard_matches_single_segment(self, registry):
        rule = registry.lookup("/retailer/orders/1043946570", "GET")
        assert rule.path == "/retailer/orders/*"
        assert rule.unit is WindowUnit.SECONDS

    def test_wildcard_does_not_span_segments(self, registry):
        assert registry.lookup("/retailer/orders/123/items", "GET") is None

    def test_method_must_match(self, registry):
        assert registry.lookup("/retailer/orders", "DELETE") is None
        assert registry.lookup("/retailer/shipments", "POST").unit is WindowUnit.SECONDS
        assert registry.lookup("/retailer/shipments", "GET").unit is WindowUnit.MINUTES

    def test_method_is_case_insensitive(self, registry):
        assert registry.lookup("/retailer/orders", "get") is not None

    def test_unknown_endpoint(self, registry):
        assert registry.lookup("/retailer/unknown", "GET") is None

    def test_star_method_matches_everything(self):
        registry = RateLimitRegistry([RateLimitRule.parse("/retailer/things", "*", 5, 1, "MINUTES")])
        assert registry.lookup("/retailer/things", "PATCH") is not None

    def test_first_declared_rule_wins(self, registry):
        # offers/* (PUT, OPTIONS, DELETE) is declared before offers/export (POST, OPTIONS)
        rule = registry.lookup("/retailer/offers/export", "OPTIONS")
        assert rule.path == "/retailer/offers/*"
        assert rule.max_capacity == 50

        rule = registry.lookup("/retailer/offers/export", "POST")
        assert rule.path == "/retailer/offers/export"
        assert rule.unit is WindowUnit.HOURS

    def test_reordering_changes_result(self):
        wildcard = RateLimitRule.parse("/retailer/offers/*", "OPTIONS", 50, 1, "SECONDS")
        export = RateLimitRule.parse("/retailer/offers/export", "OPTIONS", 9, 1, "HOURS")

        assert RateLimitRegistry([wildcard, export]).lookup("/retailer/offers/export", "OPTIONS") is wildcard
        assert RateLimitRegistry([export, wildcard]).lookup("/retailer/offers/export", "OPTIONS") is export

    def test_default_table_order_is_pinned(self):
        paths = [rule.path for rule in RATE_LIMITS]
        assert paths.index("/retailer/offers/*") < paths.index("/retailer/offers/export")
        assert paths[0] == "/retailer/orders"
        assert paths[-1] == "/retailer/products/*"
        assert len(RATE_LIMITS) == 21

    def test_module_level_helpers_use_default_table(self):
        assert lookup("/retailer/invoices", "GET").max_capacity == 24


class TestDerivedTimings:
    """Cache TTL and request interval derivation."""

    @pytest.fixture
    def registry(self):
        return RateLimitRegistry()

    @pytest.mark.parametrize(
        "endpoint,method,expected_ms",
        [
            ("/retailer/orders", "GET", 48_000),
            ("/retailer/orders/123", "GET", 800),
            ("/retailer/offers/export/abc", "GET", 2_880_000),
        ],
    )
    def test_optimal_ttl_is_80_percent_of_window(self, registry, endpoint, method, expected_ms):
        assert registry.optimal_ttl_ms(endpoint, method) == expected_ms
        assert registry.compute_optimal_ttl(endpoint, method) == expected_ms / 1000

    def test_optimal_ttl_fallback(self, registry):
        assert registry.compute_optimal_ttl("/retailer/unknown") == 300.0

    def test_optimal_ttl_always_positive(self, registry):
        for rule in registry.rules:
            method = sorted(rule.methods)[0]
            endpoint = rule.path.replace("*", "x1")
            assert registry.compute_optimal_ttl(endpoint, method) > 0

    def test_safe_interval(self, registry):
        # 60s / 25 requests * 1.1
        assert registry.safe_interval_ms("/retailer/orders", "GET") == 2640
        assert registry.compute_safe_interval("/retailer/orders", "GET") == pytest.approx(2.64)

    def test_safe_interval_fallback(self, registry):
        assert registry.compute_safe_interval("/retailer/unknown") == 5.0

    def test_describe(self, registry):
        assert registry.describe("/retailer/orders") == "25 requests per 1 minute(s)"
        assert registry.describe("/retailer/offers/export", "POST") == "9 requests per 1 hour(s)"
        assert registry.describe("/retailer/unknown") == "Rate limit unknown"

    def test_module_level_ttl(self):
        assert compute_optimal_ttl("/retailer/returns") == 48.0
