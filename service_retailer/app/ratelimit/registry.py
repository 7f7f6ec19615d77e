"""
Partner API rate limit registry.

Static table of the quota rules published by the partner
(``/retailer/public/ratelimits``). The table is used to derive cache TTLs and
the minimum spacing between uncached calls.

Rules are scanned in declaration order and the first structural match wins,
so the order of ``RATE_LIMITS`` is part of its meaning: ``/retailer/offers/*``
is listed before ``/retailer/offers/export`` and therefore answers OPTIONS
requests for it.
"""

import math
import re
from fractions import Fraction
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Pattern, Sequence


DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000
DEFAULT_SAFE_INTERVAL_MS = 5 * 1000

# Exact ratios so that floor/ceil never see float noise
CACHE_TTL_SAFETY_FACTOR = Fraction(4, 5)
REQUEST_INTERVAL_BUFFER = Fraction(11, 10)


class WindowUnit(str, Enum):
    SECONDS = "SECONDS"
    MINUTES = "MINUTES"
    HOURS = "HOURS"

    @property
    def milliseconds(self) -> int:
        return {
            WindowUnit.SECONDS: 1000,
            WindowUnit.MINUTES: 60 * 1000,
            WindowUnit.HOURS: 60 * 60 * 1000,
        }[self]

    @property
    def label(self) -> str:
        return {
            WindowUnit.SECONDS: "second(s)",
            WindowUnit.MINUTES: "minute(s)",
            WindowUnit.HOURS: "hour(s)",
        }[self]


def _compile_path(pattern: str) -> Pattern[str]:
    # '*' stands for exactly one path segment
    parts = [
        "[^/]+" if segment == "*" else re.escape(segment)
        for segment in pattern.split("/")
    ]
    return re.compile("^" + "/".join(parts) + "$")


@dataclass(frozen=True)
class RateLimitRule:
    """A quota rule: at most ``max_capacity`` calls per window."""

    path: str
    methods: FrozenSet[str]
    max_capacity: int
    window: int
    unit: WindowUnit
    _regex: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_regex", _compile_path(self.path))

    @classmethod
    def parse(cls, path: str, methods: str, max_capacity: int, window: int, unit: str) -> "RateLimitRule":
        """Build a rule from the partner's published notation (``"GET, HEAD"``)."""
        verbs = frozenset(m.strip().upper() for m in methods.split(",") if m.strip())
        return cls(path, verbs, max_capacity, window, WindowUnit(unit))

    @property
    def window_ms(self) -> int:
        return self.window * self.unit.milliseconds

    def matches_path(self, endpoint: str) -> bool:
        return self._regex.match(endpoint) is not None

    def allows_method(self, method: str) -> bool:
        return method.upper() in self.methods or "*" in self.methods

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "methods": sorted(self.methods),
            "max_capacity": self.max_capacity,
            "window": self.window,
            "unit": self.unit.value,
        }


RATE_LIMITS: List[RateLimitRule] = [
    # Orders
    RateLimitRule.parse("/retailer/orders", "GET, OPTIONS, HEAD", 25, 1, "MINUTES"),
    RateLimitRule.parse("/retailer/orders/*", "GET, OPTIONS, HEAD", 25, 1, "SECONDS"),
    # Shipments
    RateLimitRule.parse("/retailer/shipments", "GET, OPTIONS, HEAD", 25, 1, "MINUTES"),
    RateLimitRule.parse("/retailer/shipments", "POST", 25, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/shipments/*", "GET, OPTIONS, HEAD", 50, 1, "MINUTES"),
    # Returns
    RateLimitRule.parse("/retailer/returns", "GET, POST, OPTIONS, HEAD", 20, 1, "MINUTES"),
    RateLimitRule.parse("/retailer/returns/*", "PUT, OPTIONS, GET, HEAD", 20, 1, "MINUTES"),
    # Offers
    RateLimitRule.parse("/retailer/offers", "GET", 25, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/offers", "POST, OPTIONS", 50, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/offers/*", "GET, HEAD", 25, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/offers/*", "PUT, OPTIONS, DELETE", 50, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/offers/export", "POST, OPTIONS", 9, 1, "HOURS"),
    RateLimitRule.parse("/retailer/offers/export/*", "GET, OPTIONS, HEAD", 9, 1, "HOURS"),
    # Invoices
    RateLimitRule.parse("/retailer/invoices", "GET, OPTIONS, HEAD", 24, 1, "MINUTES"),
    RateLimitRule.parse("/retailer/invoices/*", "GET, OPTIONS, HEAD", 24, 1, "MINUTES"),
    # Commissions
    RateLimitRule.parse("/retailer/commissions", "POST, OPTIONS", 28, 1, "SECONDS"),
    RateLimitRule.parse("/retailer/commission/*", "GET, OPTIONS, HEAD", 28, 1, "SECONDS"),
    # Inventory
    RateLimitRule.parse("/retailer/inventory", "GET, OPTIONS, HEAD", 20, 1, "MINUTES"),
    # Performance
    RateLimitRule.parse("/retailer/insights/performance/indicator", "GET, OPTIONS, HEAD", 20, 1, "MINUTES"),
    # Products
    RateLimitRule.parse("/retailer/products/list", "POST, OPTIONS, HEAD", 50, 1, "MINUTES"),
    RateLimitRule.parse("/retailer/products/*", "GET, OPTIONS, HEAD", 50, 1, "MINUTES"),
]


class RateLimitRegistry:
    """Read-only lookups over an ordered rule table."""

    def __init__(self, rules: Optional[Sequence[RateLimitRule]] = None):
        self._rules = tuple(RATE_LIMITS if rules is None else rules)

    @property
    def rules(self) -> Sequence[RateLimitRule]:
        return self._rules

    def lookup(self, endpoint: str, method: str = "GET") -> Optional[RateLimitRule]:
        """Return the first rule matching ``endpoint`` and ``method``, if any."""
        path = endpoint.split("?", 1)[0]
        for rule in self._rules:
            if rule.matches_path(path) and rule.allows_method(method):
                return rule
        return None

    def optimal_ttl_ms(self, endpoint: str, method: str = "GET") -> int:
        rule = self.lookup(endpoint, method)
        if rule is None:
            return DEFAULT_CACHE_TTL_MS
        return math.floor(rule.window_ms * CACHE_TTL_SAFETY_FACTOR)

    def safe_interval_ms(self, endpoint: str, method: str = "GET") -> int:
        rule = self.lookup(endpoint, method)
        if rule is None:
            return DEFAULT_SAFE_INTERVAL_MS
        return math.ceil(Fraction(rule.window_ms, rule.max_capacity) * REQUEST_INTERVAL_BUFFER)

    def compute_optimal_ttl(self, endpoint: str, method: str = "GET") -> float:
        """Cache TTL in seconds: 80% of the rule's window, or 5 minutes without a rule."""
        return self.optimal_ttl_ms(endpoint, method) / 1000

    def compute_safe_interval(self, endpoint: str, method: str = "GET") -> float:
        """Minimum seconds between uncached calls to stay under quota, with a 10% buffer."""
        return self.safe_interval_ms(endpoint, method) / 1000

    def describe(self, endpoint: str, method: str = "GET") -> str:
        rule = self.lookup(endpoint, method)
        if rule is None:
            return "Rate limit unknown"
        return f"{rule.max_capacity} requests per {rule.window} {rule.unit.label}"


default_registry = RateLimitRegistry()


def lookup(endpoint: str, method: str = "GET") -> Optional[RateLimitRule]:
    return default_registry.lookup(endpoint, method)


def compute_optimal_ttl(endpoint: str, method: str = "GET") -> float:
    return default_registry.compute_optimal_ttl(endpoint, method)


def compute_safe_interval(endpoint: str, method: str = "GET") -> float:
    return default_registry.compute_safe_interval(endpoint, method)


def describe(endpoint: str, method: str = "GET") -> str:
    return default_registry.describe(endpoint, method)
