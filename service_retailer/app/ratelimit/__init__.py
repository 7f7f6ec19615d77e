"""
Partner rate limit table and derived timings.
"""

from .registry import RateLimitRegistry, RateLimitRule, WindowUnit, RATE_LIMITS, default_registry

__all__ = ["RateLimitRegistry", "RateLimitRule", "WindowUnit", "RATE_LIMITS", "default_registry"]
