"""
Response caching for partner API results.
"""

from .entries import CacheEntry, make_cache_key
from .persistent_store import PersistentStore
from .response_cache import ResponseCache

__all__ = ["CacheEntry", "PersistentStore", "ResponseCache", "make_cache_key"]
