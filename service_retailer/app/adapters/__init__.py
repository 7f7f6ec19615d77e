"""
Adapters package for the retailer access service.

Contains the HTTP client wrapper for the partner API. The adapter
encapsulates:

- Base URL, media types and bearer authorization
- Stale-token recovery and rate limit classification
- Error handling that maps to shared errors

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .retailer_client import RetailerApiClient, parse_retry_after

__all__ = [
    "RetailerApiClient",
    "parse_retry_after",
]
