"""
Cache entry model and key normalisation shared by both cache tiers.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode


def split_endpoint(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Tuple[str, Dict[str, str]]:
    """Split ``endpoint`` into its path and a merged query parameter dict."""
    path, _, query = endpoint.partition("?")
    merged: Dict[str, str] = dict(parse_qsl(query, keep_blank_values=True))
    if params:
        merged.update({str(k): str(v) for k, v in params.items()})
    return path, merged


def make_cache_key(endpoint: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Canonical key: path plus query parameters sorted by name."""
    path, merged = split_endpoint(endpoint, params)
    if not merged:
        return path
    return f"{path}?{urlencode(sorted(merged.items()))}"


@dataclass
class CacheEntry:
    """A cached payload; valid while ``now < created_at + ttl`` (seconds)."""

    key: str
    data: Any
    created_at: float
    ttl: float
    endpoint: str
    params: Optional[Dict[str, str]] = None

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_document(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "createdAt": self.created_at,
            "ttl": self.ttl,
            "endpoint": self.endpoint,
            "params": self.params,
        }

    @classmethod
    def from_document(cls, key: str, document: Mapping[str, Any]) -> "CacheEntry":
        return cls(
            key=key,
            data=document.get("data"),
            created_at=float(document["createdAt"]),
            ttl=float(document["ttl"]),
            endpoint=str(document.get("endpoint") or key.split("?", 1)[0]),
            params=document.get("params"),
        )
