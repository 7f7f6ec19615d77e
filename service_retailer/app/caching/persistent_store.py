"""
Disk-backed tier of the response cache.

The whole tier is a single JSON document mapping cache key to
``{data, createdAt, ttl, endpoint, params}``. It is read once per process,
swept of expired entries at that point, and rewritten in full on every
mutation.
"""

import asyncio
import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from shared.logging import get_logger
from .entries import CacheEntry


class PersistentStore:
    """JSON file store for cache entries."""

    def __init__(self, path: Union[str, Path], *, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.logger = get_logger("retailer.persistent_cache")
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            self._entries = await asyncio.to_thread(self._read_file)
            self._loaded = True
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self.logger.info(
                "Persistent cache loaded",
                path=str(self.path),
                entries=len(self._entries),
                expired=len(expired),
            )
            if expired:
                await self._save_locked()

    def _read_file(self) -> Dict[str, CacheEntry]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            document = json.loads(raw)
        except ValueError as exc:
            self.logger.warning("Persistent cache unreadable, starting empty", path=str(self.path), error=str(exc))
            return {}
        if not isinstance(document, dict):
            self.logger.warning(
                "Persistent cache is not a JSON object, starting empty",
                path=str(self.path),
                document_type=type(document).__name__,
            )
            return {}

        entries: Dict[str, CacheEntry] = {}
        for key, value in document.items():
            if not isinstance(value, Mapping):
                self.logger.warning("Skipping malformed persistent cache entry", key=key)
                continue
            try:
                entries[key] = CacheEntry.from_document(key, value)
            except (KeyError, TypeError, ValueError):
                self.logger.warning("Skipping malformed persistent cache entry", key=key)
        return entries

    def _write_file(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".api-cache-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def _save_locked(self) -> None:
        document = {key: entry.to_document() for key, entry in self._entries.items()}
        await asyncio.to_thread(self._write_file, document)

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` if it has not expired."""
        await self._ensure_loaded()
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            async with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
                    await self._save_locked()
            return None
        return entry

    async def set(self, entry: CacheEntry) -> None:
        await self._ensure_loaded()
        async with self._lock:
            self._entries[entry.key] = entry
            await self._save_locked()

    async def clear(self, prefix: Optional[str] = None) -> int:
        """Remove entries whose endpoint starts with ``prefix``, or everything."""
        await self._ensure_loaded()
        async with self._lock:
            if prefix is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                doomed = [key for key, entry in self._entries.items() if entry.endpoint.startswith(prefix)]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
            await self._save_locked()
        return removed

    async def stats(self) -> Dict[str, Any]:
        await self._ensure_loaded()
        now = self._clock()
        entries: List[Dict[str, Any]] = [
            {"key": key, "age": now - entry.created_at, "ttl": entry.ttl}
            for key, entry in self._entries.items()
        ]
        return {
            "size": len(self._entries),
            "keys": list(self._entries.keys()),
            "entries": entries,
        }
