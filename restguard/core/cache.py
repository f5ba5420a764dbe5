"""Cache abstraction used by the response cache middleware.

Provides a pluggable backend interface and the default in-memory
implementation with TTL support.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
import asyncio
import time


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: Any
    expires_at: float | None = None

    def is_expired(self) -> bool:
        """Check if the entry has expired."""
        if self.expires_at is None:
            return False
        return time.time() > self.expires_at


class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve a value, or None if missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        """Store a value for ``ttl`` seconds (0 = no expiry)."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Remove all keys starting with ``prefix``.

        Returns:
            Number of entries removed.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemoryCache(CacheBackend):
    """In-memory cache implementation with TTL support.

    Data lives in a dictionary owned by this instance and is lost when the
    process exits. Expired entries are dropped when read, and swept in bulk
    whenever a write pushes the map past ``sweep_threshold`` entries.
    """

    def __init__(self, sweep_threshold: int = 1024) -> None:
        self._data: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self.sweep_threshold = sweep_threshold

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._data[key]
                return None
            return entry.value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with self._lock:
            expires_at = time.time() + ttl if ttl > 0 else None
            self._data[key] = _CacheEntry(value=value, expires_at=expires_at)
            if len(self._data) > self.sweep_threshold:
                self._purge_expired()

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            doomed = [key for key in self._data if key.startswith(prefix)]
            for key in doomed:
                del self._data[key]
            return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    async def cleanup_expired(self) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            return self._purge_expired()

    def _purge_expired(self) -> int:
        expired_keys = [
            key for key, entry in self._data.items() if entry.is_expired()
        ]
        for key in expired_keys:
            del self._data[key]
        return len(expired_keys)

    def __len__(self) -> int:
        return len(self._data)
