"""
Cache Store Contract

The capability every cache backend provides to the read-through layer.
Stores hold opaque JSON-compatible values under string keys with a TTL.
A backend that cannot reach its storage raises CacheUnavailableError;
a missing or expired key is a plain None, never an error.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class CacheError(Exception):
    """Base class for cache layer failures. Never surfaced to API callers."""


class CacheUnavailableError(CacheError):
    """The backing store could not be reached or rejected the operation."""


class CacheWriteFailed(CacheError):
    """A value was produced but could not be written to the store."""


class CacheStore(ABC):
    """Abstract key/value store with per-entry expiry."""

    namespace: str = ""

    def _make_key(self, key: str) -> str:
        """Create namespaced cache key."""
        if not self.namespace:
            return key
        return f"{self.namespace}:{key}"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store value under key, replacing any existing entry."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if something was removed."""

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern. Returns count deleted."""

    @abstractmethod
    async def clear(self) -> int:
        """Delete every key in this store's namespace."""

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Report store health. Must not raise; includes a "healthy" flag."""

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    def get_stats(self) -> Dict[str, Any]:
        return {}
