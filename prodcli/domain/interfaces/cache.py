"""Interface for cache storage backends.

Defines the contract for the key-value store behind the response cache.
Backends are agnostic to what they store; TTL policy and key derivation
live in the response cache itself.
"""

import abc
from typing import Any, List, Optional

# Import relevant domain models
from ..models.common import CacheKey, CacheStats, RefreshJob


class _CacheMiss:
    """Sentinel returned by cache reads that found nothing usable."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "CACHE_MISS"


CACHE_MISS = _CacheMiss()


class CacheBackend(abc.ABC):
    """Abstract Base Class for cache storage."""

    @abc.abstractmethod
    def get(self, key: CacheKey) -> Any:
        """Retrieves a stored value.

        Args:
            key: The cache key to retrieve.

        Returns:
            The stored value, or CACHE_MISS if absent or expired.
        """
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, value: Any, source_label: str, ttl_ms: int) -> None:
        """Stores a value.

        Args:
            key: The cache key to store the value under.
            value: The value to store.
            source_label: The endpoint the value was fetched from; matched by invalidate().
            ttl_ms: Time-to-live in milliseconds.
        """
        pass

    @abc.abstractmethod
    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Removes entries whose source label contains ``pattern``, or all entries.

        Returns:
            The number of entries removed.
        """
        pass

    @abc.abstractmethod
    def stats(self) -> CacheStats:
        """Returns entry count, total size and age of the oldest live entry."""
        pass

    @abc.abstractmethod
    def queue_refresh(self, job: RefreshJob) -> None:
        """Remembers a stale entry for refreshing. Queuing the same key twice keeps one job."""
        pass

    @abc.abstractmethod
    def pending_refreshes(self) -> List[RefreshJob]:
        """Returns queued jobs, oldest first."""
        pass

    @abc.abstractmethod
    def dequeue_refresh(self, key: CacheKey) -> None:
        """Drops the job for ``key``, if any."""
        pass

    @abc.abstractmethod
    def clear_refresh_queue(self) -> int:
        """Drops every queued job and returns how many there were."""
        pass

    def close(self) -> None:
        """Releases any underlying resources."""
        pass
