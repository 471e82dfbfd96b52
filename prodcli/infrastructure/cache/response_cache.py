"""Response cache for read endpoints.

Maps (endpoint, query, organization) to a previously fetched payload,
bounded by a per-resource-class TTL, with substring-based invalidation.
Stale hits are still served, and queued so a later command can refresh them.
Caching is an optimization only: every backend failure is logged and
turned into a miss (reads) or a no-op (writes).
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, TypeVar

from prodcli.domain.interfaces.cache import CACHE_MISS, CacheBackend
from prodcli.domain.models.common import CacheKey, CacheStats, RefreshJob, empty_stats
from prodcli.infrastructure.cache.entry import (
    DEFAULT_TTL_SECONDS,
    CacheEntry,
    TtlClass,
    derive_key,
    normalize_query,
    ttl_class_for,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_NAMESPACE = "default"
# Stale entries refreshed per command
DEFAULT_REFRESH_BATCH_SIZE = 10


@dataclass
class _CacheOutcome(Generic[T]):
    """Result of one backend call: a value, or the error that replaced it."""
    value: Optional[T]
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CachedPayload:
    """A cache hit together with its staleness."""
    data: Any
    is_stale: bool
    endpoint: str


class ResponseCache:
    """TTL-bounded, organization-namespaced cache of API responses."""

    def __init__(
        self,
        backend_factory: Callable[[str], CacheBackend],
        enabled: bool = True,
        ttl_overrides: Optional[Mapping[TtlClass, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the response cache.

        Args:
            backend_factory: Builds the backend for a namespace (organization id).
            enabled: When False every operation is a no-op and reads always miss.
            ttl_overrides: Overrides for the default TTL per class.
            clock: Wall-clock time source in seconds.
        """
        self.enabled = enabled
        self._backend_factory = backend_factory
        self._backends: Dict[str, CacheBackend] = {}
        self._org_id: Optional[str] = None
        self._clock = clock
        self.ttl_seconds: Dict[TtlClass, int] = dict(DEFAULT_TTL_SECONDS)
        if ttl_overrides:
            self.ttl_seconds.update(ttl_overrides)
        logger.info(
            f"ResponseCache initialized: enabled={enabled}, "
            f"ttl={{{', '.join(f'{k.value}: {v}s' for k, v in self.ttl_seconds.items())}}}"
        )

    @property
    def org_id(self) -> Optional[str]:
        return self._org_id

    def set_org_id(self, org_id: str) -> None:
        """Switches the active namespace. Other namespaces keep their data."""
        org_id = str(org_id)
        if org_id != self._org_id:
            logger.debug(f"Cache namespace switched to organization {org_id}")
            self._org_id = org_id

    def _attempt(self, operation: str, func: Callable[[], T]) -> _CacheOutcome[T]:
        try:
            return _CacheOutcome(func())
        except Exception as e:
            logger.warning(f"Cache {operation} failed, continuing without cache: {e}")
            return _CacheOutcome(None, e)

    def _backend(self) -> Optional[CacheBackend]:
        """Backend for the active namespace, created on first use."""
        if not self.enabled:
            return None
        namespace = self._org_id or DEFAULT_NAMESPACE
        backend = self._backends.get(namespace)
        if backend is None:
            outcome = self._attempt("open", lambda: self._backend_factory(namespace))
            if not outcome.ok:
                return None
            backend = outcome.value
            self._backends[namespace] = backend
        return backend

    def ttl_for(self, endpoint: str, override: Optional[int] = None) -> int:
        """TTL in seconds for ``endpoint``; ``override`` wins when given."""
        if override is not None:
            return override
        return self.ttl_seconds[ttl_class_for(endpoint)]

    @staticmethod
    def cache_key(endpoint: str, query: Optional[Mapping[str, Any]], org_id: str) -> CacheKey:
        return derive_key(endpoint, query, org_id)

    def _read(self, endpoint: str, query: Optional[Mapping[str, Any]], org_id: str) -> Optional[CacheEntry]:
        self.set_org_id(org_id)
        backend = self._backend()
        if backend is None:
            return None

        key = self.cache_key(endpoint, query, org_id)
        outcome = self._attempt("read", lambda: backend.get(key))
        if not outcome.ok or outcome.value is CACHE_MISS:
            logger.debug(f"Cache MISS for {endpoint} (key: {key})")
            return None

        entry_outcome = self._attempt("decode", lambda: CacheEntry.from_dict(outcome.value))
        if not entry_outcome.ok:
            return None
        entry = entry_outcome.value
        if entry.is_expired(self._clock()):
            logger.debug(f"Cache EXPIRED for {endpoint} (key: {key})")
            return None
        logger.debug(f"Cache HIT for {endpoint} (key: {key})")
        # Pseudo-endpoints such as "resolve/person" cannot be fetched again
        if entry.is_stale(self._clock()) and endpoint.startswith("/"):
            self._queue_refresh(backend, key, endpoint, query)
        return entry

    def _queue_refresh(
        self, backend: CacheBackend, key: CacheKey, endpoint: str, query: Optional[Mapping[str, Any]]
    ) -> None:
        job = RefreshJob(cache_key=key, endpoint=endpoint, query=normalize_query(query), queued_at=self._clock())
        outcome = self._attempt("queue refresh", lambda: backend.queue_refresh(job))
        if outcome.ok:
            logger.debug(f"Cache STALE for {endpoint}, queued for refresh (key: {key})")

    async def get_async(self, endpoint: str, query: Optional[Mapping[str, Any]], org_id: str) -> Any:
        """Returns the cached payload, or CACHE_MISS."""
        if not self.enabled:
            return CACHE_MISS
        entry = self._read(endpoint, query, org_id)
        return CACHE_MISS if entry is None else entry.data

    async def get_with_meta_async(
        self, endpoint: str, query: Optional[Mapping[str, Any]], org_id: str
    ) -> Optional[CachedPayload]:
        """Returns the cached payload with its staleness, or None on miss."""
        if not self.enabled:
            return None
        entry = self._read(endpoint, query, org_id)
        if entry is None:
            return None
        return CachedPayload(data=entry.data, is_stale=entry.is_stale(self._clock()), endpoint=entry.endpoint)

    async def set_async(
        self,
        endpoint: str,
        query: Optional[Mapping[str, Any]],
        org_id: str,
        data: Any,
        ttl: Optional[int] = None,
    ) -> None:
        """Stores ``data``; ``ttl`` (seconds) overrides the endpoint's class default."""
        if not self.enabled:
            return
        self.set_org_id(org_id)
        backend = self._backend()
        if backend is None:
            return

        ttl_class = ttl_class_for(endpoint)
        ttl_seconds = self.ttl_for(endpoint, ttl)
        entry = CacheEntry.create(data, endpoint, ttl_class, ttl_seconds, self._clock())
        key = self.cache_key(endpoint, query, org_id)
        outcome = self._attempt(
            "write", lambda: backend.set(key, entry.to_dict(), endpoint, int(ttl_seconds * 1000))
        )
        if outcome.ok:
            logger.debug(f"Cache PUT {endpoint} (key: {key}, ttl: {ttl_seconds}s)")

    async def invalidate_async(self, pattern: Optional[str] = None) -> int:
        """Removes entries whose endpoint contains ``pattern`` (all when None)."""
        if not self.enabled:
            return 0
        backend = self._backend()
        if backend is None:
            return 0
        outcome = self._attempt("invalidate", lambda: backend.invalidate(pattern))
        if not outcome.ok:
            return 0
        if pattern is None:
            self._attempt("clear refresh queue", backend.clear_refresh_queue)
        logger.debug(f"Cache invalidated {outcome.value} entries (pattern: {pattern or '*'})")
        return outcome.value

    async def stats_async(self) -> CacheStats:
        if not self.enabled:
            return empty_stats()
        backend = self._backend()
        if backend is None:
            return empty_stats()
        outcome = self._attempt("stats", backend.stats)
        return outcome.value if outcome.ok else empty_stats()

    async def pending_refreshes_async(self) -> List[RefreshJob]:
        """Stale entries queued for refresh in the active namespace, oldest first."""
        if not self.enabled:
            return []
        backend = self._backend()
        if backend is None:
            return []
        outcome = self._attempt("read refresh queue", backend.pending_refreshes)
        return outcome.value if outcome.ok else []

    async def dequeue_refresh_async(self, key: CacheKey) -> None:
        if not self.enabled:
            return
        backend = self._backend()
        if backend is not None:
            self._attempt("dequeue refresh", lambda: backend.dequeue_refresh(key))

    def close(self) -> None:
        for backend in self._backends.values():
            self._attempt("close", backend.close)
        self._backends.clear()
