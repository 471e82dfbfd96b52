"""In-memory cache backend.

Process-local dictionary with per-entry expiry. Used when no cache directory
is available and in tests.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from prodcli.domain.interfaces.cache import CACHE_MISS, CacheBackend
from prodcli.domain.models.common import CacheKey, CacheStats, RefreshJob, empty_stats
from prodcli.infrastructure.cache.entry import estimate_size

logger = logging.getLogger(__name__)


@dataclass
class _Record:
    value: Any
    source_label: str
    created_at: float
    expiry_time: float
    size: int


class MemoryCacheBackend(CacheBackend):
    """Dictionary-backed CacheBackend."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._records: Dict[CacheKey, _Record] = {}
        self._refresh_queue: Dict[CacheKey, RefreshJob] = {}
        self._clock = clock

    def _prune(self) -> None:
        """Removes expired records."""
        now = self._clock()
        expired_keys = [k for k, v in self._records.items() if now >= v.expiry_time]
        for k in expired_keys:
            del self._records[k]

    def get(self, key: CacheKey) -> Any:
        record = self._records.get(key)
        if record is None:
            return CACHE_MISS
        if self._clock() >= record.expiry_time:
            del self._records[key]
            return CACHE_MISS
        return record.value

    def set(self, key: CacheKey, value: Any, source_label: str, ttl_ms: int) -> None:
        now = self._clock()
        self._records[key] = _Record(
            value=value,
            source_label=source_label,
            created_at=now,
            expiry_time=now + ttl_ms / 1000.0,
            size=estimate_size(value),
        )

    def invalidate(self, pattern: Optional[str] = None) -> int:
        if pattern is None:
            count = len(self._records)
            self._records.clear()
            return count
        matching = [k for k, v in self._records.items() if pattern in v.source_label]
        for k in matching:
            del self._records[k]
        return len(matching)

    def stats(self) -> CacheStats:
        self._prune()
        if not self._records:
            return empty_stats()
        now = self._clock()
        oldest = min(r.created_at for r in self._records.values())
        return CacheStats(
            entries=len(self._records),
            size=sum(r.size for r in self._records.values()),
            oldest_age=int(round(now - oldest)),
        )

    def queue_refresh(self, job: RefreshJob) -> None:
        self._refresh_queue.setdefault(job.cache_key, job)

    def pending_refreshes(self) -> List[RefreshJob]:
        return list(self._refresh_queue.values())

    def dequeue_refresh(self, key: CacheKey) -> None:
        self._refresh_queue.pop(key, None)

    def clear_refresh_queue(self) -> int:
        count = len(self._refresh_queue)
        self._refresh_queue.clear()
        return count
