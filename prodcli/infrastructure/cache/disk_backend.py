"""Disk cache backend built on ``diskcache``.

One backend instance owns one directory, so each organization namespace
gets its own on-disk store that survives across CLI invocations.
"""

import logging
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional, Union

import diskcache as dc

from prodcli.domain.interfaces.cache import CACHE_MISS, CacheBackend
from prodcli.domain.models.common import CacheKey, CacheStats, RefreshJob, empty_stats
from prodcli.infrastructure.cache.entry import estimate_size

logger = logging.getLogger(__name__)

REFRESH_QUEUE_DIRNAME = "refresh-queue"


class DiskCacheBackend(CacheBackend):
    """CacheBackend persisted with diskcache (SQLite index + files)."""

    def __init__(self, directory: Union[str, Path], timeout: float = 1):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        # Diskcache uses seconds for expire
        self.disk_cache = dc.Cache(str(self.directory), timeout=timeout)
        # Kept apart from the entries so invalidation and stats never see queued jobs
        self.refresh_queue = dc.Index(str(self.directory / REFRESH_QUEUE_DIRNAME))
        logger.debug(f"Opened disk cache at: {self.disk_cache.directory}")

    def get(self, key: CacheKey) -> Any:
        record = self.disk_cache.get(key, default=None)
        if record is None:
            return CACHE_MISS
        return record["value"]

    def set(self, key: CacheKey, value: Any, source_label: str, ttl_ms: int) -> None:
        record = {
            "value": value,
            "source": source_label,
            "created_at": time.time(),
            "size": estimate_size(value),
        }
        self.disk_cache.set(key, record, expire=ttl_ms / 1000.0)

    def invalidate(self, pattern: Optional[str] = None) -> int:
        if pattern is None:
            return self.disk_cache.clear()

        removed = 0
        for key in list(self.disk_cache.iterkeys()):
            record = self.disk_cache.get(key, default=None)
            if record is not None and pattern in record.get("source", ""):
                if self.disk_cache.delete(key):
                    removed += 1
        return removed

    def stats(self) -> CacheStats:
        self.disk_cache.expire()
        entries = 0
        size = 0
        oldest: Optional[float] = None
        for key in self.disk_cache.iterkeys():
            record = self.disk_cache.get(key, default=None)
            if record is None:
                continue
            entries += 1
            size += record.get("size", 0)
            created_at = record.get("created_at", time.time())
            oldest = created_at if oldest is None else min(oldest, created_at)

        if entries == 0:
            return empty_stats()
        return CacheStats(entries=entries, size=size, oldest_age=int(round(time.time() - oldest)))

    def queue_refresh(self, job: RefreshJob) -> None:
        if job.cache_key not in self.refresh_queue:
            self.refresh_queue[job.cache_key] = asdict(job)

    def pending_refreshes(self) -> List[RefreshJob]:
        return [RefreshJob(**record) for record in self.refresh_queue.values()]

    def dequeue_refresh(self, key: CacheKey) -> None:
        self.refresh_queue.pop(key, None)

    def clear_refresh_queue(self) -> int:
        count = len(self.refresh_queue)
        self.refresh_queue.clear()
        return count

    def close(self) -> None:
        self.disk_cache.close()
        self.refresh_queue.cache.close()
