"""Defines common Value Objects used across different domain contexts.

These objects represent simple values or concepts like cache keys, raw API
responses and queued refreshes, ensuring consistency and type safety.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, NewType, Optional, TypedDict

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Derived from (endpoint, normalized query, org id)

# Query parameters as sent on the wire (JSON:API style keys such as 'filter[project_id]')
QueryParams = Dict[str, Any]


# --- Structured Data ---

@dataclass
class ApiResponse:
    """Raw response handed back by a Transport."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def retry_after(self) -> Optional[str]:
        """Retry-After header value, looked up case-insensitively."""
        for name, value in self.headers.items():
            if name.lower() == "retry-after":
                return value
        return None


class CacheStats(TypedDict):
    """Diagnostic snapshot of a cache namespace."""
    entries: int
    size: int          # bytes of serialized payload
    oldest_age: int    # seconds since the oldest live entry was written


@dataclass
class BackoffState:
    """Retry bookkeeping scoped to one logical retry loop."""
    base_delay_ms: int
    max_delay_ms: int
    max_attempts: int
    jitter_ratio: float = 0.5
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def advance(self) -> int:
        """Moves to the next attempt and returns the new attempt index."""
        self.attempt += 1
        return self.attempt


def empty_stats() -> CacheStats:
    return CacheStats(entries=0, size=0, oldest_age=0)


@dataclass
class RefreshJob:
    """A stale cache hit waiting to be fetched again."""
    cache_key: CacheKey
    endpoint: str
    query: Dict[str, Any] = field(default_factory=dict)
    queued_at: float = 0.0


@dataclass
class RefreshSummary:
    """Outcome of draining the refresh queue once."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
