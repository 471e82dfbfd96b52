"""Cache entry model, TTL classes and key derivation."""

import hashlib
import json
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from prodcli.domain.models.common import CacheKey

# Fraction of the TTL after which an entry is reported as stale
STALE_THRESHOLD = 0.75


class TtlClass(str, Enum):
    """How fast the data behind an endpoint changes."""
    REFERENCE = "reference"   # projects, people, services, companies
    MEDIUM = "medium"         # tasks, budgets, deals
    FAST = "fast"             # time entries, bookings, anything unknown


DEFAULT_TTL_SECONDS: Dict[TtlClass, int] = {
    TtlClass.REFERENCE: 60 * 60,
    TtlClass.MEDIUM: 15 * 60,
    TtlClass.FAST: 5 * 60,
}

# Endpoint prefix -> TTL class, checked in order
ENDPOINT_TTL_CLASSES = (
    ("/projects", TtlClass.REFERENCE),
    ("/people", TtlClass.REFERENCE),
    ("/services", TtlClass.REFERENCE),
    ("/companies", TtlClass.REFERENCE),
    ("/tasks", TtlClass.MEDIUM),
    ("/budgets", TtlClass.MEDIUM),
    ("/deals", TtlClass.MEDIUM),
    ("/time_entries", TtlClass.FAST),
    ("/bookings", TtlClass.FAST),
    ("/timers", TtlClass.FAST),
)


def ttl_class_for(endpoint: str) -> TtlClass:
    for prefix, ttl_class in ENDPOINT_TTL_CLASSES:
        if endpoint.startswith(prefix):
            return ttl_class
    return TtlClass.FAST


def normalize_query(query: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Sorts keys, stringifies values and drops None so equivalent queries compare equal."""
    if not query:
        return {}
    return {str(k): str(v) for k, v in sorted(query.items(), key=lambda item: str(item[0])) if v is not None}


def derive_key(endpoint: str, query: Optional[Mapping[str, Any]], org_id: str) -> CacheKey:
    """Deterministic key for (endpoint, normalized query, organization)."""
    normalized = json.dumps(
        {"endpoint": endpoint, "org_id": str(org_id), "params": normalize_query(query)},
        sort_keys=True,
        separators=(",", ":"),
    )
    return CacheKey(hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16])


def estimate_size(value: Any) -> int:
    """Size in bytes of the JSON form of ``value``."""
    try:
        return len(json.dumps(value, default=str).encode("utf-8"))
    except (TypeError, ValueError):
        return 0


@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    data: Any
    endpoint: str
    ttl_class: str
    created_at: float
    expires_at: float
    stale_at: float

    @classmethod
    def create(cls, data: Any, endpoint: str, ttl_class: TtlClass, ttl_seconds: float, now: float) -> "CacheEntry":
        return cls(
            data=data,
            endpoint=endpoint,
            ttl_class=ttl_class.value,
            created_at=now,
            expires_at=now + ttl_seconds,
            stale_at=now + ttl_seconds * STALE_THRESHOLD,
        )

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_stale(self, now: float) -> bool:
        return now >= self.stale_at

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        return cls(**{name: data[name] for name in cls.__dataclass_fields__})
