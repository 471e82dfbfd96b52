"""Response Cache Implementation.

TTL-classed response cache namespaced per organization, with a diskcache
backend for persistence across invocations and an in-memory backend.
Bounded Context: Cache Management
"""
