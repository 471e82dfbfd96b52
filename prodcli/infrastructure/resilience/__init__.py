"""API Resilience Implementations.

Contains the sliding-window rate limiter and the retry backoff policy
used for throttled (HTTP 429) responses.
Bounded Context: API Resilience
"""
