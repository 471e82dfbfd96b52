"""Service for executing API calls through cache, rate limiter and retries.

Every read and write goes through ``RequestDispatcher.request``: GET
responses are served from and written to the response cache, each network
attempt first acquires rate-limit permission, and HTTP 429 responses are
retried with the limiter's backoff policy. Successful writes invalidate the
cached entries of the resource they touched.
Stale cache hits queued by earlier reads are fetched again by
``process_refresh_queue``.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from prodcli.domain.errors import ApiError, MaxRetryError, ProdCliError
from prodcli.domain.events.api_events import (
    ApiCallDeferred,
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    DomainEvent,
    RetryScheduled,
)
from prodcli.domain.interfaces.cache import CACHE_MISS
from prodcli.domain.interfaces.transport import Transport
from prodcli.domain.models.common import ApiResponse, QueryParams, RefreshSummary
from prodcli.infrastructure.cache.response_cache import DEFAULT_REFRESH_BATCH_SIZE, ResponseCache
from prodcli.infrastructure.resilience.rate_limiter import RateLimiter
from prodcli.infrastructure.transport.http_transport import error_message_from

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429


def dispatch_event(event: DomainEvent) -> None:
    """Publishes a domain event. Events currently go to the debug log."""
    logger.debug(f"EVENT: {event}")


def resource_segment(path: str) -> str:
    """First path segment, used as the invalidation pattern for writes ('/time_entries/12' -> 'time_entries')."""
    parts = path.split("/")
    return parts[1] if len(parts) > 1 else parts[0]


class RequestDispatcher:
    """Handles API call execution with caching, rate limiting and retries."""

    def __init__(
        self,
        transport: Transport,
        cache: ResponseCache,
        rate_limiter: RateLimiter,
        org_id: str,
        resolver: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initializes the dispatcher.

        Args:
            transport: Performs the actual network call.
            cache: Response cache for GET requests.
            rate_limiter: Throttling and retry policy.
            org_id: Organization the requests are made for (cache namespace).
            resolver: Optional ResourceResolver used by ``list`` to resolve filter values.
            sleep: Coroutine used to wait between retries.
        """
        self.transport = transport
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.org_id = str(org_id)
        self.resolver = resolver
        self._sleep = sleep
        self.cache.set_org_id(self.org_id)

    def bind_resolver(self, resolver: Any) -> None:
        """Attaches the resolver after construction (the resolver itself looks up through this dispatcher)."""
        self.resolver = resolver

    async def request(
        self,
        method: str,
        path: str,
        query: Optional[QueryParams] = None,
        body: Any = None,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> Any:
        """Executes one logical API call.

        Args:
            method: HTTP method.
            path: Endpoint path, e.g. '/projects' or '/time_entries/12'.
            query: Query parameters.
            body: JSON:API request body for writes.
            use_cache: Read from and write to the cache (GET only).
            force_refresh: Skip the cache read but still store the fresh response.

        Returns:
            The decoded response body.

        Raises:
            MaxRetryError: If the API kept throttling after all retries.
            ApiError: For other non-2xx responses or transport failures.
        """
        method = method.upper()
        query = dict(query or {})
        is_read = method == "GET"

        if is_read and use_cache and not force_refresh:
            cached = await self.cache.get_async(path, query, self.org_id)
            if cached is not CACHE_MISS:
                dispatch_event(ApiCallSucceeded(method=method, endpoint=path, status=200, latency_ms=0.0, from_cache=True))
                return cached

        response = await self._send_with_retry(method, path, query, body)

        if is_read:
            if use_cache:
                await self.cache.set_async(path, query, self.org_id, response.body)
        else:
            removed = await self.cache.invalidate_async(resource_segment(path))
            if removed:
                logger.debug(f"Invalidated {removed} cached response(s) after {method} {path}")

        return response.body

    async def _send_with_retry(
        self, method: str, path: str, query: QueryParams, body: Any
    ) -> ApiResponse:
        """Sends the request, retrying throttled attempts per the limiter's policy."""
        backoff = self.rate_limiter.new_backoff()
        while True:
            attempts = backoff.attempt + 1
            wait_time = self.rate_limiter.get_wait_time(path)
            if wait_time > 0:
                dispatch_event(ApiCallDeferred(endpoint=path, wait_time_seconds=wait_time))
            await self.rate_limiter.acquire(path)

            dispatch_event(ApiCallInitiated(method=method, endpoint=path, attempt_number=attempts))
            start_time = time.perf_counter()
            try:
                response = await self.transport(method, path, query or None, body)
            except ApiError as e:
                logger.error(f"Transport failure calling {method} {path} on attempt {attempts}: {e}")
                dispatch_event(ApiCallFailed(method=method, endpoint=path, error_type=type(e).__name__, error_message=str(e)))
                e.attempts = attempts
                raise
            latency_ms = (time.perf_counter() - start_time) * 1000

            retry_after = response.retry_after
            self.rate_limiter.record_response(response.status, retry_after)

            if response.ok:
                dispatch_event(ApiCallSucceeded(method=method, endpoint=path, status=response.status, latency_ms=latency_ms))
                return response

            error = ApiError(
                error_message_from(response.body, response.status),
                status=response.status,
                endpoint=path,
                body=response.body,
                attempts=attempts,
            )

            if response.status != TOO_MANY_REQUESTS:
                logger.error(f"{method} {path} failed with status {response.status} on attempt {attempts}: {error}")
                dispatch_event(ApiCallFailed(
                    method=method, endpoint=path, error_type=type(error).__name__,
                    error_message=str(error), status=response.status,
                ))
                raise error

            if not self.rate_limiter.should_retry(backoff.attempt):
                logger.error(f"Rate limited on {method} {path}; giving up after {attempts} attempt(s)")
                dispatch_event(ApiCallFailed(
                    method=method, endpoint=path, error_type=type(error).__name__,
                    error_message=str(error), status=response.status,
                ))
                raise MaxRetryError(path, attempts, error)

            delay_ms = self.rate_limiter.get_retry_delay(backoff.attempt, retry_after)
            logger.warning(
                f"Rate limited on {method} {path} (attempt {attempts}). "
                f"Retrying in {delay_ms / 1000:.2f}s..."
            )
            dispatch_event(RetryScheduled(endpoint=path, attempt_number=attempts, delay_ms=delay_ms, retry_after=retry_after))
            await self._sleep(delay_ms / 1000.0)
            backoff.advance()

    async def process_refresh_queue(self, max_jobs: int = DEFAULT_REFRESH_BATCH_SIZE) -> RefreshSummary:
        """Fetches up to ``max_jobs`` stale cache entries queued by earlier reads.

        Each job is removed from the queue whether or not its refresh succeeds,
        so a failing endpoint is not retried forever. Failures are logged, never raised.
        """
        summary = RefreshSummary()
        jobs = await self.cache.pending_refreshes_async()
        if not jobs:
            return summary

        for job in jobs[:max_jobs]:
            summary.processed += 1
            try:
                await self.request("GET", job.endpoint, job.query, force_refresh=True)
                summary.succeeded += 1
            except ProdCliError as e:
                summary.failed += 1
                logger.warning(f"Background refresh of {job.endpoint} failed: {e}")
            await self.cache.dequeue_refresh_async(job.cache_key)

        summary.skipped = max(0, len(jobs) - max_jobs)
        logger.info(
            f"Refreshed {summary.succeeded} of {summary.processed} stale cache entries "
            f"({summary.failed} failed, {summary.skipped} left queued)"
        )
        return summary

    async def list(
        self,
        path: str,
        filters: Optional[Mapping[str, Any]] = None,
        type_mapping: Optional[Mapping[str, Any]] = None,
        page: Optional[int] = None,
        per_page: Optional[int] = None,
        sort: Optional[str] = None,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> Any:
        """GETs a collection, resolving human-friendly filter values first.

        Filter values such as emails or project numbers are replaced by their
        numeric IDs when a resolver is bound; values that cannot be resolved
        are sent as given.
        """
        resolved_filters: Dict[str, Any] = dict(filters or {})
        if resolved_filters and self.resolver is not None:
            resolution = await self.resolver.resolve_filters(resolved_filters, type_mapping)
            resolved_filters = resolution.resolved
            for key, info in resolution.metadata.items():
                logger.info(f"Resolved {key} '{info.query}' to {info.id} ({info.label})")

        query: QueryParams = {}
        if page:
            query["page[number]"] = str(page)
        if per_page:
            query["page[size]"] = str(per_page)
        if sort:
            query["sort"] = sort
        for key, value in resolved_filters.items():
            query[f"filter[{key}]"] = value

        return await self.request("GET", path, query, use_cache=use_cache, force_refresh=force_refresh)
