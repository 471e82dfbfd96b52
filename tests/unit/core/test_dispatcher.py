import logging

import pytest
from unittest.mock import AsyncMock, MagicMock

from prodcli.core.services.dispatcher import RequestDispatcher, resource_segment
from prodcli.core.services.resolver import ResourceResolver
from prodcli.domain.errors import ApiError, MaxRetryError
from prodcli.domain.interfaces.cache import CACHE_MISS
from prodcli.domain.models.common import ApiResponse, RefreshJob, RefreshSummary
from prodcli.domain.models.resolution import ResolutionResult, ResolvedFilters, ResourceType
from prodcli.infrastructure.resilience.rate_limiter import RateLimitConfig, RateLimiter

ORG = "42"


def ok(body=None):
    return ApiResponse(status=200, body=body if body is not None else {"data": []})


def throttled(retry_after=None):
    headers = {"Retry-After": retry_after} if retry_after else {}
    return ApiResponse(status=429, headers=headers, body={"errors": [{"detail": "Too many requests"}]})


@pytest.fixture
def make_dispatcher(fake_clock, memory_cache):
    def build(transport, **limiter_config):
        rng = MagicMock()
        rng.random.return_value = 0.0
        limiter = RateLimiter(
            RateLimitConfig(**limiter_config), clock=fake_clock, sleep=fake_clock.sleep, rng=rng
        )
        return RequestDispatcher(transport, memory_cache, limiter, ORG, sleep=fake_clock.sleep)
    return build


def test_resource_segment():
    assert resource_segment("/time_entries/12") == "time_entries"
    assert resource_segment("/projects") == "projects"


@pytest.mark.asyncio
async def test_get_is_cached(make_transport, make_dispatcher):
    transport = make_transport([ok({"data": [{"id": "1"}]})])
    dispatcher = make_dispatcher(transport)

    first = await dispatcher.request("GET", "/projects", {"page[size]": "10"})
    second = await dispatcher.request("GET", "/projects", {"page[size]": "10"})

    assert first == second == {"data": [{"id": "1"}]}
    assert len(transport.calls) == 1
    assert transport.calls[0] == ("GET", "/projects", {"page[size]": "10"}, None)


@pytest.mark.asyncio
async def test_use_cache_false_bypasses_cache(make_transport, make_dispatcher, memory_cache):
    transport = make_transport([ok(), ok()])
    dispatcher = make_dispatcher(transport)

    await dispatcher.request("GET", "/projects", use_cache=False)
    await dispatcher.request("GET", "/projects", use_cache=False)

    assert len(transport.calls) == 2
    assert await memory_cache.get_async("/projects", {}, ORG) is CACHE_MISS


@pytest.mark.asyncio
async def test_force_refresh_skips_read_but_stores(make_transport, make_dispatcher, memory_cache):
    transport = make_transport([ok({"v": 1}), ok({"v": 2})])
    dispatcher = make_dispatcher(transport)

    await dispatcher.request("GET", "/tasks")
    refreshed = await dispatcher.request("GET", "/tasks", force_refresh=True)

    assert refreshed == {"v": 2}
    assert await memory_cache.get_async("/tasks", {}, ORG) == {"v": 2}


@pytest.mark.asyncio
async def test_throttled_request_is_retried_after_retry_after(make_transport, make_dispatcher, fake_clock):
    transport = make_transport([throttled("2"), ok({"data": "late"})])
    dispatcher = make_dispatcher(transport)

    assert await dispatcher.request("GET", "/people") == {"data": "late"}
    assert len(transport.calls) == 2
    assert fake_clock.sleeps == [2.0]


@pytest.mark.asyncio
async def test_throttled_request_uses_backoff_without_header(make_transport, make_dispatcher, fake_clock):
    transport = make_transport([throttled(), throttled(), ok()])
    dispatcher = make_dispatcher(transport)

    await dispatcher.request("GET", "/people")

    # 1000ms * 2**attempt * 0.5 jitter
    assert fake_clock.sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retries_exhausted_raises_max_retry_error(make_transport, make_dispatcher):
    transport = make_transport([throttled(), throttled(), throttled()])
    dispatcher = make_dispatcher(transport, max_retries=2)

    with pytest.raises(MaxRetryError) as exc_info:
        await dispatcher.request("GET", "/tasks")

    error = exc_info.value
    assert error.endpoint == "/tasks"
    assert error.attempts == 3
    assert isinstance(error.original_exception, ApiError)
    assert error.original_exception.status == 429
    assert len(transport.calls) == 3


@pytest.mark.asyncio
async def test_disabled_rate_limiting_fails_fast_on_429(make_transport, make_dispatcher, fake_clock):
    transport = make_transport([throttled("5")])
    dispatcher = make_dispatcher(transport, enabled=False)

    with pytest.raises(MaxRetryError):
        await dispatcher.request("GET", "/tasks")

    assert fake_clock.sleeps == []
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(make_transport, make_dispatcher):
    transport = make_transport([ApiResponse(status=404, body={"errors": [{"detail": "Not found"}]})])
    dispatcher = make_dispatcher(transport)

    with pytest.raises(ApiError) as exc_info:
        await dispatcher.request("GET", "/projects/999")

    assert exc_info.value.status == 404
    assert str(exc_info.value) == "Not found"
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_transport_failure_propagates(make_dispatcher):
    transport = AsyncMock(side_effect=ApiError("connection refused", endpoint="/projects"))
    dispatcher = make_dispatcher(transport)

    with pytest.raises(ApiError, match="connection refused"):
        await dispatcher.request("GET", "/projects")


@pytest.mark.asyncio
async def test_write_invalidates_resource_cache(make_transport, make_dispatcher, memory_cache):
    transport = make_transport([ok({"list": 1}), ok({"projects": 1}), ApiResponse(status=201, body={"data": {"id": "12"}})])
    dispatcher = make_dispatcher(transport)
    await dispatcher.request("GET", "/time_entries", {"filter[person_id]": "1"})
    await dispatcher.request("GET", "/projects")

    created = await dispatcher.request("PATCH", "/time_entries/12", body={"data": {}})

    assert created == {"data": {"id": "12"}}
    assert await memory_cache.get_async("/time_entries", {"filter[person_id]": "1"}, ORG) is CACHE_MISS
    assert await memory_cache.get_async("/projects", {}, ORG) == {"projects": 1}


@pytest.mark.asyncio
async def test_writes_are_never_served_from_cache(make_transport, make_dispatcher):
    transport = make_transport([ok({"n": 1}), ok({"n": 2})])
    dispatcher = make_dispatcher(transport)

    await dispatcher.request("POST", "/time_entries", body={"data": {}})
    await dispatcher.request("POST", "/time_entries", body={"data": {}})

    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_every_attempt_acquires_rate_limit(make_transport, make_dispatcher, fake_clock):
    transport = make_transport([ok(), ok(), ok()])
    dispatcher = make_dispatcher(transport, max_requests_per_10s=2)

    for page in range(3):
        await dispatcher.request("GET", "/projects", {"page[number]": str(page)})

    assert fake_clock.sleeps == [pytest.approx(10.001)]


@pytest.mark.asyncio
async def test_list_builds_query_with_resolved_filters(make_transport, make_dispatcher):
    transport = make_transport([ok()])
    dispatcher = make_dispatcher(transport)
    resolver = MagicMock(spec=ResourceResolver)
    resolver.resolve_filters = AsyncMock(return_value=ResolvedFilters(
        resolved={"assignee_id": "42", "status": "1"},
        metadata={"assignee_id": ResolutionResult("john@x.com", "42", "John Doe", ResourceType.PERSON, True)},
    ))
    dispatcher.bind_resolver(resolver)

    await dispatcher.list("/tasks", {"assignee_id": "john@x.com", "status": "1"}, page=2, per_page=50, sort="-created_at")

    resolver.resolve_filters.assert_awaited_once_with({"assignee_id": "john@x.com", "status": "1"}, None)
    assert transport.calls[0][2] == {
        "page[number]": "2",
        "page[size]": "50",
        "sort": "-created_at",
        "filter[assignee_id]": "42",
        "filter[status]": "1",
    }


@pytest.mark.asyncio
async def test_list_without_resolver_sends_filters_as_given(make_transport, make_dispatcher):
    transport = make_transport([ok()])
    dispatcher = make_dispatcher(transport)

    await dispatcher.list("/tasks", {"assignee_id": "john@x.com"})

    assert transport.calls[0][2] == {"filter[assignee_id]": "john@x.com"}


@pytest.mark.asyncio
async def test_error_after_throttling_reports_attempt_count(make_transport, make_dispatcher):
    unavailable = ApiResponse(status=503, body={"errors": [{"detail": "Unavailable"}]})
    transport = make_transport([throttled(), unavailable])
    dispatcher = make_dispatcher(transport)

    with pytest.raises(ApiError) as exc_info:
        await dispatcher.request("GET", "/tasks")

    assert exc_info.value.status == 503
    assert exc_info.value.attempts == 2
    assert str(exc_info.value) == "Unavailable (after 2 attempts)"


@pytest.mark.asyncio
async def test_transport_failure_records_attempt(make_dispatcher):
    failing = AsyncMock(side_effect=[throttled(), ApiError("connection reset", endpoint="/tasks")])
    dispatcher = make_dispatcher(failing)

    with pytest.raises(ApiError) as exc_info:
        await dispatcher.request("GET", "/tasks")

    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_process_refresh_queue_refetches_stale_entries(make_transport, make_dispatcher, memory_cache, caplog):
    transport = make_transport([
        ok({"v": 2}),
        ApiResponse(status=500, body={"errors": [{"detail": "Boom"}]}),
    ])
    dispatcher = make_dispatcher(transport)
    query = {"filter[status]": "1"}
    await memory_cache.set_async("/tasks", query, ORG, {"v": 1})
    backend = memory_cache.backends[ORG]
    backend.queue_refresh(RefreshJob(memory_cache.cache_key("/tasks", query, ORG), "/tasks", query))
    backend.queue_refresh(RefreshJob("projects-key", "/projects"))
    backend.queue_refresh(RefreshJob("people-key", "/people"))

    with caplog.at_level(logging.WARNING):
        summary = await dispatcher.process_refresh_queue(max_jobs=2)

    assert summary == RefreshSummary(processed=2, succeeded=1, failed=1, skipped=1)
    assert [call[:3] for call in transport.calls] == [("GET", "/tasks", query), ("GET", "/projects", {})]
    assert await memory_cache.get_async("/tasks", query, ORG) == {"v": 2}
    assert [job.endpoint for job in await memory_cache.pending_refreshes_async()] == ["/people"]
    assert "Background refresh of /projects failed: Boom" in caplog.text


@pytest.mark.asyncio
async def test_process_refresh_queue_with_nothing_queued(make_transport, make_dispatcher):
    transport = make_transport([])
    dispatcher = make_dispatcher(transport)

    assert await dispatcher.process_refresh_queue() == RefreshSummary()
    assert transport.calls == []
