import pytest
from unittest.mock import MagicMock

from prodcli.core.command_handler import CommandHandler
from prodcli.core.context import create_cache, create_context
from prodcli.domain.errors import ConfigError
from prodcli.domain.interfaces.user_interface import UserInterface
from prodcli.domain.models.common import ApiResponse, RefreshJob
from prodcli.domain.models.resolution import ResourceType
from prodcli.infrastructure.cache.memory_backend import MemoryCacheBackend
from prodcli.infrastructure.cache.response_cache import ResponseCache

PEOPLE = {"data": [{"id": "42", "attributes": {"first_name": "John", "last_name": "Doe", "email": "john@x.com"}}]}
TASKS = {"data": [{"id": "7", "type": "tasks"}]}


def api(method, path, query, body):
    if path == "/people":
        if query.get("filter[email]") == "john@x.com":
            return ApiResponse(status=200, body=PEOPLE)
        return ApiResponse(status=200, body={"data": []})
    if path == "/tasks":
        return ApiResponse(status=200, body=TASKS)
    return ApiResponse(status=404, body={"errors": [{"detail": "Not found"}]})


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def backends():
    return {}


@pytest.fixture
def backend_factory(backends):
    def factory(namespace):
        return backends.setdefault(namespace, MemoryCacheBackend())
    return factory


@pytest.fixture
def transport(make_transport):
    return make_transport(handler=api)


@pytest.fixture
def command_handler(mock_ui, transport, backend_factory):
    """CommandHandler wired to the real pipeline over a fake transport and in-memory cache."""
    return CommandHandler(
        ui=mock_ui,
        context_factory=lambda: create_context(org_id="1", transport=transport, backend_factory=backend_factory),
        cache_factory=lambda: create_cache(org_id="1", backend_factory=backend_factory),
    )


@pytest.mark.asyncio
async def test_handle_resolve(command_handler, mock_ui, transport):
    assert await command_handler.handle_resolve("john@x.com") is True

    mock_ui.display_table.assert_called_once_with(
        ["ID", "Label", "Type", "Exact"],
        [["42", "John Doe", "person", "yes"]],
        title="Matches for 'john@x.com'",
    )
    mock_ui.display_error.assert_not_called()
    assert transport.closed


@pytest.mark.asyncio
async def test_handle_resolve_no_match(command_handler, mock_ui):
    assert await command_handler.handle_resolve("ghost@x.com", ResourceType.PERSON) is False

    message = mock_ui.display_error.call_args.args[0]
    assert "ghost@x.com" in message
    mock_ui.display_table.assert_not_called()


@pytest.mark.asyncio
async def test_handle_resolve_missing_configuration(mock_ui):
    def failing_factory():
        raise ConfigError.missing("API token", "PRODUCTIVE_API_TOKEN")

    handler = CommandHandler(ui=mock_ui, context_factory=failing_factory, cache_factory=MagicMock())

    assert await handler.handle_resolve("john@x.com") is False
    message = mock_ui.display_error.call_args.args[0]
    assert message.startswith("Resolve failed: API token not configured")


@pytest.mark.asyncio
async def test_handle_get_resolves_filters(command_handler, mock_ui, transport):
    assert await command_handler.handle_get("tasks", {"assignee_id": "john@x.com"}) is True

    mock_ui.display_output.assert_called_once_with(TASKS, raw=False)
    method, path, query, _ = transport.calls[-1]
    assert (method, path) == ("GET", "/tasks")
    assert query == {"filter[assignee_id]": "42"}


@pytest.mark.asyncio
async def test_handle_get_uses_cache_between_commands(command_handler, transport):
    await command_handler.handle_get("/tasks")
    await command_handler.handle_get("/tasks")
    assert len(transport.calls) == 1

    await command_handler.handle_get("/tasks", force_refresh=True)
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_handle_get_api_error(command_handler, mock_ui):
    assert await command_handler.handle_get("/nowhere", raw=True) is False

    mock_ui.display_error.assert_called_once_with("Request failed: Not found")
    mock_ui.display_output.assert_not_called()


@pytest.mark.asyncio
async def test_handle_cache_status(command_handler, mock_ui):
    await command_handler.handle_get("/tasks")

    assert await command_handler.handle_cache_status() is True

    mapping = mock_ui.display_mapping.call_args.args[0]
    assert mapping["Enabled"] == "yes"
    assert mapping["Organization"] == "1"
    assert mapping["Entries"] == 1
    assert mapping["Queued refreshes"] == 0
    assert mock_ui.display_mapping.call_args.kwargs["title"] == "Cache status"


@pytest.mark.asyncio
async def test_handle_cache_clear(command_handler, mock_ui):
    await command_handler.handle_get("/tasks")
    await command_handler.handle_get("/people", {"email": "john@x.com"})

    assert await command_handler.handle_cache_clear("tasks") is True
    mock_ui.display_info.assert_called_with("Removed 1 cached response(s) matching 'tasks'.")

    assert await command_handler.handle_cache_clear() is True
    mock_ui.display_info.assert_called_with("Removed 1 cached response(s) in total.")


@pytest.mark.asyncio
async def test_handle_cache_clear_when_disabled(mock_ui, backend_factory):
    handler = CommandHandler(
        ui=mock_ui,
        context_factory=MagicMock(),
        cache_factory=lambda: create_cache(org_id="1", use_cache=False, backend_factory=backend_factory),
    )

    assert await handler.handle_cache_clear() is False
    mock_ui.display_error.assert_called_once_with("Cache is disabled; nothing to clear.")


@pytest.mark.asyncio
async def test_commands_refresh_queued_stale_entries_first(command_handler, transport, backends):
    await command_handler.handle_get("/tasks")
    key = ResponseCache.cache_key("/tasks", {}, "1")
    backends["1"].queue_refresh(RefreshJob(key, "/tasks"))

    assert await command_handler.handle_resolve("john@x.com") is True

    assert [call[1] for call in transport.calls] == ["/tasks", "/tasks", "/people"]
    assert backends["1"].pending_refreshes() == []


@pytest.mark.asyncio
async def test_cache_commands_report_configuration_errors(mock_ui):
    def failing_factory():
        raise ConfigError("Invalid value for cache.ttl.fast")

    handler = CommandHandler(ui=mock_ui, context_factory=MagicMock(), cache_factory=failing_factory)

    assert await handler.handle_cache_status() is False
    assert await handler.handle_cache_clear() is False
    mock_ui.display_error.assert_called_with("Cache unavailable: Invalid value for cache.ttl.fast")
