import pytest
from typer.testing import CliRunner
from typing import Any, Callable, Dict, List, Optional

from prodcli.domain.interfaces.transport import Transport
from prodcli.domain.models.common import ApiResponse
from prodcli.infrastructure.cache.memory_backend import MemoryCacheBackend
from prodcli.infrastructure.cache.response_cache import ResponseCache
from prodcli.infrastructure.config import settings


class FakeClock:
    """Controllable time source; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport(Transport):
    """Records calls and answers from a queue of responses or a handler function."""

    def __init__(
        self,
        responses: Optional[List[ApiResponse]] = None,
        handler: Optional[Callable[[str, str, Dict[str, Any], Any], ApiResponse]] = None,
    ):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: List[tuple] = []
        self.closed = False

    async def __call__(self, method, path, query=None, body=None):
        self.calls.append((method, path, dict(query or {}), body))
        if self.handler is not None:
            return self.handler(method, path, dict(query or {}), body)
        return self.responses.pop(0)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_transport():
    """Factory for FakeTransport instances."""
    return FakeTransport


@pytest.fixture
def memory_cache():
    """ResponseCache over in-memory backends (one per organization)."""
    backends: Dict[str, MemoryCacheBackend] = {}

    def factory(namespace: str) -> MemoryCacheBackend:
        return backends.setdefault(namespace, MemoryCacheBackend())

    cache = ResponseCache(backend_factory=factory)
    cache.backends = backends  # exposed for assertions
    return cache


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keeps tests independent of the developer's environment and config files."""
    for var in (
        "PRODUCTIVE_API_TOKEN",
        "PRODUCTIVE_ORG_ID",
        "PRODUCTIVE_BASE_URL",
        "PRODUCTIVE_TIMEOUT_SECONDS",
        "PRODCLI_CACHE_ENABLED",
        "PRODCLI_CACHE_DIRECTORY",
        "PRODCLI_RATE_LIMIT_ENABLED",
        "PRODCLI_LOGGING_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "xdg-cache"))
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", True)
    settings.clear_test_config()
    yield
    settings.clear_test_config()
