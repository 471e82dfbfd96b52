"""Application context: the wired-up pipeline shared by every command.

Built once per process by ``create_context`` and passed explicitly to the
command handler, so nothing in the pipeline is a module-level singleton.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from prodcli.core.services.dispatcher import RequestDispatcher
from prodcli.core.services.resolver import ResourceResolver
from prodcli.core.services.resource_lookup import DispatcherResourceLookup
from prodcli.domain.interfaces.cache import CacheBackend
from prodcli.domain.interfaces.transport import Transport
from prodcli.infrastructure.cache.disk_backend import DiskCacheBackend
from prodcli.infrastructure.cache.response_cache import DEFAULT_REFRESH_BATCH_SIZE, ResponseCache
from prodcli.infrastructure.config.settings import (
    get_api_config,
    get_cache_config,
    get_rate_limit_config,
)
from prodcli.infrastructure.resilience.rate_limiter import RateLimiter
from prodcli.infrastructure.transport.http_transport import HttpxTransport

logger = logging.getLogger(__name__)

BackendFactory = Callable[[str], CacheBackend]


@dataclass
class AppContext:
    """Everything a command needs to talk to the API."""
    org_id: str
    transport: Transport
    cache: ResponseCache
    rate_limiter: RateLimiter
    dispatcher: RequestDispatcher
    resolver: ResourceResolver
    refresh_batch_size: int = DEFAULT_REFRESH_BATCH_SIZE

    async def aclose(self) -> None:
        self.cache.close()
        await self.transport.aclose()


def disk_backend_factory(root: Path) -> BackendFactory:
    """One diskcache directory per organization under ``root``."""
    def factory(namespace: str) -> CacheBackend:
        return DiskCacheBackend(root / namespace)
    return factory


def create_cache(
    org_id: Optional[str] = None,
    use_cache: Optional[bool] = None,
    backend_factory: Optional[BackendFactory] = None,
) -> ResponseCache:
    """Builds the response cache from configuration, scoped to ``org_id`` when given."""
    cache_config = get_cache_config()
    cache = ResponseCache(
        backend_factory=backend_factory or disk_backend_factory(cache_config.directory),
        enabled=cache_config.enabled if use_cache is None else use_cache,
        ttl_overrides=cache_config.ttl_seconds,
    )
    if org_id is not None:
        cache.set_org_id(org_id)
    return cache


def create_context(
    token: Optional[str] = None,
    org_id: Optional[str] = None,
    use_cache: Optional[bool] = None,
    transport: Optional[Transport] = None,
    backend_factory: Optional[BackendFactory] = None,
) -> AppContext:
    """Builds the pipeline from configuration. Explicit arguments win.

    Raises:
        ConfigError: If credentials are missing and no transport is supplied.
    """
    rate_limit_config = get_rate_limit_config()

    if transport is None:
        api_config = get_api_config(token=token, organization_id=org_id)
        org_id = api_config.organization_id
        transport = HttpxTransport(
            api_token=api_config.token,
            organization_id=api_config.organization_id,
            base_url=api_config.base_url,
            timeout=api_config.timeout_seconds,
        )
    elif org_id is None:
        org_id = "default"

    cache = create_cache(org_id, use_cache, backend_factory)
    rate_limiter = RateLimiter(rate_limit_config)
    dispatcher = RequestDispatcher(transport, cache, rate_limiter, org_id)
    resolver = ResourceResolver(DispatcherResourceLookup(dispatcher), cache=cache, org_id=org_id)
    dispatcher.bind_resolver(resolver)

    logger.debug(f"Application context created for organization {org_id}")
    return AppContext(
        org_id=str(org_id),
        transport=transport,
        cache=cache,
        rate_limiter=rate_limiter,
        dispatcher=dispatcher,
        resolver=resolver,
        refresh_batch_size=get_cache_config().refresh_batch_size,
    )
