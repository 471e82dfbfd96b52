"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), obtains the
application context lazily (so commands that fail on configuration report
it cleanly) and presents results through the UserInterface.
"""

import logging
from typing import Any, Callable, Dict, Optional

from prodcli.core.context import AppContext
from prodcli.core.services.resolver import ResolveError
from prodcli.domain.errors import ProdCliError
from prodcli.domain.interfaces.user_interface import UserInterface
from prodcli.domain.models.resolution import ResourceType
from prodcli.infrastructure.cache.response_cache import ResponseCache

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to the request pipeline.

    Every ``handle_*`` coroutine returns True on success and False when an
    error was reported to the user.
    """

    def __init__(
        self,
        ui: UserInterface,
        context_factory: Callable[[], AppContext],
        cache_factory: Callable[[], ResponseCache],
    ):
        """Initializes the CommandHandler.

        Args:
            ui: Where results and errors are shown.
            context_factory: Builds the full pipeline (needs API credentials).
            cache_factory: Builds just the response cache (no credentials needed).
        """
        self.ui = ui
        self.context_factory = context_factory
        self.cache_factory = cache_factory

    async def _refresh_stale(self, context: AppContext) -> None:
        """Refetches stale responses served by earlier commands."""
        summary = await context.dispatcher.process_refresh_queue(context.refresh_batch_size)
        if summary.failed:
            logger.warning(f"{summary.failed} of {summary.processed} queued refreshes failed")

    def _open_cache(self) -> Optional[ResponseCache]:
        try:
            return self.cache_factory()
        except ProdCliError as e:
            logger.error(f"Could not open the cache: {e}")
            self.ui.display_error(f"Cache unavailable: {e}")
            return None

    async def handle_resolve(
        self,
        query: str,
        resource_type: Optional[ResourceType] = None,
        project_id: Optional[str] = None,
        first: bool = False,
    ) -> bool:
        """Handles the 'resolve' command."""
        logger.info(f"Handling 'resolve' command for: {query} (type: {resource_type or 'auto'})")
        context: Optional[AppContext] = None
        try:
            context = self.context_factory()
            await self._refresh_stale(context)
            results = await context.resolver.resolve(query, resource_type, project_id=project_id, first=first)
        except ResolveError as e:
            self.ui.display_error(str(e))
            return False
        except ProdCliError as e:
            logger.error(f"Resolve command failed: {e}")
            self.ui.display_error(f"Resolve failed: {e}")
            return False
        finally:
            if context is not None:
                await context.aclose()

        self.ui.display_table(
            ["ID", "Label", "Type", "Exact"],
            [[r.id, r.label, r.resource_type.value, "yes" if r.exact else "no"] for r in results],
            title=f"Matches for '{query}'",
        )
        return True

    async def handle_get(
        self,
        endpoint: str,
        filters: Optional[Dict[str, Any]] = None,
        use_cache: bool = True,
        force_refresh: bool = False,
        raw: bool = False,
    ) -> bool:
        """Handles the 'get' command: a GET on any endpoint, with filter resolution."""
        endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        logger.info(f"Handling 'get' command for {endpoint} with filters: {filters or {}}")
        context: Optional[AppContext] = None
        try:
            context = self.context_factory()
            await self._refresh_stale(context)
            body = await context.dispatcher.list(
                endpoint, filters, use_cache=use_cache, force_refresh=force_refresh
            )
        except ProdCliError as e:
            logger.error(f"Get command failed for {endpoint}: {e}")
            self.ui.display_error(f"Request failed: {e}")
            return False
        finally:
            if context is not None:
                await context.aclose()

        self.ui.display_output(body, raw=raw)
        return True

    async def handle_cache_status(self) -> bool:
        """Handles the 'cache status' command."""
        cache = self._open_cache()
        if cache is None:
            return False
        try:
            stats = await cache.stats_async()
            queued = await cache.pending_refreshes_async()
            self.ui.display_mapping(
                {
                    "Enabled": "yes" if cache.enabled else "no",
                    "Organization": cache.org_id or "default",
                    "Entries": stats["entries"],
                    "Size (bytes)": stats["size"],
                    "Oldest entry (s)": stats["oldest_age"],
                    "Queued refreshes": len(queued),
                },
                title="Cache status",
            )
        finally:
            cache.close()
        return True

    async def handle_cache_clear(self, pattern: Optional[str] = None) -> bool:
        """Handles the 'cache clear' command."""
        logger.info(f"Handling 'cache clear' command (pattern: {pattern or '*'})")
        cache = self._open_cache()
        if cache is None:
            return False
        try:
            if not cache.enabled:
                self.ui.display_error("Cache is disabled; nothing to clear.")
                return False
            removed = await cache.invalidate_async(pattern)
        finally:
            cache.close()

        scope = f"matching '{pattern}'" if pattern else "in total"
        self.ui.display_info(f"Removed {removed} cached response(s) {scope}.")
        return True
