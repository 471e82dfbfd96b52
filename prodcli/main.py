"""Main entry point for the prodcli application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from typing import Annotated, Any, Coroutine, Dict, List, Optional

import typer

from prodcli.core.command_handler import CommandHandler
from prodcli.core.context import create_cache, create_context
from prodcli.domain.models.resolution import ResourceType
from prodcli.infrastructure.cli.display import ConsoleDisplay
from prodcli.infrastructure.config.settings import get_config, load_configuration
from prodcli.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging

logger = logging.getLogger(__name__)

# Global options captured by the callback, consumed when the context is built
_state: Dict[str, Any] = {"token": None, "org_id": None, "use_cache": None}
_dependencies: Dict[str, Any] = {}


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up the dependencies for the application.

    This acts as the Composition Root. The API pipeline itself is built lazily
    by the command handler so that configuration errors surface as a regular
    command error.
    """
    load_configuration()
    setup_logging(
        log_level="DEBUG" if _state.get("verbose") else get_config("logging.level", "WARNING"),
        log_format=get_config("logging.format", DEFAULT_LOG_FORMAT),
        log_file=get_config("logging.file"),
    )

    ui = ConsoleDisplay()

    def context_factory():
        return create_context(
            token=_state["token"], org_id=_state["org_id"], use_cache=_state["use_cache"]
        )

    def cache_factory():
        return create_cache(
            org_id=_state["org_id"] or get_config("api.organization_id"),
            use_cache=_state["use_cache"],
        )

    handler = CommandHandler(ui=ui, context_factory=context_factory, cache_factory=cache_factory)
    logger.debug("Dependencies initialized.")
    return {"ui": ui, "command_handler": handler}


def get_dependencies() -> Dict[str, Any]:
    if not _dependencies:
        _dependencies.update(create_dependencies())
    return _dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="prodcli",
    help="prodcli: Productive.io API client with identifier resolution, response caching and rate limiting.",
    add_completion=False,
)
cache_app = typer.Typer(help="Inspect or clear the local response cache.")
app.add_typer(cache_app, name="cache")


def run_async(coro: Coroutine[Any, Any, bool]) -> None:
    """Runs a command coroutine and maps failure to a non-zero exit code."""
    succeeded = asyncio.run(coro)
    if not succeeded:
        raise typer.Exit(code=1)


def parse_filters(values: Optional[List[str]]) -> Dict[str, str]:
    """Turns repeated ``key=value`` options into a dict."""
    filters: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got '{item}'", param_hint="--filter")
        filters[key.strip()] = value.strip()
    return filters


# --- CLI Commands ---

@app.command()
def resolve(
    query: Annotated[str, typer.Argument(help="Email, name, project number (PRJ-123), deal number (D-12) or ID.")],
    resource_type: Annotated[
        Optional[ResourceType],
        typer.Option("--type", "-t", case_sensitive=False, help="Resource type; detected from the query when omitted."),
    ] = None,
    project_id: Annotated[Optional[str], typer.Option("--project-id", help="Project scope for service names.")] = None,
    first: Annotated[bool, typer.Option("--first", help="Only show the first match.")] = False,
):
    """Resolve a human-friendly identifier to resource IDs."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_resolve(query, resource_type, project_id=project_id, first=first))


@app.command()
def get(
    endpoint: Annotated[str, typer.Argument(help="API path, e.g. /projects or /tasks/42.")],
    filter_: Annotated[
        Optional[List[str]],
        typer.Option("--filter", "-f", help="Filter as key=value (repeatable). Emails, names and numbers are resolved."),
    ] = None,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Neither read nor write the cache.")] = False,
    refresh: Annotated[bool, typer.Option("--refresh", help="Skip cached data but store the fresh response.")] = False,
    raw: Annotated[bool, typer.Option("--raw", help="Print compact JSON.")] = False,
):
    """GET an endpoint through the cached, rate-limited pipeline."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_get(
        endpoint, parse_filters(filter_), use_cache=not no_cache, force_refresh=refresh, raw=raw
    ))


@cache_app.command("status")
def cache_status():
    """Show entry count, size and age of the cache for the current organization."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_cache_status())


@cache_app.command("clear")
def cache_clear(
    pattern: Annotated[Optional[str], typer.Argument(help="Only remove entries whose endpoint contains this text.")] = None,
):
    """Clear cached responses (all, or those matching PATTERN)."""
    handler: CommandHandler = get_dependencies()["command_handler"]
    run_async(handler.handle_cache_clear(pattern))


@app.callback()
def main_callback(
    org_id: Annotated[Optional[str], typer.Option("--org-id", help="Organization ID (overrides configuration).")] = None,
    token: Annotated[Optional[str], typer.Option("--token", help="API token (overrides configuration).")] = None,
    no_cache: Annotated[bool, typer.Option("--no-cache", help="Disable the response cache.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """Global options shared by every command."""
    _state["org_id"] = org_id
    _state["token"] = token
    _state["use_cache"] = False if no_cache else None
    _state["verbose"] = verbose


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
