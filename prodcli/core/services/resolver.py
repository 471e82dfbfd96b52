"""Core service that resolves human-friendly identifiers to numeric IDs.

Lets callers reference people by email or name, projects by number
(``PRJ-123``), deals by number (``D-12``) and services by name instead of
numeric IDs. Lookups go through a ResourceLookup, which in the running
application is the same cached, rate-limited dispatcher every other call
uses.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from prodcli.domain.errors import ProdCliError
from prodcli.domain.interfaces.resource_lookup import ResourceLookup
from prodcli.domain.models.resolution import (
    ResolutionQuery,
    ResolutionResult,
    ResolvedFilters,
    ResourceType,
)
from prodcli.infrastructure.cache.response_cache import ResponseCache

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
PROJECT_NUMBER_PATTERN = re.compile(r"(PRJ|P)-[0-9]+", re.IGNORECASE)
DEAL_NUMBER_PATTERN = re.compile(r"(D|DEAL)-[0-9]+", re.IGNORECASE)
NUMERIC_ID_PATTERN = re.compile(r"[0-9]+")

# Page sizes for the different lookups
EXACT_LOOKUP_PAGE_SIZE = 1
SEARCH_PAGE_SIZE = 10
SERVICE_LIST_PAGE_SIZE = 200

# Lifetime of cached resolutions
RESOLVE_TTL_EXACT_SECONDS = 24 * 60 * 60
RESOLVE_TTL_FUZZY_SECONDS = 60 * 60
RESOLVE_CACHE_PREFIX = "resolve/"

# Default mapping from filter parameter names to resource types
FILTER_TYPE_MAPPING: Dict[str, ResourceType] = {
    "person_id": ResourceType.PERSON,
    "assignee_id": ResourceType.PERSON,
    "creator_id": ResourceType.PERSON,
    "responsible_id": ResourceType.PERSON,
    "project_id": ResourceType.PROJECT,
    "company_id": ResourceType.COMPANY,
    "deal_id": ResourceType.DEAL,
    "service_id": ResourceType.SERVICE,
}

TypeMapping = Mapping[str, Union[ResourceType, str]]


class ResolveError(ProdCliError):
    """Raised when an identifier cannot be resolved."""

    def __init__(
        self,
        message: str,
        query: str,
        resource_type: Optional[ResourceType] = None,
        suggestions: Optional[List[ResolutionResult]] = None,
    ):
        self.query = query
        self.resource_type = resource_type
        self.suggestions = suggestions or []
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": str(self),
            "query": self.query,
            "type": self.resource_type.value if self.resource_type else None,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


def is_numeric_id(value: Any) -> bool:
    return NUMERIC_ID_PATTERN.fullmatch(str(value)) is not None


def needs_resolution(value: Any) -> bool:
    """True when ``value`` is not already a canonical numeric ID."""
    return not is_numeric_id(value)


def detect_resource_type(value: str) -> Optional[ResourceType]:
    """Infers the resource type from the shape of ``value``, if it has a telling one."""
    if is_numeric_id(value):
        return None
    if EMAIL_PATTERN.fullmatch(value):
        return ResourceType.PERSON
    if PROJECT_NUMBER_PATTERN.fullmatch(value):
        return ResourceType.PROJECT
    if DEAL_NUMBER_PATTERN.fullmatch(value):
        return ResourceType.DEAL
    return None


def _person_label(record: Dict[str, Any]) -> str:
    attributes = record.get("attributes") or {}
    return f"{attributes.get('first_name') or ''} {attributes.get('last_name') or ''}".strip()


def _name_label(record: Dict[str, Any]) -> str:
    return (record.get("attributes") or {}).get("name") or ""


class ResourceResolver:
    """Resolves identifiers of people, projects, companies, deals and services."""

    def __init__(
        self,
        lookup: ResourceLookup,
        cache: Optional[ResponseCache] = None,
        org_id: Optional[str] = None,
    ):
        """Initializes the resolver.

        Args:
            lookup: Search capability per resource type.
            cache: Optional cache for resolutions (keyed per organization).
            org_id: Organization used to namespace cached resolutions.
        """
        self.lookup = lookup
        self.cache = cache
        self.org_id = str(org_id) if org_id is not None else "default"

    # --- Per-type strategies ---

    async def _resolve_person(self, query: str) -> List[ResolutionResult]:
        if EMAIL_PATTERN.fullmatch(query):
            records = await self.lookup.find(
                ResourceType.PERSON, {"email": query}, per_page=EXACT_LOOKUP_PAGE_SIZE
            )
            return [
                ResolutionResult(query, str(r["id"]), _person_label(r) or query, ResourceType.PERSON, exact=True)
                for r in records[:1]
            ]
        records = await self.lookup.find(ResourceType.PERSON, {"query": query}, per_page=SEARCH_PAGE_SIZE)
        return [
            ResolutionResult(query, str(r["id"]), _person_label(r), ResourceType.PERSON)
            for r in records
        ]

    async def _resolve_by_number(
        self,
        query: str,
        resource_type: ResourceType,
        filter_name: str,
        normalized: str,
    ) -> List[ResolutionResult]:
        """Exact lookup by a number field, retrying with the raw input if the normalized form misses."""
        records = await self.lookup.find(
            resource_type, {filter_name: normalized}, per_page=EXACT_LOOKUP_PAGE_SIZE
        )
        if not records and normalized != query:
            logger.debug(f"No {resource_type.value} with {filter_name}={normalized}, retrying with {query}")
            records = await self.lookup.find(
                resource_type, {filter_name: query}, per_page=EXACT_LOOKUP_PAGE_SIZE
            )
        return [
            ResolutionResult(query, str(r["id"]), _name_label(r) or query, resource_type, exact=True)
            for r in records[:1]
        ]

    async def _search_by_name(self, query: str, resource_type: ResourceType) -> List[ResolutionResult]:
        records = await self.lookup.find(resource_type, {"query": query}, per_page=SEARCH_PAGE_SIZE)
        return [
            ResolutionResult(query, str(r["id"]), _name_label(r), resource_type)
            for r in records
        ]

    async def _resolve_service(self, query: str, project_id: Optional[str]) -> List[ResolutionResult]:
        # The services endpoint has no name search, so filter client-side
        filters = {"project_id": str(project_id)} if project_id else {}
        records = await self.lookup.find(ResourceType.SERVICE, filters, per_page=SERVICE_LIST_PAGE_SIZE)
        needle = query.lower()
        results = []
        for record in records:
            name = _name_label(record)
            if needle in name.lower():
                results.append(
                    ResolutionResult(query, str(record["id"]), name, ResourceType.SERVICE, exact=name.lower() == needle)
                )
        return results

    # --- Public API ---

    async def resolve(
        self,
        query: str,
        resource_type: Optional[ResourceType] = None,
        project_id: Optional[str] = None,
        first: bool = False,
    ) -> List[ResolutionResult]:
        """Finds the records matching a human-friendly identifier.

        Args:
            query: Email, name, project/deal number, or numeric ID.
            resource_type: Type to search; detected from the query shape when omitted.
            project_id: Scopes service searches to one project.
            first: Return only the first match.

        Returns:
            Matching results, best first. Never empty.

        Raises:
            ResolveError: If the type cannot be determined or nothing matches.
        """
        query = str(query).strip()
        if is_numeric_id(query):
            return [ResolutionResult(query, query, query, resource_type or ResourceType.PROJECT, exact=True)]

        if resource_type is None:
            resource_type = detect_resource_type(query)
            if resource_type is None:
                raise ResolveError(f'Cannot determine resource type for "{query}". Specify a type.', query)
        resource_type = ResourceType(resource_type)

        if resource_type is ResourceType.PERSON:
            results = await self._resolve_person(query)
        elif resource_type is ResourceType.PROJECT:
            if PROJECT_NUMBER_PATTERN.fullmatch(query):
                normalized = re.sub(r"^P-", "PRJ-", query.upper())
                results = await self._resolve_by_number(query, resource_type, "project_number", normalized)
            else:
                results = await self._search_by_name(query, resource_type)
        elif resource_type is ResourceType.DEAL:
            if DEAL_NUMBER_PATTERN.fullmatch(query):
                normalized = re.sub(r"^DEAL-", "D-", query.upper())
                results = await self._resolve_by_number(query, resource_type, "deal_number", normalized)
            else:
                results = await self._search_by_name(query, resource_type)
        elif resource_type is ResourceType.SERVICE:
            results = await self._resolve_service(query, project_id)
        else:
            results = await self._search_by_name(query, resource_type)

        if not results:
            raise ResolveError(f'No {resource_type.value} found matching "{query}"', query, resource_type)

        logger.debug(f"Resolved {resource_type.value} '{query}' to {len(results)} candidate(s)")
        return results[:1] if first else results

    async def resolve_one(
        self,
        value: str,
        resource_type: ResourceType,
        project_id: Optional[str] = None,
    ) -> ResolutionResult:
        """Resolves ``value`` to its first match, using cached resolutions when available.

        Raises:
            ResolveError: If nothing matches or the lookup itself fails.
        """
        request = ResolutionQuery(
            str(value).strip(),
            ResourceType(resource_type),
            None if project_id is None else str(project_id),
        )
        cached = await self._cached_resolution(request)
        if cached is not None:
            return cached

        try:
            results = await self.resolve(
                request.value, request.resource_type, project_id=request.project_id, first=True
            )
        except ResolveError:
            raise
        except ProdCliError as e:
            raise ResolveError(
                f'Lookup failed while resolving {request.resource_type.value} "{request.value}": {e}',
                request.value,
                request.resource_type,
            ) from e

        result = results[0]
        await self._store_resolution(request, result)
        return result

    async def resolve_value(
        self,
        value: str,
        resource_type: ResourceType,
        project_id: Optional[str] = None,
    ) -> str:
        """Returns the canonical ID for ``value``. Numeric IDs come back unchanged with no lookup.

        Raises:
            ResolveError: If nothing matches or the lookup itself fails.
        """
        value = str(value)
        if is_numeric_id(value):
            return value
        return (await self.resolve_one(value, resource_type, project_id)).id

    async def try_resolve_value(
        self,
        value: str,
        resource_type: ResourceType,
        project_id: Optional[str] = None,
    ) -> str:
        """Like resolve_value, but returns the input unchanged when resolution fails."""
        try:
            return await self.resolve_value(value, resource_type, project_id)
        except ResolveError as e:
            logger.debug(f"Falling back to unresolved value '{value}': {e}")
            return str(value)

    async def resolve_filters(
        self,
        filters: Mapping[str, Any],
        type_mapping: Optional[TypeMapping] = None,
        project_id: Optional[str] = None,
    ) -> ResolvedFilters:
        """Resolves every mapped, non-canonical filter value.

        Entries absent from the mapping pass through untouched. Unresolvable
        entries keep their original value. Service filters are resolved last
        so a project filter in the same map can scope them.

        Args:
            filters: Filter names to raw values.
            type_mapping: Filter names to resource types (FILTER_TYPE_MAPPING by default).
            project_id: Project context for service searches when the filters carry none.
        """
        mapping = FILTER_TYPE_MAPPING if type_mapping is None else type_mapping
        result = ResolvedFilters(resolved=dict(filters))

        # Only strings can hold a human-friendly identifier
        pending = {
            key: ResourceType(mapping[key])
            for key, value in filters.items()
            if key in mapping and isinstance(value, str) and needs_resolution(value)
        }
        if not pending:
            return result

        async def resolve_entry(key: str, resource_type: ResourceType, context: Optional[str]) -> None:
            value = result.resolved[key]
            try:
                resolution = await self.resolve_one(value, resource_type, context)
            except ResolveError as e:
                logger.debug(f"Filter '{key}' left unresolved: {e}")
                return
            result.resolved[key] = resolution.id
            result.metadata[key] = resolution

        first_pass = [k for k, t in pending.items() if t is not ResourceType.SERVICE]
        await asyncio.gather(*(resolve_entry(k, pending[k], project_id) for k in first_pass))

        service_keys = [k for k, t in pending.items() if t is ResourceType.SERVICE]
        if service_keys:
            project_context = result.resolved.get("project_id") or project_id
            if project_context is not None:
                project_context = str(project_context)
                if needs_resolution(project_context):
                    project_context = None
            await asyncio.gather(*(resolve_entry(k, pending[k], project_context) for k in service_keys))

        return result

    # --- Resolution cache ---

    @staticmethod
    def _cache_endpoint(request: ResolutionQuery) -> str:
        return f"{RESOLVE_CACHE_PREFIX}{request.resource_type.value}"

    @staticmethod
    def _cache_query(request: ResolutionQuery) -> Dict[str, Optional[str]]:
        return {"q": request.value.lower(), "project_id": request.project_id}

    async def _cached_resolution(self, request: ResolutionQuery) -> Optional[ResolutionResult]:
        if self.cache is None:
            return None
        cached = await self.cache.get_async(
            self._cache_endpoint(request), self._cache_query(request), self.org_id
        )
        if not cached:
            return None
        try:
            result = ResolutionResult.from_dict(cached)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Ignoring unreadable cached resolution for '{request.value}': {e}")
            return None
        # Echo the caller's spelling rather than the one that populated the cache
        return ResolutionResult(request.value, result.id, result.label, result.resource_type, result.exact)

    async def _store_resolution(self, request: ResolutionQuery, result: ResolutionResult) -> None:
        if self.cache is None:
            return
        ttl = RESOLVE_TTL_EXACT_SECONDS if result.exact else RESOLVE_TTL_FUZZY_SECONDS
        await self.cache.set_async(
            self._cache_endpoint(request),
            self._cache_query(request),
            self.org_id,
            result.to_dict(),
            ttl=ttl,
        )
