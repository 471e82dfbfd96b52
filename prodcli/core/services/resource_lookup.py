"""ResourceLookup backed by the request dispatcher.

Resolution lookups are ordinary list calls, so they share the response
cache and are subject to the same rate limits as any other request.
"""

import logging
from typing import Any, Dict, List, Optional

from prodcli.domain.interfaces.resource_lookup import ResourceLookup
from prodcli.domain.models.resolution import ResourceType

logger = logging.getLogger(__name__)

RESOURCE_ENDPOINTS: Dict[ResourceType, str] = {
    ResourceType.PERSON: "/people",
    ResourceType.PROJECT: "/projects",
    ResourceType.COMPANY: "/companies",
    ResourceType.DEAL: "/deals",
    ResourceType.SERVICE: "/services",
}


class DispatcherResourceLookup(ResourceLookup):
    """Searches a resource collection with a GET through the dispatcher."""

    def __init__(self, dispatcher: Any):
        self.dispatcher = dispatcher

    async def find(
        self,
        resource_type: ResourceType,
        filters: Optional[Dict[str, str]] = None,
        per_page: int = 10,
    ) -> List[Dict[str, Any]]:
        endpoint = RESOURCE_ENDPOINTS[ResourceType(resource_type)]
        query: Dict[str, Any] = {f"filter[{k}]": v for k, v in (filters or {}).items()}
        query["page[size]"] = str(per_page)

        # Plain request(): going through list() would resolve the filters again
        body = await self.dispatcher.request("GET", endpoint, query)
        records = body.get("data") if isinstance(body, dict) else None
        if not isinstance(records, list):
            logger.debug(f"Unexpected lookup response from {endpoint}: {type(body).__name__}")
            return []
        return records
