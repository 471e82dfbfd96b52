"""Interface for the per-resource search capability used by the resolver."""

import abc
from typing import Any, Dict, List, Optional

from ..models.resolution import ResourceType


class ResourceLookup(abc.ABC):
    """Abstract Base Class for listing candidate records of a resource type."""

    @abc.abstractmethod
    async def find(
        self,
        resource_type: ResourceType,
        filters: Optional[Dict[str, str]] = None,
        per_page: int = 10,
    ) -> List[Dict[str, Any]]:
        """Lists records of ``resource_type`` matching ``filters``.

        Args:
            resource_type: The resource collection to search.
            filters: Filter names to values (e.g. {'email': 'a@b.c'}).
            per_page: Maximum number of records to return.

        Returns:
            JSON:API resource objects ({'id': ..., 'attributes': {...}}).
        """
        pass
