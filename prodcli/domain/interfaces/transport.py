"""Interface for network transports.

The dispatcher never talks HTTP directly; it hands (method, path, query, body)
to a Transport and gets an ApiResponse back.
"""

import abc
from typing import Any, Optional

from ..models.common import ApiResponse, QueryParams


class Transport(abc.ABC):
    """Abstract Base Class for a call-and-respond network function."""

    @abc.abstractmethod
    async def __call__(
        self,
        method: str,
        path: str,
        query: Optional[QueryParams] = None,
        body: Any = None,
    ) -> ApiResponse:
        """Performs one request.

        Args:
            method: HTTP method.
            path: Endpoint path relative to the API base URL.
            query: Query parameters.
            body: JSON-serializable request body.

        Returns:
            The response. Non-2xx statuses are returned, not raised.

        Raises:
            ApiError: If the request could not be sent or no response arrived.
        """
        pass

    async def aclose(self) -> None:
        """Closes pooled connections."""
        pass
