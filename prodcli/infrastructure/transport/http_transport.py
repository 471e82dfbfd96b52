"""httpx-based Transport for the Productive.io JSON:API."""

import logging
from typing import Any, Dict, Optional

import httpx

from prodcli.domain.errors import ApiError
from prodcli.domain.interfaces.transport import Transport
from prodcli.domain.models.common import ApiResponse, QueryParams

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.productive.io/api/v2"
JSONAPI_CONTENT_TYPE = "application/vnd.api+json"


class HttpxTransport(Transport):
    """Sends requests with an ``httpx.AsyncClient`` and returns raw ApiResponses."""

    def __init__(
        self,
        api_token: str,
        organization_id: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the client.

        Args:
            api_token: Personal access token sent as X-Auth-Token.
            organization_id: Sent as X-Organization-Id.
            base_url: API root; paths are appended to it.
            timeout: Seconds before a request is abandoned.
            transport: Optional httpx transport (e.g. ``httpx.MockTransport`` in tests).
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "X-Auth-Token": api_token,
                "X-Organization-Id": str(organization_id),
                "Content-Type": JSONAPI_CONTENT_TYPE,
                "Accept": JSONAPI_CONTENT_TYPE,
            },
            timeout=timeout,
            transport=transport,
        )
        logger.info(f"HttpxTransport initialized for {self.base_url} (timeout={timeout}s)")

    async def __call__(
        self,
        method: str,
        path: str,
        query: Optional[QueryParams] = None,
        body: Any = None,
    ) -> ApiResponse:
        params = {k: str(v) for k, v in (query or {}).items() if v is not None}
        url = path if path.startswith("/") else f"/{path}"
        try:
            response = await self._client.request(
                method.upper(),
                url,
                params=params or None,
                json=body,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Request {method.upper()} {url} timed out: {e}")
            raise ApiError(f"Request timed out: {e}", endpoint=path) from e
        except httpx.RequestError as e:
            logger.error(f"Request {method.upper()} {url} failed: {e}")
            raise ApiError(f"Request failed: {e}", endpoint=path) from e

        return ApiResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=_decode_body(response),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _decode_body(response: httpx.Response) -> Any:
    """JSON body when there is one, raw text otherwise, None for empty responses."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def error_message_from(body: Any, status: int) -> str:
    """First JSON:API error detail/title, or a generic message."""
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            first: Dict[str, Any] = errors[0] if isinstance(errors[0], dict) else {}
            detail = first.get("detail") or first.get("title")
            if detail:
                return str(detail)
    return f"API request failed with status {status}"
