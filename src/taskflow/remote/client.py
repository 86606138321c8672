"""Client for the shared remote JSON document store."""

import logging
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from taskflow.config import DEFAULT_REMOTE_URL

logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    """Operations the sync engine needs from a remote document store."""

    async def create(self, document: dict[str, Any]) -> str: ...

    async def read(self, document_id: str) -> Any: ...

    async def replace(self, document_id: str, document: dict[str, Any]) -> None: ...


def normalize_document_id(value: str) -> str:
    """Reduce a pasted document URL to its identifier.

    Args:
        value: Bare identifier or a URL ending with it.

    Returns:
        The identifier.

    Raises:
        ValueError: If no identifier can be found.
    """
    value = value.strip()
    if "://" in value:
        value = urlparse(value).path.rstrip("/").rsplit("/", 1)[-1]
    if not value:
        raise ValueError("Sync identifier is empty")
    return value


class RemoteStoreClient:
    """Client for a JSON blob store addressed by opaque document IDs."""

    def __init__(
        self,
        base_url: str = DEFAULT_REMOTE_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize remote store client.

        Args:
            base_url: Collection URL; documents live at ``{base_url}/{id}``.
            timeout: Request timeout in seconds.
            transport: Optional transport override.
        """
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _document_url(self, document_id: str) -> str:
        return f"{self.base_url}/{document_id}"

    async def create(self, document: dict[str, Any]) -> str:
        """Create a new document.

        Args:
            document: Initial document body.

        Returns:
            Identifier of the new document.

        Raises:
            httpx.HTTPError: If API request fails.
            ValueError: If the response does not name the new document.
        """
        response = await self.client.post(self.base_url, json=document)
        response.raise_for_status()

        location = response.headers.get("Location") or response.headers.get("x-jsonblob-id")
        if not location:
            raise ValueError("Remote store did not return a document location")

        document_id = normalize_document_id(location)
        logger.info(f"Created remote document {document_id}")
        return document_id

    async def read(self, document_id: str) -> Any:
        """Read a document.

        Args:
            document_id: Document identifier.

        Returns:
            Decoded JSON body.

        Raises:
            httpx.HTTPError: If API request fails.
            ValueError: If the body is not JSON.
        """
        response = await self.client.get(self._document_url(document_id))
        response.raise_for_status()
        return response.json()

    async def replace(self, document_id: str, document: dict[str, Any]) -> None:
        """Overwrite a document.

        Args:
            document_id: Document identifier.
            document: New document body.

        Raises:
            httpx.HTTPError: If API request fails.
        """
        response = await self.client.put(self._document_url(document_id), json=document)
        response.raise_for_status()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "RemoteStoreClient":
        """Context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Context manager exit."""
        await self.close()
