"""HTTP client for the external searchable index (vector store files)."""

from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from argus.core.exceptions import APIClientError, APITimeoutError
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

READY_STATUS = "completed"
TERMINAL_STATUSES = {"failed", "cancelled"}


class VectorStoreIndexClient:
    """Reads file status and writes file attributes in one vector store.

    Index entries are keyed by the document's external reference, which is
    the uploaded file id.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        vector_store_id: str,
        timeout: int = 30,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.vector_store_id = vector_store_id
        self.timeout = timeout
        self._http_client = http_client

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _file_url(self, external_ref: str) -> str:
        return f"{self.base_url}/vector_stores/{self.vector_store_id}/files/{external_ref}"

    async def get_status(self, external_ref: str) -> Optional[str]:
        """Return the index status for the entry, or None when it does not exist yet."""
        try:
            body = await self._request("GET", self._file_url(external_ref))
        except APIClientError as e:
            if e.status_code == 404:
                return None
            raise
        status = body.get("status")
        return status if isinstance(status, str) else None

    async def update_attributes(self, external_ref: str, attributes: Dict[str, Any]) -> None:
        """Replace the entry's searchable attributes.

        Raises:
            APIClientError: If the index rejects the update
        """
        await self._request("POST", self._file_url(external_ref), {"attributes": attributes})

    async def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, headers=self.headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(method, url, headers=self.headers, json=payload)
            response.raise_for_status()
            body = response.json()
            if not isinstance(body, dict):
                raise APIClientError(f"Index API returned a non-object body from {url}", status_code=response.status_code)
            return body

        except HTTPStatusError as e:
            status_code = e.response.status_code
            LOGGER.warning(
                "Index API HTTP error",
                extra={"url": url, "status_code": status_code, "error_body": (e.response.text or "")[:500]},
            )
            raise APIClientError(f"Index API Error {status_code}", e, status_code=status_code) from e

        except TimeoutException as e:
            raise APITimeoutError(f"Index API timeout calling {url}", e) from e

        except httpx.HTTPError as e:
            raise APIClientError(f"Index API error: {e}", e) from e

        except ValueError as e:
            LOGGER.warning("Index API returned invalid JSON", extra={"url": url, "error": str(e)})
            raise APIClientError(f"Index API returned invalid JSON from {url}", e) from e
