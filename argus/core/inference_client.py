"""HTTP transport for the document-understanding inference service.

Speaks the OpenAI Responses API: one request carries the prompt template as
instructions and the document either as an uploaded file reference or as a
plain-text transcript, and asks for a JSON object back.
"""

from typing import Any, Dict, Optional

import httpx
from httpx import HTTPStatusError, TimeoutException

from argus.core.exceptions import APIClientError, APITimeoutError, RateLimitedError
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ResponsesClient:
    """Single-shot client for the Responses endpoint.

    Retries are deliberately absent here; the inference gateway owns the retry
    policy and only retries on rate limits.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 120,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the client.

        Args:
            api_key: API key for authentication
            base_url: Base URL for the API (e.g. https://api.openai.com/v1)
            timeout: Request timeout in seconds
            http_client: Optional shared httpx client (tests inject a mock transport)
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self.logger = LOGGER

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def create_response(
        self,
        model: str,
        instructions: str,
        file_id: Optional[str] = None,
        text: Optional[str] = None,
    ) -> str:
        """Run one inference call and return the raw output text.

        Args:
            model: Model name
            instructions: Prompt template text
            file_id: Uploaded file reference for the document
            text: Transcript used when no file reference is available

        Returns:
            The model's raw output text (expected to be JSON)

        Raises:
            RateLimitedError: On HTTP 429
            APITimeoutError: If the call times out
            APIClientError: On any other HTTP or transport failure
        """
        content: list[Dict[str, Any]] = []
        if file_id:
            content.append({"type": "input_file", "file_id": file_id})
        if text:
            content.append({"type": "input_text", "text": text})
        content.append({"type": "input_text", "text": "Respond with a single JSON object."})

        payload = {
            "model": model,
            "instructions": instructions,
            "input": [{"role": "user", "content": content}],
            "text": {"format": {"type": "json_object"}},
        }
        body = await self._post("/responses", payload)
        return self.extract_output_text(body)

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        self.logger.debug(f"Calling inference API: {url}", extra={"timeout": self.timeout})

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, headers=self.headers, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, headers=self.headers, json=payload)
            response.raise_for_status()
            return response.json()

        except HTTPStatusError as e:
            raise self._map_http_error(e, url) from e

        except TimeoutException as e:
            self.logger.warning("Inference API timeout", extra={"url": url})
            raise APITimeoutError(f"Inference API timeout calling {url}", e) from e

        except httpx.HTTPError as e:
            self.logger.warning("Inference API transport error", extra={"url": url, "error": str(e)})
            raise APIClientError(f"Inference API error: {e}", e) from e

    def _map_http_error(self, error: HTTPStatusError, url: str) -> Exception:
        status_code = error.response.status_code
        error_body = error.response.text or ""

        self.logger.warning(
            "Inference API HTTP error",
            extra={
                "url": url,
                "status_code": status_code,
                "error_body": error_body[:500],
            }
        )

        if status_code == 429:
            return RateLimitedError(
                "Inference API rate limited",
                error,
                retry_after=_parse_retry_after(error.response.headers.get("retry-after")),
            )
        return APIClientError(
            f"Inference API Error {status_code}: {error_body[:500]}",
            error,
            status_code=status_code,
        )

    @staticmethod
    def extract_output_text(body: Dict[str, Any]) -> str:
        """Pull the text out of a Responses API body.

        Prefers the ``output_text`` convenience field and falls back to the
        first text content part of the output messages.
        """
        output_text = body.get("output_text")
        if isinstance(output_text, str) and output_text:
            return output_text

        for item in body.get("output") or []:
            for part in item.get("content") or []:
                text = part.get("text")
                if isinstance(text, str) and text:
                    return text
        return ""


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
