"""Inference gateway: one uniform call shape for every model-backed stage.

``infer(template, document_ref, expected_shape)`` runs the call through the
process-wide limiter, retries rate limits with linear backoff, parses the JSON
output and validates it into ``expected_shape``. It never raises for service
or output problems; callers get an :class:`InferenceSuccess` or an
:class:`InferenceFailure` and decide what a failure means for their stage.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from argus.core.concurrency import InferenceLimiter
from argus.core.exceptions import APIClientError, APITimeoutError, RateLimitedError
from argus.core.inference_client import ResponsesClient
from argus.utils.json_parser import parse_json_object, truncate_for_log
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

ShapeT = TypeVar("ShapeT", bound=BaseModel)


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class PromptTemplate:
    """A named prompt plus the model it should run on."""
    name: str
    instructions: str
    model: Optional[str] = None


@dataclass(frozen=True)
class DocumentRef:
    """What the inference service needs to see the document."""
    document_id: str
    file_ref: Optional[str] = None
    transcript: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.file_ref or self.transcript)


@dataclass
class InferenceSuccess(Generic[ShapeT]):
    data: ShapeT
    attempts: int = 1
    ok: bool = field(default=True, init=False)


@dataclass
class InferenceFailure:
    kind: FailureKind
    reason: str
    retry_after: Optional[float] = None
    attempts: int = 1
    ok: bool = field(default=False, init=False)


InferenceResult = Union[InferenceSuccess, InferenceFailure]


class InferenceGateway:
    """Uniform request/response wrapper around the inference service."""

    def __init__(
        self,
        client: ResponsesClient,
        limiter: InferenceLimiter,
        default_model: str,
        max_attempts: int = 3,
        base_delay_seconds: float = 4.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the gateway.

        Args:
            client: Transport for the Responses API
            limiter: Shared limiter bounding in-flight calls process-wide
            default_model: Model used when a template does not name one
            max_attempts: Total attempts per call when rate limited
            base_delay_seconds: Backoff unit; attempt n waits n * base delay
            sleep: Awaitable sleep, injectable for tests
        """
        self.client = client
        self.limiter = limiter
        self.default_model = default_model
        self.max_attempts = max(1, max_attempts)
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Linear backoff, never shorter than the service's retry-after hint."""
        delay = self.base_delay_seconds * attempt
        if retry_after is not None and retry_after > delay:
            return retry_after
        return delay

    async def infer(
        self,
        template: PromptTemplate,
        document_ref: DocumentRef,
        expected_shape: type[ShapeT],
    ) -> InferenceResult:
        """Run one inference call and validate its output.

        Args:
            template: Prompt to send
            document_ref: Document the prompt is about
            expected_shape: Pydantic model the JSON output must validate into

        Returns:
            InferenceSuccess with the validated model, or InferenceFailure
        """
        log_context = {"document_id": document_ref.document_id, "prompt": template.name}

        if not document_ref.is_usable:
            LOGGER.warning("Document has no file reference or transcript", extra=log_context)
            return InferenceFailure(FailureKind.PERMANENT, "document has no usable reference", attempts=0)

        model = template.model or self.default_model
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.limiter.slot():
                    raw_text = await self.client.create_response(
                        model=model,
                        instructions=template.instructions,
                        file_id=document_ref.file_ref,
                        text=None if document_ref.file_ref else document_ref.transcript,
                    )
            except RateLimitedError as e:
                delay = self.backoff_delay(attempt, e.retry_after)
                if attempt >= self.max_attempts:
                    LOGGER.error(
                        "Inference rate limited, retries exhausted",
                        extra={**log_context, "attempts": attempt},
                    )
                    return InferenceFailure(
                        FailureKind.TRANSIENT, "rate limited", retry_after=delay, attempts=attempt
                    )
                LOGGER.warning(
                    f"Inference rate limited (attempt {attempt}/{self.max_attempts}), retrying in {delay}s",
                    extra=log_context,
                )
                await self._sleep(delay)
                continue
            except APITimeoutError as e:
                LOGGER.warning("Inference call timed out", extra={**log_context, "error": str(e)})
                return InferenceFailure(
                    FailureKind.TRANSIENT, "timeout", retry_after=self.base_delay_seconds, attempts=attempt
                )
            except APIClientError as e:
                server_side = e.status_code is None or e.status_code >= 500
                LOGGER.error("Inference call failed", extra={**log_context, "error": str(e)})
                if server_side:
                    return InferenceFailure(
                        FailureKind.TRANSIENT, str(e), retry_after=self.base_delay_seconds, attempts=attempt
                    )
                return InferenceFailure(FailureKind.PERMANENT, str(e), attempts=attempt)

            return self._validate(raw_text, expected_shape, attempt, log_context)

    def _validate(
        self,
        raw_text: str,
        expected_shape: type[ShapeT],
        attempt: int,
        log_context: dict,
    ) -> InferenceResult:
        data = parse_json_object(raw_text)
        if data is None:
            LOGGER.error(
                "Failed to parse model output as JSON",
                extra={**log_context, "raw_text": truncate_for_log(raw_text)},
            )
            return InferenceFailure(FailureKind.PERMANENT, "malformed output", attempts=attempt)

        try:
            return InferenceSuccess(expected_shape.model_validate(data), attempts=attempt)
        except PydanticValidationError as e:
            LOGGER.error(
                "Model output does not match expected shape",
                extra={
                    **log_context,
                    "shape": expected_shape.__name__,
                    "errors": e.error_count(),
                    "raw_text": truncate_for_log(raw_text),
                },
            )
            return InferenceFailure(FailureKind.PERMANENT, "schema mismatch", attempts=attempt)
