"""Tests for the inference gateway retry and failure policy."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from argus.core.concurrency import InferenceLimiter
from argus.core.exceptions import APIClientError, APITimeoutError, RateLimitedError
from argus.schemas.extraction_state import HighLevelClassification
from argus.services.inference.gateway import DocumentRef, FailureKind, InferenceGateway, PromptTemplate

TEMPLATE = PromptTemplate(name="high_level_classification", instructions="Classify.")
VALID_OUTPUT = '{"type": "clinical_encounter", "confidence": 0.92}'


def make_gateway(side_effect, max_attempts=3, base_delay=4.0):
    client = MagicMock()
    client.create_response = AsyncMock(side_effect=side_effect)
    sleep = AsyncMock()
    gateway = InferenceGateway(
        client=client,
        limiter=InferenceLimiter(2),
        default_model="test-model",
        max_attempts=max_attempts,
        base_delay_seconds=base_delay,
        sleep=sleep,
    )
    return gateway, client, sleep


class TestRateLimitRetry:
    """Rate limits are the only retried failure."""

    @pytest.mark.asyncio
    async def test_succeeds_after_two_rate_limits(self, document_ref):
        gateway, client, sleep = make_gateway(
            [RateLimitedError("429"), RateLimitedError("429"), VALID_OUTPUT]
        )

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.ok
        assert result.attempts == 3
        assert result.data.type.value == "clinical_encounter"
        assert client.create_response.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [4.0, 8.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_transient(self, document_ref):
        gateway, client, sleep = make_gateway([RateLimitedError("429")] * 3)

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert not result.ok
        assert result.kind == FailureKind.TRANSIENT
        assert result.attempts == 3
        assert client.create_response.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_after_hint_extends_delay(self, document_ref):
        gateway, _, sleep = make_gateway([RateLimitedError("429", retry_after=30.0), VALID_OUTPUT])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.ok
        sleep.assert_awaited_once_with(30.0)

    def test_backoff_is_linear(self):
        gateway, _, _ = make_gateway([], base_delay=2.0)
        assert [gateway.backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]
        assert gateway.backoff_delay(1, retry_after=0.5) == 2.0


class TestNonRetriedFailures:
    """Timeouts, server and client errors and bad output fail on the first attempt."""

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, document_ref):
        gateway, client, sleep = make_gateway([APITimeoutError("timeout")])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.kind == FailureKind.TRANSIENT
        assert client.create_response.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, document_ref):
        gateway, client, _ = make_gateway([APIClientError("boom", status_code=503)])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.kind == FailureKind.TRANSIENT
        assert client.create_response.await_count == 1

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self, document_ref):
        gateway, _, _ = make_gateway([APIClientError("bad request", status_code=400)])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.kind == FailureKind.PERMANENT

    @pytest.mark.asyncio
    async def test_unparseable_output_is_permanent(self, document_ref):
        gateway, _, _ = make_gateway(["I could not read this document."])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.kind == FailureKind.PERMANENT
        assert result.reason == "malformed output"

    @pytest.mark.asyncio
    async def test_shape_mismatch_is_permanent(self, document_ref):
        gateway, _, _ = make_gateway(['{"type": "invoice", "confidence": 0.9}'])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.kind == FailureKind.PERMANENT
        assert result.reason == "schema mismatch"

    @pytest.mark.asyncio
    async def test_fenced_json_is_accepted(self, document_ref):
        gateway, _, _ = make_gateway([f"```json\n{VALID_OUTPUT}\n```"])

        result = await gateway.infer(TEMPLATE, document_ref, HighLevelClassification)

        assert result.ok

    @pytest.mark.asyncio
    async def test_unusable_reference_never_calls_service(self):
        gateway, client, _ = make_gateway([VALID_OUTPUT])

        result = await gateway.infer(TEMPLATE, DocumentRef(document_id="empty"), HighLevelClassification)

        assert result.kind == FailureKind.PERMANENT
        client.create_response.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transcript_used_without_file_reference(self):
        gateway, client, _ = make_gateway([VALID_OUTPUT])

        await gateway.infer(
            TEMPLATE, DocumentRef(document_id="t", transcript="Patient seen today."), HighLevelClassification
        )

        kwargs = client.create_response.await_args.kwargs
        assert kwargs["file_id"] is None
        assert kwargs["text"] == "Patient seen today."
        assert kwargs["model"] == "test-model"
