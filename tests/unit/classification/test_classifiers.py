"""Tests for the high-level and detailed document classifiers."""

import pytest

from argus.core.constants import UNCLASSIFIED, HighLevelType
from argus.services.classification.classifiers import DocumentTypeClassifier, HighLevelClassifier


class TestDocumentTypeClassifier:
    """Threshold and vocabulary handling."""

    @pytest.mark.asyncio
    async def test_accepts_known_type_above_threshold(self, scripted_gateway, document_ref):
        gateway = scripted_gateway(
            {"document_classification": '{"document_type": "Office_Visit", "confidence": 0.91}'}
        )

        result = await DocumentTypeClassifier(gateway, confidence_threshold=0.85).classify(document_ref)

        assert result.accepted
        assert result.predicted_type == "office_visit"

    @pytest.mark.asyncio
    async def test_confidence_at_threshold_is_accepted(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"document_classification": '{"document_type": "lab_result", "confidence": "0.85"}'})

        result = await DocumentTypeClassifier(gateway, confidence_threshold=0.85).classify(document_ref)

        assert result.accepted
        assert result.confidence == 0.85

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_accepted(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"document_classification": '{"document_type": "lab_result", "confidence": 0.6}'})

        result = await DocumentTypeClassifier(gateway, confidence_threshold=0.85).classify(document_ref)

        assert result is not None
        assert not result.accepted

    @pytest.mark.asyncio
    async def test_unknown_type_maps_to_unclassified(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"document_classification": '{"document_type": "invoice", "confidence": 0.99}'})

        result = await DocumentTypeClassifier(gateway).classify(document_ref)

        assert result.predicted_type == UNCLASSIFIED
        assert not result.accepted

    @pytest.mark.asyncio
    async def test_non_numeric_confidence_fails(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"document_classification": '{"document_type": "lab_result", "confidence": "high"}'})

        assert await DocumentTypeClassifier(gateway).classify(document_ref) is None


class TestHighLevelClassifier:
    """Fixed family vocabulary."""

    @pytest.mark.asyncio
    async def test_returns_family(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"high_level_classification": '{"type": "referral", "confidence": 0.7}'})

        result = await HighLevelClassifier(gateway).classify(document_ref)

        assert result.type == HighLevelType.REFERRAL

    @pytest.mark.asyncio
    async def test_unknown_family_is_a_failure(self, scripted_gateway, document_ref):
        gateway = scripted_gateway({"high_level_classification": '{"type": "billing", "confidence": 0.7}'})

        assert await HighLevelClassifier(gateway).classify(document_ref) is None
