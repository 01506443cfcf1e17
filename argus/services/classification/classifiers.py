"""High-level and detailed document classifiers."""

from typing import Optional

from argus.core.constants import DOCUMENT_TYPES, UNCLASSIFIED
from argus.prompts.system_prompts import (
    DOCUMENT_CLASSIFICATION_PROMPT,
    HIGH_LEVEL_CLASSIFICATION_PROMPT,
)
from argus.schemas.extraction_state import DocumentClassification, HighLevelClassification
from argus.services.inference.gateway import DocumentRef, InferenceGateway, PromptTemplate
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class HighLevelClassifier:
    """Assigns one of the coarse document families."""

    def __init__(self, gateway: InferenceGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.template = PromptTemplate(
            name="high_level_classification",
            instructions=HIGH_LEVEL_CLASSIFICATION_PROMPT,
            model=model,
        )

    async def classify(self, document_ref: DocumentRef) -> Optional[HighLevelClassification]:
        """Classify the document.

        Returns:
            The classification, or None when the call failed or the model
            answered outside the fixed set of families.
        """
        result = await self.gateway.infer(self.template, document_ref, HighLevelClassification)
        if not result.ok:
            LOGGER.warning(
                "High-level classification unavailable",
                extra={"document_id": document_ref.document_id, "stage": "high_level", "reason": result.reason},
            )
            return None

        LOGGER.info(
            "High-level classification complete",
            extra={
                "document_id": document_ref.document_id,
                "type": result.data.type.value,
                "confidence": result.data.confidence,
            },
        )
        return result.data


class DocumentTypeClassifier:
    """Picks the specific document type for documents uploaded without one.

    A prediction is only accepted when it names a known type and its
    confidence reaches the threshold; anything else leaves the document
    unclassified for manual handling.
    """

    def __init__(
        self,
        gateway: InferenceGateway,
        confidence_threshold: float = 0.85,
        model: Optional[str] = None,
    ):
        self.gateway = gateway
        self.confidence_threshold = confidence_threshold
        document_types = "\n".join(f"- {key}: {label}" for key, label in DOCUMENT_TYPES.items())
        self.template = PromptTemplate(
            name="document_classification",
            instructions=DOCUMENT_CLASSIFICATION_PROMPT.format(document_types=document_types),
            model=model,
        )

    async def classify(self, document_ref: DocumentRef) -> Optional[DocumentClassification]:
        result = await self.gateway.infer(self.template, document_ref, DocumentClassification)
        if not result.ok:
            LOGGER.warning(
                "Document classification unavailable",
                extra={"document_id": document_ref.document_id, "stage": "classification", "reason": result.reason},
            )
            return None

        prediction = result.data
        accepted = (
            prediction.predicted_type != UNCLASSIFIED
            and prediction.confidence >= self.confidence_threshold
        )
        if not accepted:
            LOGGER.info(
                "Classification below threshold, leaving document unclassified",
                extra={
                    "document_id": document_ref.document_id,
                    "predicted_type": prediction.predicted_type,
                    "confidence": prediction.confidence,
                    "threshold": self.confidence_threshold,
                },
            )
        return prediction.model_copy(update={"accepted": accepted})
