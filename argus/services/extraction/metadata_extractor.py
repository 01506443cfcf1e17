"""Universal metadata extraction, keyed by document type."""

from typing import Optional

from argus.core.constants import DOCUMENT_TYPES
from argus.prompts.system_prompts import UNIVERSAL_METADATA_PROMPT
from argus.schemas.extraction_state import UniversalMetadata
from argus.services.inference.gateway import DocumentRef, InferenceGateway, PromptTemplate
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class UniversalMetadataExtractor:
    def __init__(self, gateway: InferenceGateway, model: Optional[str] = None):
        self.gateway = gateway
        self.model = model

    async def extract(self, document_ref: DocumentRef, document_type: str) -> Optional[UniversalMetadata]:
        description = DOCUMENT_TYPES.get(document_type, "clinical document")
        template = PromptTemplate(
            name="universal_metadata",
            instructions=UNIVERSAL_METADATA_PROMPT.format(
                document_type=document_type,
                document_type_description=description,
            ),
            model=self.model,
        )
        result = await self.gateway.infer(template, document_ref, UniversalMetadata)
        if not result.ok:
            LOGGER.warning(
                "Universal metadata unavailable",
                extra={"document_id": document_ref.document_id, "stage": "universal_metadata", "reason": result.reason},
            )
            return None
        return result.data
