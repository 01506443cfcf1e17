"""Document service for document lifecycle operations."""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.constants import DOCUMENT_TYPES, UNCLASSIFIED
from argus.core.exceptions import DocumentNotFoundError, ValidationError
from argus.database.models import Document
from argus.repositories.document_repository import DocumentRepository
from argus.repositories.projection_repository import ProjectionRepository
from argus.repositories.taxonomy_repository import TaxonomyRepository
from argus.schemas.api import DocumentResponse
from argus.schemas.extraction_state import DocumentExtractionState
from argus.services.indexing.index_synchronizer import IndexSynchronizer
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


def validate_document_type(document_type: Optional[str]) -> str:
    """Normalize a declared type; None means unclassified.

    Raises:
        ValidationError: If the type is not a known document type
    """
    if document_type is None:
        return UNCLASSIFIED
    normalized = document_type.strip().lower()
    if normalized != UNCLASSIFIED and normalized not in DOCUMENT_TYPES:
        raise ValidationError(f"Unknown document type: {document_type}")
    return normalized


class DocumentService:
    """Service for document lifecycle operations.

    Handles stub creation, type changes, and soft and hard deletion.
    """

    def __init__(self, session: AsyncSession, index_synchronizer: Optional[IndexSynchronizer] = None):
        """Initialize document service.

        Args:
            session: Database session
            index_synchronizer: Used to push ``is_active`` on soft delete
        """
        self.session = session
        self.doc_repo = DocumentRepository(session)
        self.projection_repo = ProjectionRepository(session)
        self.taxonomy_repo = TaxonomyRepository(session)
        self.index_synchronizer = index_synchronizer

    async def create_document(
        self,
        file_ref: Optional[str] = None,
        file_name: Optional[str] = None,
        external_ref: Optional[str] = None,
        document_type: Optional[str] = None,
        transcript: Optional[str] = None,
    ) -> DocumentResponse:
        """Create the upload-time stub.

        Raises:
            ValidationError: On an unknown type, a missing source, or a duplicate external reference
        """
        document_type = validate_document_type(document_type)
        if not file_ref and not transcript:
            raise ValidationError("A document needs a file_ref or a transcript")

        reference = external_ref or file_ref
        if reference and await self.doc_repo.get_by_external_ref(reference):
            raise ValidationError(f"Document with external reference {reference} already exists")

        document = await self.doc_repo.create_stub(
            file_ref=file_ref,
            file_name=file_name,
            external_ref=external_ref,
            document_type=document_type,
            transcript=transcript,
        )
        LOGGER.info(
            "Document stub created",
            extra={"document_id": str(document.id), "document_type": document_type},
        )
        return DocumentResponse.model_validate(document)

    async def get_document(self, document_id: UUID) -> DocumentResponse:
        return DocumentResponse.model_validate(await self._require(document_id))

    async def change_document_type(self, document_id: UUID, document_type: str) -> DocumentResponse:
        """Change the declared type. The document is flagged for a fresh extraction."""
        document_type = validate_document_type(document_type)
        await self._require(document_id)

        document = await self.doc_repo.set_document_type(document_id, document_type)
        LOGGER.info(
            "Document type changed",
            extra={"document_id": str(document_id), "document_type": document_type},
        )
        return DocumentResponse.model_validate(document)

    async def soft_delete(self, document_id: UUID) -> DocumentResponse:
        """Deactivate the document and push ``is_active`` to the index."""
        await self._require(document_id)
        document = await self.doc_repo.set_active(document_id, False)

        if self.index_synchronizer is not None:
            state = DocumentExtractionState.from_payload(document.metadata_json)
            outcome = await self.index_synchronizer.sync(document, state)
            LOGGER.info(
                "Document deactivated",
                extra={"document_id": str(document_id), "index": outcome.value},
            )
        return DocumentResponse.model_validate(document)

    async def hard_delete(self, document_id: UUID) -> bool:
        """Delete the document with its projections, terms and evidence.

        Returns:
            True if deleted
        """
        await self._require(document_id)
        try:
            await self.projection_repo.delete_for_document(document_id)
            await self.taxonomy_repo.delete_for_document(document_id)
            deleted = await self.doc_repo.delete(document_id)
        except Exception:
            await self.session.rollback()
            raise

        LOGGER.info("Document hard deleted", extra={"document_id": str(document_id)})
        return deleted

    async def _require(self, document_id: UUID) -> Document:
        document = await self.doc_repo.get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document
