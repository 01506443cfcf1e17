from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.constants import UNCLASSIFIED
from argus.database.models import Document
from argus.repositories.base_repository import BaseRepository
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class DocumentRepository(BaseRepository[Document]):
    """Repository for managing Document records.

    Inherits from BaseRepository for standard CRUD operations.
    """

    def __init__(self, session: AsyncSession):
        """Initialize document repository.

        Args:
            session: SQLAlchemy async session
        """
        super().__init__(session, Document)

    async def create_stub(
        self,
        file_ref: Optional[str] = None,
        file_name: Optional[str] = None,
        external_ref: Optional[str] = None,
        document_type: str = UNCLASSIFIED,
        transcript: Optional[str] = None,
    ) -> Document:
        """Create the near-empty record written synchronously at upload.

        Args:
            file_ref: Storage reference the inference service reads from
            file_name: Original file name
            external_ref: Stable reference used as the index key
            document_type: Declared type, ``unclassified`` when unknown
            transcript: Optional full-text transcript

        Returns:
            Created Document record
        """
        return await self.create(
            file_ref=file_ref,
            file_name=file_name,
            external_ref=external_ref or file_ref,
            document_type=document_type,
            transcript=transcript,
            is_active=True,
            needs_metadata=True,
            metadata_json={},
        )

    async def get_by_external_ref(self, external_ref: str) -> Optional[Document]:
        try:
            result = await self.session.execute(
                select(Document).where(Document.external_ref == external_ref)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            self.logger.error(f"Error retrieving Document by external ref: {str(e)}", exc_info=True)
            raise

    async def save_state(
        self,
        document_id: UUID,
        metadata_payload: Dict[str, Any],
        commit: bool = True,
        **columns: Any,
    ) -> Optional[Document]:
        """Persist the extraction state plus any denormalized columns.

        Args:
            document_id: Document ID
            metadata_payload: Serialized extraction state
            commit: Commit immediately, or leave it to the caller
            **columns: Column updates such as ``encounter_date`` or ``needs_metadata``

        Returns:
            The updated Document, or None if it does not exist
        """
        try:
            document = await self.get_by_id(document_id)
            if document is None:
                return None

            document.metadata_json = metadata_payload
            for key, value in columns.items():
                if hasattr(document, key):
                    setattr(document, key, value)

            await self.session.flush()
            if commit:
                await self.session.commit()
            return document
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error saving extraction state: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id)},
            )
            raise

    async def set_document_type(self, document_id: UUID, document_type: str) -> Optional[Document]:
        """Change the declared type; the document needs a fresh extraction."""
        return await self.update(document_id, document_type=document_type, needs_metadata=True)

    async def set_active(self, document_id: UUID, is_active: bool) -> Optional[Document]:
        return await self.update(document_id, is_active=is_active)

    async def list_ids_needing_metadata(self, limit: int) -> List[UUID]:
        result = await self.session.execute(
            select(Document.id)
            .where(Document.is_active.is_(True), Document.needs_metadata.is_(True))
            .order_by(Document.created_at, Document.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_active_ids(self, limit: int, with_state_only: bool = False) -> List[UUID]:
        query = select(Document.id).where(Document.is_active.is_(True))
        if with_state_only:
            query = query.where(Document.needs_metadata.is_(False))
        query = query.order_by(Document.created_at, Document.id).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_ids_missing_module(self, module_name: str, limit: int) -> List[UUID]:
        """Active documents whose stored extraction state has no ``module_name`` payload.

        The check runs over the JSON payload in Python so it behaves the same
        on every dialect.
        """
        result = await self.session.execute(
            select(Document.id, Document.metadata_json)
            .where(Document.is_active.is_(True))
            .order_by(Document.created_at, Document.id)
        )
        missing: List[UUID] = []
        for document_id, payload in result.all():
            modules = (payload or {}).get("modules") or {}
            if module_name not in modules:
                missing.append(document_id)
                if len(missing) >= limit:
                    break
        return missing

    async def get_encounter_date(self, document_id: UUID) -> Optional[date]:
        result = await self.session.execute(
            select(Document.encounter_date).where(Document.id == document_id)
        )
        return result.scalar_one_or_none()
