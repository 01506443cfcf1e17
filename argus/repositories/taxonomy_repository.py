"""Taxonomy vocabulary and document term storage."""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from argus.database.models import (
    NO_SUBKEYWORD,
    DocumentTerm,
    DocumentTermEvidence,
    TaxonomyCategory,
    TaxonomyKeyword,
    TaxonomySubkeyword,
)
from argus.repositories.base_repository import BaseRepository
from argus.repositories.projection_repository import dialect_insert
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

STATUS_APPROVED = "approved"
STATUS_REVIEW = "review"


class TaxonomyRepository(BaseRepository[TaxonomyCategory]):
    """Reads the controlled vocabulary and writes idempotent document terms.

    Insert helpers use ``INSERT .. ON CONFLICT DO NOTHING`` and report whether
    a row was actually created; ``claim_term`` upserts the source instead.
    None of them commit.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, TaxonomyCategory)

    # -- vocabulary -----------------------------------------------------

    async def seed_categories(self, categories: Dict[str, str]) -> None:
        for sort_order, (category_id, label) in enumerate(categories.items()):
            stmt = dialect_insert(self.session, TaxonomyCategory).values(
                id=category_id, label=label, sort_order=sort_order
            )
            await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))

    async def get_keyword(self, keyword_id: str) -> Optional[TaxonomyKeyword]:
        return await self.session.get(TaxonomyKeyword, keyword_id)

    async def get_subkeyword(self, subkeyword_id: str) -> Optional[TaxonomySubkeyword]:
        return await self.session.get(TaxonomySubkeyword, subkeyword_id)

    async def list_keywords(self, category_id: str) -> List[TaxonomyKeyword]:
        result = await self.session.execute(
            select(TaxonomyKeyword)
            .where(TaxonomyKeyword.category_id == category_id)
            .order_by(TaxonomyKeyword.id)
        )
        return list(result.scalars().all())

    async def list_subkeywords(self, keyword_ids: Sequence[str]) -> Dict[str, List[TaxonomySubkeyword]]:
        grouped: Dict[str, List[TaxonomySubkeyword]] = defaultdict(list)
        if not keyword_ids:
            return grouped
        result = await self.session.execute(
            select(TaxonomySubkeyword)
            .where(TaxonomySubkeyword.keyword_id.in_(list(keyword_ids)))
            .order_by(TaxonomySubkeyword.id)
        )
        for subkeyword in result.scalars().all():
            grouped[subkeyword.keyword_id].append(subkeyword)
        return grouped

    async def keyword_synonym_owners(self) -> Dict[str, str]:
        """Casefolded synonym -> owning keyword id, across every category."""
        result = await self.session.execute(select(TaxonomyKeyword.id, TaxonomyKeyword.synonyms_json))
        owners: Dict[str, str] = {}
        for keyword_id, synonyms in result.all():
            for synonym in synonyms or []:
                owners.setdefault(str(synonym).casefold(), keyword_id)
        return owners

    async def insert_keyword_if_absent(
        self,
        keyword_id: str,
        category_id: str,
        label: str,
        synonyms: Iterable[str],
        description: Optional[str] = None,
        status: str = STATUS_REVIEW,
    ) -> bool:
        try:
            stmt = dialect_insert(self.session, TaxonomyKeyword).values(
                id=keyword_id,
                category_id=category_id,
                label=label,
                synonyms_json=list(synonyms),
                description=description,
                status=status,
            )
            result = await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error inserting keyword {keyword_id}: {str(e)}",
                exc_info=True,
                extra={"category_id": category_id},
            )
            raise

    async def insert_subkeyword_if_absent(
        self,
        subkeyword_id: str,
        keyword_id: str,
        label: str,
        synonyms: Iterable[str],
        description: Optional[str] = None,
        status: str = STATUS_REVIEW,
    ) -> bool:
        try:
            stmt = dialect_insert(self.session, TaxonomySubkeyword).values(
                id=subkeyword_id,
                keyword_id=keyword_id,
                label=label,
                synonyms_json=list(synonyms),
                description=description,
                status=status,
            )
            result = await self.session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error inserting subkeyword {subkeyword_id}: {str(e)}",
                exc_info=True,
                extra={"keyword_id": keyword_id},
            )
            raise

    # -- document terms -------------------------------------------------

    async def insert_term_if_absent(
        self,
        document_id: UUID,
        category_id: str,
        keyword_id: str,
        subkeyword_id: Optional[str],
        source: str,
    ) -> bool:
        """Link a concept to a document; a repeated link is a no-op."""
        try:
            stmt = dialect_insert(self.session, DocumentTerm).values(
                document_id=document_id,
                category_id=category_id,
                keyword_id=keyword_id,
                subkeyword_id=subkeyword_id or NO_SUBKEYWORD,
                source=source,
            )
            result = await self.session.execute(
                stmt.on_conflict_do_nothing(index_elements=["document_id", "keyword_id", "subkeyword_id"])
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error inserting document term: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id), "keyword_id": keyword_id},
            )
            raise

    async def claim_term(
        self,
        document_id: UUID,
        category_id: str,
        keyword_id: str,
        subkeyword_id: Optional[str],
        source: str,
    ) -> None:
        """Link a concept to a document, taking over an existing link's source.

        Rule tags use this so a concept the rules still derive survives a later
        rerun that clears the model's terms.
        """
        try:
            stmt = dialect_insert(self.session, DocumentTerm).values(
                document_id=document_id,
                category_id=category_id,
                keyword_id=keyword_id,
                subkeyword_id=subkeyword_id or NO_SUBKEYWORD,
                source=source,
            )
            await self.session.execute(
                stmt.on_conflict_do_update(
                    index_elements=["document_id", "keyword_id", "subkeyword_id"],
                    set_={"source": source},
                )
            )
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error claiming document term: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id), "keyword_id": keyword_id},
            )
            raise

    async def add_evidence(
        self,
        document_id: UUID,
        category_id: str,
        keyword_id: str,
        subkeyword_id: Optional[str],
        source: str,
        evidence_text: str,
    ) -> None:
        self.session.add(
            DocumentTermEvidence(
                document_id=document_id,
                category_id=category_id,
                keyword_id=keyword_id,
                subkeyword_id=subkeyword_id or NO_SUBKEYWORD,
                source=source,
                evidence_text=evidence_text,
            )
        )
        await self.session.flush()

    async def delete_terms(self, document_id: UUID, category_ids: Sequence[str], source: str) -> None:
        """Drop a document's terms and evidence from ``source`` in the given categories."""
        try:
            await self.session.execute(
                delete(DocumentTerm).where(
                    DocumentTerm.document_id == document_id,
                    DocumentTerm.category_id.in_(list(category_ids)),
                    DocumentTerm.source == source,
                )
            )
            await self.session.execute(
                delete(DocumentTermEvidence).where(
                    DocumentTermEvidence.document_id == document_id,
                    DocumentTermEvidence.category_id.in_(list(category_ids)),
                    DocumentTermEvidence.source == source,
                )
            )
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error deleting document terms: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id), "source": source},
            )
            raise

    async def delete_for_document(self, document_id: UUID) -> None:
        await self.session.execute(delete(DocumentTerm).where(DocumentTerm.document_id == document_id))
        await self.session.execute(
            delete(DocumentTermEvidence).where(DocumentTermEvidence.document_id == document_id)
        )

    async def list_terms(self, document_id: UUID, category_id: Optional[str] = None) -> List[DocumentTerm]:
        query = select(DocumentTerm).where(DocumentTerm.document_id == document_id)
        if category_id:
            query = query.where(DocumentTerm.category_id == category_id)
        result = await self.session.execute(query.order_by(DocumentTerm.keyword_id, DocumentTerm.subkeyword_id))
        return list(result.scalars().all())

    async def list_evidence(self, document_id: UUID, keyword_id: Optional[str] = None) -> List[DocumentTermEvidence]:
        query = select(DocumentTermEvidence).where(DocumentTermEvidence.document_id == document_id)
        if keyword_id:
            query = query.where(DocumentTermEvidence.keyword_id == keyword_id)
        result = await self.session.execute(query.order_by(DocumentTermEvidence.id))
        return list(result.scalars().all())
