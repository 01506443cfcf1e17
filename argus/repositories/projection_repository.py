"""Writes for the relational projections derived from extraction state."""

from typing import Any, Dict, List, Optional, Type
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.database import Base
from argus.database.models import (
    DocumentCommunication,
    DocumentMentalHealth,
    DocumentReferral,
    DocumentResult,
    DocumentSexualHistory,
    DocumentSmoking,
    DocumentVitals,
)
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

SINGLETON_MODELS: Dict[str, Type[Base]] = {
    "vitals": DocumentVitals,
    "smoking": DocumentSmoking,
    "mental_health": DocumentMentalHealth,
    "sexual_history": DocumentSexualHistory,
    "communication": DocumentCommunication,
}

MULTI_ROW_MODELS: Dict[str, Type[Base]] = {
    "referrals": DocumentReferral,
    "results": DocumentResult,
}


def dialect_insert(session: AsyncSession, model: Type[Base]):
    """Return an INSERT construct that supports ON CONFLICT for the bound dialect."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on dialect {dialect!r}")


class ProjectionRepository:
    """Upserts singleton projections and replaces multi-row projections.

    Nothing here commits; the projection stage commits once per document so
    all of its tables change together.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert_singleton(self, name: str, document_id: UUID, values: Dict[str, Any]) -> None:
        """Insert or fully replace the one row ``name`` holds for a document."""
        model = SINGLETON_MODELS[name]
        row = {"document_id": document_id, **values}
        try:
            stmt = dialect_insert(self.session, model).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=["document_id"],
                set_={key: stmt.excluded[key] for key in values},
            )
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error upserting {model.__name__}: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id), "projection": name},
            )
            raise

    async def replace_rows(self, name: str, document_id: UUID, rows: List[Dict[str, Any]]) -> int:
        """Delete every existing row of ``name`` for the document, then insert ``rows``."""
        model = MULTI_ROW_MODELS[name]
        try:
            await self.session.execute(delete(model).where(model.document_id == document_id))
            for row in rows:
                self.session.add(model(document_id=document_id, **row))
            await self.session.flush()
            return len(rows)
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error replacing {model.__name__} rows: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id), "projection": name},
            )
            raise

    async def get_singleton(self, name: str, document_id: UUID) -> Optional[Base]:
        model = SINGLETON_MODELS[name]
        result = await self.session.execute(
            select(model)
            .where(model.document_id == document_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_rows(self, name: str, document_id: UUID) -> List[Base]:
        model = MULTI_ROW_MODELS[name]
        result = await self.session.execute(
            select(model)
            .where(model.document_id == document_id)
            .order_by(model.position)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def delete_for_document(self, document_id: UUID) -> None:
        """Remove every projection row for a document (hard delete)."""
        try:
            for model in (*SINGLETON_MODELS.values(), *MULTI_ROW_MODELS.values()):
                await self.session.execute(delete(model).where(model.document_id == document_id))
        except SQLAlchemyError as e:
            LOGGER.error(
                f"Error deleting projections: {str(e)}",
                exc_info=True,
                extra={"document_id": str(document_id)},
            )
            raise
