"""Projection Engine: extraction state -> relational rows.

``compute`` is pure and deterministic; ``apply`` writes the result with
upsert semantics for singleton tables and delete-then-insert for multi-row
tables, so applying the same set twice leaves identical rows.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from argus.repositories.projection_repository import ProjectionRepository
from argus.schemas.extraction_state import DocumentExtractionState
from argus.services.projection import builders
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class ProjectionSet:
    """Every projection row computed for one document."""
    vitals: Dict[str, Any]
    smoking: Dict[str, Any]
    mental_health: Dict[str, Any]
    sexual_history: Dict[str, Any]
    communication: Dict[str, Any]
    referrals: List[Dict[str, Any]] = field(default_factory=list)
    results: List[Dict[str, Any]] = field(default_factory=list)

    def singletons(self) -> Dict[str, Dict[str, Any]]:
        return {
            "vitals": self.vitals,
            "smoking": self.smoking,
            "mental_health": self.mental_health,
            "sexual_history": self.sexual_history,
            "communication": self.communication,
        }

    def multi_rows(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"referrals": self.referrals, "results": self.results}


class ProjectionEngine:
    def compute(self, state: DocumentExtractionState, encounter_date: Optional[date]) -> ProjectionSet:
        return ProjectionSet(
            vitals=builders.build_vitals(state, encounter_date),
            smoking=builders.build_smoking(state, encounter_date),
            mental_health=builders.build_mental_health(state, encounter_date),
            sexual_history=builders.build_sexual_history(state, encounter_date),
            communication=builders.build_communication(state, encounter_date),
            referrals=builders.build_referrals(state, encounter_date),
            results=builders.build_results(state, encounter_date),
        )

    async def apply(self, session: AsyncSession, document_id: UUID, projection: ProjectionSet) -> None:
        """Write ``projection`` for the document. The caller commits."""
        repository = ProjectionRepository(session)
        for name, values in projection.singletons().items():
            await repository.upsert_singleton(name, document_id, values)
        for name, rows in projection.multi_rows().items():
            await repository.replace_rows(name, document_id, rows)

        LOGGER.info(
            "Projections written",
            extra={
                "document_id": str(document_id),
                "stage": "projection",
                "referrals": len(projection.referrals),
                "results": len(projection.results),
                "has_vitals": projection.vitals["has_vitals"],
            },
        )

    async def project(
        self,
        session: AsyncSession,
        document_id: UUID,
        state: DocumentExtractionState,
        encounter_date: Optional[date],
    ) -> ProjectionSet:
        projection = self.compute(state, encounter_date)
        await self.apply(session, document_id, projection)
        return projection
