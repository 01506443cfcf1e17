"""Tests for projection and document term writes against SQLite."""

from datetime import date

import pytest

from argus.repositories.document_repository import DocumentRepository
from argus.repositories.projection_repository import ProjectionRepository
from argus.repositories.taxonomy_repository import TaxonomyRepository
from argus.schemas.extraction_state import DocumentExtractionState, UniversalMetadata
from argus.services.projection.projection_engine import ProjectionEngine

ENCOUNTER = date(2024, 3, 5)


def sample_state() -> DocumentExtractionState:
    return DocumentExtractionState(
        universal=UniversalMetadata.model_validate(
            {
                "vitals": {"blood_pressure": "128/84", "spo2": 95},
                "referrals": ["Cardiology for palpitations", "Dermatology"],
            }
        )
    )


class TestProjectionRepository:
    """Singleton upserts and multi-row replacement."""

    @pytest.mark.asyncio
    async def test_projecting_twice_leaves_identical_rows(self, session_factory):
        engine = ProjectionEngine()
        async with session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-1")

            await engine.project(session, document.id, sample_state(), ENCOUNTER)
            await session.commit()
            repository = ProjectionRepository(session)
            first_vitals = (await repository.get_singleton("vitals", document.id)).systolic_bp
            first_referrals = [row.specialty for row in await repository.get_rows("referrals", document.id)]

            await engine.project(session, document.id, sample_state(), ENCOUNTER)
            await session.commit()
            vitals = await repository.get_singleton("vitals", document.id)
            referrals = await repository.get_rows("referrals", document.id)

        assert first_vitals == vitals.systolic_bp == 128
        assert [row.specialty for row in referrals] == first_referrals == ["cardiology", "dermatology"]
        assert [row.position for row in referrals] == [0, 1]

    @pytest.mark.asyncio
    async def test_replace_rows_drops_previous_rows(self, session_factory):
        async with session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-2")
            repository = ProjectionRepository(session)
            row = {"position": 0, "encounter_date": None, "specialty": "cardiology", "source": "module"}

            await repository.replace_rows("referrals", document.id, [row, {**row, "position": 1, "specialty": "neurology"}])
            await session.commit()
            await repository.replace_rows("referrals", document.id, [])
            await session.commit()

            assert await repository.get_rows("referrals", document.id) == []

    @pytest.mark.asyncio
    async def test_upsert_replaces_singleton_values(self, session_factory):
        async with session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-3")
            repository = ProjectionRepository(session)

            await repository.upsert_singleton("communication", document.id, {"initiated_by": "patient", "source": "module"})
            await repository.upsert_singleton("communication", document.id, {"initiated_by": "provider", "source": "fallback"})
            await session.commit()

            row = await repository.get_singleton("communication", document.id)

        assert row.initiated_by == "provider"
        assert row.source == "fallback"

    @pytest.mark.asyncio
    async def test_delete_for_document(self, session_factory):
        async with session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-4")
            await ProjectionEngine().project(session, document.id, sample_state(), None)
            await session.commit()

            repository = ProjectionRepository(session)
            await repository.delete_for_document(document.id)
            await session.commit()

            assert await repository.get_singleton("vitals", document.id) is None
            assert await repository.get_rows("referrals", document.id) == []


class TestDocumentTerms:
    @pytest.mark.asyncio
    async def test_term_is_unique_per_document_and_concept(self, seeded_session_factory):
        async with seeded_session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-5")
            repository = TaxonomyRepository(session)

            first = await repository.insert_term_if_absent(document.id, "vitals", "vitals.fever", None, "rule")
            second = await repository.insert_term_if_absent(document.id, "vitals", "vitals.fever", None, "model")
            await session.commit()

            terms = await repository.list_terms(document.id)

        assert first is True
        assert second is False
        assert [(term.keyword_id, term.subkeyword, term.source) for term in terms] == [("vitals.fever", None, "rule")]

    @pytest.mark.asyncio
    async def test_delete_terms_is_scoped_by_source(self, seeded_session_factory):
        async with seeded_session_factory() as session:
            document = await DocumentRepository(session).create_stub(file_ref="file-6")
            repository = TaxonomyRepository(session)
            await repository.insert_term_if_absent(document.id, "vitals", "vitals.fever", None, "rule")
            await repository.insert_term_if_absent(document.id, "vitals", "vitals.hypoxia", None, "model")
            await repository.add_evidence(document.id, "vitals", "vitals.fever", None, "rule", "Temperature 101F >= 100.4F")

            await repository.delete_terms(document.id, ["vitals"], "rule")
            await session.commit()

            terms = await repository.list_terms(document.id)
            evidence = await repository.list_evidence(document.id)

        assert [term.keyword_id for term in terms] == ["vitals.hypoxia"]
        assert evidence == []
