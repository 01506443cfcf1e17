"""Tests for model-driven taxonomy extraction against a seeded SQLite taxonomy."""

import json

import pytest

from argus.core.exceptions import UnknownCategoryError
from argus.repositories.document_repository import DocumentRepository
from argus.repositories.taxonomy_repository import STATUS_APPROVED, STATUS_REVIEW, TaxonomyRepository
from argus.services.projection.projection_engine import ProjectionSet
from argus.services.taxonomy.model_extractor import (
    STATUS_DISCARDED,
    STATUS_FAILED,
    STATUS_TAGGED,
    ModelTaxonomyExtractor,
)
from argus.services.taxonomy.rule_projector import RuleTaxonomyProjector


def answer(category_id: str, *matches) -> str:
    return json.dumps({"category_id": category_id, "keyword_matches": list(matches)})


async def new_document(session_factory, file_ref: str):
    async with session_factory() as session:
        return (await DocumentRepository(session).create_stub(file_ref=file_ref)).id


async def tag(session_factory, gateway, document_ref, document_id, category_id="vitals"):
    extractor = ModelTaxonomyExtractor(gateway)
    async with session_factory() as session:
        outcome = await extractor.extract_category(session, document_ref, document_id, category_id)
        await session.commit()
    return outcome


class TestModelTaxonomyExtractor:
    """Matching, proposals and response rejection."""

    @pytest.mark.asyncio
    async def test_matches_existing_keyword_with_evidence(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-1")
        gateway = scripted_gateway(
            {"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.fever", "evidence": "T 101.2F"})}
        )

        outcome = await tag(seeded_session_factory, gateway, document_ref, document_id)

        assert outcome.status == STATUS_TAGGED
        assert outcome.terms == 1
        async with seeded_session_factory() as session:
            repository = TaxonomyRepository(session)
            terms = await repository.list_terms(document_id, "vitals")
            evidence = await repository.list_evidence(document_id, "vitals.fever")
        assert [(t.keyword_id, t.source) for t in terms] == [("vitals.fever", "model")]
        assert [e.evidence_text for e in evidence] == ["T 101.2F"]

    @pytest.mark.asyncio
    async def test_new_keyword_is_stored_for_review(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-2")
        gateway = scripted_gateway(
            {
                "taxonomy:vitals": answer(
                    "vitals",
                    {
                        "new_keyword": {"label": "Bradycardia", "synonyms": ["slow heart rate", "Febrile"]},
                        "evidence": "HR 48",
                        "subkeyword_matches": [{"new_subkeyword": {"label": "Sinus bradycardia"}}],
                    },
                )
            }
        )

        outcome = await tag(seeded_session_factory, gateway, document_ref, document_id)

        assert outcome.created_keywords == ["vitals.bradycardia"]
        assert outcome.created_subkeywords == ["vitals.bradycardia.sinus_bradycardia"]
        assert outcome.terms == 2
        async with seeded_session_factory() as session:
            repository = TaxonomyRepository(session)
            keyword = await repository.get_keyword("vitals.bradycardia")
            fever = await repository.get_keyword("vitals.fever")
        assert keyword.status == STATUS_REVIEW
        # "Febrile" already belongs to vitals.fever
        assert keyword.synonyms_json == ["Bradycardia", "slow heart rate"]
        assert fever.status == STATUS_APPROVED
        assert "febrile" in fever.synonyms_json

    @pytest.mark.asyncio
    async def test_slug_collision_resolves_to_existing_keyword(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-3")
        gateway = scripted_gateway(
            {"taxonomy:vitals": answer("vitals", {"new_keyword": {"label": "FEVER!", "synonyms": ["hot"]}})}
        )

        outcome = await tag(seeded_session_factory, gateway, document_ref, document_id)

        assert outcome.created_keywords == []
        async with seeded_session_factory() as session:
            repository = TaxonomyRepository(session)
            terms = await repository.list_terms(document_id)
            fever = await repository.get_keyword("vitals.fever")
        assert [t.keyword_id for t in terms] == ["vitals.fever"]
        assert "hot" not in fever.synonyms_json

    @pytest.mark.asyncio
    async def test_unknown_ids_and_empty_labels_are_ignored(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-4")
        gateway = scripted_gateway(
            {
                "taxonomy:vitals": answer(
                    "vitals",
                    {"keyword_id": "vitals.made_up"},
                    {"new_keyword": {"label": "???"}},
                    {"keyword_id": "smoking.current_smoker"},
                )
            }
        )

        outcome = await tag(seeded_session_factory, gateway, document_ref, document_id)

        assert outcome.status == STATUS_TAGGED
        assert outcome.terms == 0

    @pytest.mark.asyncio
    async def test_mismatched_category_is_discarded(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-5")
        first = scripted_gateway({"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.hypoxia"})})
        await tag(seeded_session_factory, first, document_ref, document_id)

        second = scripted_gateway({"taxonomy:vitals": answer("smoking", {"keyword_id": "smoking.current_smoker"})})
        outcome = await tag(seeded_session_factory, second, document_ref, document_id)

        assert outcome.status == STATUS_DISCARDED
        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id)
        assert [t.keyword_id for t in terms] == ["vitals.hypoxia"]

    @pytest.mark.asyncio
    async def test_malformed_output_keeps_previous_terms(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-6")
        first = scripted_gateway({"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.fever"})})
        await tag(seeded_session_factory, first, document_ref, document_id)

        outcome = await tag(
            seeded_session_factory, scripted_gateway({"taxonomy:vitals": "{not json"}), document_ref, document_id
        )

        assert outcome.status == STATUS_FAILED
        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id)
        assert [t.keyword_id for t in terms] == ["vitals.fever"]

    @pytest.mark.asyncio
    async def test_accepted_response_replaces_model_terms_only(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-7")
        async with seeded_session_factory() as session:
            await TaxonomyRepository(session).insert_term_if_absent(document_id, "vitals", "vitals.any_mention", None, "rule")
            await session.commit()
        await tag(
            seeded_session_factory,
            scripted_gateway({"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.fever"})}),
            document_ref,
            document_id,
        )

        await tag(
            seeded_session_factory,
            scripted_gateway({"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.hypotension"})}),
            document_ref,
            document_id,
        )

        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id)
        assert [(t.keyword_id, t.source) for t in terms] == [
            ("vitals.any_mention", "rule"),
            ("vitals.hypotension", "model"),
        ]

    @pytest.mark.asyncio
    async def test_rule_tag_outlives_model_rerun(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-10")
        await tag(
            seeded_session_factory,
            scripted_gateway({"taxonomy:vitals": answer("vitals", {"keyword_id": "vitals.hypoxia"})}),
            document_ref,
            document_id,
        )
        projection = ProjectionSet(
            vitals={"has_vitals": True, "spo2": 85.0},
            smoking={},
            mental_health={},
            sexual_history={},
            communication={},
        )
        async with seeded_session_factory() as session:
            await RuleTaxonomyProjector().apply(session, document_id, projection, ["vitals"])
            await session.commit()

        await tag(seeded_session_factory, scripted_gateway({"taxonomy:vitals": answer("vitals")}), document_ref, document_id)

        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id, "vitals")
        assert [(t.keyword_id, t.source) for t in terms] == [
            ("vitals.any_mention", "rule"),
            ("vitals.hypoxia", "rule"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_category_raises(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-8")

        with pytest.raises(UnknownCategoryError):
            await tag(seeded_session_factory, scripted_gateway(), document_ref, document_id, category_id="billing")

    @pytest.mark.asyncio
    async def test_extract_categories_isolates_failures(self, seeded_session_factory, scripted_gateway, document_ref):
        document_id = await new_document(seeded_session_factory, "file-9")
        gateway = scripted_gateway({"taxonomy:smoking": answer("smoking", {"keyword_id": "smoking.never_smoker"})})
        extractor = ModelTaxonomyExtractor(gateway)

        outcomes = await extractor.extract_categories(
            seeded_session_factory, document_ref, document_id, ["vitals", "billing", "smoking"]
        )

        assert [(o.category_id, o.status) for o in outcomes] == [
            ("vitals", STATUS_FAILED),
            ("billing", STATUS_FAILED),
            ("smoking", STATUS_TAGGED),
        ]
        assert gateway.calls == ["taxonomy:vitals", "taxonomy:smoking"]
