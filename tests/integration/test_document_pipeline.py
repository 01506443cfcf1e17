"""End-to-end pipeline passes against SQLite with scripted model output."""

import json
import uuid
from datetime import date

import pytest

from argus.core.exceptions import DocumentNotFoundError, UnknownCategoryError, UnknownModuleError, ValidationError
from argus.repositories.document_repository import DocumentRepository
from argus.repositories.projection_repository import ProjectionRepository
from argus.repositories.taxonomy_repository import TaxonomyRepository
from argus.schemas.extraction_state import DocumentExtractionState
from argus.services.indexing.index_synchronizer import IndexSynchronizer
from argus.services.pipeline import document_pipeline
from argus.services.pipeline.document_pipeline import DocumentPipeline

CLASSIFIED = {"document_classification": '{"document_type": "office_visit", "confidence": 0.95}'}

EXTRACTION = {
    "universal_metadata": json.dumps(
        {
            "date": "2024-03-05",
            "provider_name": "Dr. Lee",
            "clinic_or_facility": "Northside Clinic",
            "summary": "Shortness of breath",
        }
    ),
    "high_level_classification": '{"type": "clinical_encounter", "confidence": 0.9}',
    "module_selection": '{"modules": ["vitals"]}',
    "module:vitals": '{"module": "vitals", "vitals": {"spo2": 88, "heart_rate": 130}}',
    "taxonomy:vitals": '{"category_id": "vitals", "keyword_matches": [{"keyword_id": "vitals.hypoxia", "evidence": "SpO2 88%"}]}',
}


async def new_document(session_factory, **values):
    async with session_factory() as session:
        return (await DocumentRepository(session).create_stub(**values)).id


async def load_document(session_factory, document_id):
    async with session_factory() as session:
        return await DocumentRepository(session).get_by_id(document_id)


def make_pipeline(session_factory, gateway, **options) -> DocumentPipeline:
    return DocumentPipeline(session_factory, gateway, IndexSynchronizer(None), **options)


class TestFullPass:
    """Unclassified upload through to tags."""

    @pytest.mark.asyncio
    async def test_unclassified_document_is_fully_processed(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-1")
        gateway = scripted_gateway({**CLASSIFIED, **EXTRACTION})

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.COMPLETED
        assert result.document_type == "office_visit"
        assert result.modules_succeeded == ["vitals"]
        assert {"vitals.any_mention", "vitals.hypoxia", "vitals.tachycardia"} <= set(result.rule_keywords)
        assert result.to_dict()["taxonomy"]["vitals"] == "tagged"
        assert result.index == "disabled"

        document = await load_document(seeded_session_factory, document_id)
        assert document.document_type == "office_visit"
        assert document.needs_metadata is False
        assert document.encounter_date == date(2024, 3, 5)
        assert document.provider_name == "Dr. Lee"
        state = DocumentExtractionState.from_payload(document.metadata_json)
        assert state.classification.predicted_type == "office_visit"
        assert state.has_completed_extraction

        async with seeded_session_factory() as session:
            vitals = await ProjectionRepository(session).get_singleton("vitals", document_id)
            terms = await TaxonomyRepository(session).list_terms(document_id, "vitals")
        assert vitals.spo2 == 88.0
        assert vitals.spo2_is_low is True
        assert vitals.encounter_date == date(2024, 3, 5)
        assert {(t.keyword_id, t.source) for t in terms} >= {("vitals.hypoxia", "rule"), ("vitals.tachycardia", "rule")}

    @pytest.mark.asyncio
    async def test_rerunning_a_pass_is_idempotent(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-2", document_type="office_visit")
        pipeline = make_pipeline(seeded_session_factory, scripted_gateway(EXTRACTION))

        await pipeline.run_document(document_id)
        async with seeded_session_factory() as session:
            first = [(t.keyword_id, t.source) for t in await TaxonomyRepository(session).list_terms(document_id)]
        await pipeline.run_document(document_id)
        async with seeded_session_factory() as session:
            second = [(t.keyword_id, t.source) for t in await TaxonomyRepository(session).list_terms(document_id)]

        assert first == second

    @pytest.mark.asyncio
    async def test_low_confidence_leaves_document_unclassified(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-3")
        gateway = scripted_gateway({"document_classification": '{"document_type": "office_visit", "confidence": 0.4}'})

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.UNCLASSIFIED_STATUS
        assert gateway.calls == ["document_classification"]
        document = await load_document(seeded_session_factory, document_id)
        assert document.document_type == "unclassified"
        assert document.needs_metadata is True
        assert document.metadata_json["classification"]["confidence"] == 0.4

    @pytest.mark.asyncio
    async def test_classification_can_stop_before_extraction(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-4")
        gateway = scripted_gateway({**CLASSIFIED, **EXTRACTION})

        result = await make_pipeline(
            seeded_session_factory, gateway, auto_metadata_after_classify=False
        ).run_document(document_id)

        assert result.status == document_pipeline.CLASSIFIED_ONLY
        document = await load_document(seeded_session_factory, document_id)
        assert document.document_type == "office_visit"
        assert document.needs_metadata is True

    @pytest.mark.asyncio
    async def test_no_modules_keeps_metadata_flag(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-5", document_type="office_visit")
        gateway = scripted_gateway({**EXTRACTION, "module_selection": '{"modules": []}'})

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.NO_MODULES
        document = await load_document(seeded_session_factory, document_id)
        assert document.needs_metadata is True
        assert document.provider_name == "Dr. Lee"

    @pytest.mark.asyncio
    async def test_non_finite_vitals_are_stored_as_null(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-15", document_type="office_visit")
        gateway = scripted_gateway(
            {**EXTRACTION, "module:vitals": '{"module": "vitals", "vitals": {"spo2": NaN, "heart_rate": Infinity}}'}
        )

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.COMPLETED
        assert "vitals.any_mention" not in result.rule_keywords
        async with seeded_session_factory() as session:
            vitals = await ProjectionRepository(session).get_singleton("vitals", document_id)
        assert vitals.spo2 is None
        assert vitals.heart_rate is None
        assert vitals.has_vitals is False

    @pytest.mark.asyncio
    async def test_failed_modules_skip_projection(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-6", document_type="office_visit")
        gateway = scripted_gateway({**EXTRACTION, "module:vitals": "garbage"})

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.MODULES_FAILED
        assert result.modules_failed == ["vitals"]
        async with seeded_session_factory() as session:
            assert await ProjectionRepository(session).get_singleton("vitals", document_id) is None

    @pytest.mark.asyncio
    async def test_document_without_content_is_unusable(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, external_ref="ext-7")
        gateway = scripted_gateway(EXTRACTION)

        result = await make_pipeline(seeded_session_factory, gateway).run_document(document_id)

        assert result.status == document_pipeline.UNUSABLE
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_document_deleted_mid_pass_is_not_reported_saved(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-16")

        class DeletingGateway(scripted_gateway):
            async def infer(self, template, document_ref, expected_shape):
                async with seeded_session_factory() as session:
                    await DocumentRepository(session).delete(document_id)
                return await super().infer(template, document_ref, expected_shape)

        result = await make_pipeline(seeded_session_factory, DeletingGateway(CLASSIFIED)).run_document(document_id)

        assert result.status == document_pipeline.STATE_NOT_SAVED
        assert await load_document(seeded_session_factory, document_id) is None

    @pytest.mark.asyncio
    async def test_missing_document_raises(self, seeded_session_factory, scripted_gateway):
        with pytest.raises(DocumentNotFoundError):
            await make_pipeline(seeded_session_factory, scripted_gateway()).run_document(uuid.uuid4())


class TestAdminOperations:
    """Module reruns and taxonomy rebuilds."""

    @pytest.mark.asyncio
    async def test_rerun_module_adds_module_and_retags(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-8", document_type="office_visit")
        await make_pipeline(seeded_session_factory, scripted_gateway(EXTRACTION)).run_document(document_id)
        gateway = scripted_gateway(
            {"module:smoking": '{"module": "smoking", "smoking": {"patient_reported_history": {"status": "former"}}}'}
        )

        result = await make_pipeline(seeded_session_factory, gateway).rerun_module(document_id, "smoking")

        assert result.status == document_pipeline.COMPLETED
        assert result.modules_succeeded == ["smoking"]
        assert "smoking.any_mention" in result.rule_keywords
        assert gateway.calls == ["module:smoking"]
        document = await load_document(seeded_session_factory, document_id)
        assert set(document.metadata_json["modules"]) == {"vitals", "smoking"}

    @pytest.mark.asyncio
    async def test_rerun_unknown_module_raises(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-9")

        with pytest.raises(UnknownModuleError):
            await make_pipeline(seeded_session_factory, scripted_gateway()).rerun_module(document_id, "billing")

    @pytest.mark.asyncio
    async def test_rebuild_module_rejects_unknown_scope(self, seeded_session_factory, scripted_gateway):
        with pytest.raises(ValidationError):
            await make_pipeline(seeded_session_factory, scripted_gateway()).rebuild_module("vitals", scope="some")

    @pytest.mark.asyncio
    async def test_rebuild_module_targets_documents_missing_it(self, seeded_session_factory, scripted_gateway):
        done = await new_document(seeded_session_factory, file_ref="file-10", document_type="office_visit")
        await make_pipeline(seeded_session_factory, scripted_gateway(EXTRACTION)).run_document(done)
        pending = await new_document(seeded_session_factory, file_ref="file-11", document_type="office_visit")
        gateway = scripted_gateway({"module:vitals": EXTRACTION["module:vitals"]})

        batch = await make_pipeline(seeded_session_factory, gateway).rebuild_module("vitals", scope="missing")

        assert batch.requested == 1
        # The new document has a module but no universal metadata yet
        assert batch.failed == [str(pending)]
        document = await load_document(seeded_session_factory, pending)
        assert "vitals" in document.metadata_json["modules"]

    @pytest.mark.asyncio
    async def test_rebuild_taxonomy_retags_processed_documents(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-12", document_type="office_visit")
        await make_pipeline(seeded_session_factory, scripted_gateway(EXTRACTION)).run_document(document_id)
        await new_document(seeded_session_factory, file_ref="file-13")
        gateway = scripted_gateway()

        batch = await make_pipeline(seeded_session_factory, gateway).rebuild_taxonomy("vitals")

        assert batch.to_dict() == {"requested": 1, "succeeded": [str(document_id)], "failed": []}
        assert gateway.calls == []
        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id, "vitals")
        assert "vitals.hypoxia" in {t.keyword_id for t in terms}

    @pytest.mark.asyncio
    async def test_rebuild_taxonomy_unknown_category(self, seeded_session_factory, scripted_gateway):
        with pytest.raises(UnknownCategoryError):
            await make_pipeline(seeded_session_factory, scripted_gateway()).rebuild_taxonomy("billing")

    @pytest.mark.asyncio
    async def test_extract_taxonomy_category(self, seeded_session_factory, scripted_gateway):
        document_id = await new_document(seeded_session_factory, file_ref="file-14", document_type="office_visit")
        await make_pipeline(seeded_session_factory, scripted_gateway(EXTRACTION)).run_document(document_id)
        gateway = scripted_gateway(
            {"taxonomy:smoking": '{"category_id": "smoking", "keyword_matches": [{"keyword_id": "smoking.never_smoker"}]}'}
        )

        batch = await make_pipeline(seeded_session_factory, gateway).extract_taxonomy_category("smoking")

        assert batch.succeeded == [str(document_id)]
        async with seeded_session_factory() as session:
            terms = await TaxonomyRepository(session).list_terms(document_id, "smoking")
        assert ("smoking.never_smoker", "model") in {(t.keyword_id, t.source) for t in terms}
