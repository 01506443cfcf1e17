"""Per-document extraction pipeline.

One pass runs, in order: detailed classification (only for unclassified
documents), universal metadata, high-level classification, module selection,
module extraction, state persistence, projection, rule taxonomy, model
taxonomy and index sync. Every stage opens its own session and is isolated:
a failure is logged against the document and stage, and the document keeps
``needs_metadata`` set until a later pass completes projection.

Passes for the same document are serialized in-process by a per-document
lock, so an automatic pass and an admin rerun cannot interleave writes.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.constants import (
    ADMIN_BATCH_DEFAULT_LIMIT,
    ADMIN_BATCH_MAX_LIMIT,
    MODULE_NAMES,
    PROJECTION_CATEGORIES,
    RULE_CATEGORIES,
    TAXONOMY_CATEGORIES,
    UNCLASSIFIED,
)
from argus.core.exceptions import DocumentNotFoundError, UnknownCategoryError, UnknownModuleError, ValidationError
from argus.database.models import Document
from argus.repositories.document_repository import DocumentRepository
from argus.schemas.extraction_state import DocumentExtractionState
from argus.services.classification.classifiers import DocumentTypeClassifier, HighLevelClassifier
from argus.services.extraction.metadata_extractor import UniversalMetadataExtractor
from argus.services.extraction.module_extraction_orchestrator import ModuleExtractionOrchestrator
from argus.services.extraction.module_selector import ModuleSelector
from argus.services.indexing.index_synchronizer import IndexSynchronizer
from argus.services.inference.gateway import DocumentRef, InferenceGateway
from argus.services.projection.normalizers import parse_date
from argus.services.projection.projection_engine import ProjectionEngine
from argus.services.taxonomy.model_extractor import STATUS_TAGGED, CategoryOutcome, ModelTaxonomyExtractor
from argus.services.taxonomy.rule_projector import RuleTaxonomyProjector
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

# Pass statuses
COMPLETED = "completed"
UNUSABLE = "unusable"
UNCLASSIFIED_STATUS = "unclassified"
CLASSIFIED_ONLY = "classified"
METADATA_UNAVAILABLE = "metadata_unavailable"
NO_MODULES = "no_modules"
MODULES_FAILED = "modules_failed"
PROJECTION_FAILED = "projection_failed"
STATE_NOT_SAVED = "state_not_saved"


@dataclass
class PassResult:
    """Summary of one pipeline pass over one document."""
    document_id: UUID
    status: str
    document_type: Optional[str] = None
    modules_succeeded: List[str] = field(default_factory=list)
    modules_failed: List[str] = field(default_factory=list)
    rule_keywords: List[str] = field(default_factory=list)
    taxonomy: List[CategoryOutcome] = field(default_factory=list)
    index: Optional[str] = None
    processing_time_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "document_id": str(self.document_id),
            "status": self.status,
            "document_type": self.document_type,
            "modules_succeeded": self.modules_succeeded,
            "modules_failed": self.modules_failed,
            "rule_keywords": self.rule_keywords,
            "taxonomy": {outcome.category_id: outcome.status for outcome in self.taxonomy},
            "index": self.index,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class BatchResult:
    requested: int = 0
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"requested": self.requested, "succeeded": self.succeeded, "failed": self.failed}


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit < 1:
        return ADMIN_BATCH_DEFAULT_LIMIT
    return min(limit, ADMIN_BATCH_MAX_LIMIT)


class DocumentLocks:
    """One asyncio.Lock per document id, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}
        self._users: Dict[UUID, int] = {}

    @asynccontextmanager
    async def hold(self, document_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.setdefault(document_id, asyncio.Lock())
        self._users[document_id] = self._users.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[document_id] -= 1
            if self._users[document_id] == 0:
                del self._users[document_id]
                del self._locks[document_id]

    def is_locked(self, document_id: UUID) -> bool:
        lock = self._locks.get(document_id)
        return lock is not None and lock.locked()


class DocumentPipeline:
    def __init__(
        self,
        session_factory: SessionFactory,
        gateway: InferenceGateway,
        index_synchronizer: IndexSynchronizer,
        model: Optional[str] = None,
        fast_model: Optional[str] = None,
        confidence_threshold: float = 0.85,
        auto_metadata_after_classify: bool = True,
    ):
        """Wire the stages.

        Args:
            session_factory: Creates a fresh AsyncSession per stage
            gateway: Shared inference gateway (owns the process-wide limiter)
            index_synchronizer: Pushes attributes to the external index
            model: Model for metadata, module and taxonomy extraction
            fast_model: Model for classification and module selection
            confidence_threshold: Minimum confidence to accept a detailed type
            auto_metadata_after_classify: Continue into extraction right after
                a document is classified
        """
        self.session_factory = session_factory
        self.document_classifier = DocumentTypeClassifier(gateway, confidence_threshold, model=fast_model)
        self.high_level_classifier = HighLevelClassifier(gateway, model=fast_model)
        self.module_selector = ModuleSelector(gateway, model=fast_model)
        self.metadata_extractor = UniversalMetadataExtractor(gateway, model=model)
        self.module_orchestrator = ModuleExtractionOrchestrator(gateway, model=model)
        self.projection_engine = ProjectionEngine()
        self.rule_projector = RuleTaxonomyProjector()
        self.model_taxonomy = ModelTaxonomyExtractor(gateway, model=model)
        self.index_synchronizer = index_synchronizer
        self.auto_metadata_after_classify = auto_metadata_after_classify
        self.locks = DocumentLocks()

    # ------------------------------------------------------------------
    # Full pass
    # ------------------------------------------------------------------

    async def run_document(self, document_id: UUID) -> PassResult:
        """Run one full pass for a document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        started = time.monotonic()
        async with self.locks.hold(document_id):
            result = await self._run_pass(document_id)
        result.processing_time_ms = int((time.monotonic() - started) * 1000)
        LOGGER.info(
            "Pipeline pass finished",
            extra={
                "document_id": str(document_id),
                "status": result.status,
                "processing_time_ms": result.processing_time_ms,
            },
        )
        return result

    async def _run_pass(self, document_id: UUID) -> PassResult:
        document, state = await self._load(document_id)
        ref = self._document_ref(document)
        result = PassResult(document_id=document_id, status=COMPLETED, document_type=document.document_type)

        if not ref.is_usable:
            LOGGER.warning("Document has nothing to extract from", extra={"document_id": str(document_id)})
            result.status = UNUSABLE
            return result

        document_type = document.document_type
        if document_type == UNCLASSIFIED:
            classification = await self.document_classifier.classify(ref)
            if classification is not None:
                state = state.model_copy(update={"classification": classification})
            if classification is None or not classification.accepted:
                await self._save_state(document_id, state)
                result.status = UNCLASSIFIED_STATUS
                return result

            document_type = classification.predicted_type
            result.document_type = document_type
            if not await self._save_state(document_id, state, document_type=document_type):
                result.status = STATE_NOT_SAVED
                return result
            if not self.auto_metadata_after_classify:
                result.status = CLASSIFIED_ONLY
                return result

        universal = await self.metadata_extractor.extract(ref, document_type)
        if universal is None:
            result.status = METADATA_UNAVAILABLE
            return result
        state = state.model_copy(update={"universal": universal})

        high_level = await self.high_level_classifier.classify(ref)
        if high_level is not None:
            state = state.model_copy(update={"high_level_classification": high_level})

        selection = await self.module_selector.select(ref, high_level)
        if selection is not None:
            state = state.model_copy(update={"modules_selected": selection})
        if selection is None or not selection.modules:
            await self._save_state(document_id, state, **self._universal_columns(state))
            result.status = NO_MODULES
            return result

        extraction = await self.module_orchestrator.extract_modules(ref, selection.modules)
        for payload in extraction.payloads.values():
            state = state.with_module(payload)
        result.modules_succeeded = extraction.succeeded
        result.modules_failed = extraction.failed

        if not await self._save_state(document_id, state, **self._universal_columns(state)):
            result.status = STATE_NOT_SAVED
            return result
        if not state.has_completed_extraction:
            result.status = MODULES_FAILED
            return result

        await self._finish(document_id, ref, state, result, run_model_taxonomy=True)
        return result

    async def _finish(
        self,
        document_id: UUID,
        ref: DocumentRef,
        state: DocumentExtractionState,
        result: PassResult,
        run_model_taxonomy: bool,
    ) -> None:
        """Projection onward: projection, rule taxonomy, model taxonomy, index sync."""
        projection = await self._project(document_id, state)
        if projection is None:
            result.status = PROJECTION_FAILED
            return

        try:
            async with self.session_factory() as session:
                tags = await self.rule_projector.apply(session, document_id, projection, RULE_CATEGORIES)
                await session.commit()
            result.rule_keywords = [tag.keyword_id for tag in tags]
        except Exception as e:
            LOGGER.error(
                "Rule taxonomy stage failed",
                exc_info=True,
                extra={"document_id": str(document_id), "stage": "rule_taxonomy", "error": str(e)},
            )

        if run_model_taxonomy:
            result.taxonomy = await self.model_taxonomy.extract_categories(
                self.session_factory, ref, document_id, list(TAXONOMY_CATEGORIES)
            )

        result.index = await self._sync_index(document_id, state)

    async def _project(self, document_id: UUID, state: DocumentExtractionState):
        try:
            async with self.session_factory() as session:
                repository = DocumentRepository(session)
                document = await repository.get_by_id(document_id)
                if document is None:
                    raise DocumentNotFoundError(f"Document {document_id} not found")
                projection = await self.projection_engine.project(
                    session, document_id, state, document.encounter_date
                )
                document.needs_metadata = False
                await session.commit()
                return projection
        except Exception as e:
            LOGGER.error(
                "Projection stage failed",
                exc_info=True,
                extra={"document_id": str(document_id), "stage": "projection", "error": str(e)},
            )
            return None

    async def _sync_index(self, document_id: UUID, state: Optional[DocumentExtractionState]) -> Optional[str]:
        try:
            async with self.session_factory() as session:
                document = await DocumentRepository(session).get_by_id(document_id)
                if document is None:
                    return None
                outcome = await self.index_synchronizer.sync(document, state)
                return outcome.value
        except Exception as e:
            LOGGER.error(
                "Index sync stage failed",
                exc_info=True,
                extra={"document_id": str(document_id), "stage": "index_sync", "error": str(e)},
            )
            return None

    # ------------------------------------------------------------------
    # Admin entry points
    # ------------------------------------------------------------------

    async def rerun_module(self, document_id: UUID, module_name: str) -> PassResult:
        """Re-extract one module for one document, then reproject and re-tag.

        Raises:
            UnknownModuleError: If ``module_name`` is not in the allow-list
            DocumentNotFoundError: If the document does not exist
        """
        if module_name not in MODULE_NAMES:
            raise UnknownModuleError(f"Unknown extraction module: {module_name}")

        async with self.locks.hold(document_id):
            document, state = await self._load(document_id)
            ref = self._document_ref(document)
            result = PassResult(document_id=document_id, status=COMPLETED, document_type=document.document_type)
            if not ref.is_usable:
                result.status = UNUSABLE
                return result

            payload = await self.module_orchestrator.extract_module(ref, module_name)
            if payload is None:
                result.status = MODULES_FAILED
                result.modules_failed = [module_name]
                return result

            state = state.with_module(payload)
            result.modules_succeeded = [module_name]
            if not await self._save_state(document_id, state):
                result.status = STATE_NOT_SAVED
                return result
            if not state.has_completed_extraction:
                # Module stored; projection waits for universal metadata
                result.status = METADATA_UNAVAILABLE
                return result

            await self._finish(document_id, ref, state, result, run_model_taxonomy=False)
            return result

    async def rebuild_module(self, module_name: str, scope: str = "missing", limit: Optional[int] = None) -> BatchResult:
        """Rerun one module across documents.

        Args:
            module_name: Module to rerun
            scope: ``missing`` for documents whose state lacks the module, or ``all``
            limit: Maximum documents, defaulting to 100 and capped at 250
        """
        if module_name not in MODULE_NAMES:
            raise UnknownModuleError(f"Unknown extraction module: {module_name}")
        if scope not in ("missing", "all"):
            raise ValidationError(f"Unknown rebuild scope: {scope}")

        limit = clamp_limit(limit)
        async with self.session_factory() as session:
            repository = DocumentRepository(session)
            if scope == "missing":
                document_ids = await repository.list_ids_missing_module(module_name, limit)
            else:
                document_ids = await repository.list_active_ids(limit)

        batch = BatchResult(requested=len(document_ids))
        for document_id in document_ids:
            try:
                result = await self.rerun_module(document_id, module_name)
                target = batch.succeeded if result.status == COMPLETED else batch.failed
                target.append(str(document_id))
            except Exception as e:
                LOGGER.error(
                    "Module rebuild failed for document",
                    exc_info=True,
                    extra={"document_id": str(document_id), "module": module_name, "error": str(e)},
                )
                batch.failed.append(str(document_id))

        LOGGER.info(
            "Module rebuild finished",
            extra={"module": module_name, "scope": scope, **batch.to_dict()},
        )
        return batch

    async def rebuild_taxonomy(self, category_id: Optional[str] = None, limit: Optional[int] = None) -> BatchResult:
        """Reproject and re-apply rule tags across documents with a completed extraction.

        Args:
            category_id: One rule category, or None for every projection-backed category
            limit: Maximum documents, defaulting to 100 and capped at 250
        """
        if category_id is not None and category_id not in RULE_CATEGORIES:
            raise UnknownCategoryError(f"Unknown taxonomy category: {category_id}")
        categories: Sequence[str] = [category_id] if category_id else PROJECTION_CATEGORIES

        limit = clamp_limit(limit)
        async with self.session_factory() as session:
            document_ids = await DocumentRepository(session).list_active_ids(limit, with_state_only=True)

        batch = BatchResult(requested=len(document_ids))
        for document_id in document_ids:
            try:
                async with self.locks.hold(document_id):
                    await self._retag_document(document_id, categories)
                batch.succeeded.append(str(document_id))
            except Exception as e:
                LOGGER.error(
                    "Taxonomy rebuild failed for document",
                    exc_info=True,
                    extra={"document_id": str(document_id), "category_id": category_id, "error": str(e)},
                )
                batch.failed.append(str(document_id))

        LOGGER.info("Rule taxonomy rebuild finished", extra={"category_id": category_id, **batch.to_dict()})
        return batch

    async def _retag_document(self, document_id: UUID, categories: Sequence[str]) -> None:
        async with self.session_factory() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")
            state = DocumentExtractionState.from_payload(document.metadata_json)
            projection = await self.projection_engine.project(session, document_id, state, document.encounter_date)
            await self.rule_projector.apply(session, document_id, projection, categories)
            await session.commit()

    async def extract_taxonomy_category(self, category_id: str, limit: Optional[int] = None) -> BatchResult:
        """Rerun model-driven extraction for one category across documents."""
        if category_id not in TAXONOMY_CATEGORIES:
            raise UnknownCategoryError(f"Unknown taxonomy category: {category_id}")

        limit = clamp_limit(limit)
        async with self.session_factory() as session:
            repository = DocumentRepository(session)
            document_ids = await repository.list_active_ids(limit, with_state_only=True)
            documents = [await repository.get_by_id(document_id) for document_id in document_ids]

        batch = BatchResult(requested=len(documents))
        for document in documents:
            ref = self._document_ref(document)
            if not ref.is_usable:
                batch.failed.append(str(document.id))
                continue
            async with self.locks.hold(document.id):
                outcomes = await self.model_taxonomy.extract_categories(
                    self.session_factory, ref, document.id, [category_id]
                )
            target = batch.succeeded if outcomes[0].status == STATUS_TAGGED else batch.failed
            target.append(str(document.id))

        LOGGER.info("Model taxonomy rerun finished", extra={"category_id": category_id, **batch.to_dict()})
        return batch

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, document_id: UUID) -> tuple[Document, DocumentExtractionState]:
        async with self.session_factory() as session:
            document = await DocumentRepository(session).get_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document, DocumentExtractionState.from_payload(document.metadata_json)

    @staticmethod
    def _document_ref(document: Document) -> DocumentRef:
        return DocumentRef(
            document_id=str(document.id),
            file_ref=document.file_ref,
            transcript=document.transcript,
        )

    @staticmethod
    def _universal_columns(state: DocumentExtractionState) -> dict:
        universal = state.universal
        if universal is None:
            return {}
        return {
            "encounter_date": parse_date(universal.date),
            "provider_name": universal.provider_name,
            "clinic_or_facility": universal.clinic_or_facility,
        }

    async def _save_state(self, document_id: UUID, state: DocumentExtractionState, **columns) -> bool:
        """Persist the extraction state; a store failure is logged and reported as False."""
        try:
            async with self.session_factory() as session:
                saved = await DocumentRepository(session).save_state(document_id, state.to_payload(), **columns)
            if saved is None:
                LOGGER.warning(
                    "Document disappeared before its state was saved",
                    extra={"document_id": str(document_id), "stage": "persist_state"},
                )
            return saved is not None
        except Exception as e:
            LOGGER.error(
                "Failed to persist extraction state",
                exc_info=True,
                extra={"document_id": str(document_id), "stage": "persist_state", "error": str(e)},
            )
            return False
