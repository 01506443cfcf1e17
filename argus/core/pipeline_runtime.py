"""Pipeline runtime wiring and lifecycle management.

This module centralizes construction of the inference gateway, index
synchronizer, document pipeline and worker pool in the core layer so that the
HTTP layer and startup code share one set of instances (and therefore one
process-wide inference limiter).
"""

from typing import Optional

from argus.core.concurrency import InferenceLimiter
from argus.core.config import Settings, settings
from argus.core.database import async_session_maker
from argus.core.inference_client import ResponsesClient
from argus.services.indexing.index_client import VectorStoreIndexClient
from argus.services.indexing.index_synchronizer import IndexSynchronizer
from argus.services.inference.gateway import InferenceGateway
from argus.services.pipeline.document_pipeline import DocumentPipeline
from argus.services.pipeline.worker_pool import PipelineWorkerPool
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


def build_gateway(config: Settings) -> InferenceGateway:
    inference = config.inference
    client = ResponsesClient(
        api_key=inference.api_key,
        base_url=inference.base_url,
        timeout=inference.timeout_seconds,
    )
    return InferenceGateway(
        client=client,
        limiter=InferenceLimiter(inference.max_concurrency),
        default_model=inference.model,
        max_attempts=inference.retry_max_attempts,
        base_delay_seconds=inference.retry_base_delay_seconds,
    )


def build_index_synchronizer(config: Settings) -> IndexSynchronizer:
    client = None
    if config.index.vector_store_id:
        client = VectorStoreIndexClient(
            api_key=config.inference.api_key,
            base_url=config.inference.base_url,
            vector_store_id=config.index.vector_store_id,
        )
    return IndexSynchronizer(
        client,
        poll_attempts=config.index.ready_poll_attempts,
        poll_delay_seconds=config.index.ready_poll_delay_seconds,
    )


def build_pipeline(config: Settings, session_factory=async_session_maker) -> DocumentPipeline:
    inference = config.inference
    return DocumentPipeline(
        session_factory=session_factory,
        gateway=build_gateway(config),
        index_synchronizer=build_index_synchronizer(config),
        model=inference.model,
        fast_model=inference.fast_model,
        confidence_threshold=inference.classify_confidence_threshold,
        auto_metadata_after_classify=inference.auto_metadata_after_classify,
    )


class PipelineRuntimeManager:
    """Manages the pipeline and its worker pool.

    Lazily builds the pipeline on first use and keeps it around for reuse.
    """

    def __init__(self, config: Settings = settings):
        self.config = config
        self._pipeline: Optional[DocumentPipeline] = None
        self._pool: Optional[PipelineWorkerPool] = None

    def get_pipeline(self) -> DocumentPipeline:
        """Get or create the document pipeline.

        Returns:
            DocumentPipeline: Shared pipeline instance
        """
        if self._pipeline is None:
            self._pipeline = build_pipeline(self.config)
        return self._pipeline

    def get_worker_pool(self) -> PipelineWorkerPool:
        """Get or create the worker pool (not started).

        Returns:
            PipelineWorkerPool: Shared worker pool
        """
        if self._pool is None:
            self._pool = PipelineWorkerPool(
                self.get_pipeline(),
                queue_depth=self.config.worker.queue_depth,
                worker_count=self.config.worker.worker_count,
            )
        return self._pool

    def start(self) -> None:
        """Start background workers."""
        self.get_worker_pool().start()

    async def close(self) -> None:
        """Stop background workers."""
        if self._pool is not None:
            await self._pool.stop()


# Global pipeline runtime manager instance
_runtime_manager = PipelineRuntimeManager()


def get_pipeline() -> DocumentPipeline:
    """FastAPI dependency for the shared pipeline."""
    return _runtime_manager.get_pipeline()


def get_worker_pool() -> PipelineWorkerPool:
    """FastAPI dependency for the shared worker pool."""
    return _runtime_manager.get_worker_pool()


def start_pipeline_runtime() -> None:
    _runtime_manager.start()


async def close_pipeline_runtime() -> None:
    """Stop the worker pool."""
    await _runtime_manager.close()
