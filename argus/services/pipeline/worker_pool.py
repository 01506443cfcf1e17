"""Bounded background worker pool for fire-and-forget pipeline passes."""

import asyncio
from typing import List, Optional
from uuid import UUID

from argus.core.exceptions import DocumentNotFoundError, PipelineQueueFullError
from argus.services.pipeline.document_pipeline import DocumentPipeline
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PipelineWorkerPool:
    """Fixed number of workers draining a bounded queue of document ids.

    Submissions beyond ``queue_depth`` are rejected immediately so callers can
    apply backpressure instead of queueing without limit.
    """

    def __init__(self, pipeline: DocumentPipeline, queue_depth: int = 100, worker_count: int = 2):
        self.pipeline = pipeline
        self.queue_depth = max(1, queue_depth)
        self.worker_count = max(1, worker_count)
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_size(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_depth)
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"pipeline-worker-{index}")
            for index in range(self.worker_count)
        ]
        LOGGER.info(
            "Pipeline worker pool started",
            extra={"worker_count": self.worker_count, "queue_depth": self.queue_depth},
        )

    async def stop(self) -> None:
        """Cancel the workers. Queued documents stay flagged for a later pass."""
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            LOGGER.info("Pipeline worker pool stopped", extra={"dropped": self.queue_size})
        self._queue = None

    def submit(self, document_id: UUID) -> int:
        """Enqueue a pass and return the queue size after submission.

        Raises:
            PipelineQueueFullError: If the queue is at capacity or the pool is not running
        """
        if self._queue is None:
            raise PipelineQueueFullError("Pipeline worker pool is not running")
        try:
            self._queue.put_nowait(document_id)
        except asyncio.QueueFull as e:
            LOGGER.warning(
                "Pipeline queue full, submission rejected",
                extra={"document_id": str(document_id), "queue_depth": self.queue_depth},
            )
            raise PipelineQueueFullError(f"Pipeline queue is full ({self.queue_depth})", e) from e
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every queued pass has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, index: int) -> None:
        queue = self._queue
        while True:
            document_id = await queue.get()
            try:
                await self.pipeline.run_document(document_id)
            except DocumentNotFoundError:
                LOGGER.warning("Queued document no longer exists", extra={"document_id": str(document_id)})
            except Exception as e:
                LOGGER.error(
                    "Background pipeline pass failed",
                    exc_info=True,
                    extra={"document_id": str(document_id), "worker": index, "error": str(e)},
                )
            finally:
                queue.task_done()
