"""Document pipeline orchestration and background workers."""

from argus.services.pipeline.document_pipeline import BatchResult, DocumentPipeline, PassResult
from argus.services.pipeline.worker_pool import PipelineWorkerPool

__all__ = [
    "BatchResult",
    "DocumentPipeline",
    "PassResult",
    "PipelineWorkerPool",
]
