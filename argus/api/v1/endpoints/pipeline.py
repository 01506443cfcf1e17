"""Pipeline API endpoints: run, rerun and admin rebuilds."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from argus.core.exceptions import AppError
from argus.core.pipeline_runtime import get_pipeline, get_worker_pool
from argus.schemas.api import ApiResponse, ModuleRebuildRequest, TaxonomyExtractRequest, TaxonomyRebuildRequest
from argus.services.pipeline.document_pipeline import DocumentPipeline
from argus.services.pipeline.worker_pool import PipelineWorkerPool
from argus.utils.logging import get_logger
from argus.utils.responses import create_api_response, http_error_for

LOGGER = get_logger(__name__)

router = APIRouter()


@router.post(
    "/documents/{document_id}/run",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run the extraction pipeline for a document",
    operation_id="run_document_pipeline",
)
async def run_document(
    request: Request,
    document_id: UUID,
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
    worker_pool: Annotated[PipelineWorkerPool, Depends(get_worker_pool)],
    wait: bool = Query(False, description="Await the full pass instead of queueing it"),
) -> ApiResponse:
    """Run a pass synchronously, or queue it and return immediately."""
    try:
        if wait:
            result = await pipeline.run_document(document_id)
            return create_api_response(
                data=result.to_dict(),
                message=f"Pipeline pass finished with status {result.status}",
                request=request,
            )

        queue_size = worker_pool.submit(document_id)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data={"document_id": str(document_id), "queued": True, "queue_size": queue_size},
        message="Pipeline pass queued",
        request=request,
    )


@router.post(
    "/documents/{document_id}/modules/{module_name}/rerun",
    response_model=ApiResponse,
    summary="Rerun one extraction module for a document",
    operation_id="rerun_document_module",
)
async def rerun_module(
    request: Request,
    document_id: UUID,
    module_name: str,
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
) -> ApiResponse:
    try:
        result = await pipeline.rerun_module(document_id, module_name)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=result.to_dict(),
        message=f"Module {module_name} rerun finished with status {result.status}",
        request=request,
    )


@router.post(
    "/modules/{module_name}/rebuild",
    response_model=ApiResponse,
    summary="Rerun one extraction module across documents",
    operation_id="rebuild_module",
)
async def rebuild_module(
    request: Request,
    module_name: str,
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
    payload: Optional[ModuleRebuildRequest] = None,
) -> ApiResponse:
    payload = payload or ModuleRebuildRequest()
    try:
        batch = await pipeline.rebuild_module(module_name, scope=payload.scope, limit=payload.limit)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=batch.to_dict(),
        message=f"Module {module_name} rebuilt for {len(batch.succeeded)} documents",
        request=request,
    )


@router.post(
    "/taxonomy/rebuild",
    response_model=ApiResponse,
    summary="Reproject and re-apply rule taxonomy across documents",
    operation_id="rebuild_rule_taxonomy",
)
async def rebuild_taxonomy(
    request: Request,
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
    payload: Optional[TaxonomyRebuildRequest] = None,
) -> ApiResponse:
    payload = payload or TaxonomyRebuildRequest()
    try:
        batch = await pipeline.rebuild_taxonomy(category_id=payload.category_id, limit=payload.limit)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=batch.to_dict(),
        message=f"Rule taxonomy rebuilt for {len(batch.succeeded)} documents",
        request=request,
    )


@router.post(
    "/taxonomy/{category_id}/extract",
    response_model=ApiResponse,
    summary="Rerun model-driven taxonomy extraction for one category",
    operation_id="extract_taxonomy_category",
)
async def extract_taxonomy_category(
    request: Request,
    category_id: str,
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
    payload: Optional[TaxonomyExtractRequest] = None,
) -> ApiResponse:
    payload = payload or TaxonomyExtractRequest()
    try:
        batch = await pipeline.extract_taxonomy_category(category_id, limit=payload.limit)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=batch.to_dict(),
        message=f"Model taxonomy for {category_id} ran over {batch.requested} documents",
        request=request,
    )
