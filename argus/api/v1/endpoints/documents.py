from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.database import get_async_session as get_session
from argus.core.exceptions import AppError
from argus.core.pipeline_runtime import get_pipeline, get_worker_pool
from argus.schemas.api import ApiResponse, DocumentCreateRequest, DocumentTypeUpdateRequest
from argus.services.document_service import DocumentService
from argus.services.pipeline.document_pipeline import DocumentPipeline
from argus.services.pipeline.worker_pool import PipelineWorkerPool
from argus.utils.logging import get_logger
from argus.utils.responses import create_api_response, http_error_for

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_document_service(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    pipeline: Annotated[DocumentPipeline, Depends(get_pipeline)],
) -> DocumentService:
    return DocumentService(db_session, pipeline.index_synchronizer)


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a document stub",
    operation_id="create_document",
)
async def create_document(
    request: Request,
    payload: DocumentCreateRequest,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
    worker_pool: Annotated[PipelineWorkerPool, Depends(get_worker_pool)],
) -> ApiResponse:
    """Create the upload-time record and optionally queue its first pass."""
    try:
        document = await document_service.create_document(
            file_ref=payload.file_ref,
            file_name=payload.file_name,
            external_ref=payload.external_ref,
            document_type=payload.document_type,
            transcript=payload.transcript,
        )
    except AppError as e:
        raise http_error_for(e, request)

    queued = False
    if payload.run_pipeline:
        try:
            worker_pool.submit(document.id)
            queued = True
        except AppError as e:
            # The stub stays flagged and is picked up by a later pass
            LOGGER.warning(
                "Pipeline pass not queued for new document",
                extra={"document_id": str(document.id), "error": str(e)},
            )

    return create_api_response(
        data={"document": document.model_dump(mode="json"), "queued": queued},
        message="Document created",
        request=request,
    )


@router.get(
    "/{document_id}",
    response_model=ApiResponse,
    summary="Get document details",
    operation_id="get_document",
)
async def get_document(
    request: Request,
    document_id: UUID,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
) -> ApiResponse:
    try:
        document = await document_service.get_document(document_id)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=document,
        message="Document details retrieved successfully",
        request=request,
    )


@router.patch(
    "/{document_id}/type",
    response_model=ApiResponse,
    summary="Change the declared document type",
    operation_id="change_document_type",
)
async def change_document_type(
    request: Request,
    document_id: UUID,
    payload: DocumentTypeUpdateRequest,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
) -> ApiResponse:
    try:
        document = await document_service.change_document_type(document_id, payload.document_type)
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=document,
        message="Document type updated",
        request=request,
    )


@router.delete(
    "/{document_id}",
    response_model=ApiResponse,
    summary="Deactivate or permanently delete a document",
    operation_id="delete_document",
)
async def delete_document(
    request: Request,
    document_id: UUID,
    document_service: Annotated[DocumentService, Depends(get_document_service)],
    hard: bool = Query(False, description="Remove the document with its projections and terms"),
) -> ApiResponse:
    try:
        if hard:
            await document_service.hard_delete(document_id)
            data = {"document_id": str(document_id), "deleted": True}
        else:
            document = await document_service.soft_delete(document_id)
            data = {"document": document.model_dump(mode="json"), "deleted": False}
    except AppError as e:
        raise http_error_for(e, request)

    return create_api_response(
        data=data,
        message="Document deleted" if hard else "Document deactivated",
        request=request,
    )
