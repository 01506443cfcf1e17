"""Health check API endpoints."""

from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from argus.core.config import settings
from argus.core.database import db_client
from argus.core.pipeline_runtime import get_worker_pool
from argus.services.pipeline.worker_pool import PipelineWorkerPool
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Health check status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    database: Optional[dict[str, Any]] = Field(None, description="Database health details")
    queue_size: int = Field(0, description="Pipeline passes waiting in the background queue")


@router.get(
    "",
    response_model=HealthCheckResponse,
    summary="Health check endpoint",
    description="Check if the service is running and healthy",
    operation_id="get_service_health_status",
)
async def health_check(
    worker_pool: Annotated[PipelineWorkerPool, Depends(get_worker_pool)],
) -> HealthCheckResponse:
    """Health check endpoint."""
    db_health = await db_client.health_check()

    return HealthCheckResponse(
        status="healthy" if db_health["status"] == "healthy" else "degraded",
        version=settings.app_version,
        service=settings.app_name,
        database=db_health,
        queue_size=worker_pool.queue_size,
    )
