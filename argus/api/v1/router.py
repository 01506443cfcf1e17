from fastapi import APIRouter

from argus.api.v1.endpoints import documents, health, pipeline

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(pipeline.router, prefix="/pipeline", tags=["Pipeline"])

__all__ = ["api_router"]
