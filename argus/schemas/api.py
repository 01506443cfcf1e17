"""Common API envelope, error and request/response models."""

from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ResponseMeta(BaseModel):
    """Metadata attached to every API response."""

    timestamp: datetime
    request_id: str
    api_version: str = "v1"


class ApiResponse(BaseModel):
    """Standard success envelope."""

    status: bool = True
    message: str = "Operation successful"
    data: dict[str, Any] = Field(default_factory=dict)
    meta: Optional[ResponseMeta] = None


class ErrorDetail(BaseModel):
    """Problem details for HTTP APIs (RFC 7807)."""

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: Optional[datetime] = None


# Documents


class DocumentCreateRequest(BaseModel):
    """Upload-time stub. At least one of ``file_ref`` or ``transcript`` should be set."""

    file_ref: Optional[str] = Field(default=None, description="Storage reference the inference service reads")
    file_name: Optional[str] = None
    external_ref: Optional[str] = Field(default=None, description="Index key; defaults to file_ref")
    document_type: Optional[str] = Field(default=None, description="Declared type, unclassified when omitted")
    transcript: Optional[str] = None
    run_pipeline: bool = Field(default=True, description="Queue a pipeline pass after creation")


class DocumentTypeUpdateRequest(BaseModel):
    document_type: str


class DocumentResponse(BaseModel):
    id: UUID
    external_ref: Optional[str] = None
    file_ref: Optional[str] = None
    file_name: Optional[str] = None
    document_type: str
    encounter_date: Optional[date] = None
    provider_name: Optional[str] = None
    clinic_or_facility: Optional[str] = None
    is_active: bool
    needs_metadata: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Pipeline admin


class ModuleRebuildRequest(BaseModel):
    scope: str = Field(default="missing", pattern="^(missing|all)$")
    limit: Optional[int] = Field(default=None, ge=1)


class TaxonomyRebuildRequest(BaseModel):
    category_id: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)


class TaxonomyExtractRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
