"""Pydantic schemas for flow endpoints."""

import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

FlowStatus = Literal["draft", "published", "archived", "in_review"]


class IngestReportResponse(BaseModel):
    """Outcome of ingesting an upload into a version."""

    succeeded: int
    failed: int
    ignored: int = 0
    errors: list[str] = Field(default_factory=list)


class SectorResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None


class FlowResponse(BaseModel):
    """Response schema for a single flow."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    code: str
    status: FlowStatus
    sector: Optional[SectorResponse] = None
    published_by_id: Optional[int] = None
    published_by_name: Optional[str] = None
    current_version: int
    views: int
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class FlowDetailResponse(FlowResponse):
    """GET /flows/{id}: adds a signed link to the flow's main document."""

    current_version_id: Optional[uuid.UUID] = None
    document_url: Optional[str] = Field(
        default=None,
        description="Signed URL of the current version's primary document, "
        "or null when there is none or it could not be signed.",
    )


class FlowPublishResponse(FlowResponse):
    """POST /flows: includes the ingest report of the uploaded bundle."""

    current_version_id: Optional[uuid.UUID] = None
    ingest: Optional[IngestReportResponse] = None


class FlowListResponse(BaseModel):
    flows: list[FlowResponse]
    total: int
    page: int
    size: int


class VersionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    flow_id: uuid.UUID
    number: int
    notes: Optional[str] = None
    created_at: datetime


class VersionPublishResponse(VersionResponse):
    ingest: IngestReportResponse
