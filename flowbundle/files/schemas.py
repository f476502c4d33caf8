"""Pydantic schemas for file endpoints."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FileResponse(BaseModel):
    """Metadata of one stored bundle member."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    version_id: uuid.UUID
    original_path: str
    storage_path: str
    kind: str
    size_bytes: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_at: datetime


class SignedFileResponse(FileResponse):
    """File metadata plus a time-limited download link."""

    signed_url: Optional[str] = None
    expires_in_seconds: int = 3600
    error: Optional[str] = Field(
        default=None,
        description="Set instead of signed_url when the link could not be created.",
    )


class VersionFilesResponse(BaseModel):
    flow_id: uuid.UUID
    version_id: uuid.UUID
    version_number: int
    files: list[SignedFileResponse]
    count: int
