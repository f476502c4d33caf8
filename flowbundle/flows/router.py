"""Flow endpoints.

Publishing takes a multipart upload: a `.zip` bundle is ingested member by
member, any other file is stored as the version's single document. Domain
errors raised by the service layer are translated by the exception
handlers registered in `flowbundle.main`.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.auth.dependencies import (
    ROLE_ADMIN,
    ROLE_EMPLOYEE,
    ROLE_SECTOR_LEAD,
    CurrentUser,
    get_current_user,
    require_roles,
)
from flowbundle.core.config import Settings, get_settings
from flowbundle.core.limiter import limiter
from flowbundle.db.session import get_db
from flowbundle.flows import service
from flowbundle.flows.schemas import (
    FlowDetailResponse,
    FlowListResponse,
    FlowPublishResponse,
    FlowResponse,
    FlowStatus,
    IngestReportResponse,
    VersionPublishResponse,
)
from flowbundle.storage.gateway import StorageGateway, get_storage

logger = logging.getLogger(__name__)

settings = get_settings()

router = APIRouter(prefix="/flows", tags=["flows"])

_publishers = require_roles(ROLE_ADMIN, ROLE_SECTOR_LEAD, ROLE_EMPLOYEE)
_managers = require_roles(ROLE_ADMIN, ROLE_SECTOR_LEAD)


def _parse_tags(raw: Optional[str]) -> list[str]:
    """Tags arrive as one comma-separated form field."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


async def _read_upload(file: UploadFile) -> service.Upload:
    content = await file.read()
    return service.Upload(
        file_name=file.filename or "upload",
        content=content,
        content_type=file.content_type,
    )


@router.post(
    "",
    response_model=FlowPublishResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.publish_rate_limit)
async def publish_flow(
    request: Request,
    title: str = Form(..., min_length=1),
    description: Optional[str] = Form(default=None),
    sector_code: str = Form(...),
    tags: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    app_settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(_publishers),
) -> FlowPublishResponse:
    """Publish a new flow, optionally with its bundle or document.

    The flow starts as a draft with version 1. The response carries the
    ingest report so clients can show members that failed to upload.
    """
    upload = await _read_upload(file) if file is not None and file.filename else None

    flow, report = await service.publish_flow(
        db,
        storage,
        app_settings.storage_prefix,
        user,
        title=title,
        description=description,
        sector_code=sector_code,
        tags=_parse_tags(tags),
        upload=upload,
    )

    return FlowPublishResponse(
        **FlowResponse.model_validate(flow).model_dump(),
        current_version_id=await service.current_version_id(db, flow),
        ingest=IngestReportResponse(**report.to_dict()) if report else None,
    )


@router.get("", response_model=FlowListResponse)
async def list_flows(
    sector: Optional[str] = Query(default=None, description="Sector code, e.g. RH"),
    flow_status: Optional[FlowStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, min_length=1),
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> FlowListResponse:
    """List flows, newest first, filtered by sector, status and free text."""
    flows, total = await service.list_flows(
        db,
        sector_code=sector,
        status=flow_status,
        search=search,
        page=page,
        size=size,
    )
    return FlowListResponse(
        flows=[FlowResponse.model_validate(f) for f in flows],
        total=total,
        page=page,
        size=size,
    )


@router.get("/{flow_id}", response_model=FlowDetailResponse)
async def get_flow(
    flow_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    app_settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> FlowDetailResponse:
    """Get a flow and count the view."""
    flow = await service.view_flow(db, flow_id)
    url = await service.document_url(
        db, storage, flow, app_settings.signed_url_expiry_seconds
    )
    return FlowDetailResponse(
        **FlowResponse.model_validate(flow).model_dump(),
        current_version_id=await service.current_version_id(db, flow),
        document_url=url,
    )


@router.patch("/{flow_id}/status", response_model=FlowResponse)
async def update_flow_status(
    flow_id: uuid.UUID,
    new_status: FlowStatus = Query(..., alias="status"),
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(_managers),
) -> FlowResponse:
    """Move a flow to another status. Only its publisher or an ADMIN may."""
    flow = await service.update_status(db, user, flow_id, new_status)
    return FlowResponse.model_validate(flow)


@router.post(
    "/{flow_id}/versions",
    response_model=VersionPublishResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.publish_rate_limit)
async def publish_version(
    request: Request,
    flow_id: uuid.UUID,
    file: UploadFile = File(...),
    notes: Optional[str] = Form(default=None),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    app_settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(_managers),
) -> VersionPublishResponse:
    """Publish a new version of a flow and make it the current one."""
    upload = await _read_upload(file)
    version, report = await service.publish_version(
        db, storage, app_settings.storage_prefix, user, flow_id, upload, notes
    )
    return VersionPublishResponse(
        id=version.id,
        flow_id=version.flow_id,
        number=version.number,
        notes=version.notes,
        created_at=version.created_at,
        ingest=IngestReportResponse(**report.to_dict()),
    )


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flow(
    flow_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    user: CurrentUser = Depends(_managers),
) -> None:
    """Delete a flow, its versions, its files and their storage objects."""
    await service.delete_flow(db, storage, user, flow_id)
