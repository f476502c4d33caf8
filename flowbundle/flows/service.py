"""Flow service layer.

A flow is published once and then grows by versions:

    publish_flow     -> Flow (draft) + Version 1 + ingested files
    publish_version  -> Version current+1 + ingested files, current bumped
    update_status    -> draft / published / archived / in_review
    delete_flow      -> storage objects of every file, then the records

Uploads ending in `.zip` go through `ArchiveIngestor.ingest`; anything else
is stored as the version's only file.

Only the publisher of a flow or an ADMIN may change it (`check_permission`).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Text, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from flowbundle.auth.dependencies import CurrentUser
from flowbundle.core.errors import (
    FlowNotFound,
    PermissionDenied,
    SectorNotFound,
    StorageError,
    VersionNotFound,
)
from flowbundle.db.models import File, Flow, Sector, Version
from flowbundle.ingestion.engine import ArchiveIngestor, IngestReport
from flowbundle.rendering.resolver import resolve_primary
from flowbundle.storage.gateway import DEFAULT_SIGNED_URL_EXPIRY, StorageGateway

logger = logging.getLogger(__name__)

FLOW_STATUSES = ("draft", "published", "archived", "in_review")

INITIAL_VERSION_NOTES = "Initial version"


@dataclass
class Upload:
    """An uploaded file as received from the client."""

    file_name: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def is_archive(self) -> bool:
        return self.file_name.lower().endswith(".zip")


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_flow(db: AsyncSession, flow_id: uuid.UUID) -> Flow:
    result = await db.execute(
        select(Flow).options(selectinload(Flow.sector)).where(Flow.id == flow_id)
    )
    flow = result.scalar_one_or_none()
    if flow is None:
        raise FlowNotFound(f"Flow {flow_id} not found")
    return flow


async def get_version(
    db: AsyncSession,
    flow_id: uuid.UUID,
    number: Optional[int] = None,
) -> Version:
    """Return version `number` of a flow, or its highest-numbered version.

    Raises:
        FlowNotFound: If the flow does not exist.
        VersionNotFound: If the flow has no such version (or none at all).
    """
    if await db.get(Flow, flow_id) is None:
        raise FlowNotFound(f"Flow {flow_id} not found")

    query = select(Version).where(Version.flow_id == flow_id)
    if number is None:
        query = query.order_by(Version.number.desc()).limit(1)
    else:
        query = query.where(Version.number == number)

    version = (await db.execute(query)).scalar_one_or_none()
    if version is None:
        label = "any version" if number is None else f"version {number}"
        raise VersionNotFound(f"Flow {flow_id} has no {label}")
    return version


async def get_sector_by_code(db: AsyncSession, code: str) -> Sector:
    result = await db.execute(select(Sector).where(Sector.code == code.upper()))
    sector = result.scalar_one_or_none()
    if sector is None:
        raise SectorNotFound(f"Sector {code} not found")
    return sector


def check_permission(flow: Flow, user: CurrentUser) -> None:
    """Raise PermissionDenied unless `user` published `flow` or is an ADMIN."""
    if user.is_admin or flow.published_by_id == user.id:
        return
    raise PermissionDenied(f"User {user.id} may not modify flow {flow.code}")


async def generate_code(db: AsyncSession, sector: Sector) -> str:
    """Next free flow code of a sector: RH-001, RH-002, ..."""
    count = (
        await db.execute(select(func.count(Flow.id)).where(Flow.sector_id == sector.id))
    ).scalar_one()

    number = count + 1
    while True:
        code = f"{sector.code}-{number:03d}"
        taken = await db.execute(select(Flow.id).where(Flow.code == code))
        if taken.scalar_one_or_none() is None:
            return code
        number += 1


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


async def _ingest_upload(
    db: AsyncSession,
    storage: StorageGateway,
    storage_prefix: str,
    upload: Upload,
    version: Version,
    flow_code: str,
) -> IngestReport:
    ingestor = ArchiveIngestor(db, storage, storage_prefix)
    if upload.is_archive:
        return await ingestor.ingest(upload.content, version, flow_code)

    await ingestor.store_single_file(
        upload.content, upload.file_name, version, flow_code, upload.content_type
    )
    return IngestReport(succeeded=1)


async def publish_flow(
    db: AsyncSession,
    storage: StorageGateway,
    storage_prefix: str,
    user: CurrentUser,
    *,
    title: str,
    description: Optional[str],
    sector_code: str,
    tags: Optional[list[str]] = None,
    upload: Optional[Upload] = None,
) -> tuple[Flow, Optional[IngestReport]]:
    """Create a draft flow with version 1 and ingest its upload, if any.

    Raises:
        SectorNotFound: If `sector_code` names no sector.
        ArchiveUnreadable: If a `.zip` upload cannot be opened.
        UploadFailed: If a single-file upload is rejected by storage.
    """
    sector = await get_sector_by_code(db, sector_code)
    code = await generate_code(db, sector)

    flow = Flow(
        title=title,
        description=description,
        code=code,
        status="draft",
        sector_id=sector.id,
        published_by_id=user.id,
        published_by_name=user.name or user.email,
        current_version=1,
        views=0,
        tags=list(tags or []),
    )
    db.add(flow)
    await db.flush()

    version = Version(flow_id=flow.id, number=1, notes=INITIAL_VERSION_NOTES)
    db.add(version)
    await db.flush()

    report = None
    if upload is not None:
        report = await _ingest_upload(db, storage, storage_prefix, upload, version, code)

    await db.refresh(flow, attribute_names=["sector", "created_at", "updated_at"])
    logger.info("Flow %s published by user %s", code, user.id)
    return flow, report


async def publish_version(
    db: AsyncSession,
    storage: StorageGateway,
    storage_prefix: str,
    user: CurrentUser,
    flow_id: uuid.UUID,
    upload: Upload,
    notes: Optional[str] = None,
) -> tuple[Version, IngestReport]:
    """Add version current+1 to a flow and make it the current one.

    Raises:
        FlowNotFound: If the flow does not exist.
        PermissionDenied: If `user` neither owns the flow nor is an ADMIN.
        ArchiveUnreadable: If a `.zip` upload cannot be opened.
    """
    flow = await get_flow(db, flow_id)
    check_permission(flow, user)

    version = Version(flow_id=flow.id, number=flow.current_version + 1, notes=notes)
    db.add(version)
    await db.flush()

    report = await _ingest_upload(db, storage, storage_prefix, upload, version, flow.code)

    flow.current_version = version.number
    flow.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(version, attribute_names=["created_at"])

    logger.info("Flow %s version %d published by user %s", flow.code, version.number, user.id)
    return version, report


# ---------------------------------------------------------------------------
# Queries and updates
# ---------------------------------------------------------------------------


async def list_flows(
    db: AsyncSession,
    *,
    sector_code: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    size: int = 20,
) -> tuple[list[Flow], int]:
    """Filtered page of flows, newest first, with the total match count."""
    query = select(Flow)
    if sector_code:
        query = query.join(Sector).where(Sector.code == sector_code.upper())
    if status:
        query = query.where(Flow.status == status)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(
                Flow.title.ilike(pattern),
                Flow.description.ilike(pattern),
                cast(Flow.tags, Text).ilike(pattern),
            )
        )

    total = (
        await db.execute(select(func.count()).select_from(query.subquery()))
    ).scalar_one()

    rows = await db.execute(
        query.options(selectinload(Flow.sector))
        .order_by(Flow.created_at.desc(), Flow.code.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return list(rows.scalars().all()), total


async def view_flow(db: AsyncSession, flow_id: uuid.UUID) -> Flow:
    """Fetch a flow for display and count the view."""
    flow = await get_flow(db, flow_id)
    flow.views = (flow.views or 0) + 1
    await db.flush()
    return flow


async def update_status(
    db: AsyncSession,
    user: CurrentUser,
    flow_id: uuid.UUID,
    status: str,
) -> Flow:
    if status not in FLOW_STATUSES:
        raise ValueError(f"Unknown flow status: {status}")

    flow = await get_flow(db, flow_id)
    check_permission(flow, user)

    previous = flow.status
    flow.status = status
    flow.updated_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("Flow %s status %s -> %s by user %s", flow.code, previous, status, user.id)
    return flow


async def delete_flow(
    db: AsyncSession,
    storage: StorageGateway,
    user: CurrentUser,
    flow_id: uuid.UUID,
) -> int:
    """Remove a flow's storage objects and then the flow with all its records.

    A storage object that cannot be removed is logged and left behind; the
    records are deleted regardless. Returns the number of objects removed.
    """
    flow = await get_flow(db, flow_id)
    check_permission(flow, user)

    result = await db.execute(
        select(File.storage_path).join(Version).where(Version.flow_id == flow.id)
    )
    removed = 0
    for key in result.scalars().all():
        try:
            storage.delete(key)
            removed += 1
        except StorageError as exc:
            logger.error("Could not delete storage object of flow %s: %s", flow.code, exc)

    await db.delete(flow)
    await db.flush()
    logger.info("Flow %s deleted by user %s (%d objects removed)", flow.code, user.id, removed)
    return removed


async def current_version_id(db: AsyncSession, flow: Flow) -> Optional[uuid.UUID]:
    result = await db.execute(
        select(Version.id).where(
            Version.flow_id == flow.id, Version.number == flow.current_version
        )
    )
    return result.scalar_one_or_none()


async def document_url(
    db: AsyncSession,
    storage: StorageGateway,
    flow: Flow,
    expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
) -> Optional[str]:
    """Signed URL of the document that represents the flow's current version.

    Best effort: returns None when there is nothing to link to or the URL
    cannot be signed.
    """
    result = await db.execute(
        select(File)
        .join(Version)
        .where(Version.flow_id == flow.id, Version.number == flow.current_version)
        .order_by(File.position, File.original_path)
    )
    primary = resolve_primary(list(result.scalars().all()), accept_non_markup=True)
    if primary is None:
        return None

    try:
        return storage.sign(primary.storage_path, expires_in)
    except Exception as exc:
        logger.warning("Could not sign document URL for flow %s: %s", flow.code, exc)
        return None
