"""File and rendering endpoints.

Stored bundle members are never served from a public bucket. Browsers get
either a short-lived signed URL (JSON or a 302 redirect), a small asset
proxied through the API, or an HTML page whose references have been
rewritten to signed URLs.
"""

import html
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.auth.dependencies import (
    ROLE_ADMIN,
    ROLE_SECTOR_LEAD,
    CurrentUser,
    get_current_user,
    require_roles,
)
from flowbundle.core.config import Settings, get_settings
from flowbundle.core.errors import FetchFailed, FileNotFound, NotFoundError, NotMarkup
from flowbundle.db.session import get_db
from flowbundle.files import service
from flowbundle.files.schemas import FileResponse, SignedFileResponse, VersionFilesResponse
from flowbundle.flows.service import get_version
from flowbundle.rendering.service import RenderService
from flowbundle.storage.gateway import StorageGateway, get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])
flow_files_router = APIRouter(prefix="/flows", tags=["rendering"])

_ASSET_CACHE_CONTROL = "public, max-age=3600"


def _error_page(title: str, message: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p></body></html>"
    )


# ---------------------------------------------------------------------------
# /files
# ---------------------------------------------------------------------------


@router.get("/{file_id}", response_model=SignedFileResponse)
async def get_file_url(
    file_id: uuid.UUID,
    expires_in: int = Query(default=3600, ge=1, le=7 * 24 * 3600),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    user: CurrentUser = Depends(get_current_user),
) -> SignedFileResponse:
    """Signed download URL and metadata for one file."""
    stored = await service.get_file(db, file_id)
    signed_url = storage.sign(stored.storage_path, expires_in)
    return SignedFileResponse(
        **FileResponse.model_validate(stored).model_dump(),
        signed_url=signed_url,
        expires_in_seconds=expires_in,
    )


@router.get("/{file_id}/download", response_class=RedirectResponse, status_code=status.HTTP_302_FOUND)
async def download_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> RedirectResponse:
    """Redirect to a signed URL for the file."""
    stored = await service.get_file(db, file_id)
    signed_url = storage.sign(stored.storage_path, settings.signed_url_expiry_seconds)
    return RedirectResponse(signed_url, status_code=status.HTTP_302_FOUND)


@router.get("/{file_id}/preview", response_class=HTMLResponse)
async def preview_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
) -> HTMLResponse:
    """The stored HTML snapshot as uploaded, references untouched."""
    stored = await service.get_file(db, file_id)
    if stored.html_content is None:
        raise NotMarkup(f"File {file_id} is not an HTML document")
    return HTMLResponse(stored.html_content)


@router.get("/{file_id}/view", response_class=HTMLResponse)
async def view_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> HTMLResponse:
    """Render one stored HTML page with signed asset URLs."""
    renderer = RenderService(db, storage, settings.signed_url_expiry_seconds)
    return HTMLResponse(await renderer.render_file(file_id))


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    user: CurrentUser = Depends(require_roles(ROLE_ADMIN, ROLE_SECTOR_LEAD)),
) -> None:
    """Delete a file's storage object and then its record."""
    await service.delete_file(db, storage, file_id)


# ---------------------------------------------------------------------------
# /flows/{flow_id}/... rendering and asset access
# ---------------------------------------------------------------------------


@flow_files_router.get(
    "/{flow_id}/versions/{version_id}/files",
    response_model=VersionFilesResponse,
)
async def list_version_files(
    flow_id: uuid.UUID,
    version_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> VersionFilesResponse:
    """Every file of a version with a signed URL each.

    A file whose URL cannot be signed is still listed, with `error` set.
    """
    version = await service.get_version_by_id(db, version_id)
    if version.flow_id != flow_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Version does not belong to this flow",
        )

    expires_in = settings.signed_url_expiry_seconds
    entries: list[SignedFileResponse] = []
    for stored in await service.files_of_version(db, version.id):
        base = FileResponse.model_validate(stored).model_dump()
        try:
            signed_url = storage.sign(stored.storage_path, expires_in)
        except Exception as exc:
            logger.warning("Could not sign URL for %s: %s", stored.original_path, exc)
            entries.append(
                SignedFileResponse(**base, expires_in_seconds=expires_in, error=str(exc))
            )
            continue
        entries.append(
            SignedFileResponse(**base, signed_url=signed_url, expires_in_seconds=expires_in)
        )

    return VersionFilesResponse(
        flow_id=flow_id,
        version_id=version.id,
        version_number=version.number,
        files=entries,
        count=len(entries),
    )


@flow_files_router.get(
    "/{flow_id}/v/{number}/files/{path:path}",
    response_class=RedirectResponse,
    status_code=status.HTTP_302_FOUND,
)
async def redirect_to_file(
    flow_id: uuid.UUID,
    number: int,
    path: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> RedirectResponse:
    """Redirect a bundle-relative path of a given version to its signed URL."""
    version = await get_version(db, flow_id, number)
    stored = service.find_by_path(await service.files_of_version(db, version.id), path)
    if stored is None:
        raise FileNotFound(f"No file {path!r} in version {number} of flow {flow_id}")

    signed_url = storage.sign(stored.storage_path, settings.signed_url_expiry_seconds)
    return RedirectResponse(signed_url, status_code=status.HTTP_302_FOUND)


async def _serve_member(
    db: AsyncSession,
    storage: StorageGateway,
    settings: Settings,
    flow_id: uuid.UUID,
    path: str,
) -> Response:
    """Serve a member of the latest version by its bundle-relative path.

    Small files are proxied inline so pages can load them from the API's
    own origin; large files, and files the proxy cannot fetch, are
    redirected to their signed URL.
    """
    version = await get_version(db, flow_id)
    stored = service.find_by_path(await service.files_of_version(db, version.id), path)
    if stored is None:
        raise FileNotFound(f"No asset {path!r} in flow {flow_id}")

    signed_url = storage.sign(stored.storage_path, settings.signed_url_expiry_seconds)

    size = stored.size_bytes or 0
    if size < settings.inline_asset_max_bytes:
        try:
            content = storage.fetch(signed_url)
        except FetchFailed as exc:
            logger.warning("Inline fetch of %s failed, redirecting: %s", stored.original_path, exc)
        else:
            return Response(
                content=content,
                media_type=stored.mime_type or "application/octet-stream",
                headers={"Cache-Control": _ASSET_CACHE_CONTROL},
            )

    return RedirectResponse(signed_url, status_code=status.HTTP_302_FOUND)


@flow_files_router.get("/{flow_id}/assets/{path:path}")
async def get_asset(
    flow_id: uuid.UUID,
    path: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> Response:
    return await _serve_member(db, storage, settings, flow_id, path)


# Exported process maps load these at run time relative to the rendered
# page, so they never pass through the rewriter.
@flow_files_router.get("/{flow_id}/libs/{path:path}")
async def get_page_library(
    flow_id: uuid.UUID,
    path: str,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> Response:
    return await _serve_member(db, storage, settings, flow_id, f"libs/{path}")


@flow_files_router.get("/{flow_id}/key.json.js")
async def get_page_key_script(
    flow_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> Response:
    return await _serve_member(db, storage, settings, flow_id, "key.json.js")


@flow_files_router.get("/{flow_id}/configuration.json.js")
async def get_page_configuration_script(
    flow_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> Response:
    return await _serve_member(db, storage, settings, flow_id, "configuration.json.js")


@flow_files_router.get("/{flow_id}/view", response_class=HTMLResponse)
async def view_flow(
    flow_id: uuid.UUID,
    version: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
    storage: StorageGateway = Depends(get_storage),
    settings: Settings = Depends(get_settings),
    user: CurrentUser = Depends(get_current_user),
) -> HTMLResponse:
    """Render a flow's entry page (latest version unless `version` is given).

    Failures come back as a small HTML page, since this URL is opened
    directly in the browser.
    """
    renderer = RenderService(db, storage, settings.signed_url_expiry_seconds)
    try:
        page = await renderer.render_primary(flow_id, version)
    except NotFoundError as exc:
        logger.info("Nothing to render for flow %s: %s", flow_id, exc)
        return HTMLResponse(
            _error_page("Flow not available", str(exc)),
            status_code=status.HTTP_404_NOT_FOUND,
        )
    except Exception:
        logger.exception("Rendering flow %s failed", flow_id)
        return HTMLResponse(
            _error_page("Could not render flow", "An unexpected error occurred while rendering this flow."),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    return HTMLResponse(page)
