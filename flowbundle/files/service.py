"""File record queries and removal."""

import logging
import uuid
from collections.abc import Sequence
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.core.errors import FileNotFound, VersionNotFound
from flowbundle.db.models import File, Version
from flowbundle.rendering.rewriter import normalize_reference
from flowbundle.storage.gateway import StorageGateway

logger = logging.getLogger(__name__)


async def files_of_version(db: AsyncSession, version_id: uuid.UUID) -> list[File]:
    """All files of a version in archive order (ties broken by path)."""
    result = await db.execute(
        select(File)
        .where(File.version_id == version_id)
        .order_by(File.position, File.original_path)
    )
    return list(result.scalars().all())


async def get_version_by_id(db: AsyncSession, version_id: uuid.UUID) -> Version:
    version = await db.get(Version, version_id)
    if version is None:
        raise VersionNotFound(f"Version {version_id} not found")
    return version


async def get_file(db: AsyncSession, file_id: uuid.UUID) -> File:
    stored = await db.get(File, file_id)
    if stored is None:
        raise FileNotFound(f"File {file_id} not found")
    return stored


def find_by_path(files: Sequence[File], path: str) -> Optional[File]:
    """Locate the file a request path points at.

    Tries an exact match on the original path, then a match on a trailing
    path segment ("css/app.css" finds "libs/css/app.css"), then a plain
    substring match.
    """
    wanted = normalize_reference(path)
    if not wanted:
        return None

    for f in files:
        if normalize_reference(f.original_path) == wanted:
            return f
    for f in files:
        if f.original_path.endswith("/" + wanted):
            return f
    for f in files:
        if wanted in f.original_path:
            return f
    return None


async def delete_file(db: AsyncSession, storage: StorageGateway, file_id: uuid.UUID) -> None:
    """Delete a file's storage object, then its record.

    Raises:
        FileNotFound: If no such file exists.
        DeleteFailed: If storage refuses the delete (the record is kept).
    """
    stored = await get_file(db, file_id)
    if stored.storage_path:
        storage.delete(stored.storage_path)
    await db.delete(stored)
    await db.flush()
    logger.info("File %s (%s) deleted", file_id, stored.original_path)
