"""Archive ingestion engine.

Walks the members of an uploaded zip archive in container order and turns
each content member into a stored File of the target version:

  1. skip directory markers and OS noise (`should_ignore`)
  2. read the member fully into memory
  3. classify it by extension
  4. upload it under `{prefix}/{flow_code}/{name}_{suffix}{ext}`
  5. record a File keyed by the member's full original path, with a UTF-8
     snapshot of the document for markup members

A failing member (corrupt data, undecodable markup, rejected upload,
duplicate path) is logged and counted; the walk always continues. Only an
archive that cannot be opened at all raises `ArchiveUnreadable`.
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.core.errors import ArchiveUnreadable, EntryProcessingFailed
from flowbundle.db.models import File, Version
from flowbundle.ingestion.classifier import ContentKind, classify, is_known_extension
from flowbundle.ingestion.ignore import should_ignore
from flowbundle.storage.gateway import StorageGateway, build_storage_key

logger = logging.getLogger(__name__)


@dataclass
class IngestReport:
    """Outcome of one archive walk. Used for logging and API responses only."""

    succeeded: int = 0
    failed: int = 0
    ignored: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return self.failed > 0 and self.succeeded == 0

    def to_dict(self) -> dict:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "ignored": self.ignored,
            "errors": list(self.errors),
        }


def _dedup_key(path: str) -> str:
    return path[2:] if path.startswith("./") else path


class ArchiveIngestor:
    """Stores bundle members for one version through a storage gateway.

    Records are added to the given session; committing is left to the
    caller so a publish lands atomically.
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: StorageGateway,
        storage_prefix: str,
    ) -> None:
        self.db = db
        self.storage = storage
        self.storage_prefix = storage_prefix

    async def ingest(
        self,
        archive: Union[bytes, BinaryIO],
        version: Version,
        flow_code: str,
    ) -> IngestReport:
        """Extract every content member of `archive` into `version`.

        Raises:
            ArchiveUnreadable: If the container is not a readable zip file.
        """
        source = io.BytesIO(archive) if isinstance(archive, (bytes, bytearray)) else archive
        try:
            zf = zipfile.ZipFile(source)
        except (zipfile.BadZipFile, OSError, ValueError) as exc:
            logger.error("Could not open archive for version %s: %s", version.id, exc)
            raise ArchiveUnreadable(f"Archive could not be opened: {exc}") from exc

        report = IngestReport()
        seen = await self._existing_paths(version)

        with zf:
            for position, info in enumerate(zf.infolist()):
                name = info.filename
                if not name or info.is_dir():
                    continue
                if should_ignore(name):
                    logger.debug("Ignoring system file: %s", name)
                    report.ignored += 1
                    continue

                try:
                    self._check_duplicate(name, seen)
                    content = self._read_member(zf, info)
                    await self._store_member(name, content, version, flow_code, position)
                except Exception as exc:
                    failure = exc if isinstance(exc, EntryProcessingFailed) else EntryProcessingFailed(name, exc)
                    logger.error("Failed to process archive member %s", failure)
                    report.failed += 1
                    report.errors.append(str(failure))
                    continue

                seen.add(_dedup_key(name))
                report.succeeded += 1

        await self.db.flush()

        logger.info(
            "Archive ingested for flow %s version %s: %d stored, %d failed, %d ignored",
            flow_code, version.number, report.succeeded, report.failed, report.ignored,
        )
        if report.all_failed:
            logger.warning(
                "Every member of the archive for flow %s version %s failed",
                flow_code, version.number,
            )
        return report

    async def store_single_file(
        self,
        content: bytes,
        file_name: str,
        version: Version,
        flow_code: str,
        declared_mime: Optional[str] = None,
    ) -> File:
        """Store a non-archive upload (a lone HTML page or PDF) as the version's only file.

        The client-declared content type is used only for extensions the
        classifier does not know. A markup page that is not valid UTF-8
        is kept with replacement characters in its snapshot, since there is
        no other member to fall back to.
        """
        mime_type = None
        if not is_known_extension(file_name) and declared_mime:
            mime_type = declared_mime
        stored = await self._store_member(
            file_name, content, version, flow_code, 0, mime_type, decode_errors="replace"
        )
        await self.db.flush()
        logger.info("Stored single file %s for flow %s -> %s", file_name, flow_code, stored.storage_path)
        return stored

    async def _existing_paths(self, version: Version) -> set[str]:
        if version.id is None:
            return set()
        result = await self.db.execute(
            select(File.original_path).where(File.version_id == version.id)
        )
        return {_dedup_key(p) for p in result.scalars().all()}

    @staticmethod
    def _check_duplicate(name: str, seen: set[str]) -> None:
        # First occurrence of a path wins; later ones never reach storage.
        if _dedup_key(name) in seen:
            raise EntryProcessingFailed(name, ValueError("duplicate path in archive"))

    @staticmethod
    def _read_member(zf: zipfile.ZipFile, info: zipfile.ZipInfo) -> bytes:
        with zf.open(info) as member:
            return member.read()

    async def _store_member(
        self,
        name: str,
        content: bytes,
        version: Version,
        flow_code: str,
        position: int,
        mime_override: Optional[str] = None,
        decode_errors: str = "strict",
    ) -> File:
        classification = classify(name)
        mime_type = mime_override or classification.mime_type

        html_content = None
        if classification.kind is ContentKind.MARKUP:
            html_content = content.decode("utf-8", errors=decode_errors)

        key = build_storage_key(self.storage_prefix, flow_code, name)
        storage_path = self.storage.upload(content, key, mime_type)

        stored = File(
            version_id=version.id,
            original_path=name,
            position=position,
            storage_path=storage_path,
            kind=classification.kind.value,
            size_bytes=len(content),
            mime_type=mime_type,
            html_content=html_content,
        )
        self.db.add(stored)
        logger.debug("Processed member %s -> %s", name, storage_path)
        return stored
