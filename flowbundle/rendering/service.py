"""Rendering of stored flow documents with signed asset URLs.

`render_primary` picks the entry page of a flow version and
`render_file` renders one specific page; both hand the page and every
file of its version to the reference rewriter.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.core.errors import NoEntryDocument, NotMarkup
from flowbundle.files.service import files_of_version, get_file
from flowbundle.flows.service import get_version
from flowbundle.rendering.resolver import resolve_primary
from flowbundle.rendering.rewriter import ReferenceRewriter
from flowbundle.storage.gateway import DEFAULT_SIGNED_URL_EXPIRY, StorageGateway

logger = logging.getLogger(__name__)


class RenderService:
    def __init__(
        self,
        db: AsyncSession,
        storage: StorageGateway,
        expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
    ) -> None:
        self.db = db
        self.rewriter = ReferenceRewriter(storage, expires_in)

    async def render_primary(
        self,
        flow_id: uuid.UUID,
        version_number: Optional[int] = None,
    ) -> str:
        """Render the entry page of a flow version (latest when no number is given).

        Raises:
            FlowNotFound / VersionNotFound: If the flow or version does not exist.
            NoEntryDocument: If the version has no HTML page with a snapshot.
        """
        version = await get_version(self.db, flow_id, version_number)
        files = await files_of_version(self.db, version.id)

        primary = resolve_primary(files, accept_non_markup=False)
        if primary is None or primary.html_content is None:
            raise NoEntryDocument(
                f"No HTML entry document in version {version.number} of flow {flow_id}"
            )

        logger.info(
            "Rendering %s for flow %s version %d (%d files)",
            primary.original_path, flow_id, version.number, len(files),
        )
        return self.rewriter.render(primary.html_content, files)

    async def render_file(self, file_id: uuid.UUID) -> str:
        """Render one stored HTML page against the files of its own version.

        Raises:
            FileNotFound: If the file does not exist.
            NotMarkup: If the file has no HTML snapshot.
        """
        page = await get_file(self.db, file_id)
        if page.html_content is None:
            raise NotMarkup(f"File {file_id} is not an HTML document")

        files = await files_of_version(self.db, page.version_id)
        return self.rewriter.render(page.html_content, files)
