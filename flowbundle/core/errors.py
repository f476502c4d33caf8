"""Domain exceptions for bundle ingestion, storage and rendering.

Services raise these; the API layer maps them to HTTP responses in
`flowbundle.main`. Per-entry and per-reference failures are isolated by
the ingestion engine and the reference rewriter and never reach callers.
"""

from typing import Optional


class FlowBundleError(Exception):
    """Base class for every error raised by the service layer."""


class NotFoundError(FlowBundleError):
    """A looked-up record does not exist."""


class FlowNotFound(NotFoundError):
    pass


class SectorNotFound(NotFoundError):
    pass


class VersionNotFound(NotFoundError):
    pass


class FileNotFound(NotFoundError):
    pass


class NoEntryDocument(NotFoundError):
    """The version holds no document that can be rendered."""


class NotMarkup(FlowBundleError):
    """The requested file has no HTML snapshot to render."""


class PermissionDenied(FlowBundleError):
    pass


class ArchiveUnreadable(FlowBundleError):
    """The uploaded container could not be opened as a zip archive."""


class EntryProcessingFailed(FlowBundleError):
    """A single archive member could not be read, decoded or uploaded.

    Carries the member path and the original error for logging.
    """

    def __init__(self, path: str, cause: Optional[Exception] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"{path}: {cause}" if cause else path)


class StorageError(FlowBundleError):
    """Raised by the storage gateway. Carries the storage key involved."""

    def __init__(self, key: str, message: str, cause: Optional[Exception] = None):
        self.key = key
        self.cause = cause
        super().__init__(f"{message} ({key})")


class UploadFailed(StorageError):
    pass


class SigningFailed(StorageError):
    pass


class FetchFailed(StorageError):
    pass


class DeleteFailed(StorageError):
    pass
