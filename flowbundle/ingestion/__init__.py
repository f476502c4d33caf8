"""Archive ingestion: turns uploaded bundles into stored files.

Public API:
    ArchiveIngestor(db, storage, storage_prefix).ingest(archive, version, flow_code) -> IngestReport
    classify(path) -> Classification
    should_ignore(path) -> bool
"""

from flowbundle.ingestion.classifier import Classification, ContentKind, classify
from flowbundle.ingestion.engine import ArchiveIngestor, IngestReport
from flowbundle.ingestion.ignore import should_ignore

__all__ = [
    "ArchiveIngestor",
    "IngestReport",
    "Classification",
    "ContentKind",
    "classify",
    "should_ignore",
]
