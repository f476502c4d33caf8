"""Content-kind and MIME classification of bundle members by file extension.

The lookup is a single table keyed on the lower-cased final extension, so
the result never depends on check order and every name classifies to
something (unknown extensions fall through to OTHER/octet-stream).
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath


class ContentKind(str, Enum):
    MARKUP = "markup"
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    DOCUMENT = "document"
    OTHER = "other"


@dataclass(frozen=True)
class Classification:
    kind: ContentKind
    mime_type: str


DEFAULT_MIME = "application/octet-stream"

_BY_EXTENSION: dict[str, Classification] = {
    "html": Classification(ContentKind.MARKUP, "text/html"),
    "htm": Classification(ContentKind.MARKUP, "text/html"),
    "css": Classification(ContentKind.STYLESHEET, "text/css"),
    "js": Classification(ContentKind.SCRIPT, "application/javascript"),
    "pdf": Classification(ContentKind.DOCUMENT, "application/pdf"),
    # Images
    "png": Classification(ContentKind.IMAGE, "image/png"),
    "jpg": Classification(ContentKind.IMAGE, "image/jpeg"),
    "jpeg": Classification(ContentKind.IMAGE, "image/jpeg"),
    "gif": Classification(ContentKind.IMAGE, "image/gif"),
    "svg": Classification(ContentKind.IMAGE, "image/svg+xml"),
    "bmp": Classification(ContentKind.IMAGE, "image/bmp"),
    "ico": Classification(ContentKind.IMAGE, "image/x-icon"),
    "webp": Classification(ContentKind.IMAGE, "image/webp"),
    # Fonts
    "woff": Classification(ContentKind.OTHER, "font/woff"),
    "woff2": Classification(ContentKind.OTHER, "font/woff2"),
    "ttf": Classification(ContentKind.OTHER, "font/ttf"),
    "eot": Classification(ContentKind.OTHER, "application/vnd.ms-fontobject"),
    "otf": Classification(ContentKind.OTHER, "font/otf"),
    # Data
    "json": Classification(ContentKind.OTHER, "application/json"),
    "xml": Classification(ContentKind.OTHER, "application/xml"),
    # Process-model sources exported alongside the HTML
    "bpm": Classification(ContentKind.OTHER, DEFAULT_MIME),
    "bpmn": Classification(ContentKind.OTHER, DEFAULT_MIME),
}

_FALLBACK = Classification(ContentKind.OTHER, DEFAULT_MIME)


def extension_of(name: str) -> str:
    """Lower-cased final extension of a path without the dot ("" when absent)."""
    base = PurePosixPath(name.replace("\\", "/")).name
    dot = base.rfind(".")
    if dot < 0:
        return ""
    return base[dot + 1:].lower()


def classify(name: str) -> Classification:
    """Classify a member by the extension of its (original) path."""
    return _BY_EXTENSION.get(extension_of(name), _FALLBACK)


def is_known_extension(name: str) -> bool:
    return extension_of(name) in _BY_EXTENSION
