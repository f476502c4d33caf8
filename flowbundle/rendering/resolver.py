"""Entry-point selection for a bundle version."""

from collections.abc import Sequence
from typing import Optional

from flowbundle.db.models import File


def resolve_primary(
    files: Sequence[File],
    accept_non_markup: bool = True,
) -> Optional[File]:
    """Pick the document that represents a bundle, first match wins.

    1. `index.html` at the bundle root (any case)
    2. any `.html` file at the bundle root
    3. any `.pdf` file, when non-HTML entry points are acceptable
    4. the first candidate in the order supplied

    With `accept_non_markup=False` only `.html` files are candidates, so the
    last step becomes "first HTML file anywhere in the bundle". Callers pass
    files in archive order (see `files.service.files_of_version`), which
    keeps the final tie-break deterministic.

    Returns None when there is no candidate.
    """
    candidates = list(files)
    if not accept_non_markup:
        candidates = [f for f in candidates if f.original_path.lower().endswith(".html")]
    if not candidates:
        return None

    for f in candidates:
        if f.original_path.lower() == "index.html":
            return f

    for f in candidates:
        path = f.original_path.lower()
        if path.endswith(".html") and "/" not in path:
            return f

    if accept_non_markup:
        for f in candidates:
            if f.original_path.lower().endswith(".pdf"):
                return f

    return candidates[0]
