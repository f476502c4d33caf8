"""Filter for operating-system noise found in user-built zip archives."""


def should_ignore(path: str) -> bool:
    """Return True for archive members that must never be stored.

    Covers macOS resource forks (`__MACOSX/`) and Finder metadata
    (`.DS_Store`), plus Windows `Thumbs.db` and `desktop.ini`, at the
    archive root or in any folder.
    """
    if path.startswith("__MACOSX/") or "/.DS_Store" in path:
        return True
    if path.endswith(".DS_Store"):
        return True
    if path == "Thumbs.db" or path.endswith("/Thumbs.db"):
        return True
    if path == "desktop.ini" or path.endswith("/desktop.ini"):
        return True
    return False
