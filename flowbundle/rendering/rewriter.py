"""Reference rewriting for stored HTML documents.

A bundle's pages reference their assets by relative path ("libs/app.css",
"./img/logo.png"). The storage bucket is private, so before a page is
served every such reference is replaced by a signed URL for the matching
stored file:

  1. build a path → signed URL map from the version's files
  2. parse the page with BeautifulSoup
  3. rewrite href/src/data attributes of link, script, img, a, source,
     object and embed elements
  4. rewrite url(...) and @import "..." inside <style> blocks and style=""
     attributes
  5. serialize the tree

References that are absolute (http:, https:, //, data:, blob:,
javascript:, #) are never touched. References with no matching file, and
files whose URL could not be signed, are left as they are.
"""

import logging
import re
from collections.abc import Iterable
from typing import Optional
from urllib.parse import unquote

from bs4 import BeautifulSoup

from flowbundle.db.models import File
from flowbundle.storage.gateway import DEFAULT_SIGNED_URL_EXPIRY, StorageGateway

logger = logging.getLogger(__name__)

ABSOLUTE_PREFIXES = ("http://", "https://", "//", "data:", "blob:", "javascript:", "#")

# (element, attribute) pairs whose value is a reference to a bundle member
ATTRIBUTE_TARGETS: tuple[tuple[str, str], ...] = (
    ("link", "href"),
    ("script", "src"),
    ("img", "src"),
    ("a", "href"),
    ("source", "src"),
    ("object", "data"),
    ("embed", "src"),
)

CSS_URL_RE = re.compile(r"""url\(\s*['"]?([^)"']+)['"]?\s*\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)


def is_absolute(reference: str) -> bool:
    return reference.startswith(ABSOLUTE_PREFIXES)


def normalize_reference(reference: str) -> str:
    """Map a raw reference onto the key space of the URL map.

    Strips one leading "./" and cuts a query string or fragment that does
    not start the reference.
    """
    normalized = reference
    if normalized.startswith("./"):
        normalized = normalized[2:]

    query = normalized.find("?")
    if query > 0:
        normalized = normalized[:query]

    fragment = normalized.find("#")
    if fragment > 0:
        normalized = normalized[:fragment]

    return normalized


def build_url_map(
    files: Iterable[File],
    signer: StorageGateway,
    expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
) -> dict[str, str]:
    """Sign every stored file once and index the URL by its original path.

    Each file is reachable as "p" and "./p". A file that cannot be signed
    is logged and left out, so references to it stay unrewritten.
    """
    url_map: dict[str, str] = {}
    for f in files:
        if not f.storage_path:
            continue
        try:
            signed_url = signer.sign(f.storage_path, expires_in)
        except Exception as exc:
            logger.warning("Could not sign URL for %s: %s", f.original_path, exc)
            continue

        url_map[f.original_path] = signed_url
        if f.original_path.startswith("./"):
            url_map.setdefault(f.original_path[2:], signed_url)
        else:
            url_map["./" + f.original_path] = signed_url
        logger.debug("Mapped %s -> %s", f.original_path, f.storage_path)

    return url_map


def lookup(reference: str, url_map: dict[str, str]) -> Optional[str]:
    """Signed URL for a relative reference, or None when it is absolute or unknown."""
    if not reference or is_absolute(reference):
        return None
    normalized = normalize_reference(reference)
    signed_url = url_map.get(normalized)
    if signed_url is None and "%" in normalized:
        signed_url = url_map.get(unquote(normalized))
    return signed_url


def rewrite_css(css: str, url_map: dict[str, str]) -> str:
    """Replace mapped url(...) and @import "..." references inside CSS text."""

    def _replace_url(match: re.Match) -> str:
        signed_url = lookup(match.group(1).strip(), url_map)
        if signed_url is None:
            return match.group(0)
        return f"url('{signed_url}')"

    def _replace_import(match: re.Match) -> str:
        signed_url = lookup(match.group(2).strip(), url_map)
        if signed_url is None:
            return match.group(0)
        return f"@import url('{signed_url}')"

    rewritten = CSS_URL_RE.sub(_replace_url, css)
    return CSS_IMPORT_RE.sub(_replace_import, rewritten)


def _rewrite_attributes(soup: BeautifulSoup, url_map: dict[str, str]) -> int:
    rewritten = 0
    for tag_name, attribute in ATTRIBUTE_TARGETS:
        for element in soup.find_all(tag_name, attrs={attribute: True}):
            original = element.get(attribute)
            signed_url = lookup(original, url_map)
            if signed_url is None:
                if original and not is_absolute(original):
                    logger.debug("No stored file for %s=%r", attribute, original)
                continue
            element[attribute] = signed_url
            rewritten += 1
    return rewritten


def _rewrite_inline_css(soup: BeautifulSoup, url_map: dict[str, str]) -> None:
    for style in soup.find_all("style"):
        css = style.string
        if not css:
            continue
        rewritten = rewrite_css(str(css), url_map)
        if rewritten != css:
            style.string = rewritten

    for element in soup.find_all(style=True):
        css = element["style"]
        rewritten = rewrite_css(css, url_map)
        if rewritten != css:
            element["style"] = rewritten


def rewrite_markup(markup: str, url_map: dict[str, str]) -> str:
    """Rewrite every mapped relative reference in an HTML document."""
    soup = BeautifulSoup(markup, "html.parser")
    count = _rewrite_attributes(soup, url_map)
    _rewrite_inline_css(soup, url_map)
    logger.debug("Rewrote %d attribute references", count)
    return str(soup)


class ReferenceRewriter:
    """Renders stored pages of one version with signed asset URLs.

    The URL map is rebuilt on every `render` call; nothing is cached
    between requests, so signed URLs are always fresh.
    """

    def __init__(
        self,
        signer: StorageGateway,
        expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
    ) -> None:
        self.signer = signer
        self.expires_in = expires_in

    def render(self, markup: str, files: Iterable[File]) -> str:
        url_map = build_url_map(files, self.signer, self.expires_in)
        return rewrite_markup(markup, url_map)


def render(
    markup: str,
    files: Iterable[File],
    signer: StorageGateway,
    expires_in: int = DEFAULT_SIGNED_URL_EXPIRY,
) -> str:
    """Convenience wrapper around `ReferenceRewriter(signer).render(...)`."""
    return ReferenceRewriter(signer, expires_in).render(markup, files)
