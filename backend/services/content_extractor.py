"""
Content Extractor - pulls title, subtitle and plain-text sections out of the
semi-structured markup produced by the document renderers.

Only the small entity table below is decoded; any other entity becomes a single
space. Section containers must not nest other <div> elements.
"""
import re
from typing import Optional

from services.document_content import DocumentContent

DEFAULT_TITLE = "DOCUMENT"

MARKUP_ENTITIES = {
    "&nbsp;": " ",
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
}

_ENTITY_RE = re.compile(r"&[a-zA-Z#0-9]+;")
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_SECTION_RE = re.compile(
    r"<div[^>]*class=[\"'][^\"']*\bsection\b[^\"']*[\"'][^>]*>(.*?)</div>",
    re.IGNORECASE | re.DOTALL,
)


def unescape_entities(text: str) -> str:
    return _ENTITY_RE.sub(lambda m: MARKUP_ENTITIES.get(m.group(0), " "), text)


def markup_to_text(fragment: str) -> str:
    """Strip tags, decode entities, collapse whitespace."""
    text = unescape_entities(_TAG_RE.sub(" ", fragment))
    return _WHITESPACE_RE.sub(" ", text).strip()


def _first_tag_text(markup: str, tag: str) -> str:
    match = re.search(rf"<{tag}\b[^>]*>(.*?)</{tag}>", markup, re.IGNORECASE | re.DOTALL)
    return markup_to_text(match.group(1)) if match else ""


def extract(markup: str, default_title: Optional[str] = None) -> DocumentContent:
    markup = markup or ""
    title = _first_tag_text(markup, "h1") or default_title or DEFAULT_TITLE
    subtitle = _first_tag_text(markup, "h2")
    sections = []
    for match in _SECTION_RE.finditer(markup):
        text = markup_to_text(match.group(1))
        if text:
            sections.append(text)
    return DocumentContent(title=title, subtitle=subtitle, sections=sections)
