"""Text helpers used when normalizing inbound payloads."""

from __future__ import annotations

import re
from typing import Optional

from app.constants.channels import FileType

_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"</(p|div|li|tr|h[1-6])\s*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# &amp; must be last so "&amp;lt;" decodes to "&lt;" and not "<"
_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def html_to_text(html: Optional[str]) -> str:
    """Reduce an HTML email body to plain text.

    >>> html_to_text("<p>Hi &amp; welcome</p>")
    'Hi & welcome'
    """
    if not html:
        return ""
    text = _BREAK_RE.sub("\n", html)
    text = _BLOCK_END_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def classify_file_type(mime_type: Optional[str]) -> FileType:
    if not mime_type:
        return FileType.OTHER
    mime_type = mime_type.lower()
    if mime_type.startswith("image/"):
        return FileType.IMAGE
    if mime_type.startswith("video/"):
        return FileType.VIDEO
    if mime_type.startswith("audio/"):
        return FileType.AUDIO
    if "pdf" in mime_type or "document" in mime_type:
        return FileType.DOCUMENT
    return FileType.OTHER
