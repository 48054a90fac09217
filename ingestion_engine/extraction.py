"""
SupplementScribe Content Extraction
Reads uploaded documents as text.

`extract_text` is strict and raises ExtractionError on anything that is not
clean text; `read_as_plain_text` is the lossy fallback that always yields a
string. Layout-aware PDF scraping is handled outside this package.
"""

import codecs
import logging

from .errors import ExtractionError
from .models import SourceDocument

logger = logging.getLogger(__name__)

_BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


def _detect_encoding(content: bytes) -> str:
    for bom, encoding in _BOMS:
        if content.startswith(bom):
            return encoding
    return "utf-8"


def extract_text(document: SourceDocument) -> str:
    """Decode the document strictly. Binary or undecodable content raises."""
    if not document.content:
        raise ExtractionError(f"{document.filename} is empty", context="extract_text")

    encoding = _detect_encoding(document.content)
    try:
        text = document.content.decode(encoding)
    except UnicodeDecodeError as e:
        raise ExtractionError(
            f"{document.filename} is not valid {encoding} text: {e.reason}",
            context="extract_text",
        ) from e

    if "\x00" in text:
        raise ExtractionError(f"{document.filename} looks like binary content", context="extract_text")

    logger.debug(f"Extracted {len(text)} chars from {document.filename}")
    return text


def read_as_plain_text(document: SourceDocument) -> str:
    """Lossy fallback: undecodable bytes are replaced, NULs and control noise dropped."""
    text = document.content.decode("utf-8", errors="replace")
    cleaned = "".join(
        ch for ch in text
        if ch in "\n\r\t" or (ch.isprintable() and ch != "\ufffd")
    )
    logger.info(f"Plain-text fallback read {len(cleaned)} chars from {document.filename}")
    return cleaned
