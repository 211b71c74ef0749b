from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import List

import pdfplumber

logger = logging.getLogger(__name__)

PDF_TYPES = frozenset({"pdf", "application/pdf"})
PLAIN_TEXT_TYPES = frozenset({"txt", "text/plain", "md", "markdown", "text/markdown"})


class TextExtractionError(Exception):
    """Raised when a document's bytes cannot be turned into text."""


class EmptyDocumentError(TextExtractionError):
    """Raised when extraction succeeds but yields no usable text."""


@dataclass
class ExtractedText:
    text: str
    page_offsets: List[int] = field(default_factory=list)

    @property
    def is_blank(self) -> bool:
        return not self.text or not self.text.strip()


def _extract_pdf(data: bytes) -> ExtractedText:
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        logger.warning("PDF text extraction failed: %s", exc)
        raise TextExtractionError("Failed to extract text from PDF") from exc

    offsets: List[int] = []
    cursor = 0
    for page_text in pages:
        offsets.append(cursor)
        cursor += len(page_text) + 1
    return ExtractedText(text="\n".join(pages), page_offsets=offsets)


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace").replace("\x00", "")


def extract_text(data: bytes, file_type: str) -> ExtractedText:
    kind = (file_type or "").lower()
    if kind in PDF_TYPES:
        return _extract_pdf(data)
    if kind in PLAIN_TEXT_TYPES:
        return ExtractedText(text=_decode(data))
    return ExtractedText(text=_decode(data))
