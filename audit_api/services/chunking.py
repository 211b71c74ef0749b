from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import List, Optional, Sequence

SENTENCE_BREAKS = (".", "!", "?", "\n")


@dataclass(frozen=True)
class TextChunk:
    content: str
    start_offset: int
    end_offset: int
    page_number: Optional[int] = None
    section: Optional[str] = None

    def metadata(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
        }
        if self.page_number is not None:
            payload["page_number"] = self.page_number
        if self.section:
            payload["section"] = self.section
        return payload


def _last_break(text: str, start: int, end: int) -> int:
    return max(text.rfind(marker, start, end) for marker in SENTENCE_BREAKS)


def chunk_text(text: str, size: int = 1500, overlap: int = 200) -> List[TextChunk]:
    """Split ``text`` into overlapping windows of at most ``size`` characters.

    Cuts are moved back to the last sentence terminator or newline inside the
    window, unless doing so would leave less than half a window. Offsets are
    recorded before the content is trimmed; chunks that are empty after
    trimming are not emitted.
    """
    if size <= 0:
        raise ValueError("size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("overlap must be in [0, size)")

    chunks: List[TextChunk] = []
    length = len(text)
    start = 0

    while start < length:
        end = min(start + size, length)
        cut = end

        if end < length:
            break_point = _last_break(text, start, end)
            if break_point > start + size / 2:
                cut = break_point + 1

        content = text[start:cut].strip()
        if content:
            chunks.append(TextChunk(content=content, start_offset=start, end_offset=cut))

        next_start = max(cut - overlap, 0)
        if next_start <= start:
            # realigned cut was too short to keep the overlap and still advance
            next_start = cut
        if cut >= length:
            break
        start = next_start

    return chunks


def assign_pages(chunks: Sequence[TextChunk], page_offsets: Sequence[int]) -> List[TextChunk]:
    """Attach 1-based page numbers using the start offset of each extracted page."""
    if not page_offsets:
        return list(chunks)
    return [
        TextChunk(
            content=chunk.content,
            start_offset=chunk.start_offset,
            end_offset=chunk.end_offset,
            page_number=max(bisect_right(page_offsets, chunk.start_offset), 1),
            section=chunk.section,
        )
        for chunk in chunks
    ]
