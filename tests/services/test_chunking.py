from __future__ import annotations

import pytest

from audit_api.services.chunking import TextChunk, assign_pages, chunk_text


def test_chunk_text_without_breaks_uses_fixed_windows() -> None:
    chunks = chunk_text("a" * 3200, size=1500, overlap=200)

    assert [(chunk.start_offset, chunk.end_offset) for chunk in chunks] == [
        (0, 1500),
        (1300, 2800),
        (2600, 3200),
    ]
    assert all(len(chunk.content) <= 1500 for chunk in chunks)


def test_short_text_is_a_single_chunk() -> None:
    chunks = chunk_text("Backups are tested quarterly.")

    assert len(chunks) == 1
    assert chunks[0].content == "Backups are tested quarterly."
    assert chunks[0].start_offset == 0


def test_cut_moves_back_to_sentence_end() -> None:
    text = "A" * 1000 + ". " + "b" * 1000

    first = chunk_text(text, size=1500, overlap=200)[0]

    assert first.end_offset == 1001
    assert first.content.endswith(".")


def test_break_too_early_in_window_is_ignored() -> None:
    text = "Short. " + "x" * 3000

    first = chunk_text(text, size=1500, overlap=200)[0]

    assert first.end_offset == 1500


def test_whitespace_only_text_produces_no_chunks() -> None:
    assert chunk_text("   \n\n   ") == []
    assert chunk_text("") == []


def test_chunk_count_is_bounded() -> None:
    text = "The entity maintains an ICT risk register.\n" * 400

    chunks = chunk_text(text, size=500, overlap=100)

    assert chunks
    assert len(chunks) <= len(text) // (500 // 2 - 100) + 1
    assert all(len(chunk.content) <= 500 for chunk in chunks)
    starts = [chunk.start_offset for chunk in chunks]
    assert starts == sorted(set(starts))


PROSE = (
    "The management body approves the ICT risk management framework. "
    "Roles for ICT functions are assigned and reviewed yearly. "
    "Backups are restored and tested every quarter! "
    "Major incidents are reported to the competent authority within four hours? "
) * 12
REGISTER = "".join(f"Provider {n}: cloud hosting, exit plan on file\n" for n in range(60))


@pytest.mark.parametrize(
    "text,size,overlap",
    [
        (PROSE, 1500, 200),
        (PROSE, 300, 50),
        (PROSE, 120, 90),
        (REGISTER, 500, 100),
        (REGISTER, 80, 60),
        ("abcdef.ghijk", 10, 8),
    ],
)
def test_chunks_cover_the_whole_text(text: str, size: int, overlap: int) -> None:
    chunks = chunk_text(text, size=size, overlap=overlap)

    assert chunks
    assert chunks[0].start_offset == 0
    for chunk in chunks:
        assert chunk.content == text[chunk.start_offset : chunk.end_offset].strip()
        assert len(chunk.content) <= size
    for previous, current in zip(chunks, chunks[1:]):
        assert previous.start_offset < current.start_offset
        assert text[previous.end_offset : current.start_offset].strip() == ""
    assert text[chunks[-1].end_offset :].strip() == ""


def test_large_overlap_keeps_the_tail_after_a_sentence_cut() -> None:
    chunks = chunk_text("abcdef.ghijk", size=10, overlap=8)

    assert [(chunk.content, chunk.start_offset, chunk.end_offset) for chunk in chunks] == [
        ("abcdef.", 0, 7),
        ("ghijk", 7, 12),
    ]


@pytest.mark.parametrize("size,overlap", [(0, 0), (-5, 0), (100, 100), (100, 150), (100, -1)])
def test_invalid_window_arguments_raise(size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        chunk_text("text", size=size, overlap=overlap)


def test_assign_pages_uses_page_start_offsets() -> None:
    chunks = chunk_text("a" * 3200, size=1500, overlap=200)

    paged = assign_pages(chunks, [0, 1000, 2000])

    assert [chunk.page_number for chunk in paged] == [1, 2, 3]
    assert paged[1].metadata() == {"start_offset": 1300, "end_offset": 2800, "page_number": 2}


def test_assign_pages_without_offsets_leaves_chunks_untouched() -> None:
    chunk = TextChunk(content="x", start_offset=0, end_offset=1)

    assert assign_pages([chunk], []) == [chunk]
    assert chunk.metadata() == {"start_offset": 0, "end_offset": 1}
