from __future__ import annotations

import json

import pytest

from audit_api.models.suggestions import SuggestionLabelEnum
from audit_api.services.llm_analysis import (
    FALLBACK_CONFIDENCE,
    ImageAttachment,
    QuestionAnalyzer,
    parse_judgment,
    sources_from_chunks,
)
from audit_api.services.ranking import RankedChunk

from fakes import FakeChatClient, judgment_json, prompt_text


def _chunk(index: int, content: str, name: str | None = "policy.txt", score: float = 0.5) -> RankedChunk:
    return RankedChunk(
        id=f"chunk-{index}",
        content=content,
        document_id=f"doc-{index}",
        document_name=name,
        relevance_score=score,
    )


def _images(count: int) -> list[ImageAttachment]:
    return [ImageAttachment(name=f"diagram-{index}.png", file_type="png", data=b"\x89PNG") for index in range(count)]


def test_reply_without_json_falls_back() -> None:
    result = parse_judgment("I cannot determine this from the excerpts.")

    assert result.label == SuggestionLabelEnum.INSUFFICIENT_INFO
    assert result.confidence == FALLBACK_CONFIDENCE
    assert result.reasoning == "I cannot determine this from the excerpts."
    assert result.parsed is False


def test_json_embedded_in_prose_is_parsed_and_normalised() -> None:
    raw = 'Here is my answer: {"assessment": "partial", "confidence": 1.7, "reasoning": "Only backups are covered."} Hope it helps.'

    result = parse_judgment(raw)

    assert result.parsed is True
    assert result.label == SuggestionLabelEnum.PARTIAL
    assert result.confidence == 1.0
    assert result.reasoning == "Only backups are covered."


def test_braces_inside_strings_do_not_break_extraction() -> None:
    raw = '{"assessment": "YES", "confidence": 0.8, "reasoning": "Section {4.2} covers it"} trailing }'

    result = parse_judgment(raw)

    assert result.label == SuggestionLabelEnum.YES
    assert result.reasoning == "Section {4.2} covers it"


@pytest.mark.parametrize(
    "label,expected",
    [
        ("yes", SuggestionLabelEnum.YES),
        ("No", SuggestionLabelEnum.NO),
        ("insufficient info", SuggestionLabelEnum.INSUFFICIENT_INFO),
        ("Mostly compliant", SuggestionLabelEnum.INSUFFICIENT_INFO),
    ],
)
def test_labels_are_normalised(label: str, expected: SuggestionLabelEnum) -> None:
    assert parse_judgment(json.dumps({"assessment": label, "confidence": 0.4})).label == expected


def test_unusable_confidence_uses_fallback_value() -> None:
    result = parse_judgment(json.dumps({"assessment": "NO", "confidence": "high"}))

    assert result.confidence == FALLBACK_CONFIDENCE
    assert parse_judgment(json.dumps({"assessment": "NO", "confidence": -3})).confidence == 0.0


def test_document_reply_aliases_are_accepted() -> None:
    raw = json.dumps(
        {
            "suggestion": "YES",
            "confidence": 0.9,
            "reasoning": "Board minutes approve the framework.",
            "evidenceDescription": "Board minutes dated March 2024.",
            "sources": [{"documentName": "minutes.pdf", "documentId": 42, "relevanceScore": 3, "excerpt": "Approved"}],
        }
    )

    result = parse_judgment(raw)

    assert result.label == SuggestionLabelEnum.YES
    assert result.evidence_description == "Board minutes dated March 2024."
    assert result.sources == [
        {"document_name": "minutes.pdf", "document_id": "42", "relevance_score": 1.0, "excerpt": "Approved"}
    ]


def test_prompt_lists_sources_in_rank_order() -> None:
    analyzer = QuestionAnalyzer(FakeChatClient())

    prompt = analyzer.build_prompt(
        "Are backups tested?",
        [_chunk(1, "Backups are restored monthly."), _chunk(2, "Restore drills.", name=None)],
        additional_context="Focus on the 2024 policy.",
    )

    assert "DORA Requirement/Question:\nAre backups tested?" in prompt
    assert "[Source 1: policy.txt]\nBackups are restored monthly.\n\n---\n\n[Source 2: Unknown document]" in prompt
    assert "Focus on the 2024 policy." in prompt


def test_analyze_returns_parsed_result_with_chunk_sources() -> None:
    chat = FakeChatClient(lambda system, content: judgment_json("NO", 0.3, "No testing evidence."))
    analyzer = QuestionAnalyzer(chat, max_output_tokens=321, excerpt_length=10)

    result = analyzer.analyze("Are backups tested?", [_chunk(1, "Backups are restored monthly.", score=0.123456)])

    assert result is not None
    assert result.label == SuggestionLabelEnum.NO
    assert result.key_findings == ["Policy approved by the board"]
    assert result.sources == [
        {"document_id": "doc-1", "document_name": "policy.txt", "relevance_score": 0.1235, "excerpt": "Backups ar..."}
    ]
    assert chat.calls[0]["max_tokens"] == 321
    assert isinstance(chat.calls[0]["content"], str)


def test_analyze_returns_none_when_provider_fails() -> None:
    analyzer = QuestionAnalyzer(FakeChatClient(lambda system, content: RuntimeError("rate limited")))

    assert analyzer.analyze("Are backups tested?", [_chunk(1, "Backups.")]) is None


def test_images_are_capped_and_captioned() -> None:
    chat = FakeChatClient()
    analyzer = QuestionAnalyzer(chat, max_images=5)

    analyzer.analyze("Is there a network diagram?", [_chunk(1, "Network overview.")], images=_images(7))

    content = chat.calls[0]["content"]
    image_parts = [part for part in content if part["type"] == "image_url"]
    assert len(image_parts) == 5
    assert image_parts[0]["image_url"]["url"].startswith("data:image/png;base64,")
    assert "[Above image: diagram-4.png]" in prompt_text(content)
    assert "diagram-5.png" not in prompt_text(content)


def test_analyze_documents_falls_back_to_supplied_sources() -> None:
    chat = FakeChatClient()
    analyzer = QuestionAnalyzer(chat)
    fallback = [{"document_id": "doc-9", "document_name": "diagram.png", "relevance_score": 0.7, "excerpt": "Image file: diagram.png"}]

    result = analyzer.analyze_documents(
        "Is there a network diagram?",
        [],
        images=_images(2),
        fallback_sources=fallback,
    )

    assert result is not None
    assert result.sources == fallback
    text = prompt_text(chat.calls[0]["content"])
    assert "The following 2 image(s) are also provided for analysis" in text
    assert "- Image 2: diagram-1.png" in text
    assert "Available Text Documents" not in text


def test_analyze_documents_keeps_model_sources() -> None:
    reply = json.dumps(
        {
            "suggestion": "PARTIAL",
            "confidence": 0.6,
            "reasoning": "Partially covered.",
            "sources": [{"documentName": "policy.txt", "relevanceScore": 0.8, "excerpt": "Backups"}],
        }
    )
    analyzer = QuestionAnalyzer(FakeChatClient(lambda system, content: reply))

    result = analyzer.analyze_documents("Are backups tested?", [_chunk(1, "Backups are restored monthly.")])

    assert result is not None
    assert [source["document_name"] for source in result.sources] == ["policy.txt"]
    assert result.sources[0]["relevance_score"] == 0.8


def test_sources_from_chunks_keeps_short_excerpts_intact() -> None:
    assert sources_from_chunks([_chunk(1, "short")])[0]["excerpt"] == "short"
