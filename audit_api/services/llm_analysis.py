from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Sequence

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import settings
from ..models.suggestions import SuggestionLabelEnum
from .llm_client import ChatClient, ContentPart, MessageContent, get_chat_client
from .metrics import record_llm_call
from .ranking import RankedChunk

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.5
SOURCE_SEPARATOR = "\n\n---\n\n"
DEFAULT_EXCERPT_LENGTH = 200
DEFAULT_MAX_IMAGES = 5
MAX_DOCUMENT_CONTEXT_CHARS = 50000
DEFAULT_DOCUMENT_RELEVANCE = 0.7

IMAGE_MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}


SYSTEM = """You are an expert DORA (Digital Operational Resilience Act) compliance auditor.
Your task is to analyze organizational documents and determine if they address specific DORA requirements.

Based on the provided document excerpts, you must:
1. Determine if the organization appears to comply with the requirement (YES, NO, or PARTIAL)
2. Provide a confidence score (0.0 to 1.0) based on how clearly the documents address this requirement
3. Explain your reasoning with specific references to the source documents
4. If the documents don't contain relevant information, indicate that clearly

Always be precise and cite specific passages from the provided sources."""


USER_TMPL = """DORA Requirement/Question:
{question}
{context_section}
Relevant Document Excerpts:
{excerpts}

Please analyze whether the organization's documentation addresses this DORA requirement. Provide your response in the following JSON format:
{{
  "assessment": "YES" | "NO" | "PARTIAL" | "INSUFFICIENT_INFO",
  "confidence": 0.0-1.0,
  "reasoning": "Your detailed explanation with specific citations",
  "key_findings": ["Finding 1", "Finding 2"]
}}"""


DOCUMENT_SYSTEM = """You are a DORA (Digital Operational Resilience Act) compliance expert.
Your task is to analyze documents (including images) and determine if they provide evidence for compliance with specific DORA requirements.

Based on the provided documents and images, you must:
1. Determine if the organization complies with the requirement (YES, NO, PARTIAL, or INSUFFICIENT_INFO)
2. Provide a confidence score (0.0 to 1.0)
3. Explain your reasoning with specific references to the documents
4. Suggest what evidence description the auditor should write
5. List the specific documents that support your analysis

For images, analyze any visible text, diagrams, charts, policies, or relevant visual information.

Respond in JSON format:
{
  "suggestion": "YES" | "NO" | "PARTIAL" | "INSUFFICIENT_INFO",
  "confidence": 0.0-1.0,
  "reasoning": "Your detailed explanation with document references",
  "evidenceDescription": "Suggested description for the evidence field",
  "sources": [
    {
      "documentName": "name of document",
      "documentId": "id if available",
      "relevanceScore": 0.0-1.0,
      "excerpt": "relevant excerpt (max 200 chars)"
    }
  ]
}"""


@dataclass(frozen=True)
class ImageAttachment:
    name: str
    file_type: str
    data: bytes
    document_id: Optional[str] = None

    @property
    def media_type(self) -> str:
        return IMAGE_MEDIA_TYPES.get(self.file_type.lower(), "image/jpeg")


@dataclass
class AnalysisResult:
    label: SuggestionLabelEnum
    confidence: float
    reasoning: str
    sources: List[dict[str, Any]] = field(default_factory=list)
    evidence_description: str = ""
    key_findings: List[str] = field(default_factory=list)
    parsed: bool = True
    raw_text: str = ""

    @classmethod
    def fallback(cls, raw_text: str) -> "AnalysisResult":
        """Degraded result used when the model reply has no usable JSON object."""
        return cls(
            label=SuggestionLabelEnum.INSUFFICIENT_INFO,
            confidence=FALLBACK_CONFIDENCE,
            reasoning=raw_text,
            parsed=False,
            raw_text=raw_text,
        )

    @classmethod
    def insufficient(cls, reasoning: str) -> "AnalysisResult":
        return cls(label=SuggestionLabelEnum.INSUFFICIENT_INFO, confidence=0.0, reasoning=reasoning)


class SourceLLMOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    document_name: str = Field(default="", validation_alias=AliasChoices("documentName", "document_name"))
    document_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("documentId", "document_id"))
    relevance_score: float = Field(default=0.0, validation_alias=AliasChoices("relevanceScore", "relevance_score"))
    excerpt: str = ""

    @field_validator("document_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Optional[str]:
        return None if value in (None, "") else str(value)

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _coerce_score(cls, value: Any) -> float:
        try:
            return min(max(float(value), 0.0), 1.0)
        except (TypeError, ValueError):
            return 0.0


class JudgmentLLMOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    assessment: SuggestionLabelEnum = Field(validation_alias=AliasChoices("assessment", "suggestion"))
    confidence: float = FALLBACK_CONFIDENCE
    reasoning: str = ""
    evidence_description: str = Field(
        default="", validation_alias=AliasChoices("evidenceDescription", "evidence_description")
    )
    key_findings: List[str] = Field(default_factory=list, validation_alias=AliasChoices("key_findings", "keyFindings"))
    sources: Optional[List[SourceLLMOut]] = None

    @field_validator("assessment", mode="before")
    @classmethod
    def _normalize_label(cls, value: Any) -> str:
        label = str(value or "").strip().upper().replace(" ", "_").replace("-", "_")
        if label in SuggestionLabelEnum.__members__:
            return label
        return SuggestionLabelEnum.INSUFFICIENT_INFO.value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            return min(max(float(value), 0.0), 1.0)
        except (TypeError, ValueError):
            return FALLBACK_CONFIDENCE

    @field_validator("reasoning", "evidence_description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("key_findings", mode="before")
    @classmethod
    def _findings(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value]


def _balanced_span(text: str, start: int) -> Optional[str]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def _json_candidates(text: str) -> Iterator[str]:
    first = text.find("{")
    if first == -1:
        return
    balanced = _balanced_span(text, first)
    if balanced:
        yield balanced
    last = text.rfind("}")
    if last > first:
        widest = text[first : last + 1]
        if widest != balanced:
            yield widest


def parse_judgment(raw_text: str) -> AnalysisResult:
    """Best-effort structured parse of a model reply; never raises."""
    text = raw_text or ""
    for candidate in _json_candidates(text):
        try:
            payload = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(payload, dict):
            continue
        try:
            out = JudgmentLLMOut.model_validate(payload)
        except ValidationError:
            logger.debug("Model reply JSON did not match the judgment shape")
            continue
        result = AnalysisResult(
            label=out.assessment,
            confidence=out.confidence,
            reasoning=out.reasoning,
            evidence_description=out.evidence_description,
            key_findings=out.key_findings,
            raw_text=text,
        )
        if out.sources is not None:
            result.sources = [source.model_dump() for source in out.sources]
        return result
    return AnalysisResult.fallback(text)


def excerpt(content: str, length: int = DEFAULT_EXCERPT_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[:length] + "..."


def sources_from_chunks(chunks: Sequence[RankedChunk], excerpt_length: int = DEFAULT_EXCERPT_LENGTH) -> List[dict[str, Any]]:
    return [
        {
            "document_id": chunk.document_id,
            "document_name": chunk.document_name,
            "relevance_score": round(chunk.relevance_score, 4),
            "excerpt": excerpt(chunk.content, excerpt_length),
        }
        for chunk in chunks
    ]


def format_excerpts(chunks: Sequence[RankedChunk]) -> str:
    return SOURCE_SEPARATOR.join(
        f"[Source {index}: {chunk.document_name or 'Unknown document'}]\n{chunk.content}"
        for index, chunk in enumerate(chunks, start=1)
    )


def _context_section(additional_context: Optional[str]) -> str:
    if not additional_context or not additional_context.strip():
        return ""
    return f"\nAdditional context from the auditor (use this to guide your analysis):\n{additional_context.strip()}\n"


class QuestionAnalyzer:
    """Builds grounded prompts, calls the model and parses its judgment."""

    def __init__(
        self,
        client: ChatClient,
        *,
        max_output_tokens: int = 2048,
        max_images: int = DEFAULT_MAX_IMAGES,
        excerpt_length: int = DEFAULT_EXCERPT_LENGTH,
    ) -> None:
        self.client = client
        self.max_output_tokens = max_output_tokens
        self.max_images = max_images
        self.excerpt_length = excerpt_length

    def image_parts(self, images: Sequence[ImageAttachment]) -> List[ContentPart]:
        parts: List[ContentPart] = []
        for image in list(images)[: self.max_images]:
            encoded = base64.b64encode(image.data).decode("ascii")
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.media_type};base64,{encoded}"},
                }
            )
            parts.append({"type": "text", "text": f"[Above image: {image.name}]"})
        return parts

    def _call(self, system: str, content: MessageContent) -> Optional[str]:
        try:
            raw = self.client.complete(system, content, self.max_output_tokens)
        except Exception:
            logger.exception("LLM call failed")
            record_llm_call(False)
            return None
        record_llm_call(True)
        return raw

    def build_prompt(
        self,
        question_text: str,
        ranked_chunks: Sequence[RankedChunk],
        additional_context: Optional[str] = None,
    ) -> str:
        return USER_TMPL.format(
            question=question_text,
            context_section=_context_section(additional_context),
            excerpts=format_excerpts(ranked_chunks),
        )

    def analyze(
        self,
        question_text: str,
        ranked_chunks: Sequence[RankedChunk],
        additional_context: Optional[str] = None,
        images: Sequence[ImageAttachment] = (),
    ) -> Optional[AnalysisResult]:
        """Judge one question from ranked excerpts; ``None`` when the provider call fails."""
        prompt = self.build_prompt(question_text, ranked_chunks, additional_context)
        content: MessageContent = prompt
        if images:
            content = [{"type": "text", "text": prompt}, *self.image_parts(images)]

        raw = self._call(SYSTEM, content)
        if raw is None:
            return None

        result = parse_judgment(raw)
        result.sources = sources_from_chunks(ranked_chunks, self.excerpt_length)
        return result

    def analyze_documents(
        self,
        question_text: str,
        ranked_chunks: Sequence[RankedChunk],
        *,
        images: Sequence[ImageAttachment] = (),
        additional_context: Optional[str] = None,
        fallback_sources: Sequence[dict[str, Any]] = (),
    ) -> Optional[AnalysisResult]:
        """Richer interactive analysis that also asks for an evidence description and sources."""
        prompt = f"DORA Compliance Question:\n{question_text}{_context_section(additional_context)}\n\n"

        document_context = format_excerpts(ranked_chunks)
        if document_context:
            prompt += f"Available Text Documents:\n{document_context[:MAX_DOCUMENT_CONTEXT_CHARS]}\n\n"

        attached = list(images)[: self.max_images]
        if attached:
            prompt += f"The following {len(attached)} image(s) are also provided for analysis:\n"
            for index, image in enumerate(attached, start=1):
                prompt += f"- Image {index}: {image.name}\n"
            prompt += "\n"

        prompt += "Analyze all provided documents and images to determine compliance with the question above."

        content: List[ContentPart] = [{"type": "text", "text": prompt}, *self.image_parts(attached)]
        raw = self._call(DOCUMENT_SYSTEM, content)
        if raw is None:
            return None

        result = parse_judgment(raw)
        if not result.sources:
            result.sources = list(fallback_sources) or sources_from_chunks(ranked_chunks, self.excerpt_length)
        return result


def get_question_analyzer(db) -> Optional[QuestionAnalyzer]:
    """Analyzer for the current credentials, or ``None`` when no key is configured."""
    client = get_chat_client(db)
    if client is None:
        return None
    return QuestionAnalyzer(
        client,
        max_output_tokens=settings.llm.max_output_tokens,
        max_images=settings.analysis.max_images_per_call,
        excerpt_length=settings.analysis.excerpt_length,
    )
