from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..config import AnalysisSettings, settings
from ..dependencies.identity import Actor
from ..models.documents import Document
from ..models.questions import Question
from ..models.suggestions import AISuggestion
from .analysis_jobs import (
    LOW_RELEVANCE_REASONING,
    NO_CHUNKS_MESSAGE,
    NO_CREDENTIALS_MESSAGE,
    NO_DOCUMENTS_MESSAGE,
    AnalysisPreconditionError,
)
from .embeddings import embed_text
from .llm_analysis import (
    DEFAULT_DOCUMENT_RELEVANCE,
    AnalysisResult,
    ImageAttachment,
    QuestionAnalyzer,
    sources_from_chunks,
)
from .ranking import best_score, rank_candidates
from .storage import StorageError, StorageService
from .store import append_audit_log, load_completed_documents
from .suggestions import upsert_suggestion

logger = logging.getLogger(__name__)


class QuestionNotFoundError(LookupError):
    pass


class AnalysisFailedError(RuntimeError):
    pass


@dataclass
class QuestionAnalysisOutcome:
    question: Question
    result: AnalysisResult
    suggestion: Optional[AISuggestion] = None
    documents_analyzed: int = 0
    images_analyzed: int = 0


def _load_images(storage: StorageService, documents: Sequence[Document], limit: int) -> List[ImageAttachment]:
    images: List[ImageAttachment] = []
    for document in documents:
        if len(images) >= limit:
            break
        try:
            data = storage.get(document.storage_key)
        except StorageError:
            logger.warning("Skipping image %s: blob unavailable", document.id, exc_info=True)
            continue
        images.append(
            ImageAttachment(
                name=document.display_name,
                file_type=document.file_type,
                data=data,
                document_id=str(document.id),
            )
        )
    return images


def _image_sources(images: Sequence[ImageAttachment]) -> List[dict[str, Any]]:
    return [
        {
            "document_id": image.document_id,
            "document_name": image.name,
            "relevance_score": DEFAULT_DOCUMENT_RELEVANCE,
            "excerpt": f"Image file: {image.name}",
        }
        for image in images
    ]


def analyze_question(
    db: Session,
    storage: StorageService,
    analyzer: Optional[QuestionAnalyzer],
    *,
    organization_id: uuid.UUID,
    question_id: str,
    actor: Actor,
    audit_id: Optional[uuid.UUID] = None,
    document_ids: Optional[Sequence[uuid.UUID]] = None,
    additional_context: Optional[str] = None,
    config: Optional[AnalysisSettings] = None,
) -> QuestionAnalysisOutcome:
    """Judge a single question against the organization's completed documents.

    Text chunks are ranked against the question; image documents are attached
    to the call as multimodal parts. When nothing ranks above the interactive
    threshold and there are no images, an INSUFFICIENT_INFO result is produced
    without calling the model.
    """
    config = config or settings.analysis

    question = db.get(Question, question_id)
    if question is None:
        raise QuestionNotFoundError(question_id)

    if analyzer is None:
        raise AnalysisPreconditionError(NO_CREDENTIALS_MESSAGE)

    corpus = load_completed_documents(
        db,
        organization_id,
        document_ids=document_ids,
        per_document_limit=config.interactive_chunks_per_document,
    )
    if not corpus.documents:
        raise AnalysisPreconditionError(NO_DOCUMENTS_MESSAGE)

    image_documents = corpus.image_documents
    if not corpus.candidates and not image_documents:
        raise AnalysisPreconditionError(NO_CHUNKS_MESSAGE)

    ranked = rank_candidates(
        embed_text(question.text, config.embedding_dimension),
        corpus.candidates,
        config.top_k,
    )
    images = _load_images(storage, image_documents, config.max_images_per_call)

    if not images and best_score(ranked) < config.interactive_relevance_threshold:
        result = AnalysisResult.insufficient(LOW_RELEVANCE_REASONING)
        origin = "low_relevance"
    else:
        result = analyzer.analyze_documents(
            question.text,
            ranked,
            images=images,
            additional_context=additional_context,
            fallback_sources=sources_from_chunks(ranked, config.excerpt_length) + _image_sources(images),
        )
        if result is None:
            raise AnalysisFailedError("AI analysis failed")
        origin = "interactive"

    suggestion = None
    if audit_id is not None:
        suggestion = upsert_suggestion(db, audit_id=audit_id, question_id=question.id, result=result, origin=origin)

    append_audit_log(
        db,
        action="AI_ANALYZE_QUESTION",
        resource="Question",
        resource_id=question.id,
        actor_id=actor.user_id,
        details={
            "audit_id": str(audit_id) if audit_id else None,
            "suggestion": result.label.value,
            "confidence": result.confidence,
            "documents_analyzed": len(corpus.text_documents),
            "images_analyzed": len(images),
        },
    )

    return QuestionAnalysisOutcome(
        question=question,
        result=result,
        suggestion=suggestion,
        documents_analyzed=len(corpus.text_documents),
        images_analyzed=len(images),
    )
