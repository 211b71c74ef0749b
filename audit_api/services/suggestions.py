from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..dependencies.identity import Actor
from ..models.questions import Question
from ..models.suggestions import AISuggestion, SuggestionReviewStatusEnum
from .llm_analysis import AnalysisResult
from .metrics import record_suggestion_stored
from .store import append_audit_log

logger = logging.getLogger(__name__)

REVIEWABLE_STATUSES = (SuggestionReviewStatusEnum.ACCEPTED, SuggestionReviewStatusEnum.REJECTED)


class SuggestionNotFoundError(LookupError):
    pass


def upsert_suggestion(
    db: Session,
    *,
    audit_id: uuid.UUID,
    question_id: str,
    result: AnalysisResult,
    origin: str = "llm",
) -> AISuggestion:
    """Write the judgment for (audit, question), replacing any earlier one and resetting its review."""
    existing = db.execute(
        select(AISuggestion).where(AISuggestion.audit_id == audit_id, AISuggestion.question_id == question_id)
    ).scalar_one_or_none()

    if existing is None:
        existing = AISuggestion(audit_id=audit_id, question_id=question_id)
        db.add(existing)

    existing.suggestion = result.label
    existing.confidence = result.confidence
    existing.reasoning = result.reasoning
    existing.evidence_description = result.evidence_description or None
    existing.sources = list(result.sources)
    existing.status = SuggestionReviewStatusEnum.PENDING
    existing.reviewed_at = None
    existing.reviewed_by = None
    db.flush()

    record_suggestion_stored(result.label, origin)
    return existing


def review_suggestion(
    db: Session,
    suggestion_id: uuid.UUID,
    status: SuggestionReviewStatusEnum,
    actor: Actor,
) -> AISuggestion:
    if status not in REVIEWABLE_STATUSES:
        raise ValueError("Suggestions can only be accepted or rejected")

    suggestion = db.get(AISuggestion, suggestion_id)
    if suggestion is None:
        raise SuggestionNotFoundError(str(suggestion_id))

    suggestion.status = status
    suggestion.reviewed_at = datetime.now(timezone.utc)
    suggestion.reviewed_by = actor.user_id
    db.flush()

    append_audit_log(
        db,
        action="REVIEW_AI_SUGGESTION",
        resource="AISuggestion",
        resource_id=suggestion.id,
        actor_id=actor.user_id,
        details={"status": status.value, "question_id": suggestion.question_id},
    )
    return suggestion


def serialize_suggestion(suggestion: AISuggestion, question: Question | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": str(suggestion.id),
        "audit_id": str(suggestion.audit_id),
        "question_id": suggestion.question_id,
        "suggestion": suggestion.suggestion.value,
        "confidence": suggestion.confidence,
        "reasoning": suggestion.reasoning,
        "evidence_description": suggestion.evidence_description,
        "sources": list(suggestion.sources or []),
        "status": suggestion.status.value,
        "created_at": suggestion.created_at.isoformat() if suggestion.created_at else None,
        "reviewed_at": suggestion.reviewed_at.isoformat() if suggestion.reviewed_at else None,
        "reviewed_by": suggestion.reviewed_by,
    }
    if question is not None:
        payload["question"] = {
            "id": question.id,
            "ref": question.ref,
            "text": question.text,
            "article_id": question.article_id,
            "chapter_id": question.article.chapter_id if question.article else None,
        }
    return payload


def list_suggestions(db: Session, audit_id: uuid.UUID) -> List[Dict[str, Any]]:
    suggestions = list(
        db.execute(
            select(AISuggestion)
            .where(AISuggestion.audit_id == audit_id)
            .order_by(AISuggestion.created_at.desc())
        ).scalars()
    )
    question_ids = [suggestion.question_id for suggestion in suggestions]
    questions: dict[str, Question] = {}
    if question_ids:
        questions = {
            question.id: question
            for question in db.execute(select(Question).where(Question.id.in_(question_ids))).scalars().unique()
        }
    return [serialize_suggestion(suggestion, questions.get(suggestion.question_id)) for suggestion in suggestions]
