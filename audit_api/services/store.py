"""Query helpers over the relational store used by the ingestion and analysis services."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.analysis_jobs import ACTIVE_JOB_STATUSES, AIAnalysisJob
from ..models.audit_logs import AuditLog
from ..models.documents import Document, DocumentChunk, DocumentStatusEnum
from ..models.questions import Article, Question
from ..models.suggestions import AISuggestion
from .ranking import ChunkCandidate

logger = logging.getLogger(__name__)


@dataclass
class CompletedDocuments:
    documents: List[Document]
    candidates: List[ChunkCandidate]

    @property
    def text_documents(self) -> List[Document]:
        return [doc for doc in self.documents if not doc.is_image]

    @property
    def image_documents(self) -> List[Document]:
        return [doc for doc in self.documents if doc.is_image]


def as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _question_query(chapter_id: Optional[int]):
    stmt = select(Question).join(Article, Question.article_id == Article.id)
    if chapter_id is not None:
        stmt = stmt.where(Article.chapter_id == chapter_id)
    return stmt


def _ordered(stmt):
    return stmt.order_by(Article.chapter_id.asc(), Article.number.asc(), Question.ref.asc())


def _has_suggestion(audit_id: uuid.UUID):
    return exists().where(AISuggestion.audit_id == audit_id, AISuggestion.question_id == Question.id)


def list_questions(db: Session, chapter_id: Optional[int] = None) -> List[Question]:
    return list(db.execute(_ordered(_question_query(chapter_id))).scalars().unique())


def count_questions(db: Session, chapter_id: Optional[int] = None) -> int:
    stmt = select(func.count(Question.id)).join(Article, Question.article_id == Article.id)
    if chapter_id is not None:
        stmt = stmt.where(Article.chapter_id == chapter_id)
    return int(db.execute(stmt).scalar() or 0)


def count_suggested_questions(db: Session, audit_id: uuid.UUID, chapter_id: Optional[int] = None) -> int:
    stmt = (
        select(func.count(Question.id))
        .join(Article, Question.article_id == Article.id)
        .where(_has_suggestion(audit_id))
    )
    if chapter_id is not None:
        stmt = stmt.where(Article.chapter_id == chapter_id)
    return int(db.execute(stmt).scalar() or 0)


def list_unanalyzed_questions(
    db: Session,
    audit_id: uuid.UUID,
    chapter_id: Optional[int] = None,
) -> List[Question]:
    """Questions matching the chapter filter with no suggestion yet for ``audit_id``."""
    stmt = _question_query(chapter_id).where(~_has_suggestion(audit_id))
    return list(db.execute(_ordered(stmt)).scalars().unique())


def load_completed_documents(
    db: Session,
    organization_id: uuid.UUID,
    *,
    document_ids: Optional[Sequence[uuid.UUID]] = None,
    per_document_limit: Optional[int] = None,
) -> CompletedDocuments:
    """Read completed documents and their chunks fresh; nothing is cached between calls."""
    stmt = select(Document).where(
        Document.organization_id == organization_id,
        Document.status == DocumentStatusEnum.COMPLETED,
    )
    if document_ids:
        stmt = stmt.where(Document.id.in_(list(document_ids)))
    documents = list(db.execute(stmt.order_by(Document.uploaded_at.asc(), Document.id.asc())).scalars())

    candidates: List[ChunkCandidate] = []
    for document in documents:
        if document.is_image:
            continue
        chunk_stmt = (
            select(DocumentChunk)
            .where(DocumentChunk.document_id == document.id)
            .order_by(DocumentChunk.chunk_index.asc())
        )
        if per_document_limit:
            chunk_stmt = chunk_stmt.limit(per_document_limit)
        for chunk in db.execute(chunk_stmt).scalars():
            candidates.append(
                ChunkCandidate(
                    id=str(chunk.id),
                    vector=list(chunk.embedding or []),
                    content=chunk.content,
                    document_id=str(document.id),
                    document_name=document.display_name,
                    extra={"chunk_index": chunk.chunk_index},
                )
            )
    return CompletedDocuments(documents=documents, candidates=candidates)


def find_active_job(db: Session, audit_id: uuid.UUID) -> Optional[AIAnalysisJob]:
    return (
        db.execute(
            select(AIAnalysisJob)
            .where(AIAnalysisJob.audit_id == audit_id, AIAnalysisJob.status.in_(ACTIVE_JOB_STATUSES))
            .order_by(AIAnalysisJob.created_at.desc())
        )
        .scalars()
        .first()
    )


def append_audit_log(
    db: Session,
    *,
    action: str,
    resource: str,
    resource_id: Any = None,
    actor_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    """Record a traceability entry inside a savepoint; failures are logged, never raised."""
    try:
        with db.begin_nested():
            db.add(
                AuditLog(
                    action=action,
                    resource=resource,
                    resource_id=str(resource_id) if resource_id is not None else None,
                    actor_id=actor_id,
                    details=details or {},
                )
            )
    except SQLAlchemyError:
        logger.warning("Failed to append audit log entry %s for %s", action, resource_id, exc_info=True)
