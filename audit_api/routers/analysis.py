from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..dependencies.db import get_db
from ..dependencies.identity import Actor, resolve_actor
from ..models.audits import Audit
from ..models.suggestions import SuggestionReviewStatusEnum
from ..services.analysis_jobs import (
    AdvanceResult,
    AnalysisPreconditionError,
    AuditNotFoundError,
    JobNotFoundError,
    cancel_job,
    create_job,
    get_job,
    list_jobs,
    run_advance_step,
    serialize_job,
)
from ..services.llm_analysis import QuestionAnalyzer, get_question_analyzer
from ..services.question_analysis import AnalysisFailedError, QuestionNotFoundError, analyze_question
from ..services.storage import StorageService, get_storage_service
from ..services.suggestions import (
    SuggestionNotFoundError,
    list_suggestions,
    review_suggestion,
    serialize_suggestion,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai")


class CreateJobPayload(BaseModel):
    audit_id: uuid.UUID
    organization_id: Optional[uuid.UUID] = None
    chapter_id: Optional[int] = None


class AnalyzeQuestionPayload(BaseModel):
    organization_id: uuid.UUID
    question_id: str = Field(min_length=1)
    audit_id: Optional[uuid.UUID] = None
    document_ids: Optional[List[uuid.UUID]] = None
    additional_context: Optional[str] = None


class ReviewPayload(BaseModel):
    status: SuggestionReviewStatusEnum


def get_analyzer(db: Session = Depends(get_db)) -> Optional[QuestionAnalyzer]:
    return get_question_analyzer(db)


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} id") from exc


def _serialize_advance(result: AdvanceResult) -> Dict[str, Any]:
    return {
        "job": serialize_job(result.job),
        "processed": result.processed,
        "failed": result.failed,
        "remaining": result.remaining,
        "batch_size": result.batch_size,
        "busy": result.busy,
        "message": result.message,
    }


@router.post("/jobs", status_code=201)
def start_job(
    payload: CreateJobPayload,
    response: Response,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
):
    organization_id = payload.organization_id
    if organization_id is None:
        audit = db.get(Audit, payload.audit_id)
        if audit is None:
            raise HTTPException(status_code=404, detail="Audit not found")
        organization_id = audit.organization_id

    try:
        job, created = create_job(
            db,
            audit_id=payload.audit_id,
            organization_id=organization_id,
            chapter_id=payload.chapter_id,
            actor=actor,
        )
    except AuditNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Audit not found") from exc

    db.commit()
    if not created:
        response.status_code = 200
    return {"job": serialize_job(job), "created": created}


@router.get("/jobs")
def get_jobs(
    audit_id: str = Query(...),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    jobs = list_jobs(db, _parse_uuid(audit_id, "audit"), limit=limit)
    return {"items": [serialize_job(job) for job in jobs]}


@router.get("/jobs/{job_id}")
def get_job_status(job_id: str, db: Session = Depends(get_db)):
    try:
        job = get_job(db, _parse_uuid(job_id, "job"))
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    return serialize_job(job)


@router.post("/jobs/{job_id}/advance")
def advance(
    job_id: str,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
    analyzer: Optional[QuestionAnalyzer] = Depends(get_analyzer),
):
    job_uuid = _parse_uuid(job_id, "job")
    try:
        result = run_advance_step(db, job_uuid, analyzer=analyzer, actor=actor)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    except AnalysisPreconditionError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except Exception as exc:
        raise HTTPException(status_code=500, detail="Failed to process batch analysis") from exc
    return _serialize_advance(result)


@router.delete("/jobs/{job_id}")
def cancel(
    job_id: str,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
):
    try:
        job = cancel_job(db, _parse_uuid(job_id, "job"), actor)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    db.commit()
    return serialize_job(job)


@router.post("/analyze-question")
def analyze_single_question(
    payload: AnalyzeQuestionPayload,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    analyzer: Optional[QuestionAnalyzer] = Depends(get_analyzer),
):
    try:
        outcome = analyze_question(
            db,
            storage,
            analyzer,
            organization_id=payload.organization_id,
            question_id=payload.question_id,
            actor=actor,
            audit_id=payload.audit_id,
            document_ids=payload.document_ids,
            additional_context=payload.additional_context,
        )
    except QuestionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Question not found") from exc
    except AnalysisPreconditionError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except AnalysisFailedError as exc:
        db.rollback()
        raise HTTPException(status_code=500, detail="AI analysis failed") from exc

    db.commit()

    result = outcome.result
    return {
        "question_id": outcome.question.id,
        "suggestion": result.label.value,
        "confidence": result.confidence,
        "reasoning": result.reasoning,
        "evidence_description": result.evidence_description or None,
        "key_findings": result.key_findings,
        "sources": result.sources,
        "parsed": result.parsed,
        "suggestion_id": str(outcome.suggestion.id) if outcome.suggestion is not None else None,
        "documents_analyzed": outcome.documents_analyzed,
        "images_analyzed": outcome.images_analyzed,
    }


@router.get("/suggestions")
def get_suggestions(audit_id: str = Query(...), db: Session = Depends(get_db)):
    return {"items": list_suggestions(db, _parse_uuid(audit_id, "audit"))}


@router.patch("/suggestions/{suggestion_id}")
def review(
    suggestion_id: str,
    payload: ReviewPayload,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
):
    try:
        suggestion = review_suggestion(db, _parse_uuid(suggestion_id, "suggestion"), payload.status, actor)
    except SuggestionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Suggestion not found") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    db.commit()
    return serialize_suggestion(suggestion)
