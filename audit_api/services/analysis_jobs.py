from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import AnalysisSettings, settings
from ..dependencies.identity import Actor
from ..models.analysis_jobs import AIAnalysisJob, AnalysisJobStatusEnum, TERMINAL_JOB_STATUSES
from ..models.audits import Audit
from .embeddings import embed_text
from .llm_analysis import AnalysisResult, QuestionAnalyzer
from .metrics import record_job_transition
from .ranking import best_score, rank_candidates
from .store import (
    append_audit_log,
    count_questions,
    count_suggested_questions,
    find_active_job,
    list_unanalyzed_questions,
    load_completed_documents,
)
from .suggestions import upsert_suggestion

logger = logging.getLogger(__name__)

NO_CREDENTIALS_MESSAGE = "AI not configured. Please add your LLM API key in Settings."
NO_DOCUMENTS_MESSAGE = "No documents available for analysis. Please upload documents first."
NO_CHUNKS_MESSAGE = "Documents are still being processed. Please wait and try again."
LOW_RELEVANCE_REASONING = "No relevant information found in uploaded documents."


class JobNotFoundError(LookupError):
    pass


class AuditNotFoundError(LookupError):
    pass


class AnalysisPreconditionError(Exception):
    """A condition that stops a whole job or request rather than one question."""

    def __init__(self, message: str, job: Optional[AIAnalysisJob] = None) -> None:
        super().__init__(message)
        self.message = message
        self.job = job


@dataclass
class AdvanceResult:
    job: AIAnalysisJob
    processed: int = 0
    failed: int = 0
    remaining: int = 0
    batch_size: int = 0
    busy: bool = False
    message: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _transition(job: AIAnalysisJob, status: AnalysisJobStatusEnum, message: Optional[str] = None) -> None:
    job.status = status
    if status == AnalysisJobStatusEnum.RUNNING and job.started_at is None:
        job.started_at = _now()
    if status in TERMINAL_JOB_STATUSES:
        job.completed_at = _now()
    if message:
        job.error_message = message
    record_job_transition(status)


def _fail(db: Session, job: AIAnalysisJob, message: str) -> AnalysisPreconditionError:
    logger.warning("Analysis job %s failed: %s", job.id, message)
    _transition(job, AnalysisJobStatusEnum.FAILED, message)
    db.flush()
    return AnalysisPreconditionError(message, job=job)


def create_job(
    db: Session,
    *,
    audit_id: uuid.UUID,
    organization_id: uuid.UUID,
    chapter_id: Optional[int] = None,
    actor: Actor,
) -> tuple[AIAnalysisJob, bool]:
    """Return the audit's active job if one exists, otherwise create a PENDING job."""
    existing = find_active_job(db, audit_id)
    if existing is not None:
        return existing, False

    if db.get(Audit, audit_id) is None:
        raise AuditNotFoundError(str(audit_id))

    matching = count_questions(db, chapter_id)
    already_suggested = count_suggested_questions(db, audit_id, chapter_id)

    job = AIAnalysisJob(
        audit_id=audit_id,
        organization_id=organization_id,
        chapter_id=chapter_id,
        status=AnalysisJobStatusEnum.PENDING,
        total_questions=max(0, matching - already_suggested),
        processed_questions=0,
        failed_questions=0,
        failed_question_ids=[],
    )
    db.add(job)
    db.flush()
    record_job_transition(AnalysisJobStatusEnum.PENDING)

    append_audit_log(
        db,
        action="CREATE_ANALYSIS_JOB",
        resource="Audit",
        resource_id=audit_id,
        actor_id=actor.user_id,
        details={"job_id": str(job.id), "chapter_id": chapter_id, "total_questions": job.total_questions},
    )
    return job, True


def get_job(db: Session, job_id: uuid.UUID) -> AIAnalysisJob:
    job = db.get(AIAnalysisJob, job_id)
    if job is None:
        raise JobNotFoundError(str(job_id))
    return job


def list_jobs(db: Session, audit_id: uuid.UUID, limit: int = 10) -> List[AIAnalysisJob]:
    return list(
        db.execute(
            select(AIAnalysisJob)
            .where(AIAnalysisJob.audit_id == audit_id)
            .order_by(AIAnalysisJob.created_at.desc())
            .limit(limit)
        ).scalars()
    )


def _lock_job(db: Session, job_id: uuid.UUID, *, skip_locked: bool) -> Optional[AIAnalysisJob]:
    stmt = select(AIAnalysisJob).where(AIAnalysisJob.id == job_id)
    stmt = stmt.with_for_update(skip_locked=True) if skip_locked else stmt.with_for_update()
    return db.execute(stmt).scalar_one_or_none()


def _remember_failure(failed_ids: List[str], question_id: str) -> None:
    if question_id not in failed_ids:
        failed_ids.append(question_id)


def advance_job(
    db: Session,
    job_id: uuid.UUID,
    *,
    analyzer: Optional[QuestionAnalyzer],
    config: Optional[AnalysisSettings] = None,
    sleep: Callable[[float], None] = time.sleep,
    actor: Optional[Actor] = None,
) -> AdvanceResult:
    """Process the next batch of unanalyzed questions for a job.

    Terminal jobs are returned untouched. The unanalyzed set is recomputed on
    every call, so suggestions created elsewhere between calls are honoured.
    Precondition failures mark the job FAILED and raise
    ``AnalysisPreconditionError``; per-question failures only bump counters.
    """
    config = config or settings.analysis
    actor = actor or Actor.system()

    job = _lock_job(db, job_id, skip_locked=True)
    if job is None:
        existing = get_job(db, job_id)
        return AdvanceResult(job=existing, busy=True, message="Job is being advanced by another caller")

    if job.is_terminal:
        return AdvanceResult(job=job, message="Job already finished")

    if analyzer is None:
        raise _fail(db, job, NO_CREDENTIALS_MESSAGE)

    if job.status == AnalysisJobStatusEnum.PENDING:
        _transition(job, AnalysisJobStatusEnum.RUNNING)

    failed_ids: List[str] = list(job.failed_question_ids or [])
    pending = list_unanalyzed_questions(db, job.audit_id, job.chapter_id)
    # questions that already failed in this job go to the back of the queue
    previously_failed = set(failed_ids)
    pending.sort(key=lambda question: question.id in previously_failed)
    if not pending:
        _transition(job, AnalysisJobStatusEnum.COMPLETED)
        db.flush()
        return AdvanceResult(job=job, message="All questions analyzed")

    batch = pending[: max(config.batch_size, 1)]

    corpus = load_completed_documents(db, job.organization_id)
    if not corpus.documents:
        raise _fail(db, job, NO_DOCUMENTS_MESSAGE)
    if not corpus.candidates:
        raise _fail(db, job, NO_CHUNKS_MESSAGE)

    processed = 0
    failed = 0
    llm_calls = 0
    for question in batch:
        try:
            with db.begin_nested():
                ranked = rank_candidates(
                    embed_text(question.text, config.embedding_dimension),
                    corpus.candidates,
                    config.top_k,
                )
                if best_score(ranked) < config.batch_relevance_threshold:
                    upsert_suggestion(
                        db,
                        audit_id=job.audit_id,
                        question_id=question.id,
                        result=AnalysisResult.insufficient(LOW_RELEVANCE_REASONING),
                        origin="low_relevance",
                    )
                    processed += 1
                    continue

                if llm_calls:
                    sleep(config.llm_call_delay_seconds)
                llm_calls += 1
                result = analyzer.analyze(question.text, ranked)
                if result is None:
                    failed += 1
                    _remember_failure(failed_ids, question.id)
                    continue

                upsert_suggestion(db, audit_id=job.audit_id, question_id=question.id, result=result)
                processed += 1
        except Exception:
            logger.exception("Error analyzing question %s for job %s", question.id, job.id)
            failed += 1
            _remember_failure(failed_ids, question.id)

    job.processed_questions = (job.processed_questions or 0) + processed
    job.failed_questions = (job.failed_questions or 0) + failed
    job.failed_question_ids = failed_ids
    remaining = len(pending) - processed
    if remaining == 0:
        _transition(job, AnalysisJobStatusEnum.COMPLETED)
    db.flush()

    append_audit_log(
        db,
        action="AI_BATCH_ANALYZE",
        resource="Audit",
        resource_id=job.audit_id,
        actor_id=actor.user_id,
        details={
            "job_id": str(job.id),
            "organization_id": str(job.organization_id),
            "chapter_id": job.chapter_id,
            "questions_analyzed": processed,
            "questions_failed": failed,
        },
    )
    logger.info(
        "Advanced analysis job %s: processed=%d failed=%d remaining=%d", job.id, processed, failed, remaining
    )
    return AdvanceResult(
        job=job,
        processed=processed,
        failed=failed,
        remaining=remaining,
        batch_size=len(batch),
    )


def fail_job(db: Session, job_id: uuid.UUID, message: str) -> Optional[AIAnalysisJob]:
    job = db.get(AIAnalysisJob, job_id)
    if job is None or job.is_terminal:
        return job
    _transition(job, AnalysisJobStatusEnum.FAILED, message)
    db.flush()
    return job


def run_advance_step(
    db: Session,
    job_id: uuid.UUID,
    *,
    analyzer: Optional[QuestionAnalyzer],
    config: Optional[AnalysisSettings] = None,
    sleep: Callable[[float], None] = time.sleep,
    actor: Optional[Actor] = None,
) -> AdvanceResult:
    """Advance one step and commit; unexpected errors leave the job FAILED."""
    try:
        result = advance_job(db, job_id, analyzer=analyzer, config=config, sleep=sleep, actor=actor)
        db.commit()
        return result
    except (AnalysisPreconditionError, JobNotFoundError):
        db.commit()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception("Unexpected failure advancing analysis job %s", job_id)
        fail_job(db, job_id, str(exc) or "Unexpected failure")
        db.commit()
        raise


def cancel_job(db: Session, job_id: uuid.UUID, actor: Actor) -> AIAnalysisJob:
    job = _lock_job(db, job_id, skip_locked=False)
    if job is None:
        raise JobNotFoundError(str(job_id))
    if job.is_terminal:
        return job

    _transition(job, AnalysisJobStatusEnum.CANCELLED)
    db.flush()
    append_audit_log(
        db,
        action="CANCEL_ANALYSIS_JOB",
        resource="Audit",
        resource_id=job.audit_id,
        actor_id=actor.user_id,
        details={"job_id": str(job.id)},
    )
    return job


def active_job_ids(db: Session) -> List[uuid.UUID]:
    return list(
        db.execute(
            select(AIAnalysisJob.id)
            .where(AIAnalysisJob.status.in_((AnalysisJobStatusEnum.PENDING, AnalysisJobStatusEnum.RUNNING)))
            .order_by(AIAnalysisJob.created_at.asc())
        ).scalars()
    )


def serialize_job(job: AIAnalysisJob) -> Dict[str, Any]:
    return {
        "id": str(job.id),
        "audit_id": str(job.audit_id),
        "organization_id": str(job.organization_id),
        "chapter_id": job.chapter_id,
        "status": job.status.value,
        "total_questions": job.total_questions,
        "processed_questions": job.processed_questions,
        "failed_questions": job.failed_questions,
        "error_message": job.error_message,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }
