from __future__ import annotations

from apscheduler.triggers.interval import IntervalTrigger

from audit_api.models.analysis_jobs import AnalysisJobStatusEnum
from audit_api.services.analysis_jobs import create_job, get_job
from audit_api.workers import analysis as worker

from fakes import FakeChatClient, ingest_text, make_analyzer, seed_questions


def test_advance_active_jobs_moves_every_job(db, storage, organization_id, audit_id, actor, monkeypatch):
    seed_questions(db, {2: ["Are backups restored and tested regularly?"]})
    ingest_text(db, storage, organization_id, "Backups are restored and tested every quarter.")
    job, _ = create_job(db, audit_id=audit_id, organization_id=organization_id, actor=actor)
    db.commit()
    chat = FakeChatClient()
    monkeypatch.setattr(worker, "get_question_analyzer", lambda session: make_analyzer(chat))

    stats = worker.advance_active_jobs()

    assert stats["advanced"] == 1
    assert stats["questions_processed"] == 1
    db.expire_all()
    assert get_job(db, job.id).status == AnalysisJobStatusEnum.COMPLETED

    assert worker.advance_active_jobs() == {}


def test_jobs_without_credentials_are_stopped(db, organization_id, audit_id, actor, monkeypatch):
    seed_questions(db, {2: ["Are backups restored and tested regularly?"]})
    job, _ = create_job(db, audit_id=audit_id, organization_id=organization_id, actor=actor)
    db.commit()
    monkeypatch.setattr(worker, "get_question_analyzer", lambda session: None)

    stats = worker.advance_active_jobs()

    assert stats["stopped"] == 1
    db.expire_all()
    assert get_job(db, job.id).status == AnalysisJobStatusEnum.FAILED


def test_scheduler_runs_single_instance():
    scheduler = worker.configure_scheduler()

    (job,) = scheduler.get_jobs()
    assert job.func is worker.run_advance_job
    assert job.max_instances == 1
    assert isinstance(job.trigger, IntervalTrigger)
