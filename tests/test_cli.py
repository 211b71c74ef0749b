from __future__ import annotations

import json
import uuid

from typer.testing import CliRunner

from audit_api import cli
from audit_api.models.documents import Document, DocumentStatusEnum
from audit_api.services.analysis_jobs import create_job
from audit_api.services.tasks import IngestionTaskRunner, RetryPolicy

from fakes import FakeChatClient, ingest_text, make_analyzer, seed_questions

runner = CliRunner()


def test_document_stats_command(db, storage, organization_id):
    ingest_text(db, storage, organization_id, "Backups are restored and tested every quarter.")

    result = runner.invoke(cli.app, ["document-stats", str(organization_id)])

    assert result.exit_code == 0
    stats = json.loads(result.stdout)
    assert stats["completed"] == 1
    assert stats["total"] == 1


def test_invalid_ids_are_rejected():
    result = runner.invoke(cli.app, ["advance-job", "not-a-uuid"])

    assert result.exit_code != 0


def test_run_job_until_completed(db, storage, organization_id, audit_id, actor, monkeypatch):
    seed_questions(db, {2: ["Are backups restored and tested regularly?", "Are restore tests recorded?"]})
    ingest_text(db, storage, organization_id, "Backups are restored and tested every quarter. Restore tests are recorded.")
    job, _ = create_job(db, audit_id=audit_id, organization_id=organization_id, actor=actor)
    db.commit()
    chat = FakeChatClient()
    monkeypatch.setattr(cli, "get_question_analyzer", lambda session: make_analyzer(chat))

    result = runner.invoke(cli.app, ["run-job", str(job.id)])

    assert result.exit_code == 0
    steps = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
    assert steps[-1]["status"] == "COMPLETED"
    assert sum(step["processed"] for step in steps) == 2


def test_run_job_stops_after_max_steps_when_a_question_keeps_failing(
    db, storage, organization_id, audit_id, actor, monkeypatch
):
    seed_questions(db, {2: ["Are backups restored and tested regularly?"]})
    ingest_text(db, storage, organization_id, "Backups are restored and tested every quarter.")
    job, _ = create_job(db, audit_id=audit_id, organization_id=organization_id, actor=actor)
    db.commit()
    chat = FakeChatClient(lambda system, content: RuntimeError("provider timeout"))
    monkeypatch.setattr(cli, "get_question_analyzer", lambda session: make_analyzer(chat))

    result = runner.invoke(cli.app, ["run-job", str(job.id), "--max-steps", "2"])

    assert result.exit_code == 0
    steps = [json.loads(line) for line in result.stdout.splitlines() if line.startswith("{")]
    assert [step["status"] for step in steps] == ["RUNNING", "RUNNING"]
    assert [step["failed"] for step in steps] == [1, 1]
    assert len(chat.calls) == 2
    assert "still active after 2 batches" in result.output


def test_advance_job_without_credentials_exits_non_zero(db, organization_id, audit_id, actor, monkeypatch):
    seed_questions(db, {2: ["Are backups restored and tested regularly?"]})
    job, _ = create_job(db, audit_id=audit_id, organization_id=organization_id, actor=actor)
    db.commit()
    monkeypatch.setattr(cli, "get_question_analyzer", lambda session: None)

    result = runner.invoke(cli.app, ["advance-job", str(job.id)])

    assert result.exit_code == 1


def test_reprocess_document_runs_in_foreground(db, storage, organization_id, monkeypatch):
    document_id = ingest_text(db, storage, organization_id, "Backups are restored and tested every quarter.")
    foreground = IngestionTaskRunner(storage_factory=lambda: storage, policy=RetryPolicy(max_attempts=1))
    monkeypatch.setattr(cli, "get_ingestion_runner", lambda: foreground)

    result = runner.invoke(cli.app, ["reprocess-document", str(document_id)])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["state"] == "SUCCEEDED"
    db.expire_all()
    assert db.get(Document, document_id).status == DocumentStatusEnum.COMPLETED

    missing = runner.invoke(cli.app, ["reprocess-document", str(uuid.uuid4())])
    assert missing.exit_code == 1
