from __future__ import annotations

import json
import uuid

import typer

from .db.session import SessionLocal
from .dependencies.identity import Actor
from .models.documents import Document
from .services.analysis_jobs import AnalysisPreconditionError, JobNotFoundError, run_advance_step
from .services.ingestion import document_stats, reset_for_reprocessing
from .services.llm_analysis import get_question_analyzer
from .services.tasks import get_ingestion_runner

app = typer.Typer(help="DORA audit analysis administrative CLI")


def _uuid_argument(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise typer.BadParameter(f"Invalid {label} id: {value}") from exc


@app.command()
def reprocess_document(document_id: str = typer.Argument(..., help="Document id")) -> None:
    """Reset a document to PENDING and run ingestion in the foreground."""
    doc_uuid = _uuid_argument(document_id, "document")
    actor = Actor.system()

    db = SessionLocal.session_factory()
    try:
        document = db.get(Document, doc_uuid)
        if document is None:
            typer.echo(f"Document {document_id} not found", err=True)
            raise typer.Exit(code=1)
        reset_for_reprocessing(db, document, actor)
        db.commit()
    finally:
        db.close()

    handle = get_ingestion_runner().run_now(doc_uuid, actor)
    typer.echo(json.dumps({"document_id": document_id, **handle.as_dict()}))
    if handle.error:
        raise typer.Exit(code=1)


def _advance_once(job_uuid: uuid.UUID) -> dict:
    db = SessionLocal.session_factory()
    try:
        result = run_advance_step(db, job_uuid, analyzer=get_question_analyzer(db), actor=Actor.system())
        return {
            "job_id": str(job_uuid),
            "status": result.job.status.value,
            "processed": result.processed,
            "failed": result.failed,
            "remaining": result.remaining,
            "busy": result.busy,
            "message": result.message,
        }
    finally:
        db.close()


@app.command()
def advance_job(job_id: str = typer.Argument(..., help="Analysis job id")) -> None:
    """Process the next batch of a batch analysis job."""
    job_uuid = _uuid_argument(job_id, "job")
    try:
        typer.echo(json.dumps(_advance_once(job_uuid)))
    except (AnalysisPreconditionError, JobNotFoundError) as exc:
        typer.echo(f"Job {job_id} not advanced: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def run_job(
    job_id: str = typer.Argument(..., help="Analysis job id"),
    max_steps: int = typer.Option(1000, "--max-steps", help="Stop after this many batches"),
) -> None:
    """Advance a job batch by batch until it reaches a terminal status."""
    job_uuid = _uuid_argument(job_id, "job")
    for _ in range(max_steps):
        try:
            step = _advance_once(job_uuid)
        except (AnalysisPreconditionError, JobNotFoundError) as exc:
            typer.echo(f"Job {job_id} stopped: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        typer.echo(json.dumps(step))
        if step["status"] in {"COMPLETED", "FAILED", "CANCELLED"} or step["busy"]:
            return
    typer.echo(f"Job {job_id} still active after {max_steps} batches", err=True)


@app.command(name="document-stats")
def document_stats_command(organization_id: str = typer.Argument(..., help="Organization id")) -> None:
    """Print document counts per status and total stored bytes."""
    org_uuid = _uuid_argument(organization_id, "organization")
    db = SessionLocal.session_factory()
    try:
        typer.echo(json.dumps(document_stats(db, org_uuid)))
    finally:
        db.close()


if __name__ == "__main__":
    app()
