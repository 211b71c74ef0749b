from __future__ import annotations

import io
import logging
import uuid
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.db import get_db
from ..dependencies.identity import Actor, resolve_actor
from ..models.documents import Document, DocumentChunk, DocumentStatusEnum
from ..services.ingestion import (
    OrganizationNotFoundError,
    UploadRejectedError,
    chunk_count,
    delete_document as delete_document_record,
    document_stats,
    register_upload,
    reset_for_reprocessing,
)
from ..services.storage import StorageError, StorageService, get_storage_service
from ..services.tasks import IngestionTaskRunner, get_ingestion_runner

logger = logging.getLogger(__name__)

router = APIRouter()

READ_CHUNK_BYTES = 1024 * 1024
DOWNLOAD_URL_TTL_SECONDS = 3600


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} id") from exc


def _get_document(db: Session, doc_id: str) -> Document:
    document = db.get(Document, _parse_uuid(doc_id, "document"))
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


def _content_disposition(filename: str) -> str:
    fallback = "".join(
        "_" if char in "\"\\" or not char.isascii() or not char.isprintable() else char for char in filename
    )
    header = f'attachment; filename="{fallback}"'
    if fallback != filename:
        header += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return header


def _serialize_document(
    document: Document,
    chunks: int,
    task: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": str(document.id),
        "organization_id": str(document.organization_id),
        "name": document.name,
        "original_name": document.original_name,
        "file_type": document.file_type,
        "file_size": document.file_size,
        "status": document.status.value,
        "error_message": document.error_message,
        "chunk_count": int(chunks or 0),
        "uploaded_at": document.uploaded_at.isoformat() if document.uploaded_at else None,
        "processed_at": document.processed_at.isoformat() if document.processed_at else None,
        "download_path": f"/documents/{document.id}/download",
    }
    if task is not None:
        payload["task"] = task
    return payload


def _read_upload(file: UploadFile, limit: int) -> bytes:
    buffer = io.BytesIO()
    total_bytes = 0
    try:
        while True:
            chunk = file.file.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > limit:
                raise HTTPException(status_code=400, detail=f"File size exceeds {limit} bytes")
            buffer.write(chunk)
    finally:
        file.file.close()
    return buffer.getvalue()


def _schedule_ingestion(
    background_tasks: BackgroundTasks,
    runner: IngestionTaskRunner,
    document_id: uuid.UUID,
    actor: Actor,
) -> Dict[str, Any]:
    handle = runner.submit(document_id)
    background_tasks.add_task(runner.run, handle, actor)
    return handle.as_dict()


@router.post("/documents", status_code=201)
def upload_document(
    background_tasks: BackgroundTasks,
    organization_id: str = Form(...),
    file: UploadFile = File(...),
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    runner: IngestionTaskRunner = Depends(get_ingestion_runner),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename required")

    org_uuid = _parse_uuid(organization_id, "organization")
    data = _read_upload(file, settings.max_upload_bytes)

    try:
        document = register_upload(
            db,
            storage,
            organization_id=org_uuid,
            filename=file.filename,
            content_type=file.content_type,
            data=data,
            actor=actor,
        )
    except UploadRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OrganizationNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Organization not found") from exc
    except StorageError as exc:
        logger.exception("Upload to blob store failed")
        raise HTTPException(status_code=502, detail="Unable to store document") from exc

    db.commit()
    db.refresh(document)

    task = _schedule_ingestion(background_tasks, runner, document.id, actor)
    return _serialize_document(document, 0, task)


@router.get("/documents")
def list_documents(
    organization_id: str = Query(...),
    status: Optional[DocumentStatusEnum] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    org_uuid = _parse_uuid(organization_id, "organization")

    base_query = (
        db.query(Document, func.count(DocumentChunk.id).label("chunk_count"))
        .outerjoin(DocumentChunk, DocumentChunk.document_id == Document.id)
        .filter(Document.organization_id == org_uuid)
        .group_by(Document.id)
    )
    total_query = db.query(func.count(Document.id)).filter(Document.organization_id == org_uuid)
    if status is not None:
        base_query = base_query.filter(Document.status == status)
        total_query = total_query.filter(Document.status == status)

    total = total_query.scalar() or 0
    rows = (
        base_query.order_by(Document.uploaded_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    return {
        "items": [_serialize_document(document, chunks) for document, chunks in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


@router.get("/documents/stats")
def get_document_stats(
    organization_id: str = Query(...),
    db: Session = Depends(get_db),
):
    return document_stats(db, _parse_uuid(organization_id, "organization"))


@router.get("/documents/{doc_id}")
def get_document(
    doc_id: str,
    db: Session = Depends(get_db),
    runner: IngestionTaskRunner = Depends(get_ingestion_runner),
):
    document = _get_document(db, doc_id)
    handle = runner.get(document.id)
    return _serialize_document(document, chunk_count(db, document.id), handle.as_dict() if handle else None)


@router.delete("/documents/{doc_id}")
def delete_document(
    doc_id: str,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    document = _get_document(db, doc_id)
    delete_document_record(db, storage, document, actor)
    db.commit()
    return {"id": doc_id, "deleted": True}


@router.post("/documents/{doc_id}/reprocess", status_code=202)
def reprocess_document(
    doc_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
    runner: IngestionTaskRunner = Depends(get_ingestion_runner),
):
    document = _get_document(db, doc_id)
    reset_for_reprocessing(db, document, actor)
    db.commit()

    task = _schedule_ingestion(background_tasks, runner, document.id, actor)
    return {"id": str(document.id), "status": document.status.value, "task": task}


@router.get("/documents/{doc_id}/download-url")
def get_download_url(
    doc_id: str,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    document = _get_document(db, doc_id)
    ttl = timedelta(seconds=DOWNLOAD_URL_TTL_SECONDS)
    try:
        url = storage.generate_presigned_url(document.storage_key, ttl)
    except StorageError as exc:
        raise HTTPException(status_code=502, detail="Unable to generate download link") from exc
    return {"id": str(document.id), "download_url": url, "expires_in": DOWNLOAD_URL_TTL_SECONDS}


@router.get("/documents/{doc_id}/download")
def download_document(
    doc_id: str,
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
):
    document = _get_document(db, doc_id)
    try:
        data = storage.get(document.storage_key)
    except StorageError as exc:
        logger.warning(
            "Failed to fetch document blob",
            extra={"document_id": str(document.id), "storage_key": document.storage_key},
            exc_info=True,
        )
        raise HTTPException(status_code=404, detail="Document storage unavailable") from exc

    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": _content_disposition(document.display_name),
            "Content-Length": str(len(data)),
        },
    )
