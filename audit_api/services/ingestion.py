from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from ..config import AnalysisSettings, settings
from ..dependencies.identity import Actor
from ..models.documents import IMAGE_FILE_TYPES, Document, DocumentChunk, DocumentStatusEnum
from ..models.orgs import Organization
from .chunking import assign_pages, chunk_text
from .embeddings import embed_text
from .metrics import record_document_failed, record_document_processed
from .storage import StorageError, StorageService
from .store import append_audit_log
from .text_extraction import EmptyDocumentError, extract_text

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"pdf", "txt", "md", "csv", "docx", "doc", "xlsx", "xls"}) | IMAGE_FILE_TYPES
ALLOWED_CONTENT_TYPES = frozenset(
    {
        "application/pdf",
        "text/plain",
        "text/markdown",
        "text/csv",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/msword",
        "application/vnd.ms-excel",
        "image/png",
        "image/jpeg",
        "image/gif",
        "image/webp",
    }
)


class DocumentNotFoundError(LookupError):
    pass


class OrganizationNotFoundError(LookupError):
    pass


class UploadRejectedError(ValueError):
    """Raised when an upload fails validation before anything is stored."""


@dataclass
class PipelineOutcome:
    chunk_count: int
    text_length: int


def file_type_for(filename: str) -> str:
    suffix = Path(filename or "").suffix.lower().lstrip(".")
    return suffix or "unknown"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def register_upload(
    db: Session,
    storage: StorageService,
    *,
    organization_id: uuid.UUID,
    filename: str,
    content_type: Optional[str],
    data: bytes,
    actor: Actor,
    max_bytes: Optional[int] = None,
) -> Document:
    """Validate, store the blob and create the PENDING document row."""
    limit = max_bytes if max_bytes is not None else settings.max_upload_bytes
    if not data:
        raise UploadRejectedError("Empty file")
    if len(data) > limit:
        raise UploadRejectedError(f"File size exceeds {limit} bytes")

    file_type = file_type_for(filename)
    if file_type not in ALLOWED_EXTENSIONS and (content_type or "") not in ALLOWED_CONTENT_TYPES:
        raise UploadRejectedError(
            f"File type not allowed: {content_type or file_type}. Allowed types: PDF, TXT, MD, DOCX, XLSX, images"
        )

    if db.get(Organization, organization_id) is None:
        raise OrganizationNotFoundError(str(organization_id))

    key = storage.build_key(organization_id, filename)
    storage.put(data, key, content_type or "application/octet-stream")

    document = Document(
        organization_id=organization_id,
        name=Path(filename).stem or filename,
        original_name=filename,
        storage_key=key,
        file_type=file_type,
        file_size=len(data),
        status=DocumentStatusEnum.PENDING,
    )
    try:
        db.add(document)
        db.flush()
    except Exception:
        db.rollback()
        try:
            storage.delete(key)
        except StorageError:  # pragma: no cover - best effort cleanup
            logger.warning("Failed to delete stored file after database error", exc_info=True)
        raise

    append_audit_log(
        db,
        action="UPLOAD_DOCUMENT",
        resource="Document",
        resource_id=document.id,
        actor_id=actor.user_id,
        details={"file_name": filename, "file_size": len(data), "organization_id": str(organization_id)},
    )
    return document


def _run_pipeline(
    db: Session,
    document: Document,
    storage: StorageService,
    config: AnalysisSettings,
) -> PipelineOutcome:
    data = storage.get(document.storage_key)

    if document.is_image:
        # images carry no text; they are attached to multimodal analysis calls instead
        chunks = []
        text_length = 0
    else:
        extracted = extract_text(data, document.file_type)
        if extracted.is_blank:
            raise EmptyDocumentError("No text content found in document")
        chunks = assign_pages(
            chunk_text(extracted.text, config.chunk_size, config.chunk_overlap),
            extracted.page_offsets,
        )
        text_length = len(extracted.text)

    db.execute(
        delete(DocumentChunk).where(DocumentChunk.document_id == document.id),
        execution_options={"synchronize_session": False},
    )

    for index, chunk in enumerate(chunks):
        db.add(
            DocumentChunk(
                document_id=document.id,
                chunk_index=index,
                content=chunk.content,
                chunk_metadata=chunk.metadata(),
                embedding=embed_text(chunk.content, config.embedding_dimension),
            )
        )
        db.flush()

    document.status = DocumentStatusEnum.COMPLETED
    document.processed_at = _now()
    document.error_message = None
    return PipelineOutcome(chunk_count=len(chunks), text_length=text_length)


def _mark_failed(db: Session, document_id: uuid.UUID, message: str) -> None:
    document = db.get(Document, document_id)
    if document is None:
        return
    document.status = DocumentStatusEnum.ERROR
    document.error_message = message


def process_document(
    db: Session,
    document_id: uuid.UUID,
    *,
    storage: StorageService,
    actor: Optional[Actor] = None,
    config: Optional[AnalysisSettings] = None,
) -> Document:
    """Run PENDING -> PROCESSING -> COMPLETED | ERROR for one document.

    The PROCESSING status is committed before any heavy work so readers see it.
    Any failure is recorded on the document and re-raised.
    """
    config = config or settings.analysis
    actor = actor or Actor.system()

    document = db.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(str(document_id))

    document.status = DocumentStatusEnum.PROCESSING
    document.error_message = None
    db.commit()

    try:
        outcome = _run_pipeline(db, document, storage, config)
        append_audit_log(
            db,
            action="PROCESS_DOCUMENT",
            resource="Document",
            resource_id=document_id,
            actor_id=actor.user_id,
            details={"chunks_created": outcome.chunk_count, "text_length": outcome.text_length},
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        message = str(exc) or exc.__class__.__name__
        logger.warning("Document processing failed", extra={"document_id": str(document_id), "reason": message})
        _mark_failed(db, document_id, message)
        db.commit()
        record_document_failed()
        raise

    record_document_processed(outcome.chunk_count)
    logger.info("Processed document %s into %d chunks", document_id, outcome.chunk_count)
    return document


def reset_for_reprocessing(db: Session, document: Document, actor: Actor) -> Document:
    document.status = DocumentStatusEnum.PENDING
    document.error_message = None
    document.processed_at = None
    db.flush()
    append_audit_log(
        db,
        action="REPROCESS_DOCUMENT",
        resource="Document",
        resource_id=document.id,
        actor_id=actor.user_id,
    )
    return document


def delete_document(db: Session, storage: StorageService, document: Document, actor: Actor) -> None:
    try:
        storage.delete(document.storage_key)
    except StorageError:
        # the row is removed even when the blob is already gone or unreachable
        logger.warning("Failed to delete blob %s", document.storage_key, exc_info=True)

    document_id = document.id
    details = {"file_name": document.original_name, "organization_id": str(document.organization_id)}
    db.delete(document)
    db.flush()
    append_audit_log(
        db,
        action="DELETE_DOCUMENT",
        resource="Document",
        resource_id=document_id,
        actor_id=actor.user_id,
        details=details,
    )


def chunk_count(db: Session, document_id: uuid.UUID) -> int:
    return int(
        db.execute(select(func.count(DocumentChunk.id)).where(DocumentChunk.document_id == document_id)).scalar()
        or 0
    )


def document_stats(db: Session, organization_id: uuid.UUID) -> Dict[str, Any]:
    rows = db.execute(
        select(Document.status, func.count(Document.id), func.coalesce(func.sum(Document.file_size), 0))
        .where(Document.organization_id == organization_id)
        .group_by(Document.status)
    ).all()

    stats: Dict[str, Any] = {status.value.lower(): 0 for status in DocumentStatusEnum}
    total = 0
    total_size = 0
    for status, count, size in rows:
        key = status.value.lower() if isinstance(status, DocumentStatusEnum) else str(status).lower()
        stats[key] = int(count)
        total += int(count)
        total_size += int(size or 0)
    stats["total"] = total
    stats["total_size"] = total_size
    return stats
