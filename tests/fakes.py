"""Test doubles and data builders shared across the suite."""

from __future__ import annotations

import json
import uuid
from typing import Any, Callable, Optional, Sequence, Union

from audit_api.dependencies.identity import Actor
from audit_api.models import Article, Chapter, Question
from audit_api.services.ingestion import process_document, register_upload
from audit_api.services.llm_analysis import QuestionAnalyzer
from audit_api.services.storage import StorageError


class FakeStorage:
    """In-memory stand-in for the S3 blob store."""

    def __init__(self, fail_gets: int = 0) -> None:
        self.bucket = "fake-bucket"
        self.objects: dict[str, bytes] = {}
        self.fail_gets = fail_gets
        self.get_calls = 0

    def build_key(self, organization_id, original_name: str) -> str:
        return f"{organization_id}/{uuid.uuid4().hex}-{original_name}"

    def ensure_bucket(self) -> None:
        return None

    def put(self, data: bytes, key: str, content_type: str = "application/octet-stream") -> str:
        self.objects[key] = data
        return f"s3://{self.bucket}/{key}"

    def get(self, key: str) -> bytes:
        self.get_calls += 1
        if self.fail_gets > 0:
            self.fail_gets -= 1
            raise StorageError("simulated outage")
        if key not in self.objects:
            raise StorageError(f"missing object {key}")
        return self.objects[key]

    def exists(self, key: str) -> bool:
        return key in self.objects

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)


Reply = Union[str, Exception]


def judgment_json(label: str = "YES", confidence: float = 0.9, reasoning: str = "Documented in policy.") -> str:
    return json.dumps(
        {
            "assessment": label,
            "confidence": confidence,
            "reasoning": reasoning,
            "key_findings": ["Policy approved by the board"],
        }
    )


class FakeChatClient:
    """Records every call; replies come from ``responder(system, content)``."""

    model = "fake-model"

    def __init__(self, responder: Optional[Callable[[str, Any], Reply]] = None) -> None:
        self.responder = responder or (lambda system, content: judgment_json())
        self.calls: list[dict[str, Any]] = []

    def complete(self, system: str, content: Any, max_tokens: int) -> str:
        self.calls.append({"system": system, "content": content, "max_tokens": max_tokens})
        reply = self.responder(system, content)
        if isinstance(reply, Exception):
            raise reply
        return reply


def prompt_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return "\n".join(part.get("text", "") for part in content if part.get("type") == "text")


def make_analyzer(chat: FakeChatClient) -> QuestionAnalyzer:
    return QuestionAnalyzer(chat, max_output_tokens=512)


def seed_questions(db, chapter_questions: dict[int, Sequence[str]]) -> list[str]:
    """One article per chapter holding the given question texts; returns ids in listing order."""
    ids: list[str] = []
    for chapter_id, texts in sorted(chapter_questions.items()):
        db.add(Chapter(id=chapter_id, title=f"Chapter {chapter_id}"))
        db.flush()
        article_id = f"ch{chapter_id}-art{chapter_id * 5}"
        db.add(Article(id=article_id, chapter_id=chapter_id, number=chapter_id * 5, title=f"Article {chapter_id * 5}"))
        db.flush()
        for index, text in enumerate(texts, start=1):
            question_id = f"{article_id}-{index:02d}"
            db.add(Question(id=question_id, article_id=article_id, ref=f"{index:02d}", text=text))
            ids.append(question_id)
    db.commit()
    return ids


def ingest_text(
    db,
    storage: FakeStorage,
    organization_id: uuid.UUID,
    text: Union[str, bytes],
    filename: str = "policy.txt",
    content_type: str = "text/plain",
) -> uuid.UUID:
    """Register an upload and run the ingestion pipeline synchronously."""
    document = register_upload(
        db,
        storage,
        organization_id=organization_id,
        filename=filename,
        content_type=content_type,
        data=text.encode("utf-8") if isinstance(text, str) else text,
        actor=Actor.system(),
    )
    db.commit()
    document_id = document.id
    process_document(db, document_id, storage=storage)
    return document_id
