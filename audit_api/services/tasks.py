from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, ContextManager, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.db import session_scope
from ..dependencies.identity import Actor
from .ingestion import process_document
from .storage import StorageError, StorageService, get_storage_service

logger = logging.getLogger(__name__)

MAX_TRACKED_TASKS = 500


class TaskState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    backoff_seconds: float = 1.0
    retry_on: tuple[type[BaseException], ...] = (StorageError,)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and isinstance(exc, self.retry_on)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * attempt


class TaskHandle:
    """Observable state of one scheduled ingestion."""

    def __init__(self, document_id: uuid.UUID) -> None:
        self.document_id = document_id
        self.state = TaskState.QUEUED
        self.attempts = 0
        self.error: Optional[str] = None
        self._done = threading.Event()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def _finish(self, state: TaskState, error: Optional[str] = None) -> None:
        self.state = state
        self.error = error
        self._done.set()

    def as_dict(self) -> dict[str, object]:
        return {"state": self.state.value, "attempts": self.attempts, "error": self.error}


class IngestionTaskRunner:
    def __init__(
        self,
        *,
        session_factory: Callable[[], ContextManager[Session]] = session_scope,
        storage_factory: Callable[[], StorageService] = get_storage_service,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._storage_factory = storage_factory
        self.policy = policy or RetryPolicy(
            max_attempts=settings.analysis.ingestion_max_attempts,
            backoff_seconds=settings.analysis.ingestion_retry_backoff_seconds,
        )
        self._sleep = sleep
        self._handles: "OrderedDict[uuid.UUID, TaskHandle]" = OrderedDict()
        self._lock = threading.Lock()

    def submit(self, document_id: uuid.UUID) -> TaskHandle:
        handle = TaskHandle(document_id)
        with self._lock:
            self._handles[document_id] = handle
            self._handles.move_to_end(document_id)
            while len(self._handles) > MAX_TRACKED_TASKS:
                self._handles.popitem(last=False)
        return handle

    def get(self, document_id: uuid.UUID) -> Optional[TaskHandle]:
        with self._lock:
            return self._handles.get(document_id)

    def run(self, handle: TaskHandle, actor: Actor) -> None:
        """Run the ingestion pipeline for ``handle``, retrying transient failures."""
        handle.state = TaskState.RUNNING
        while True:
            handle.attempts += 1
            try:
                with self._session_factory() as db:
                    process_document(db, handle.document_id, storage=self._storage_factory(), actor=actor)
            except Exception as exc:
                if self.policy.should_retry(exc, handle.attempts):
                    delay = self.policy.delay_for(handle.attempts)
                    logger.warning(
                        "Retrying ingestion of %s in %.1fs after attempt %d: %s",
                        handle.document_id,
                        delay,
                        handle.attempts,
                        exc,
                    )
                    self._sleep(delay)
                    continue
                logger.error(
                    "Ingestion of %s failed after %d attempt(s): %s", handle.document_id, handle.attempts, exc
                )
                handle._finish(TaskState.FAILED, str(exc) or exc.__class__.__name__)
                return
            handle._finish(TaskState.SUCCEEDED)
            return

    def run_now(self, document_id: uuid.UUID, actor: Actor) -> TaskHandle:
        handle = self.submit(document_id)
        self.run(handle, actor)
        return handle


@lru_cache(maxsize=1)
def get_ingestion_runner() -> IngestionTaskRunner:
    return IngestionTaskRunner()
