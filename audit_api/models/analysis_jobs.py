from __future__ import annotations

from enum import Enum
import uuid

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Integer, Text, Uuid
from sqlalchemy.sql import func

from .base import Base, JSONType


class AnalysisJobStatusEnum(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_JOB_STATUSES = (AnalysisJobStatusEnum.PENDING, AnalysisJobStatusEnum.RUNNING)
TERMINAL_JOB_STATUSES = (
    AnalysisJobStatusEnum.COMPLETED,
    AnalysisJobStatusEnum.FAILED,
    AnalysisJobStatusEnum.CANCELLED,
)


class AIAnalysisJob(Base):
    __tablename__ = "ai_analysis_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    audit_id = Column(
        Uuid(as_uuid=True), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id = Column(
        Uuid(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    chapter_id = Column(Integer, nullable=True)
    status = Column(
        SAEnum(AnalysisJobStatusEnum, name="analysis_job_status"),
        nullable=False,
        default=AnalysisJobStatusEnum.PENDING,
        server_default=AnalysisJobStatusEnum.PENDING.value,
    )
    total_questions = Column(Integer, nullable=False, default=0)
    processed_questions = Column(Integer, nullable=False, default=0)
    failed_questions = Column(Integer, nullable=False, default=0)
    failed_question_ids = Column(JSONType, nullable=False, default=list)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES
