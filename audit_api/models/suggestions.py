from __future__ import annotations

from enum import Enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func

from .base import Base, JSONType


class SuggestionLabelEnum(str, Enum):
    YES = "YES"
    NO = "NO"
    PARTIAL = "PARTIAL"
    INSUFFICIENT_INFO = "INSUFFICIENT_INFO"


class SuggestionReviewStatusEnum(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class AISuggestion(Base):
    __tablename__ = "ai_suggestions"
    __table_args__ = (
        UniqueConstraint("audit_id", "question_id", name="uq_ai_suggestions_audit_question"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    audit_id = Column(
        Uuid(as_uuid=True), ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(String, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    suggestion = Column(SAEnum(SuggestionLabelEnum, name="suggestion_label"), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)
    reasoning = Column(Text, nullable=False, default="")
    evidence_description = Column(Text, nullable=True)
    sources = Column(JSONType, nullable=False, default=list)
    status = Column(
        SAEnum(SuggestionReviewStatusEnum, name="suggestion_review_status"),
        nullable=False,
        default=SuggestionReviewStatusEnum.PENDING,
        server_default=SuggestionReviewStatusEnum.PENDING.value,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_by = Column(String, nullable=True)
