from sqlalchemy import Column, DateTime, String
from sqlalchemy import Uuid
from sqlalchemy.sql import func
import uuid
from .base import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String, nullable=False)  # "UPLOAD_DOCUMENT", "PROCESS_DOCUMENT", "AI_BATCH_ANALYZE", ...
    resource = Column(String, nullable=False)
    resource_id = Column(String, nullable=True)
    actor_id = Column(String, nullable=True)
    details = Column(JSONType, nullable=False, default=dict)
    at = Column(DateTime(timezone=True), server_default=func.now())
