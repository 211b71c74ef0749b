from .analysis_jobs import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    AIAnalysisJob,
    AnalysisJobStatusEnum,
)
from .app_settings import AppSetting
from .audit_logs import AuditLog
from .audits import Audit
from .documents import IMAGE_FILE_TYPES, Document, DocumentChunk, DocumentStatusEnum
from .orgs import Organization
from .questions import Article, Chapter, Question
from .suggestions import AISuggestion, SuggestionLabelEnum, SuggestionReviewStatusEnum

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "AIAnalysisJob",
    "AISuggestion",
    "AnalysisJobStatusEnum",
    "AppSetting",
    "Article",
    "Audit",
    "AuditLog",
    "Chapter",
    "Document",
    "DocumentChunk",
    "DocumentStatusEnum",
    "IMAGE_FILE_TYPES",
    "Organization",
    "Question",
    "SuggestionLabelEnum",
    "SuggestionReviewStatusEnum",
    "TERMINAL_JOB_STATUSES",
]
