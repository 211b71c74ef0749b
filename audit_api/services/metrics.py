from __future__ import annotations

from prometheus_client import Counter


DOCUMENTS_PROCESSED_COUNTER = Counter(
    "dora_documents_processed_total",
    "Documents that finished ingestion, by outcome",
    ["outcome"],
)

CHUNKS_CREATED_COUNTER = Counter(
    "dora_document_chunks_created_total",
    "Document chunks embedded and stored",
)

SUGGESTIONS_STORED_COUNTER = Counter(
    "dora_ai_suggestions_stored_total",
    "AI suggestions written, by label and origin",
    ["label", "origin"],
)

LLM_CALLS_COUNTER = Counter(
    "dora_llm_calls_total",
    "Calls made to the language model provider, by outcome",
    ["outcome"],
)

ANALYSIS_JOB_TRANSITIONS_COUNTER = Counter(
    "dora_analysis_job_transitions_total",
    "Analysis job status transitions",
    ["status"],
)


def _value(label) -> str:
    return getattr(label, "value", None) or str(label)


def record_document_processed(chunk_count: int) -> None:
    DOCUMENTS_PROCESSED_COUNTER.labels(outcome="completed").inc()
    if chunk_count > 0:
        CHUNKS_CREATED_COUNTER.inc(chunk_count)


def record_document_failed() -> None:
    DOCUMENTS_PROCESSED_COUNTER.labels(outcome="error").inc()


def record_suggestion_stored(label, origin: str) -> None:
    SUGGESTIONS_STORED_COUNTER.labels(label=_value(label), origin=origin).inc()


def record_llm_call(succeeded: bool) -> None:
    LLM_CALLS_COUNTER.labels(outcome="success" if succeeded else "failure").inc()


def record_job_transition(status) -> None:
    ANALYSIS_JOB_TRANSITIONS_COUNTER.labels(status=_value(status)).inc()
