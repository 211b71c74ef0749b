from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

DEFAULT_TOP_K = 5


@dataclass(frozen=True)
class ChunkCandidate:
    id: str
    vector: Sequence[float]
    content: str = ""
    document_id: Optional[str] = None
    document_name: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RankedChunk:
    id: str
    content: str
    document_id: Optional[str]
    document_name: Optional[str]
    relevance_score: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for left, right in zip(a, b):
        dot += left * right
        norm_a += left * left
        norm_b += right * right

    magnitude = math.sqrt(norm_a) * math.sqrt(norm_b)
    return dot / magnitude if magnitude > 0 else 0.0


def rank_candidates(
    query_vector: Sequence[float],
    candidates: Iterable[ChunkCandidate],
    top_k: int = DEFAULT_TOP_K,
) -> List[RankedChunk]:
    """Score candidates by cosine similarity, highest first, keeping at most ``top_k``.

    ``sorted`` is stable, so equal scores keep their input order.
    """
    scored = [
        RankedChunk(
            id=candidate.id,
            content=candidate.content,
            document_id=candidate.document_id,
            document_name=candidate.document_name,
            relevance_score=cosine_similarity(query_vector, candidate.vector),
        )
        for candidate in candidates
    ]
    scored.sort(key=lambda item: item.relevance_score, reverse=True)
    return scored[: max(top_k, 0)]


def best_score(ranked: Sequence[RankedChunk]) -> float:
    return ranked[0].relevance_score if ranked else 0.0
