from __future__ import annotations

import math

import pytest

from audit_api.services.embeddings import DEFAULT_DIMENSION, bucket_for, embed_text, tokenize


def test_embedding_is_deterministic_and_normalised() -> None:
    text = "The management body approves the ICT risk management framework."

    first = embed_text(text)
    second = embed_text(text)

    assert first == second
    assert len(first) == DEFAULT_DIMENSION
    assert math.isclose(math.sqrt(sum(value * value for value in first)), 1.0, rel_tol=1e-9)


def test_custom_dimension() -> None:
    vector = embed_text("incident reporting timelines", dimension=32)

    assert len(vector) == 32
    assert all(0 <= bucket_for(token, 32) < 32 for token in tokenize("incident reporting timelines"))


def test_short_tokens_are_ignored() -> None:
    assert tokenize("An IT is ok, we do it!") == []
    assert embed_text("An IT is ok, we do it!") == [0.0] * DEFAULT_DIMENSION


def test_tokenize_lowercases_and_splits_on_non_word_characters() -> None:
    assert tokenize("Backup-Policy; RESTORE tests") == ["backup", "policy", "restore", "tests"]


def test_repeated_terms_weigh_more() -> None:
    vector = embed_text("backup backup backup restore")

    assert vector[bucket_for("backup")] > vector[bucket_for("restore")]


def test_non_positive_dimension_raises() -> None:
    with pytest.raises(ValueError):
        embed_text("anything", dimension=0)
