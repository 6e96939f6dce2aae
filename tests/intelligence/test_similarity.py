"""Unit tests for cosine similarity ranking."""

import sys
import os

# Ensure the server source is importable.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "server", "messageai_server"))

import pytest

from intelligence.retrieval.similarity import cosine_similarity, rank_by_similarity


def test_identical_vectors_score_one():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_orthogonal_vectors_score_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0


def test_zero_vector_scores_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 2.0])


def test_rank_orders_by_similarity_descending():
    query = [1.0, 0.0]
    candidates = [("far", [0.0, 1.0]), ("near", [1.0, 0.1]), ("mid", [1.0, 1.0])]
    ranked = rank_by_similarity(query, candidates)
    assert [item for item, _ in ranked] == ["near", "mid", "far"]


def test_rank_respects_top_k():
    query = [1.0, 0.0]
    candidates = [(str(i), [1.0, float(i)]) for i in range(10)]
    assert len(rank_by_similarity(query, candidates, top_k=3)) == 3
    assert rank_by_similarity(query, candidates, top_k=0) == []


def test_rank_skips_mismatched_dimensions():
    ranked = rank_by_similarity([1.0, 0.0], [("bad", [1.0]), ("good", [1.0, 0.0])])
    assert [item for item, _ in ranked] == ["good"]


def test_ties_keep_input_order():
    ranked = rank_by_similarity([1.0, 0.0], [("a", [2.0, 0.0]), ("b", [3.0, 0.0])])
    assert [item for item, _ in ranked] == ["a", "b"]
