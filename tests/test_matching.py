from __future__ import annotations

import numpy as np
import pytest

from intent_core.errors import DimensionMismatchError
from intent_core.matching import CanonicalIndex, cosine_similarity, nearest_canonical
from intent_core.models import NO_MATCH, CanonicalIntent, MatchMethod


def _index() -> CanonicalIndex:
    intents = [
        CanonicalIntent("LoginIssue", category="Account"),
        CanonicalIntent("PetDeceased", category="Registration"),
    ]
    return CanonicalIndex.from_vectors(intents, [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])


def test_cosine_similarity_is_symmetric() -> None:
    a = [0.3, -1.2, 4.0]
    b = [2.0, 0.5, -0.1]

    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert cosine_similarity(a, a) == pytest.approx(1.0)


def test_cosine_similarity_of_zero_vector_is_zero() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0


def test_cosine_similarity_rejects_dimension_mismatch() -> None:
    with pytest.raises(DimensionMismatchError) as excinfo:
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    assert isinstance(excinfo.value, ValueError)
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3


def test_nearest_canonical_picks_most_similar_intent() -> None:
    result = nearest_canonical([0.9, 0.1, 0.0], _index())

    assert result.method is MatchMethod.SEMANTIC
    assert result.matched_intent_id == "LoginIssue"
    assert result.category == "Account"
    assert result.score == pytest.approx(0.9 / np.linalg.norm([0.9, 0.1]))


def test_empty_index_yields_none_sentinel() -> None:
    result = nearest_canonical([1.0, 0.0], CanonicalIndex.empty())

    assert result.matched_intent_id == NO_MATCH
    assert result.score == 0.0
    assert not result.is_match


def test_non_positive_best_score_yields_none_sentinel() -> None:
    result = _index().nearest([-1.0, -1.0, 0.0])

    assert result.matched_intent_id == NO_MATCH
    assert result.score == 0.0


def test_index_rejects_query_of_wrong_dimension() -> None:
    with pytest.raises(DimensionMismatchError):
        _index().nearest([1.0, 0.0])


def test_index_skips_missing_vectors_and_is_read_only() -> None:
    intents = [CanonicalIntent("A"), CanonicalIntent("B")]
    index = CanonicalIndex.from_vectors(intents, [None, [0.0, 1.0]])

    assert index.intent_ids == ["B"]
    assert index.failed_batches == 0
    with pytest.raises(ValueError):
        index.matrix[0, 0] = 5.0


def test_index_rejects_mixed_dimensions() -> None:
    with pytest.raises(DimensionMismatchError):
        CanonicalIndex.from_vectors([CanonicalIntent("A"), CanonicalIntent("B")], [[1.0, 0.0], [1.0, 0.0, 0.0]])
