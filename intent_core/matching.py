"""Cosine similarity helpers and nearest-canonical-intent matching."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .errors import DimensionMismatchError
from .models import NO_MATCH, CanonicalIntent, MatchMethod, MatchResult

LOGGER = logging.getLogger(__name__)


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64)
    if vector.ndim != 1:
        raise ValueError(f"Expected a one-dimensional vector, got shape {vector.shape}")
    return vector


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of the angle between two vectors; 0.0 when either has zero length."""
    vec_a = as_vector(a)
    vec_b = as_vector(b)
    if vec_a.shape[0] != vec_b.shape[0]:
        raise DimensionMismatchError(vec_a.shape[0], vec_b.shape[0])
    denominator = float(np.linalg.norm(vec_a)) * float(np.linalg.norm(vec_b))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(vec_a, vec_b)) / denominator


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return matrix / safe


@dataclass(frozen=True, eq=False)
class CanonicalIndex:
    """Canonical intents and their embeddings, fixed for the lifetime of a run."""

    intents: tuple[CanonicalIntent, ...]
    matrix: np.ndarray
    failed_batches: int = 0

    @classmethod
    def from_vectors(
        cls,
        intents: Sequence[CanonicalIntent],
        vectors: Sequence[Optional[Sequence[float]]],
        *,
        failed_batches: int = 0,
    ) -> "CanonicalIndex":
        """Pair intents with their vectors, skipping intents whose embedding is missing."""
        if len(intents) != len(vectors):
            raise ValueError("Each canonical intent needs exactly one embedding slot")
        kept: List[CanonicalIntent] = []
        rows: List[np.ndarray] = []
        for intent, vector in zip(intents, vectors):
            if vector is None:
                LOGGER.warning("Canonical intent %s has no embedding and is skipped", intent.intent_id)
                continue
            row = as_vector(vector)
            if rows and row.shape[0] != rows[0].shape[0]:
                raise DimensionMismatchError(
                    rows[0].shape[0], row.shape[0], context=f"canonical intent {intent.intent_id}"
                )
            kept.append(intent)
            rows.append(row)
        matrix = np.vstack(rows) if rows else np.zeros((0, 0))
        matrix.setflags(write=False)
        LOGGER.info("Canonical index holds %s of %s intents", len(kept), len(intents))
        return cls(intents=tuple(kept), matrix=matrix, failed_batches=failed_batches)

    @classmethod
    def empty(cls) -> "CanonicalIndex":
        return cls.from_vectors([], [])

    def __len__(self) -> int:
        return len(self.intents)

    @property
    def intent_ids(self) -> List[str]:
        return [intent.intent_id for intent in self.intents]

    def similarities(self, query: Sequence[float] | np.ndarray) -> np.ndarray:
        vector = as_vector(query)
        if not len(self.intents):
            return np.zeros(0)
        if vector.shape[0] != self.matrix.shape[1]:
            raise DimensionMismatchError(self.matrix.shape[1], vector.shape[0], context="canonical query")
        query_norm = float(np.linalg.norm(vector))
        if query_norm == 0.0:
            return np.zeros(len(self.intents))
        return normalize_rows(self.matrix) @ (vector / query_norm)

    def nearest(self, query: Sequence[float] | np.ndarray) -> MatchResult:
        return nearest_canonical(query, self)


def nearest_canonical(query: Sequence[float] | np.ndarray, index: CanonicalIndex) -> MatchResult:
    """Return the canonical intent most similar to ``query``.

    An empty index, or one where no intent scores above zero, yields the
    ``NONE`` sentinel with score 0.
    """
    scores = index.similarities(query)
    if scores.size == 0:
        return MatchResult(method=MatchMethod.SEMANTIC, score=0.0, matched_intent_id=NO_MATCH)
    best = int(np.argmax(scores))
    best_score = float(scores[best])
    if best_score <= 0.0:
        return MatchResult(method=MatchMethod.SEMANTIC, score=0.0, matched_intent_id=NO_MATCH)
    intent = index.intents[best]
    return MatchResult(
        method=MatchMethod.SEMANTIC,
        score=min(best_score, 1.0),
        matched_intent_id=intent.intent_id,
        category=intent.category,
    )
