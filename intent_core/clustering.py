"""Single-linkage similarity clustering of ticket embeddings."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from .errors import DimensionMismatchError
from .matching import normalize_rows
from .models import Cluster

LOGGER = logging.getLogger(__name__)

EDGE_THRESHOLD = 0.5
MERGE_THRESHOLD = 0.65
MIN_CLUSTER_SIZE = 5
NOISE_LABEL = -1


class UnionFind:
    """Disjoint sets over the integers ``0..size-1``."""

    def __init__(self, size: int) -> None:
        self.parent: List[int] = list(range(size))
        self.rank: List[int] = [0] * size

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, left: int, right: int) -> bool:
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left == root_right:
            return False
        if self.rank[root_left] < self.rank[root_right]:
            self.parent[root_left] = root_right
        elif self.rank[root_left] > self.rank[root_right]:
            self.parent[root_right] = root_left
        else:
            self.parent[root_right] = root_left
            self.rank[root_left] += 1
        return True

    def groups(self) -> Dict[int, List[int]]:
        """Members per root, in order of each group's smallest index."""
        grouped: Dict[int, List[int]] = {}
        for index in range(len(self.parent)):
            grouped.setdefault(self.find(index), []).append(index)
        return grouped


@dataclass
class SimilarityEdge:
    left: int
    right: int
    similarity: float


@dataclass
class ClusteringResult:
    clusters: List[Cluster]
    noise_indices: List[int]
    labels: List[int]
    edges_considered: int = 0
    edges_merged: int = 0

    @property
    def clustered_count(self) -> int:
        return sum(cluster.size for cluster in self.clusters)


def stack_vectors(vectors: Sequence[Sequence[float] | np.ndarray]) -> np.ndarray:
    if not len(vectors):
        return np.zeros((0, 0))
    rows = [np.asarray(vector, dtype=np.float64) for vector in vectors]
    dimension = rows[0].shape[0]
    for position, row in enumerate(rows):
        if row.ndim != 1 or row.shape[0] != dimension:
            raise DimensionMismatchError(dimension, int(row.shape[-1]), context=f"ticket vector {position}")
    return np.vstack(rows)


def candidate_edges(matrix: np.ndarray, *, edge_threshold: float = EDGE_THRESHOLD) -> List[SimilarityEdge]:
    """Pairs with cosine similarity above ``edge_threshold``, most similar first."""
    count = matrix.shape[0]
    if count < 2:
        return []
    unit = normalize_rows(matrix)
    similarity = unit @ unit.T
    rows, cols = np.triu_indices(count, k=1)
    values = similarity[rows, cols]
    keep = values > edge_threshold
    rows, cols, values = rows[keep], cols[keep], values[keep]
    order = np.argsort(-values, kind="stable")
    return [
        SimilarityEdge(left=int(rows[i]), right=int(cols[i]), similarity=float(values[i]))
        for i in order
    ]


def cluster_vectors(
    vectors: Sequence[Sequence[float] | np.ndarray],
    *,
    edge_threshold: float = EDGE_THRESHOLD,
    merge_threshold: float = MERGE_THRESHOLD,
    min_cluster_size: int = MIN_CLUSTER_SIZE,
    ticket_ids: Optional[Sequence[int]] = None,
) -> ClusteringResult:
    """Group vectors with single-linkage union-find.

    Edges are unioned from most to least similar and the scan stops at the
    first edge below ``merge_threshold``. Groups smaller than
    ``min_cluster_size`` are reported as noise.
    """
    matrix = stack_vectors(vectors)
    count = matrix.shape[0]
    if ticket_ids is not None and len(ticket_ids) != count:
        raise ValueError("ticket_ids must align with vectors")

    edges = candidate_edges(matrix, edge_threshold=edge_threshold)
    forest = UnionFind(count)
    merged = 0
    for edge in edges:
        if edge.similarity < merge_threshold:
            break
        if forest.union(edge.left, edge.right):
            merged += 1

    labels = [NOISE_LABEL] * count
    clusters: List[Cluster] = []
    noise: List[int] = []
    for members in forest.groups().values():
        if len(members) < min_cluster_size:
            noise.extend(members)
            continue
        cluster_id = len(clusters)
        centroid = matrix[members].mean(axis=0)
        for index in members:
            labels[index] = cluster_id
        clusters.append(
            Cluster(
                id=cluster_id,
                member_indices=tuple(members),
                centroid=centroid,
                member_ticket_ids=tuple(ticket_ids[i] for i in members) if ticket_ids is not None else (),
            )
        )
    noise.sort()
    LOGGER.info(
        "Clustered %s vectors into %s clusters (%s noise) from %s candidate edges",
        count,
        len(clusters),
        len(noise),
        len(edges),
    )
    return ClusteringResult(
        clusters=clusters,
        noise_indices=noise,
        labels=labels,
        edges_considered=len(edges),
        edges_merged=merged,
    )
