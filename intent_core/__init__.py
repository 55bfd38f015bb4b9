"""Shared modules for support intent discovery and match auditing."""

from .config import load_config, resolve_path
from .logging_setup import configure_logging
from .embeddings import EmbeddingClient, embed_in_batches
from .clustering import cluster_vectors
from .matching import CanonicalIndex, cosine_similarity, nearest_canonical
from .tiering import evaluate_cluster, tier_for_similarity
from .decisions import classify_match, propose_fix
from .audit import AuditMatcher, run_audit
from .discovery import RunContext, run_discovery
from .reporting import bucket_counts, format_audit_report

__all__ = [
    "load_config",
    "resolve_path",
    "configure_logging",
    "EmbeddingClient",
    "embed_in_batches",
    "cluster_vectors",
    "CanonicalIndex",
    "cosine_similarity",
    "nearest_canonical",
    "evaluate_cluster",
    "tier_for_similarity",
    "classify_match",
    "propose_fix",
    "AuditMatcher",
    "run_audit",
    "RunContext",
    "run_discovery",
    "bucket_counts",
    "format_audit_report",
]
