"""Discovery run: cluster unmatched tickets and compare clusters with canonical intents."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .clustering import EDGE_THRESHOLD, MERGE_THRESHOLD, MIN_CLUSTER_SIZE, ClusteringResult, cluster_vectors
from .embeddings import DEFAULT_BATCH_SIZE, EmbeddingProvider, build_canonical_index, embed_in_batches
from .errors import ConfigError
from .models import CanonicalIntent, ClusterSummary, TicketRecord
from .normalizer import DEFAULT_STOPWORDS
from .reporting import NOISE_SAMPLE_LIMIT, DiscoveryReport, assemble_discovery_report
from .sources import DEFAULT_MAX_TICKETS, BoilerplateSettings, select_eligible
from .tiering import TierThresholds, summarize_cluster

LOGGER = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Caller-owned state for one run: cancellation, progress and warnings."""

    should_cancel: Optional[Callable[[], bool]] = None
    on_progress: Optional[Callable[[str, int], None]] = None
    stage: str = "pending"
    warnings: List[str] = field(default_factory=list)
    _cancelled: bool = False

    def cancel(self) -> None:
        self._cancelled = True

    def is_cancelled(self) -> bool:
        if not self._cancelled and self.should_cancel is not None and self.should_cancel():
            self._cancelled = True
        return self._cancelled

    def progress(self, message: str, percent: int) -> None:
        self.stage = message
        LOGGER.debug("[%s%%] %s", percent, message)
        if self.on_progress:
            self.on_progress(message, percent)

    def warn(self, message: str) -> None:
        LOGGER.warning(message)
        self.warnings.append(message)


@dataclass
class DiscoverySettings:
    edge_threshold: float = EDGE_THRESHOLD
    merge_threshold: float = MERGE_THRESHOLD
    min_cluster_size: int = MIN_CLUSTER_SIZE
    max_tickets: int = DEFAULT_MAX_TICKETS
    noise_sample: int = NOISE_SAMPLE_LIMIT
    keyword_top_n: int = 10
    batch_size: int = DEFAULT_BATCH_SIZE
    stop_words: frozenset[str] = DEFAULT_STOPWORDS
    boilerplate: BoilerplateSettings = field(default_factory=BoilerplateSettings)
    thresholds: TierThresholds = field(default_factory=TierThresholds)

    @classmethod
    def from_config(
        cls,
        discovery: Mapping[str, Any],
        tiering: Optional[Mapping[str, Any]] = None,
        *,
        batch_size: Optional[int] = None,
    ) -> "DiscoverySettings":
        settings = cls()
        for name in ("edge_threshold", "merge_threshold"):
            if discovery.get(name) is not None:
                setattr(settings, name, float(discovery[name]))
        for name in ("min_cluster_size", "max_tickets", "noise_sample", "keyword_top_n"):
            if discovery.get(name) is not None:
                setattr(settings, name, int(discovery[name]))
        if batch_size:
            settings.batch_size = int(batch_size)
        extra = discovery.get("extra_stopwords") or []
        if extra:
            settings.stop_words = DEFAULT_STOPWORDS | {str(word).lower() for word in extra}
        boilerplate = discovery.get("boilerplate") or {}
        settings.boilerplate = BoilerplateSettings(
            auto_reply_phrases=tuple(boilerplate.get("auto_reply_phrases") or settings.boilerplate.auto_reply_phrases),
            confirmation_phrases=tuple(
                boilerplate.get("confirmation_phrases") or settings.boilerplate.confirmation_phrases
            ),
            confirmation_max_length=int(
                boilerplate.get("confirmation_max_length", settings.boilerplate.confirmation_max_length)
            ),
        )
        tiering = tiering or {}
        try:
            settings.thresholds = TierThresholds(
                map_threshold=float(tiering.get("map_threshold", 0.78)),
                ambiguous_threshold=float(tiering.get("ambiguous_threshold", 0.65)),
                high_risk_rate=float(tiering.get("high_risk_rate", 0.15)),
                high_automation_rate=float(tiering.get("high_automation_rate", 0.70)),
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid tiering configuration: {exc}") from exc
        if not settings.edge_threshold <= settings.merge_threshold:
            raise ConfigError("discovery.edge_threshold must not exceed discovery.merge_threshold")
        if settings.min_cluster_size < 1:
            raise ConfigError("discovery.min_cluster_size must be at least 1")
        return settings


def run_discovery(
    tickets: Sequence[TicketRecord],
    canonical_intents: Sequence[CanonicalIntent],
    provider: EmbeddingProvider,
    *,
    settings: Optional[DiscoverySettings] = None,
    context: Optional[RunContext] = None,
) -> DiscoveryReport:
    """Run the discovery path end to end.

    A cancelled run returns whatever was computed so far with
    ``metadata.completed`` set to ``False``. Once clustering has run, the
    metadata counts every formed cluster even if some were not yet compared
    with the canonical intents.
    """
    settings = settings or DiscoverySettings()
    context = context or RunContext()
    started = time.monotonic()
    summaries: List[ClusterSummary] = []
    noise: List[TicketRecord] = []
    embedding_errors = 0
    embedded_count = 0
    clustering: Optional[ClusteringResult] = None

    def finish(completed: bool) -> DiscoveryReport:
        report = assemble_discovery_report(
            summaries,
            noise,
            source_tickets=len(selection.source),
            eligible_tickets=len(selection.eligible),
            embedded_tickets=embedded_count,
            embedding_errors=embedding_errors,
            total_clusters=len(clustering.clusters) if clustering is not None else None,
            clustered_tickets=clustering.clustered_count if clustering is not None else None,
            processing_time_ms=int((time.monotonic() - started) * 1000),
            completed=completed,
            noise_limit=settings.noise_sample,
        )
        context.progress("Intent discovery complete" if completed else "Intent discovery cancelled", 100)
        return report

    context.progress("Selecting eligible tickets", 0)
    selection = select_eligible(
        tickets,
        [intent.intent_id for intent in canonical_intents],
        boilerplate=settings.boilerplate,
        max_tickets=settings.max_tickets,
    )
    if selection.truncated:
        context.warn(f"Input capped at the newest {settings.max_tickets} tickets")
    if not selection.eligible:
        LOGGER.info("No eligible tickets; nothing to cluster")
        return finish(True)
    if context.is_cancelled():
        return finish(False)

    eligible = selection.eligible
    context.progress(f"Embedding {len(eligible)} tickets", 10)
    batch = embed_in_batches(
        provider,
        [ticket.text for ticket in eligible],
        batch_size=settings.batch_size,
        on_batch=lambda done, total: context.progress(f"Embedded {done}/{total} tickets", 10 + int(40 * done / total)),
        should_cancel=context.is_cancelled,
    )
    embedding_errors = batch.failed_batches
    embedded_count = batch.embedded_count
    if batch.failed_batches:
        context.warn(f"{batch.failed_batches} embedding batch(es) failed; those tickets were skipped")
    if batch.cancelled or context.is_cancelled():
        return finish(False)

    positions = batch.positions()
    embedded = [eligible[position] for position in positions]
    context.progress(f"Clustering {len(embedded)} embedded tickets", 50)
    clustering = cluster_vectors(
        [batch.vectors[position] for position in positions],
        edge_threshold=settings.edge_threshold,
        merge_threshold=settings.merge_threshold,
        min_cluster_size=settings.min_cluster_size,
        ticket_ids=[ticket.id for ticket in embedded],
    )
    noise = [embedded[index] for index in clustering.noise_indices]
    if context.is_cancelled():
        return finish(False)

    context.progress("Embedding canonical intents", 65)
    index = build_canonical_index(canonical_intents, provider, batch_size=settings.batch_size)
    if index.failed_batches:
        embedding_errors += index.failed_batches
        context.warn(
            f"{index.failed_batches} canonical embedding batch(es) failed; "
            f"clusters are compared with {len(index)} of {len(canonical_intents)} canonical intents"
        )
    if context.is_cancelled():
        return finish(False)

    context.progress("Analysing clusters", 75)
    for cluster in clustering.clusters:
        if context.is_cancelled():
            return finish(False)
        members = [embedded[member] for member in cluster.member_indices]
        summaries.append(
            summarize_cluster(
                cluster,
                members,
                index.nearest(cluster.centroid),
                thresholds=settings.thresholds,
                keyword_count=settings.keyword_top_n,
                stop_words=settings.stop_words,
            )
        )
    return finish(True)
