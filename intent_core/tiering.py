"""Verdict tiers, quality flags and per-cluster statistics."""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .models import (
    Cluster,
    ClusterSummary,
    ClusterVerdict,
    FlagNote,
    MatchResult,
    QualityFlag,
    TicketRecord,
    Verdict,
)
from .normalizer import DEFAULT_STOPWORDS, SEPARATOR, extract_keywords

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierThresholds:
    map_threshold: float = 0.78
    ambiguous_threshold: float = 0.65
    high_risk_rate: float = 0.15
    high_automation_rate: float = 0.70

    def __post_init__(self) -> None:
        if not 0.0 <= self.ambiguous_threshold <= self.map_threshold <= 1.0:
            raise ValueError("Tier thresholds must satisfy 0 <= ambiguous <= map <= 1")


DEFAULT_THRESHOLDS = TierThresholds()
EXAMPLE_COUNT = 3
EXAMPLE_LENGTH = 150
SAMPLE_COUNT = 5
SAMPLE_LENGTH = 200


def tier_for_similarity(similarity: float, thresholds: TierThresholds = DEFAULT_THRESHOLDS) -> Verdict:
    if similarity >= thresholds.map_threshold:
        return Verdict.MAP_TO_EXISTING
    if similarity >= thresholds.ambiguous_threshold:
        return Verdict.AMBIGUOUS
    return Verdict.PROPOSE_NEW_INTENT


def _rate(flags: Sequence[bool]) -> float:
    return sum(1 for flag in flags if flag) / len(flags) if flags else 0.0


def quality_flags(
    nearest: MatchResult,
    *,
    reopen_rate: float,
    auto_closeable_rate: float,
    thresholds: TierThresholds = DEFAULT_THRESHOLDS,
) -> List[FlagNote]:
    notes: List[FlagNote] = []
    if tier_for_similarity(nearest.score, thresholds) is Verdict.AMBIGUOUS:
        notes.append(
            FlagNote(
                QualityFlag.MIDDLE_ZONE,
                f"Similarity {nearest.score:.3f} to {nearest.matched_intent_id} needs manual verification",
            )
        )
    if reopen_rate > thresholds.high_risk_rate:
        notes.append(
            FlagNote(QualityFlag.HIGH_RISK, f"Follow-up rate {reopen_rate:.0%} indicates unresolved issues")
        )
    if auto_closeable_rate > thresholds.high_automation_rate:
        notes.append(
            FlagNote(
                QualityFlag.HIGH_AUTOMATION_POTENTIAL,
                f"{auto_closeable_rate:.0%} auto-closeable, strong candidate for automation",
            )
        )
    return notes


def evaluate_cluster(
    nearest: MatchResult,
    members: Sequence[TicketRecord],
    thresholds: TierThresholds = DEFAULT_THRESHOLDS,
) -> ClusterVerdict:
    """Assign a verdict and flags from the nearest canonical match and member outcomes."""
    notes = quality_flags(
        nearest,
        reopen_rate=_rate([ticket.reopened for ticket in members]),
        auto_closeable_rate=_rate([ticket.auto_closeable for ticket in members]),
        thresholds=thresholds,
    )
    return ClusterVerdict(verdict=tier_for_similarity(nearest.score, thresholds), quality_flags=tuple(notes))


def dominant_intent(members: Iterable[TicketRecord]) -> Optional[str]:
    counts: Counter[str] = Counter(ticket.prior_intent for ticket in members if ticket.prior_intent)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def summarize_cluster(
    cluster: Cluster,
    members: Sequence[TicketRecord],
    nearest: MatchResult,
    *,
    thresholds: TierThresholds = DEFAULT_THRESHOLDS,
    keyword_count: int = 10,
    stop_words: Iterable[str] = DEFAULT_STOPWORDS,
) -> ClusterSummary:
    if len(members) != cluster.size:
        raise ValueError(f"Cluster {cluster.id} has {cluster.size} members but {len(members)} tickets were given")
    member_ids = [ticket.id for ticket in members]
    if cluster.member_ticket_ids and list(cluster.member_ticket_ids) != member_ids:
        raise ValueError(f"Tickets given for cluster {cluster.id} are not its members")
    texts = [ticket.text for ticket in members]
    keywords = extract_keywords(texts, top_n=keyword_count, stop_words=stop_words)
    dominant = dominant_intent(members)
    verdict = evaluate_cluster(nearest, members, thresholds)
    avg_confidence = sum(ticket.prior_confidence for ticket in members) / len(members) if members else 0.0
    summary = ClusterSummary(
        cluster_id=cluster.id,
        size=cluster.size,
        nearest=nearest,
        verdict=verdict,
        auto_closeable_rate=round(_rate([ticket.auto_closeable for ticket in members]), 4),
        reopen_rate=round(_rate([ticket.reopened for ticket in members]), 4),
        avg_confidence=round(avg_confidence, 2),
        top_keywords=keywords,
        example_texts=[text.split(SEPARATOR)[0][:EXAMPLE_LENGTH] for text in texts[:EXAMPLE_COUNT]],
        sample_tickets=[
            {"ticket_id": ticket.id, "question": ticket.text[:SAMPLE_LENGTH]}
            for ticket in members[:SAMPLE_COUNT]
        ],
        dominant_intent=dominant,
        suggested_label=dominant or "-".join(keywords[:3]),
        member_ticket_ids=member_ids,
    )
    LOGGER.debug(
        "Cluster %s: size=%s nearest=%s (%.3f) verdict=%s",
        cluster.id,
        cluster.size,
        nearest.matched_intent_id,
        nearest.score,
        verdict.verdict.value,
    )
    return summary
