"""Typed records shared by the discovery and audit pipelines."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .normalizer import build_ticket_text

NO_MATCH = "NONE"


class MatchMethod(str, Enum):
    REGEX = "regex"
    SEMANTIC = "semantic"
    FUZZY = "fuzzy"


class Verdict(str, Enum):
    PROPOSE_NEW_INTENT = "propose_new_intent"
    MAP_TO_EXISTING = "map_to_existing"
    AMBIGUOUS = "ambiguous"


class QualityFlag(str, Enum):
    MIDDLE_ZONE = "MIDDLE_ZONE"
    HIGH_RISK = "HIGH_RISK"
    HIGH_AUTOMATION_POTENTIAL = "HIGH_AUTOMATION_POTENTIAL"


class Classification(str, Enum):
    CORRECT = "CORRECT"
    INCORRECT = "INCORRECT"
    AMBIGUOUS = "AMBIGUOUS"


class FixType(str, Enum):
    TIGHTEN_REGEX = "tighten_regex"
    ADJUST_NORMALIZATION = "adjust_normalization"
    ADD_DISAMBIGUATION = "add_disambiguation"


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y", "t"}
    return bool(value)


def _as_float(value: Any) -> float:
    try:
        return float(value) if value not in (None, "") else 0.0
    except (TypeError, ValueError):
        return 0.0


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class TicketRecord:
    """A scrubbed ticket together with the upstream classifier's output."""

    id: int
    subject: str
    question: str
    answer: str = ""
    prior_intent: Optional[str] = None
    prior_confidence: float = 0.0
    auto_closeable: bool = False
    reopened: bool = False
    auto_closed: bool = False
    is_new_intent: bool = False

    @property
    def text(self) -> str:
        return build_ticket_text(self.subject, self.question)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TicketRecord":
        raw_id = payload.get("ticket_id", payload.get("id"))
        return cls(
            id=int(raw_id),
            subject=str(payload.get("subject") or ""),
            question=str(payload.get("customer_question") or payload.get("question") or ""),
            answer=str(payload.get("agent_answer") or payload.get("answer") or ""),
            prior_intent=_optional_text(payload.get("intent")),
            prior_confidence=_as_float(payload.get("intent_confidence")),
            auto_closeable=_as_bool(payload.get("auto_close_possible")),
            reopened=_as_bool(payload.get("follow_up_needed")),
            auto_closed=_as_bool(payload.get("auto_closed")),
            is_new_intent=_as_bool(payload.get("is_new_intent")),
        )


@dataclass(frozen=True)
class CanonicalIntent:
    intent_id: str
    category: str = ""
    subcategory: Optional[str] = None
    description: Optional[str] = None
    keywords: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CanonicalIntent":
        intent_id = _optional_text(payload.get("intent_id") or payload.get("intentId"))
        if not intent_id:
            raise ValueError("Canonical intent entries must include a non-empty 'intent_id'")
        raw_keywords = payload.get("keywords") or ()
        if isinstance(raw_keywords, str):
            keywords = tuple(part.strip() for part in raw_keywords.split(",") if part.strip())
        else:
            keywords = tuple(str(part).strip() for part in raw_keywords if str(part).strip())
        return cls(
            intent_id=intent_id,
            category=str(payload.get("category") or ""),
            subcategory=_optional_text(payload.get("subcategory")),
            description=_optional_text(payload.get("description")),
            keywords=keywords,
        )

    def embedding_text(self) -> str:
        parts = [f"Intent: {self.intent_id}", f"Category: {self.category}"]
        if self.subcategory:
            parts.append(f"Subcategory: {self.subcategory}")
        if self.description:
            parts.append(f"Description: {self.description}")
        if self.keywords:
            parts.append(f"Keywords: {', '.join(self.keywords)}")
        return " | ".join(parts)


@dataclass(eq=False)
class Cluster:
    id: int
    member_indices: Tuple[int, ...]
    centroid: np.ndarray
    member_ticket_ids: Tuple[int, ...] = ()

    @property
    def size(self) -> int:
        return len(self.member_indices)


@dataclass(frozen=True)
class MatchResult:
    method: MatchMethod
    score: float
    matched_intent_id: str
    category: str = ""

    @property
    def is_match(self) -> bool:
        return self.matched_intent_id != NO_MATCH


@dataclass(frozen=True)
class FlagNote:
    flag: QualityFlag
    detail: str


@dataclass(frozen=True)
class ClusterVerdict:
    verdict: Verdict
    quality_flags: Tuple[FlagNote, ...] = ()

    @property
    def flags(self) -> Tuple[QualityFlag, ...]:
        return tuple(note.flag for note in self.quality_flags)


@dataclass
class ClusterSummary:
    """Cluster statistics and decision packaged for human review."""

    cluster_id: int
    size: int
    nearest: MatchResult
    verdict: ClusterVerdict
    auto_closeable_rate: float
    reopen_rate: float
    avg_confidence: float
    top_keywords: List[str]
    example_texts: List[str]
    sample_tickets: List[Dict[str, Any]]
    dominant_intent: Optional[str]
    suggested_label: str
    member_ticket_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class AssignedIntent:
    """An upstream intent label together with evidence used to audit it."""

    intent_id: str
    ticket_count: int
    avg_confidence: float = 0.0
    examples: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProposedFix:
    fix_type: FixType
    suggested_regex: Optional[str] = None
    normalization_replacements: Dict[str, str] = field(default_factory=dict)
    disambiguation_question: Optional[str] = None
    disambiguation_options: Tuple[str, ...] = ()


@dataclass
class AuditFinding:
    assigned_intent: str
    ticket_count: int
    match: MatchResult
    classification: Classification
    reason: str
    shared_tokens: List[str]
    label_similarity: float
    example_queries: List[str]
    reference_preview: str = ""
    proposed_fix: Optional[ProposedFix] = None


@dataclass
class PromotionCandidate:
    intent_id: str
    ticket_count: int
    avg_confidence: float
    category: str
    subcategory: str
    is_transactional: bool
    endpoint_readiness: str
    recommended_action: str
    reasoning: str
    merge_target: Optional[str] = None
