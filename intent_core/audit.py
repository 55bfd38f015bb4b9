"""Multi-method audit of intent labels assigned by the upstream classifier.

Every assigned intent runs through a cascade:

1. the ordered regex rule table, tried against the intent's example queries;
2. the embedding of ``"<humanised label> <first example>"`` compared with the
   canonical index, accepted at ``semantic_accept`` and handed to the fuzzy
   tier inside the ``fuzzy_band_floor`` band;
3. fuzzy label similarity against every canonical intent id.

Matched intents become :class:`AuditFinding` records classified by
:func:`intent_core.decisions.classify_match`; intents that match nothing become
:class:`PromotionCandidate` records.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .decisions import classify_match, fuzzy_label_score, fuzzy_strength, label_similarity, propose_fix, shared_tokens
from .embeddings import EmbeddingProvider
from .errors import ConfigError, EmbeddingError
from .matching import CanonicalIndex
from .models import (
    NO_MATCH,
    AssignedIntent,
    AuditFinding,
    CanonicalIntent,
    MatchMethod,
    MatchResult,
    PromotionCandidate,
)
from .normalizer import humanize_identifier
from .reporting import AuditReport, assemble_audit_report
from .rules import RegexRuleTable

LOGGER = logging.getLogger(__name__)

CREATE_NOW = "create_canonical_now"
MERGE_WITH_EXISTING = "merge_with_existing"
WAIT = "wait"
ENDPOINT_EXISTS = "exists"
ENDPOINT_TODO = "TODO"

DEFAULT_CATEGORY_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Smart Tag", ("smarttag",)),
    ("QR Tag", ("qrtag", "qr")),
    ("Billing & Subscription", ("subscription", "billing", "invoice", "payment", "charge", "refund")),
    ("App", ("app",)),
    ("Ownership Transfer", ("ownership", "transfer")),
    ("Registration", ("registration", "register")),
    ("ID Lookup", ("chip", "update")),
    ("Family Sharing", ("family",)),
    ("Account", ("login", "password", "twofactor")),
    ("Lost & Found", ("lost", "found")),
    ("App", ("push", "notification")),
    ("Registration", ("breeder", "litter", "species", "nonsupported", "duplicate", "merge")),
    ("Billing & Subscription", ("cancel",)),
)
DEFAULT_TRANSACTIONAL_VERBS = (
    "update", "change", "transfer", "cancel", "refund", "merge", "add", "remove",
    "correct", "replace", "reassign", "register", "order",
)
DEFAULT_ENDPOINTS = (
    "ChipLookup", "OwnershipTransferWeb", "ReportLostPet", "ReportFoundPet",
    "NewRegistration", "ForeignRegistration", "ViewMyPets",
)


@dataclass
class PromotionRules:
    category_rules: Sequence[Tuple[str, Sequence[str]]] = DEFAULT_CATEGORY_RULES
    fallback_category: str = "Uncategorised"
    transactional_verbs: Sequence[str] = DEFAULT_TRANSACTIONAL_VERBS
    endpoints: Sequence[str] = DEFAULT_ENDPOINTS
    merge_threshold: float = 0.60
    create_min_tickets: int = 5

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "PromotionRules":
        rules = cls()
        raw_categories = data.get("category_rules")
        if raw_categories is not None:
            if not isinstance(raw_categories, list):
                raise ConfigError("audit.promotion.category_rules must be a list")
            parsed: List[Tuple[str, Sequence[str]]] = []
            for entry in raw_categories:
                if not isinstance(entry, Mapping) or not entry.get("category"):
                    raise ConfigError("Category rules need a 'category' and a list of 'keywords'")
                parsed.append((str(entry["category"]), [str(k).lower() for k in entry.get("keywords") or []]))
            rules.category_rules = parsed
        if data.get("fallback_category"):
            rules.fallback_category = str(data["fallback_category"])
        if data.get("transactional_verbs") is not None:
            rules.transactional_verbs = [str(v).lower() for v in data["transactional_verbs"]]
        if data.get("endpoints") is not None:
            rules.endpoints = [str(v) for v in data["endpoints"]]
        rules.merge_threshold = float(data.get("merge_threshold", rules.merge_threshold))
        rules.create_min_tickets = int(data.get("create_min_tickets", rules.create_min_tickets))
        return rules

    def infer_category(self, intent_id: str) -> Tuple[str, str]:
        lowered = intent_id.lower()
        subcategory = humanize_identifier(intent_id)
        for category, keywords in self.category_rules:
            if any(keyword in lowered for keyword in keywords):
                return category, subcategory
        return self.fallback_category, subcategory

    def is_transactional(self, intent_id: str) -> bool:
        lowered = intent_id.lower()
        return any(verb in lowered for verb in self.transactional_verbs)

    def endpoint_readiness(self, intent_id: str) -> str:
        lowered = intent_id.lower()
        if any(endpoint.lower() in lowered for endpoint in self.endpoints):
            return ENDPOINT_EXISTS
        return ENDPOINT_TODO


@dataclass
class AuditSettings:
    semantic_accept: float = 0.78
    fuzzy_band_floor: float = 0.60
    fuzzy_minimum: float = 0.50
    fuzzy_on_low_semantic: bool = False
    query_limit: int = 500
    preview_length: int = 200
    max_examples: int = 5
    promotion: PromotionRules = field(default_factory=PromotionRules)

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "AuditSettings":
        settings = cls()
        for name in ("semantic_accept", "fuzzy_band_floor", "fuzzy_minimum"):
            if data.get(name) is not None:
                setattr(settings, name, float(data[name]))
        for name in ("query_limit", "preview_length", "max_examples"):
            if data.get(name) is not None:
                setattr(settings, name, int(data[name]))
        settings.fuzzy_on_low_semantic = bool(data.get("fuzzy_on_low_semantic", False))
        settings.promotion = PromotionRules.from_config(data.get("promotion") or {})
        if not 0.0 <= settings.fuzzy_band_floor <= settings.semantic_accept <= 1.0:
            raise ConfigError("audit thresholds must satisfy 0 <= fuzzy_band_floor <= semantic_accept <= 1")
        return settings


def closest_label(intent_id: str, canonical_ids: Sequence[str]) -> Optional[Tuple[str, float]]:
    """Canonical id with the highest fuzzy label score; first one wins ties."""
    best: Optional[Tuple[str, float]] = None
    for canonical_id in canonical_ids:
        score = fuzzy_label_score(intent_id, canonical_id)
        if score > 0 and (best is None or score > best[1]):
            best = (canonical_id, score)
    return best


class AuditMatcher:
    """Run the regex, semantic and fuzzy tiers against a fixed canonical set."""

    def __init__(
        self,
        *,
        index: CanonicalIndex,
        rules: RegexRuleTable,
        provider: Optional[EmbeddingProvider],
        settings: Optional[AuditSettings] = None,
        canonical_intents: Optional[Sequence[CanonicalIntent]] = None,
    ) -> None:
        self.index = index
        self.settings = settings or AuditSettings()
        self.provider = provider
        self.embedding_errors = index.failed_batches
        intents = list(canonical_intents) if canonical_intents is not None else list(index.intents)
        self._intents: Dict[str, CanonicalIntent] = {intent.intent_id: intent for intent in intents}
        self.rules = rules.restricted_to(self._intents)

    @property
    def canonical_ids(self) -> List[str]:
        return list(self._intents)

    def semantic_query(self, assigned: AssignedIntent) -> str:
        first_example = assigned.examples[0] if assigned.examples else ""
        return f"{humanize_identifier(assigned.intent_id)} {first_example}".strip()[: self.settings.query_limit]

    def regex_tier(self, assigned: AssignedIntent) -> Optional[MatchResult]:
        hit = self.rules.first_match(assigned.examples)
        if hit is None:
            return None
        rule, example = hit
        LOGGER.debug("Regex rule %s matched example %r of %s", rule.intent, example[:80], assigned.intent_id)
        return MatchResult(
            method=MatchMethod.REGEX,
            score=1.0,
            matched_intent_id=rule.intent,
            category=self._intents[rule.intent].category,
        )

    def semantic_tier(self, assigned: AssignedIntent) -> Optional[MatchResult]:
        """Nearest canonical intent for the label query, or ``None`` when the embedding fails."""
        if self.provider is None or not len(self.index):
            return MatchResult(method=MatchMethod.SEMANTIC, score=0.0, matched_intent_id=NO_MATCH)
        try:
            vectors = self.provider.embed([self.semantic_query(assigned)])
            if len(vectors) != 1:
                raise EmbeddingError(f"Expected one query vector, received {len(vectors)}")
        except EmbeddingError as exc:
            self.embedding_errors += 1
            LOGGER.warning("Embedding failed for %s, treating it as unmatched: %s", assigned.intent_id, exc)
            return None
        return self.index.nearest(vectors[0])

    def fuzzy_tier(self, assigned: AssignedIntent) -> Optional[MatchResult]:
        best = closest_label(assigned.intent_id, self.canonical_ids)
        if best is None or best[1] < self.settings.fuzzy_minimum:
            return None
        canonical_id, score = best
        LOGGER.debug("Fuzzy %s match %s -> %s (%.3f)", fuzzy_strength(score), assigned.intent_id, canonical_id, score)
        return MatchResult(
            method=MatchMethod.FUZZY,
            score=score,
            matched_intent_id=canonical_id,
            category=self._intents[canonical_id].category,
        )

    def match(self, assigned: AssignedIntent) -> Optional[MatchResult]:
        regex = self.regex_tier(assigned)
        if regex is not None:
            return regex
        semantic = self.semantic_tier(assigned)
        if semantic is None:
            return None
        if semantic.is_match and semantic.score >= self.settings.semantic_accept:
            return semantic
        if semantic.score >= self.settings.fuzzy_band_floor or self.settings.fuzzy_on_low_semantic:
            return self.fuzzy_tier(assigned)
        return None

    def finding_for(self, assigned: AssignedIntent, match: MatchResult) -> AuditFinding:
        canonical_id = match.matched_intent_id
        overlap = shared_tokens(assigned.intent_id, canonical_id)
        similarity = label_similarity(assigned.intent_id, canonical_id)
        classification, reason = classify_match(match.method, match.score, len(overlap), similarity)
        fix = propose_fix(
            match.method,
            classification,
            assigned.intent_id,
            canonical_id,
            current_pattern=self.rules.pattern_for(canonical_id),
        )
        canonical = self._intents.get(canonical_id)
        preview = (canonical.description or "") if canonical else ""
        return AuditFinding(
            assigned_intent=assigned.intent_id,
            ticket_count=assigned.ticket_count,
            match=match,
            classification=classification,
            reason=f"{assigned.intent_id} -> {canonical_id}: {reason}",
            shared_tokens=overlap,
            label_similarity=round(similarity, 4),
            example_queries=list(assigned.examples),
            reference_preview=preview[: self.settings.preview_length],
            proposed_fix=fix,
        )

    def promotion_for(self, assigned: AssignedIntent) -> PromotionCandidate:
        rules = self.settings.promotion
        category, subcategory = rules.infer_category(assigned.intent_id)
        closest = closest_label(assigned.intent_id, self.canonical_ids)
        merge_target: Optional[str] = None
        if closest is not None and closest[1] >= rules.merge_threshold:
            merge_target = closest[0]
            action = MERGE_WITH_EXISTING
            reasoning = f"Fuzzy label match ({closest[1]:.2f}) to {merge_target}; consider mapping"
        elif assigned.ticket_count >= rules.create_min_tickets:
            action = CREATE_NOW
            reasoning = f"{assigned.ticket_count} tickets, enough volume for canonical creation"
        else:
            action = WAIT
            reasoning = f"Only {assigned.ticket_count} ticket(s); wait for more data"
        return PromotionCandidate(
            intent_id=assigned.intent_id,
            ticket_count=assigned.ticket_count,
            avg_confidence=assigned.avg_confidence,
            category=category,
            subcategory=subcategory,
            is_transactional=rules.is_transactional(assigned.intent_id),
            endpoint_readiness=rules.endpoint_readiness(assigned.intent_id),
            recommended_action=action,
            reasoning=reasoning,
            merge_target=merge_target,
        )

    def audit(self, assigned: AssignedIntent) -> Union[AuditFinding, PromotionCandidate]:
        match = self.match(assigned)
        if match is None or not match.is_match:
            return self.promotion_for(assigned)
        return self.finding_for(assigned, match)


def run_audit(
    assignments: Sequence[AssignedIntent],
    matcher: AuditMatcher,
    *,
    on_progress: Optional[Callable[[int, int], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
) -> AuditReport:
    """Audit every assigned intent and assemble the sorted report."""
    findings: List[AuditFinding] = []
    candidates: List[PromotionCandidate] = []
    completed = True
    for position, assigned in enumerate(assignments, start=1):
        if should_cancel and should_cancel():
            LOGGER.info("Audit cancelled after %s of %s intents", position - 1, len(assignments))
            completed = False
            break
        outcome = matcher.audit(assigned)
        if isinstance(outcome, AuditFinding):
            findings.append(outcome)
        else:
            candidates.append(outcome)
        if on_progress:
            on_progress(position, len(assignments))
    report = assemble_audit_report(
        findings,
        candidates,
        total_intents=len(assignments),
        completed=completed,
        embedding_errors=matcher.embedding_errors,
    )
    LOGGER.info(
        "Audited %s intents: %s matched, %s unmatched, %s embedding errors",
        report.summary.total_intents,
        report.summary.matched,
        report.summary.unmatched,
        report.summary.embedding_errors,
    )
    return report
