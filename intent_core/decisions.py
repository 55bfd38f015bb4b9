"""Label similarity scoring, the match classification table and fix proposals."""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from .models import Classification, FixType, MatchMethod, ProposedFix
from .normalizer import humanize_identifier, label_tokens, snake_case

SEMANTIC_CERTAIN = 0.85
SEMANTIC_ACCEPT = 0.78
FUZZY_CERTAIN = 0.85
FUZZY_AMBIGUOUS = 0.65
FUZZY_STRONG = 0.75
FUZZY_MODERATE = 0.65
REGEX_LABEL_CORRECT = 0.60
REGEX_LABEL_AMBIGUOUS = 0.35
LEVENSHTEIN_WEIGHT = 0.4
JACCARD_WEIGHT = 0.6

_IDENTIFIER_NOISE = re.compile(r"[_-]")


def _compact(identifier: str) -> str:
    return _IDENTIFIER_NOISE.sub("", identifier.lower())


def jaccard(left: List[str], right: List[str]) -> float:
    left_set, right_set = set(left), set(right)
    union = left_set | right_set
    if not union:
        return 0.0
    return len(left_set & right_set) / len(union)


def fuzzy_label_score(assigned: str, canonical: str) -> float:
    """Blend of edit-distance similarity and token overlap between two intent ids."""
    edit = Levenshtein.normalized_similarity(_compact(assigned), _compact(canonical))
    overlap = jaccard(label_tokens(assigned), label_tokens(canonical))
    return LEVENSHTEIN_WEIGHT * edit + JACCARD_WEIGHT * overlap


# The label similarity used to validate regex matches is the same blend.
label_similarity = fuzzy_label_score


def shared_tokens(assigned: str, canonical: str) -> List[str]:
    """Assigned-label tokens that contain, or are contained in, a canonical token."""
    canonical_tokens = label_tokens(canonical)
    return [
        token
        for token in label_tokens(assigned)
        if any(other in token or token in other for other in canonical_tokens)
    ]


def distinctive_tokens(assigned: str, canonical: str) -> List[str]:
    canonical_tokens = label_tokens(canonical)
    return [
        token
        for token in label_tokens(assigned)
        if not any(token in other for other in canonical_tokens)
    ]


def fuzzy_strength(score: float) -> str:
    if score >= FUZZY_STRONG:
        return "strong"
    if score >= FUZZY_MODERATE:
        return "moderate"
    return "weak"


def classify_match(
    method: MatchMethod,
    score: float,
    shared_token_count: int,
    label_sim: float,
) -> Tuple[Classification, str]:
    """Decide whether a cascade match is trustworthy.

    Pure function over the match method, its score, the number of shared
    label tokens and the label similarity; returns the classification and a
    human readable reason.
    """
    if method is MatchMethod.REGEX:
        if shared_token_count >= 2 or label_sim >= REGEX_LABEL_CORRECT:
            return Classification.CORRECT, f"Regex match validated by label similarity {label_sim:.3f}"
        if shared_token_count >= 1 or label_sim >= REGEX_LABEL_AMBIGUOUS:
            return (
                Classification.AMBIGUOUS,
                f"Regex match with weak label similarity {label_sim:.3f}; the rule may be too broad",
            )
        return (
            Classification.INCORRECT,
            f"Regex overmatch: no shared label tokens and label similarity {label_sim:.3f}",
        )
    if method is MatchMethod.SEMANTIC:
        if score >= SEMANTIC_CERTAIN:
            return Classification.CORRECT, f"High semantic similarity {score:.3f}"
        if score >= SEMANTIC_ACCEPT and shared_token_count >= 2:
            return (
                Classification.CORRECT,
                f"Semantic match {score:.3f} confirmed by {shared_token_count} shared label tokens",
            )
        return (
            Classification.AMBIGUOUS,
            f"Semantic match {score:.3f} with little label overlap; may be a related but distinct concept",
        )
    if score >= FUZZY_CERTAIN:
        return Classification.CORRECT, f"Strong fuzzy label match {score:.3f}: naming variant of the same intent"
    if score >= FUZZY_AMBIGUOUS:
        return Classification.AMBIGUOUS, f"Moderate fuzzy label match {score:.3f}: may need disambiguation"
    return Classification.INCORRECT, f"Weak fuzzy label match {score:.3f}: likely a distinct intent"


def suggest_tightened_regex(assigned: str, canonical: str, current_pattern: Optional[str]) -> str:
    """Prefix the current pattern with a negative lookahead over the assigned label's own words."""
    terms = [re.escape(token) for token in distinctive_tokens(assigned, canonical)]
    body = current_pattern or ""
    if not terms:
        return body
    return f"^(?!.*(?:{'|'.join(terms)})).*?(?:{body})"


def propose_fix(
    method: MatchMethod,
    classification: Classification,
    assigned: str,
    canonical: str,
    *,
    current_pattern: Optional[str] = None,
) -> Optional[ProposedFix]:
    """Return exactly one remediation for a non-CORRECT finding, otherwise ``None``."""
    if classification is Classification.CORRECT:
        return None
    if method is MatchMethod.REGEX:
        return ProposedFix(
            fix_type=FixType.TIGHTEN_REGEX,
            suggested_regex=suggest_tightened_regex(assigned, canonical, current_pattern),
        )
    if classification is Classification.INCORRECT:
        return ProposedFix(
            fix_type=FixType.ADJUST_NORMALIZATION,
            normalization_replacements={snake_case(assigned): assigned},
        )
    return ProposedFix(
        fix_type=FixType.ADD_DISAMBIGUATION,
        disambiguation_question=f'You are asking about "{humanize_identifier(assigned).lower()}". Do you mean:',
        disambiguation_options=(f"{canonical} (existing)", f"{assigned} (new topic)", "Something else"),
    )
