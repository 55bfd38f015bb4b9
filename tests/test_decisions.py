from __future__ import annotations

import pytest

from intent_core.decisions import (
    classify_match,
    distinctive_tokens,
    fuzzy_label_score,
    fuzzy_strength,
    jaccard,
    propose_fix,
    shared_tokens,
    suggest_tightened_regex,
)
from intent_core.models import Classification, FixType, MatchMethod


@pytest.mark.parametrize(
    "method, score, shared, label_sim, expected",
    [
        (MatchMethod.REGEX, 1.0, 2, 0.1, Classification.CORRECT),
        (MatchMethod.REGEX, 1.0, 0, 0.6, Classification.CORRECT),
        (MatchMethod.REGEX, 1.0, 1, 0.1, Classification.AMBIGUOUS),
        (MatchMethod.REGEX, 1.0, 0, 0.35, Classification.AMBIGUOUS),
        (MatchMethod.REGEX, 1.0, 0, 0.2, Classification.INCORRECT),
        (MatchMethod.SEMANTIC, 0.85, 0, 0.0, Classification.CORRECT),
        (MatchMethod.SEMANTIC, 0.80, 2, 0.0, Classification.CORRECT),
        (MatchMethod.SEMANTIC, 0.80, 1, 0.9, Classification.AMBIGUOUS),
        (MatchMethod.SEMANTIC, 0.78, 0, 0.0, Classification.AMBIGUOUS),
        (MatchMethod.FUZZY, 0.85, 0, 0.0, Classification.CORRECT),
        (MatchMethod.FUZZY, 0.84, 3, 0.0, Classification.AMBIGUOUS),
        (MatchMethod.FUZZY, 0.65, 0, 0.0, Classification.AMBIGUOUS),
        (MatchMethod.FUZZY, 0.64, 0, 0.0, Classification.INCORRECT),
    ],
)
def test_classification_table(
    method: MatchMethod, score: float, shared: int, label_sim: float, expected: Classification
) -> None:
    classification, reason = classify_match(method, score, shared, label_sim)

    assert classification is expected
    assert reason


def test_regex_overmatch_without_shared_tokens_is_incorrect() -> None:
    classification, reason = classify_match(MatchMethod.REGEX, 1.0, 0, 0.2)

    assert classification is Classification.INCORRECT
    assert "overmatch" in reason.lower()


def test_fuzzy_label_score_ignores_separators_and_case() -> None:
    assert fuzzy_label_score("Login_Issue", "LoginIssue") == pytest.approx(1.0)
    assert fuzzy_label_score("login-issue", "LoginIssue") == pytest.approx(1.0)


def test_fuzzy_label_score_for_related_labels() -> None:
    score = fuzzy_label_score("PetDeceasedReport", "PetDeceased")

    assert 0.6 < score < 0.7
    assert fuzzy_label_score("SmartTagBattery", "GDPRDelete") < 0.3


def test_jaccard_of_empty_sets_is_zero() -> None:
    assert jaccard([], []) == 0.0
    assert jaccard(["tag", "lost"], ["tag"]) == pytest.approx(0.5)


def test_shared_and_distinctive_tokens() -> None:
    assert shared_tokens("QRTagActivation", "QRTagLost") == ["tag"]
    assert distinctive_tokens("QRTagActivation", "QRTagLost") == ["activation"]
    assert shared_tokens("LoginIssues", "LoginIssue") == ["login", "issues"]


def test_fuzzy_strength_labels() -> None:
    assert fuzzy_strength(0.8) == "strong"
    assert fuzzy_strength(0.7) == "moderate"
    assert fuzzy_strength(0.5) == "weak"


def test_tightened_regex_excludes_assigned_label_words() -> None:
    suggestion = suggest_tightened_regex("QRTagActivation", "QRTagLost", r"(lost|mistet).*tag")

    assert suggestion == r"^(?!.*(?:activation)).*?(?:(lost|mistet).*tag)"


def test_tightened_regex_without_distinctive_words_keeps_pattern() -> None:
    assert suggest_tightened_regex("TagLost", "QRTagLost", "lost") == "lost"


def test_correct_findings_need_no_fix() -> None:
    assert propose_fix(MatchMethod.SEMANTIC, Classification.CORRECT, "LoginIssue", "LoginIssue") is None


def test_regex_findings_get_tightened_pattern() -> None:
    fix = propose_fix(
        MatchMethod.REGEX,
        Classification.AMBIGUOUS,
        "QRTagActivation",
        "QRTagLost",
        current_pattern="lost",
    )

    assert fix is not None
    assert fix.fix_type is FixType.TIGHTEN_REGEX
    assert fix.suggested_regex == r"^(?!.*(?:activation)).*?(?:lost)"


def test_incorrect_fuzzy_finding_gets_normalization_fix() -> None:
    fix = propose_fix(MatchMethod.FUZZY, Classification.INCORRECT, "SmartTagBattery", "SmartTagActivation")

    assert fix is not None
    assert fix.fix_type is FixType.ADJUST_NORMALIZATION
    assert fix.normalization_replacements == {"smart_tag_battery": "SmartTagBattery"}


def test_ambiguous_semantic_finding_gets_disambiguation() -> None:
    fix = propose_fix(MatchMethod.SEMANTIC, Classification.AMBIGUOUS, "PetDeceasedReport", "PetDeceased")

    assert fix is not None
    assert fix.fix_type is FixType.ADD_DISAMBIGUATION
    assert fix.disambiguation_question == 'You are asking about "pet deceased report". Do you mean:'
    assert fix.disambiguation_options == (
        "PetDeceased (existing)",
        "PetDeceasedReport (new topic)",
        "Something else",
    )
