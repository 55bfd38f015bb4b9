from __future__ import annotations

from pathlib import Path

import pytest

from intent_core.errors import ConfigError
from intent_core.rules import RegexRuleTable, compile_rule, load_regex_rules

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def test_first_matching_rule_wins() -> None:
    table = load_regex_rules(
        [
            {"intent": "LoginProblem", "pattern": r"klarer ikke.*logg"},
            {"intent": "LoginIssue", "pattern": r"logg.*inn"},
        ]
    )

    assert table.match("Jeg klarer ikke å logge inn").intent == "LoginProblem"
    assert table.match("Hvordan logger jeg inn?").intent == "LoginIssue"
    assert table.match("Faktura") is None


def test_rules_are_case_insensitive() -> None:
    rule = compile_rule("GDPRDelete", r"delete.*account")

    assert rule.pattern.search("Please DELETE my Account")
    assert rule.source == r"delete.*account"


def test_first_match_walks_examples_in_order() -> None:
    table = load_regex_rules([{"intent": "QRTagLost", "pattern": r"lost.*qr"}])

    hit = table.first_match(["", "new card", "I lost my QR tag"])

    assert hit is not None
    rule, example = hit
    assert rule.intent == "QRTagLost"
    assert example == "I lost my QR tag"
    assert table.first_match([]) is None


def test_pattern_lookup_and_restriction() -> None:
    table = load_regex_rules(
        {"rules": [{"intent": "A", "pattern": "a+"}, {"intent": "B", "pattern": "b+"}]}
    )

    assert table.pattern_for("B") == "b+"
    assert table.pattern_for("C") is None
    assert table.restricted_to(["B"]).intents == ["B"]
    assert len(table) == 2


@pytest.mark.parametrize(
    "entries",
    [
        [{"intent": "A", "pattern": "("}],
        [{"intent": "", "pattern": "a"}],
        [{"intent": "A"}],
        ["not a mapping"],
        {"rules": "nope"},
    ],
)
def test_invalid_rules_raise_config_error(entries) -> None:
    with pytest.raises(ConfigError):
        load_regex_rules(entries)


def test_rules_load_from_yaml_file(tmp_path: Path) -> None:
    path = tmp_path / "rules.yaml"
    path.write_text("rules:\n  - intent: ChipLookup\n    pattern: 'chip.?nummer'\n", encoding="utf-8")

    table = load_regex_rules([{"intent": "LoginIssue", "pattern": "login"}], path=path)

    assert table.intents == ["LoginIssue", "ChipLookup"]


def test_bundled_rule_file_compiles() -> None:
    table = load_regex_rules(path=PROJECT_ROOT / "config" / "regex_rules.yaml")

    assert isinstance(table, RegexRuleTable)
    assert table.intents[0] == "LoginProblem"
    assert table.match("Jeg har mistet QR-brikken").intent == "QRTagLost"
