"""Ordered regex rule table used by the audit's first matching tier."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .config import load_yaml_file
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegexRule:
    intent: str
    pattern: re.Pattern[str]

    @property
    def source(self) -> str:
        return self.pattern.pattern


def compile_rule(intent: str, pattern: str) -> RegexRule:
    if not intent or not pattern:
        raise ConfigError("Regex rules need both an 'intent' and a 'pattern'")
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ConfigError(f"Invalid regex for intent {intent}: {exc}") from exc
    return RegexRule(intent=str(intent), pattern=compiled)


class RegexRuleTable:
    """Rules evaluated in declaration order; the first match wins."""

    def __init__(self, rules: Iterable[RegexRule] = ()) -> None:
        self._rules: Tuple[RegexRule, ...] = tuple(rules)

    def __iter__(self) -> Iterator[RegexRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def intents(self) -> List[str]:
        return [rule.intent for rule in self._rules]

    def match(self, text: str) -> Optional[RegexRule]:
        for rule in self._rules:
            if rule.pattern.search(text):
                return rule
        return None

    def first_match(self, examples: Sequence[str]) -> Optional[Tuple[RegexRule, str]]:
        """Try each example in order against every rule; return the first hit."""
        for example in examples:
            if not example:
                continue
            rule = self.match(example)
            if rule is not None:
                return rule, example
        return None

    def pattern_for(self, intent: str) -> Optional[str]:
        for rule in self._rules:
            if rule.intent == intent:
                return rule.source
        return None

    def restricted_to(self, intent_ids: Iterable[str]) -> "RegexRuleTable":
        known = set(intent_ids)
        kept: List[RegexRule] = []
        for rule in self._rules:
            if rule.intent in known:
                kept.append(rule)
            else:
                LOGGER.warning("Dropping regex rule for unknown canonical intent %s", rule.intent)
        return RegexRuleTable(kept)


def _rule_entries(data: Any) -> List[Mapping[str, Any]]:
    if data is None:
        return []
    if isinstance(data, Mapping):
        data = data.get("rules") or []
    if not isinstance(data, list):
        raise ConfigError("Regex rules must be a list of {intent, pattern} entries")
    for entry in data:
        if not isinstance(entry, Mapping):
            raise ConfigError(f"Regex rule entries must be mappings, got {entry!r}")
    return data


def load_regex_rules(
    entries: Optional[Sequence[Mapping[str, Any]]] = None,
    *,
    path: Optional[Path] = None,
) -> RegexRuleTable:
    """Compile rules from inline entries and/or a YAML file, in that order."""
    raw: List[Mapping[str, Any]] = list(_rule_entries(entries))
    if path is not None:
        raw.extend(_rule_entries(load_yaml_file(path)))
    rules = [compile_rule(entry.get("intent", ""), entry.get("pattern", "")) for entry in raw]
    LOGGER.debug("Loaded %s regex rules", len(rules))
    return RegexRuleTable(rules)
