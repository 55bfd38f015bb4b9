"""Load ticket and canonical intent exports and select the tickets to analyse."""
from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .config import load_yaml_file
from .errors import ConfigError, SourceDataError
from .models import AssignedIntent, CanonicalIntent, TicketRecord
from .normalizer import (
    CONFIRMATION_MAX_LENGTH,
    DEFAULT_AUTO_REPLY_PHRASES,
    DEFAULT_CONFIRMATION_PHRASES,
    PLACEHOLDER_TEXT,
    clean_text,
    is_boilerplate,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TICKETS = 5000
EXAMPLE_LENGTH = 200


def _records(data: Any, key: str, path: Path) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise SourceDataError(f"{path} must contain a list of records or a '{key}' list")
    return [item for item in data if isinstance(item, dict)]


def load_tickets(path: Path) -> List[TicketRecord]:
    """Read tickets from a JSON list (or ``{"tickets": [...]}``) or a CSV export."""
    LOGGER.info("Loading tickets from %s", path)
    try:
        if path.suffix.lower() == ".csv":
            with path.open("r", encoding="utf-8", newline="") as handle:
                rows: List[Dict[str, Any]] = list(csv.DictReader(handle))
        else:
            with path.open("r", encoding="utf-8") as handle:
                rows = _records(json.load(handle), "tickets", path)
    except OSError as exc:
        raise SourceDataError(f"Unable to read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise SourceDataError(f"Unable to parse {path}: {exc}") from exc

    tickets: List[TicketRecord] = []
    for position, row in enumerate(rows):
        try:
            tickets.append(TicketRecord.from_payload(row))
        except (TypeError, ValueError) as exc:
            raise SourceDataError(f"Ticket record {position} in {path} has no usable id") from exc
    LOGGER.info("Loaded %s tickets", len(tickets))
    return tickets


def load_canonical_intents(path: Path, *, approved_only: bool = True) -> List[CanonicalIntent]:
    """Read canonical intents from YAML or JSON; entries without ``approved`` count as approved."""
    LOGGER.info("Loading canonical intents from %s", path)
    try:
        data = load_yaml_file(path)
    except ConfigError as exc:
        raise SourceDataError(str(exc)) from exc
    intents: List[CanonicalIntent] = []
    seen: set[str] = set()
    for entry in _records(data or [], "intents", path):
        if approved_only and not entry.get("approved", True):
            continue
        try:
            intent = CanonicalIntent.from_payload(entry)
        except ValueError as exc:
            raise SourceDataError(f"{path}: {exc}") from exc
        if intent.intent_id in seen:
            LOGGER.warning("Duplicate canonical intent %s ignored", intent.intent_id)
            continue
        seen.add(intent.intent_id)
        intents.append(intent)
    LOGGER.info("Loaded %s canonical intents", len(intents))
    return intents


@dataclass
class BoilerplateSettings:
    auto_reply_phrases: Sequence[str] = DEFAULT_AUTO_REPLY_PHRASES
    confirmation_phrases: Sequence[str] = DEFAULT_CONFIRMATION_PHRASES
    confirmation_max_length: int = CONFIRMATION_MAX_LENGTH

    def matches(self, question: str) -> bool:
        return is_boilerplate(
            question,
            auto_reply_phrases=self.auto_reply_phrases,
            confirmation_phrases=self.confirmation_phrases,
            confirmation_max_length=self.confirmation_max_length,
        )


@dataclass
class TicketSelection:
    source: List[TicketRecord] = field(default_factory=list)
    eligible: List[TicketRecord] = field(default_factory=list)
    truncated: bool = False


def has_question(ticket: TicketRecord) -> bool:
    question = (ticket.question or "").strip()
    return bool(question) and question != PLACEHOLDER_TEXT


def select_eligible(
    tickets: Iterable[TicketRecord],
    approved_intent_ids: Iterable[str],
    *,
    boilerplate: Optional[BoilerplateSettings] = None,
    max_tickets: int = DEFAULT_MAX_TICKETS,
) -> TicketSelection:
    """Tickets eligible for discovery, newest first.

    Source tickets are those without an approved canonical intent, not
    auto-closed and with a real question. Boilerplate questions are then
    removed from the source set to form the eligible set.
    """
    approved = set(approved_intent_ids)
    filters = boilerplate or BoilerplateSettings()
    candidates = [
        ticket
        for ticket in tickets
        if ticket.prior_intent not in approved and not ticket.auto_closed and has_question(ticket)
    ]
    candidates.sort(key=lambda ticket: ticket.id, reverse=True)
    selection = TicketSelection()
    if len(candidates) > max_tickets:
        LOGGER.warning(
            "%s tickets qualify for discovery; only the newest %s are used",
            len(candidates),
            max_tickets,
        )
        candidates = candidates[:max_tickets]
        selection.truncated = True
    selection.source = candidates
    selection.eligible = [ticket for ticket in candidates if not filters.matches(ticket.question)]
    LOGGER.info(
        "Selected %s source tickets, %s eligible after boilerplate filtering",
        len(selection.source),
        len(selection.eligible),
    )
    return selection


def group_assignments(tickets: Iterable[TicketRecord], *, max_examples: int = 5) -> List[AssignedIntent]:
    """Aggregate tickets flagged as new intents by their assigned label, busiest first."""
    grouped: Dict[str, List[TicketRecord]] = {}
    for ticket in tickets:
        if ticket.is_new_intent and ticket.prior_intent:
            grouped.setdefault(ticket.prior_intent, []).append(ticket)
    assignments: List[AssignedIntent] = []
    for intent_id, members in grouped.items():
        examples = [
            (clean_text(ticket.question) or ticket.subject)[:EXAMPLE_LENGTH]
            for ticket in members
            if has_question(ticket)
        ][:max_examples]
        assignments.append(
            AssignedIntent(
                intent_id=intent_id,
                ticket_count=len(members),
                avg_confidence=round(sum(t.prior_confidence for t in members) / len(members), 4),
                examples=tuple(examples),
            )
        )
    assignments.sort(key=lambda item: item.ticket_count, reverse=True)
    LOGGER.info("Grouped %s distinct assigned intents for audit", len(assignments))
    return assignments
