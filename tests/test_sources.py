from __future__ import annotations

import json
from pathlib import Path

import pytest

from intent_core.errors import SourceDataError
from intent_core.sources import (
    BoilerplateSettings,
    group_assignments,
    load_canonical_intents,
    load_tickets,
    select_eligible,
)
from stubs import make_ticket


def test_load_tickets_from_json_payload(tmp_path: Path) -> None:
    path = tmp_path / "tickets.json"
    path.write_text(
        json.dumps(
            {
                "tickets": [
                    {
                        "ticket_id": "17",
                        "subject": "Login",
                        "customer_question": "<p>Cannot log in</p>",
                        "intent": "LoginIssue",
                        "intent_confidence": "0.82",
                        "auto_close_possible": "true",
                        "follow_up_needed": False,
                        "is_new_intent": 1,
                    }
                ]
            }
        ),
        encoding="utf-8",
    )

    [ticket] = load_tickets(path)

    assert ticket.id == 17
    assert ticket.question == "<p>Cannot log in</p>"
    assert ticket.text == "Login | Cannot log in"
    assert ticket.prior_intent == "LoginIssue"
    assert ticket.prior_confidence == pytest.approx(0.82)
    assert ticket.auto_closeable is True
    assert ticket.reopened is False
    assert ticket.is_new_intent is True


def test_load_tickets_from_csv(tmp_path: Path) -> None:
    path = tmp_path / "tickets.csv"
    path.write_text(
        "id,subject,question,intent,auto_closed\n1,Faktura,Feil beløp,,false\n2,Login,Får ikke logget inn,LoginIssue,yes\n",
        encoding="utf-8",
    )

    tickets = load_tickets(path)

    assert [ticket.id for ticket in tickets] == [1, 2]
    assert tickets[0].prior_intent is None
    assert tickets[1].auto_closed is True


@pytest.mark.parametrize(
    "content",
    ["{not json", json.dumps({"tickets": "oops"}), json.dumps([{"subject": "no id"}])],
)
def test_load_tickets_rejects_bad_exports(tmp_path: Path, content: str) -> None:
    path = tmp_path / "tickets.json"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(SourceDataError):
        load_tickets(path)


def test_load_tickets_missing_file(tmp_path: Path) -> None:
    with pytest.raises(SourceDataError):
        load_tickets(tmp_path / "missing.json")


def test_load_canonical_intents_filters_unapproved_and_duplicates(tmp_path: Path) -> None:
    path = tmp_path / "intents.yaml"
    path.write_text(
        """
intents:
  - intent_id: LoginIssue
    category: Account
    keywords: "login, passord"
  - intent_id: Draft
    category: Misc
    approved: false
  - intent_id: LoginIssue
    category: Duplicate
  - intent_id: ChipLookup
    category: ID Lookup
    description: Find the owner of a chip number
""",
        encoding="utf-8",
    )

    intents = load_canonical_intents(path)

    assert [intent.intent_id for intent in intents] == ["LoginIssue", "ChipLookup"]
    assert intents[0].keywords == ("login", "passord")
    assert intents[0].category == "Account"
    assert [i.intent_id for i in load_canonical_intents(path, approved_only=False)] == [
        "LoginIssue",
        "Draft",
        "ChipLookup",
    ]


def test_load_canonical_intents_requires_ids(tmp_path: Path) -> None:
    path = tmp_path / "intents.json"
    path.write_text(json.dumps([{"category": "Account"}]), encoding="utf-8")

    with pytest.raises(SourceDataError):
        load_canonical_intents(path)


def test_select_eligible_applies_filters_newest_first() -> None:
    tickets = [
        make_ticket(1, "Login", "Cannot log in"),
        make_ticket(2, "Login", "Cannot log in", prior_intent="LoginIssue"),
        make_ticket(3, "Closed", "Solved already", auto_closed=True),
        make_ticket(4, "Empty", "No contents"),
        make_ticket(5, "Ferie", "Automatisk svar: jeg er på ferie"),
        make_ticket(6, "Faktura", "Feil beløp", prior_intent="BillingNew"),
    ]

    selection = select_eligible(tickets, ["LoginIssue"])

    assert [ticket.id for ticket in selection.source] == [6, 5, 1]
    assert [ticket.id for ticket in selection.eligible] == [6, 1]
    assert selection.truncated is False


def test_select_eligible_caps_ticket_count(caplog: pytest.LogCaptureFixture) -> None:
    tickets = [make_ticket(i, "s", "question") for i in range(10)]

    with caplog.at_level("WARNING"):
        selection = select_eligible(tickets, [], max_tickets=4)

    assert [ticket.id for ticket in selection.source] == [9, 8, 7, 6]
    assert selection.truncated is True
    assert "only the newest 4" in caplog.text


def test_boilerplate_settings_override_phrases() -> None:
    settings = BoilerplateSettings(auto_reply_phrases=("ferie",), confirmation_phrases=())
    tickets = [make_ticket(1, "s", "Jeg er på ferie"), make_ticket(2, "s", "Bekreftelse")]

    selection = select_eligible(tickets, [], boilerplate=settings)

    assert [ticket.id for ticket in selection.eligible] == [2]


def test_group_assignments_counts_new_intent_labels() -> None:
    tickets = [
        make_ticket(1, "s", "<b>Battery</b> is flat", prior_intent="SmartTagBattery", is_new_intent=True,
                    prior_confidence=0.8),
        make_ticket(2, "s", "Battery again", prior_intent="SmartTagBattery", is_new_intent=True,
                    prior_confidence=0.6),
        make_ticket(3, "s", "Lost my tag", prior_intent="QRTagLost", is_new_intent=False),
        make_ticket(4, "s", "Family invite", prior_intent="FamilyInvite", is_new_intent=True),
        make_ticket(5, "s", "No contents", prior_intent="SmartTagBattery", is_new_intent=True),
    ]

    assignments = group_assignments(tickets, max_examples=5)

    assert [item.intent_id for item in assignments] == ["SmartTagBattery", "FamilyInvite"]
    battery = assignments[0]
    assert battery.ticket_count == 3
    assert battery.examples == ("Battery is flat", "Battery again")
    assert battery.avg_confidence == pytest.approx(0.4667)
