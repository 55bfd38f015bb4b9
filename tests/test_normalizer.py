from __future__ import annotations

import pytest

from intent_core.normalizer import (
    EMPTY_TEXT,
    build_ticket_text,
    clean_text,
    extract_keywords,
    humanize_identifier,
    is_boilerplate,
    label_tokens,
    snake_case,
    split_identifier,
)


def test_build_ticket_text_joins_subject_and_cleaned_question() -> None:
    text = build_ticket_text("Login", "<p>I   cannot <b>log in</b></p>")

    assert text == "Login | I cannot log in"


def test_build_ticket_text_skips_placeholders_and_truncates() -> None:
    question = "x" * 1000

    assert build_ticket_text("No contents", question) == "x" * 400
    assert len(build_ticket_text("s" * 100, question)) == 450
    assert build_ticket_text("No contents", "No contents") == EMPTY_TEXT
    assert build_ticket_text(None, None) == EMPTY_TEXT


def test_clean_text_handles_empty_values() -> None:
    assert clean_text(None) == ""
    assert clean_text("  a\n\tb  ") == "a b"


@pytest.mark.parametrize(
    "question, expected",
    [
        ("Automatisk svar: jeg er på ferie", True),
        ("AUTO-SVAR fra kundeservice", True),
        ("Automatic reply: out of office", True),
        ("Bekreftelse", True),
        ("Bekreftelse på at jeg har lest vilkårene og betingelsene", False),
        ("Hvordan logger jeg inn?", False),
        ("", False),
    ],
)
def test_is_boilerplate(question: str, expected: bool) -> None:
    assert is_boilerplate(question) is expected


def test_is_boilerplate_uses_configured_phrases() -> None:
    assert is_boilerplate("vacation notice", auto_reply_phrases=["vacation"]) is True
    assert is_boilerplate("automatic reply", auto_reply_phrases=[]) is False


def test_extract_keywords_counts_each_word_once_per_text() -> None:
    texts = [
        "password password password reset",
        "password locked",
        "reset locked account",
        "locked out",
    ]

    keywords = extract_keywords(texts, top_n=3)

    assert keywords == ["locked", "password", "reset"]


def test_extract_keywords_filters_stopwords_digits_and_short_words() -> None:
    keywords = extract_keywords(["Hei, jeg har 1234 problem med appen og innlogging", "The app is ok"])

    assert "jeg" not in keywords
    assert "1234" not in keywords
    assert "ok" not in keywords
    assert "problem" in keywords


@pytest.mark.parametrize(
    "identifier, parts",
    [
        ("QRTagActivation", ["QR", "Tag", "Activation"]),
        ("LoginIssue", ["Login", "Issue"]),
        ("login_issue", ["login", "issue"]),
        ("smart-tag-lost", ["smart", "tag", "lost"]),
        ("GDPRDelete", ["GDPR", "Delete"]),
    ],
)
def test_split_identifier(identifier: str, parts: list[str]) -> None:
    assert split_identifier(identifier) == parts


def test_label_tokens_drop_short_words() -> None:
    assert label_tokens("QRTagActivation") == ["tag", "activation"]
    assert label_tokens("AppLoginIssue") == ["app", "login", "issue"]


def test_identifier_helpers() -> None:
    assert humanize_identifier("QRTagActivation") == "QR Tag Activation"
    assert snake_case("QRTagActivation") == "qr_tag_activation"
