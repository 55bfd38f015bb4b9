"""Text normalisation, keyword extraction and identifier tokenisation."""
from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable, List, Optional, Sequence

LOGGER = logging.getLogger(__name__)

EMPTY_TEXT = "(empty)"
PLACEHOLDER_TEXT = "No contents"
SEPARATOR = " | "
QUESTION_LIMIT = 400
TEXT_LIMIT = 450

HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
KEYWORD_STRIP_PATTERN = re.compile(r"[^\w\s-]|_")
IDENTIFIER_PART_PATTERN = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")
IDENTIFIER_SPLIT_PATTERN = re.compile(r"[\s_\-./]+")

DEFAULT_AUTO_REPLY_PHRASES = (
    "automatic reply",
    "auto-reply",
    "autoreply",
    "out of office",
    "automatisk svar",
    "auto-svar",
)
DEFAULT_CONFIRMATION_PHRASES = ("bekreftelse", "confirmation")
CONFIRMATION_MAX_LENGTH = 30

DEFAULT_STOPWORDS = frozenset(
    {
        # Norwegian
        "og", "i", "på", "til", "for", "er", "det", "en", "et", "av", "med",
        "som", "har", "jeg", "at", "den", "de", "vi", "kan", "ikke", "fra",
        "om", "men", "så", "var", "min", "meg", "seg", "dette", "hei", "hva",
        "skal", "vil", "bli", "ble", "være", "sin", "sitt", "sine", "du",
        "dere", "oss", "dem", "hun", "han", "der", "her", "da", "når",
        "eller", "alle", "noen", "ingen", "annen", "andre", "hvor", "også",
        "bare", "etter", "over", "under", "mellom", "inn", "ut", "opp",
        "ned", "mvh", "vennlig", "hilsen", "takk", "hjelp", "kontakt",
        # English
        "the", "and", "is", "it", "to", "of", "in", "a", "no", "you", "your",
        "with", "this", "that", "have", "has", "was", "are", "not", "but",
        "can", "please", "thanks", "thank", "hello", "regards",
        # markup and placeholders
        "contents", "empty", "nbsp", "div", "class", "span", "style",
    }
)


def clean_text(value: Optional[str]) -> str:
    """Strip HTML tags and collapse whitespace."""
    if not value:
        return ""
    without_tags = HTML_TAG_PATTERN.sub(" ", value)
    return WHITESPACE_PATTERN.sub(" ", without_tags).strip()


def build_ticket_text(subject: Optional[str], question: Optional[str]) -> str:
    """Combine subject and truncated question into one comparison string."""
    parts: List[str] = []
    subject_text = (subject or "").strip()
    if subject_text and subject_text != PLACEHOLDER_TEXT:
        parts.append(subject_text)
    question_text = clean_text(question)
    if question_text and question_text != PLACEHOLDER_TEXT:
        parts.append(question_text[:QUESTION_LIMIT])
    if not parts:
        return EMPTY_TEXT
    return SEPARATOR.join(parts)[:TEXT_LIMIT]


def is_boilerplate(
    question: Optional[str],
    *,
    auto_reply_phrases: Sequence[str] = DEFAULT_AUTO_REPLY_PHRASES,
    confirmation_phrases: Sequence[str] = DEFAULT_CONFIRMATION_PHRASES,
    confirmation_max_length: int = CONFIRMATION_MAX_LENGTH,
) -> bool:
    """Return True for auto-replies and short confirmation-only messages."""
    lowered = (question or "").lower()
    if any(phrase in lowered for phrase in auto_reply_phrases):
        return True
    if len(lowered) < confirmation_max_length and any(
        phrase in lowered for phrase in confirmation_phrases
    ):
        return True
    return False


def keyword_tokens(text: str, stop_words: Iterable[str] = DEFAULT_STOPWORDS) -> List[str]:
    stop = stop_words if isinstance(stop_words, (set, frozenset)) else set(stop_words)
    words = KEYWORD_STRIP_PATTERN.sub(" ", (text or "").lower()).split()
    return [word for word in words if len(word) >= 3 and word not in stop and not word.isdigit()]


def extract_keywords(
    texts: Iterable[str],
    *,
    top_n: int = 10,
    stop_words: Iterable[str] = DEFAULT_STOPWORDS,
) -> List[str]:
    """Rank words by the number of texts they appear in."""
    stop = frozenset(stop_words)
    counts: Counter[str] = Counter()
    for text in texts:
        counts.update(list(dict.fromkeys(keyword_tokens(text, stop))))
    # Counter.most_common keeps first-seen order among equal counts.
    ranked = counts.most_common(top_n)
    LOGGER.debug("Top keywords: %s", ranked)
    return [word for word, _ in ranked]


def split_identifier(identifier: str) -> List[str]:
    """Split a camel, kebab or snake case identifier into its words."""
    parts: List[str] = []
    for chunk in IDENTIFIER_SPLIT_PATTERN.split(identifier or ""):
        if not chunk:
            continue
        parts.extend(IDENTIFIER_PART_PATTERN.findall(chunk) or [chunk])
    return parts


def label_tokens(identifier: str, *, min_length: int = 3) -> List[str]:
    """Lower-cased identifier words, dropping those shorter than ``min_length``."""
    tokens: List[str] = []
    for part in split_identifier(identifier):
        lowered = part.lower()
        if len(lowered) >= min_length and lowered not in tokens:
            tokens.append(lowered)
    return tokens


def humanize_identifier(identifier: str) -> str:
    """``QRTagActivation`` -> ``QR Tag Activation``."""
    return " ".join(split_identifier(identifier))


def snake_case(identifier: str) -> str:
    return "_".join(part.lower() for part in split_identifier(identifier))
