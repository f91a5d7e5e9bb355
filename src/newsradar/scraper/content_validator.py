"""Sanity checks for extracted article text and titles.

Extraction happily returns whatever text a page carries, including error
pages served with status 200, consent walls and mis-decoded bytes.
:func:`validate_article_content` returns a short rejection reason for such
text (``None`` when the article looks real) so the orchestrator can drop it
instead of storing garbage.
"""

from __future__ import annotations

import re
import unicodedata
from urllib.parse import unquote, urlsplit

DEFAULT_MIN_ARTICLE_LENGTH = 200

# Phrases that only mean something on short pages; long articles may quote them.
ERROR_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b404\b.{0,40}\bnot found\b",
        r"\bpage (?:was )?not found\b",
        r"\bpage (?:you (?:are looking for|requested)) (?:does not|doesn't|could not|cannot)\b",
        r"\bthis page (?:does not|doesn't) exist\b",
        r"\barticle (?:is )?no longer available\b",
        r"\bcontent (?:is )?(?:not|no longer) available\b",
        r"\baccess denied\b",
        r"\b403 forbidden\b",
        r"\bplease enable (?:javascript|cookies)\b",
        r"\byou have been blocked\b",
        r"\bsubscribe to (?:continue|read)\b",
        r"\binternal server error\b",
        r"\bservice (?:temporarily )?unavailable\b",
    )
)

# Matched against the opening of the text only.
CRITICAL_OPENING = re.compile(
    r"^(?:404|page not found|not found|error|access denied|forbidden)\b", re.IGNORECASE
)

_PATTERN_MAX_WORDS = 200
_OPENING_MAX_WORDS = 500
_MIN_SENTENCES = 2
_REPETITION_THRESHOLD = 0.7

_SENTENCE_SPLIT = re.compile(r"[.!?。！？]+")
_WORD = re.compile(r"\w+")
_REPLACEMENT_RUN = re.compile("\ufffd{3,}")

_GENERIC_TITLES = frozenset(
    {
        "home",
        "homepage",
        "index",
        "untitled",
        "news",
        "error",
        "404",
        "page not found",
        "not found",
        "access denied",
        "just a moment...",
    }
)


def _control_ratio(text: str) -> float:
    controls = sum(
        1
        for ch in text
        if unicodedata.category(ch) == "Cc" and ch not in "\n\r\t"
    )
    return controls / len(text)


def _letter_word_ratio(words: list[str]) -> float:
    lettered = sum(1 for w in words if any(ch.isalpha() for ch in w))
    return lettered / len(words)


def _repetition_score(words: list[str]) -> float:
    """Share of the text taken by its single most frequent word."""
    counts: dict[str, int] = {}
    for word in words:
        key = word.lower()
        counts[key] = counts.get(key, 0) + 1
    return max(counts.values()) / len(words)


def is_corrupted_text(text: str) -> bool:
    """Return ``True`` for text that is mis-decoded or machine noise.

    Flags runs of U+FFFD replacement characters, more than 5% control
    characters, fewer than half of the words containing a letter, and
    texts of 20+ words dominated by a single repeated word.
    """
    if not text:
        return False
    if _REPLACEMENT_RUN.search(text):
        return True
    if _control_ratio(text) > 0.05:
        return True

    words = _WORD.findall(text)
    if not words:
        return True
    if _letter_word_ratio(words) < 0.5:
        return True
    return len(words) >= 20 and _repetition_score(words) > _REPETITION_THRESHOLD


def count_sentences(text: str) -> int:
    return sum(1 for part in _SENTENCE_SPLIT.split(text) if len(part.strip()) > 10)


def validate_article_content(
    content: str, *, min_length: int = DEFAULT_MIN_ARTICLE_LENGTH
) -> str | None:
    """Return why *content* is not a real article, or ``None`` when it is.

    Args:
        content: Extracted, whitespace-normalized article text.
        min_length: Minimum number of characters after trimming.

    Returns:
        A short reason string such as ``"too short (87 chars)"``, or ``None``.
    """
    text = content.strip()
    if len(text) < min_length:
        return f"too short ({len(text)} chars)"
    if is_corrupted_text(text):
        return "corrupted text"

    word_count = len(_WORD.findall(text))
    if word_count < _PATTERN_MAX_WORDS:
        for pattern in ERROR_PATTERNS:
            match = pattern.search(text)
            if match:
                return f"error page: {match.group(0).lower()}"

    if word_count < _OPENING_MAX_WORDS and CRITICAL_OPENING.match(text):
        return "error page (opening)"

    if count_sentences(text) < _MIN_SENTENCES:
        return "too few sentences"
    return None


def is_valid_title(title: str | None) -> bool:
    """Reject empty, generic, URL-like or implausibly long titles."""
    if not title:
        return False
    cleaned = title.strip()
    if not 3 <= len(cleaned) <= 300:
        return False
    if cleaned.lower() in _GENERIC_TITLES:
        return False
    if cleaned.startswith(("http://", "https://", "www.")):
        return False
    return any(ch.isalpha() for ch in cleaned)


def title_from_url(url: str) -> str | None:
    """Build a readable title from the last meaningful path segment.

    ``https://x.example/2024/05/city-council-votes-on-budget.html`` becomes
    ``"City council votes on budget"``.  Numeric ids and bare dates are skipped.
    """
    segments = [s for s in urlsplit(url).path.split("/") if s]
    for segment in reversed(segments):
        stem = unquote(segment).rsplit(".", 1)[0]
        words = [w for w in re.split(r"[-_+\s]+", stem) if w]
        if not words or all(w.isdigit() for w in words):
            continue
        if not any(ch.isalpha() for w in words for ch in w):
            continue
        phrase = " ".join(words)
        return phrase[:1].upper() + phrase[1:]
    return None
