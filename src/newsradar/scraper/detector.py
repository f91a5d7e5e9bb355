"""Protection and dynamic-content detection.

A pure classification over ``(status_code, headers, body)``.  The label set
feeds the HTTP fetcher's retry/escalation decision and the fetch-strategy
selection; it never raises, and absence of any signal yields ``{"clean"}``.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping

from bs4 import BeautifulSoup

from newsradar.scraper.config import (
    BOILERPLATE_TAGS,
    CHALLENGE_BODY_MARKERS,
    CHALLENGE_HEADER_NAMES,
    CHALLENGE_HEADER_VALUES,
    DYNAMIC_LOAD_ATTRIBUTES,
    HYDRATION_MARKERS,
    PROTECTION_STATUS_CODES,
    SUBSTANTIAL_DOCUMENT_LENGTH,
)

logger = logging.getLogger(__name__)

BOT_PROTECTION = "bot-protection"
DYNAMIC_CONTENT = "dynamic-content"
INSUFFICIENT_CONTENT = "insufficient-content"
CLEAN = "clean"

#: Labels that make the fetcher retry and, once attempts run out, escalate.
ESCALATION_LABELS: frozenset[str] = frozenset({BOT_PROTECTION, DYNAMIC_CONTENT})

_ANCHOR_RE = re.compile(r"<a\b[^>]*\bhref\s*=", re.IGNORECASE)
_EMPTY_MOUNT_RE = re.compile(
    r"<div\b[^>]*\bid\s*=\s*[\"'](?:root|app|__next|__nuxt|svelte)[\"'][^>]*>\s*</div>",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Individual signals
# ---------------------------------------------------------------------------


def _lower_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(k).lower(): str(v).lower() for k, v in headers.items()}


def has_protection_signal(
    status_code: int | None,
    headers: Mapping[str, str] | None,
    body: str | None,
) -> bool:
    """Return ``True`` on a challenge status, challenge header, or challenge script marker."""
    if status_code in PROTECTION_STATUS_CODES:
        return True

    lowered = _lower_headers(headers)
    if any(name in lowered for name in CHALLENGE_HEADER_NAMES):
        return True
    for name, fragment in CHALLENGE_HEADER_VALUES:
        if fragment in lowered.get(name, ""):
            return True

    if body:
        body_lower = body.lower()
        return any(marker in body_lower for marker in CHALLENGE_BODY_MARKERS)
    return False


def count_anchors(body: str) -> int:
    """Count ``<a href=...>`` tags in raw HTML."""
    return len(_ANCHOR_RE.findall(body))


def has_dynamic_signal(body: str | None, min_anchor_count: int) -> bool:
    """Return ``True`` if the page content is likely populated client-side.

    Fires on an empty framework mount node, on hydration markers in a small
    document, on client-side loading attributes, or when the page carries
    fewer than ``min_anchor_count`` links.
    """
    if not body:
        return min_anchor_count > 0

    if _EMPTY_MOUNT_RE.search(body):
        return True

    body_lower = body.lower()
    if len(body) < SUBSTANTIAL_DOCUMENT_LENGTH and any(
        marker in body_lower for marker in HYDRATION_MARKERS
    ):
        return True

    if any(attr in body_lower for attr in DYNAMIC_LOAD_ATTRIBUTES):
        return True

    return count_anchors(body) < min_anchor_count


def visible_text_length(body: str) -> int:
    """Return the length of visible text after removing navigation and boilerplate."""
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup(list(BOILERPLATE_TAGS)):
        tag.decompose()
    text = _WHITESPACE_RE.sub(" ", soup.get_text(" ")).strip()
    return len(text)


# ---------------------------------------------------------------------------
# Public classifier
# ---------------------------------------------------------------------------


def detect(
    status_code: int | None,
    headers: Mapping[str, str] | None,
    body: str | None,
    *,
    min_anchor_count: int = 10,
    min_content_length: int = 500,
) -> frozenset[str]:
    """Classify a response into protection/dynamic-content labels.

    Args:
        status_code: HTTP status code, or ``None`` if unknown.
        headers: Response headers (any case).
        body: Response body or a sample of it.
        min_anchor_count: Pages with fewer anchors are labelled
            ``dynamic-content``.  ``0`` disables the anchor check, which is
            what article and redirect fetches use.
        min_content_length: Pages whose visible text is shorter are labelled
            ``insufficient-content``.  ``0`` disables the check.

    Returns:
        A non-empty frozenset drawn from ``bot-protection``,
        ``dynamic-content``, ``insufficient-content`` and ``clean``.
    """
    labels: set[str] = set()

    try:
        if has_protection_signal(status_code, headers, body):
            labels.add(BOT_PROTECTION)
    except Exception as exc:  # noqa: BLE001
        logger.debug("scraper: protection check failed: %s", exc)

    try:
        if has_dynamic_signal(body, min_anchor_count):
            labels.add(DYNAMIC_CONTENT)
    except Exception as exc:  # noqa: BLE001
        logger.debug("scraper: dynamic-content check failed: %s", exc)

    if min_content_length > 0:
        try:
            if visible_text_length(body or "") < min_content_length:
                labels.add(INSUFFICIENT_CONTENT)
        except Exception as exc:  # noqa: BLE001
            logger.debug("scraper: content-length check failed: %s", exc)

    if not labels:
        return frozenset({CLEAN})
    return frozenset(labels)


def needs_escalation(labels: frozenset[str]) -> bool:
    """Return ``True`` if the labels call for a retry and eventual browser fallback."""
    return bool(labels & ESCALATION_LABELS)
