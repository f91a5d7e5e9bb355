"""Article content extraction from unannotated HTML.

Primary path: the source's configured CSS selectors.  When they are missing,
invalid or match nothing useful, a fixed fallback chain of common article
containers is tried, and ``trafilatura`` is the last resort.  An empty result
is a valid :class:`ExtractedArticle`, not an error.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime

import trafilatura  # type: ignore[import-untyped]
from bs4 import BeautifulSoup, Tag

from newsradar.scraper.collaborators import ContentAnalysis, ContentAnalyzer
from newsradar.scraper.config import (
    ANALYSIS_HTML_SNIPPET_CHARS,
    AUTHOR_FALLBACK_SELECTORS,
    CONTENT_FALLBACK_SELECTORS,
    DEFAULT_SELECTOR_CONFIDENCE,
    MAX_CONTENT_BYTES,
    MIN_FALLBACK_TEXT_LENGTH,
    TITLE_FALLBACK_SELECTORS,
    TRAFILATURA_CONFIDENCE,
)
from newsradar.scraper.content_validator import validate_article_content

logger = logging.getLogger(__name__)

SIMPLE_SELECTORS = "simple_selectors"
TRAFILATURA = "trafilatura"

_HORIZONTAL_WS_RE = re.compile(r"[^\S\n]+")
_SPACES_AROUND_NEWLINE_RE = re.compile(r" *\n *")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScrapingSelectorConfig:
    """Per-source CSS selectors.  Any selector may be ``None``."""

    title_selector: str | None = None
    content_selector: str | None = None
    author_selector: str | None = None
    date_selector: str | None = None
    confidence: float = DEFAULT_SELECTOR_CONFIDENCE


@dataclass
class ExtractedArticle:
    """Result of extracting one article page.

    Attributes:
        title: Article title, or ``""`` if none was found.
        content: Whitespace-normalized body text, or ``""``.
        author: Byline, or ``None``.
        publish_date: Publication date from the analysis collaborator, or ``None``.
        extraction_method: ``"simple_selectors"`` or ``"trafilatura"``.
        confidence: Confidence of the extraction path.
        analysis: AI content analysis, when requested and available.
        rejection_reason: Why the content failed validation, when it was
            validated and rejected.
    """

    title: str
    content: str
    author: str | None = None
    publish_date: datetime | None = None
    extraction_method: str = SIMPLE_SELECTORS
    confidence: float = DEFAULT_SELECTOR_CONFIDENCE
    analysis: ContentAnalysis | None = None
    rejection_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace while keeping paragraph breaks.

    Steps, in order: unify line endings, collapse horizontal whitespace runs
    to one space, trim spaces around newlines, collapse three or more
    newlines to two, trim the ends.  Applying it twice changes nothing.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WS_RE.sub(" ", text)
    text = _SPACES_AROUND_NEWLINE_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


def _element_text(element: Tag) -> str:
    return normalize_whitespace(element.get_text("\n"))


def _select(soup: BeautifulSoup, selector: str) -> list[Tag]:
    """``soup.select`` that treats an invalid selector as no match."""
    try:
        return list(soup.select(selector))
    except Exception as exc:  # noqa: BLE001
        logger.debug("scraper: selector %r failed: %s", selector, exc)
        return []


def _first_text(soup: BeautifulSoup, selector: str | None) -> str | None:
    if not selector:
        return None
    for element in _select(soup, selector):
        text = normalize_whitespace(element.get_text(" "))
        if text:
            return text
    return None


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str | None:
    meta = soup.find("meta", attrs=attrs)
    if isinstance(meta, Tag):
        value = normalize_whitespace(str(meta.get("content") or ""))
        return value or None
    return None


def _truncate(text: str) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= MAX_CONTENT_BYTES:
        return text
    logger.debug("scraper: truncated extracted text to %d bytes", MAX_CONTENT_BYTES)
    return encoded[:MAX_CONTENT_BYTES].decode("utf-8", errors="ignore")


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def _configured_content(soup: BeautifulSoup, selector: str | None) -> str:
    if not selector:
        return ""
    parts = [text for text in (_element_text(el) for el in _select(soup, selector)) if text]
    return "\n\n".join(parts)


def _fallback_content(soup: BeautifulSoup) -> str:
    for selector in CONTENT_FALLBACK_SELECTORS:
        parts = [
            text
            for text in (_element_text(el) for el in _select(soup, selector))
            if len(text) > MIN_FALLBACK_TEXT_LENGTH
        ]
        if parts:
            logger.debug("scraper: fallback content matched selector %r", selector)
            return "\n\n".join(parts)
    return ""


def _trafilatura_content(html: str) -> str:
    try:
        result = trafilatura.extract(
            html,
            include_comments=False,
            include_tables=True,
            output_format="txt",
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: trafilatura extraction failed: %s", exc)
        return ""
    return normalize_whitespace(result) if result else ""


def _extract_title(soup: BeautifulSoup, selector: str | None) -> str:
    title = _first_text(soup, selector)
    if title:
        return title
    title = _first_text(soup, TITLE_FALLBACK_SELECTORS[0])
    if title:
        return title
    title = _meta_content(soup, property="og:title")
    if title:
        return title
    for fallback in TITLE_FALLBACK_SELECTORS[1:]:
        title = _first_text(soup, fallback)
        if title:
            return title
    return ""


def _extract_author(soup: BeautifulSoup, selector: str | None) -> str | None:
    author = _first_text(soup, selector)
    if author:
        return author
    for fallback in AUTHOR_FALLBACK_SELECTORS:
        author = _first_text(soup, fallback)
        if author:
            return author
    return _meta_content(soup, name="author")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_article(html: str, config: ScrapingSelectorConfig | None = None) -> ExtractedArticle:
    """Extract title, body text and author from an article page.

    Args:
        html: Article HTML (may be partial or malformed).
        config: Source selectors; ``None`` goes straight to the fallbacks.

    Returns:
        An :class:`ExtractedArticle`.  ``content`` is ``""`` when nothing
        usable was found.
    """
    config = config or ScrapingSelectorConfig()
    soup = BeautifulSoup(html or "", "html.parser")

    content = _configured_content(soup, config.content_selector)
    if not content:
        if config.content_selector:
            logger.debug(
                "scraper: content selector %r matched nothing, trying fallbacks",
                config.content_selector,
            )
        content = _fallback_content(soup)

    method, confidence = SIMPLE_SELECTORS, config.confidence
    if not content and html:
        content = _trafilatura_content(html)
        if content:
            method, confidence = TRAFILATURA, min(config.confidence, TRAFILATURA_CONFIDENCE)

    if not content:
        logger.info("scraper: no article content found")

    return ExtractedArticle(
        title=_extract_title(soup, config.title_selector),
        content=_truncate(content.replace("\x00", "")),
        author=_extract_author(soup, config.author_selector),
        publish_date=None,
        extraction_method=method,
        confidence=confidence,
    )


def build_analysis_snippet(html: str, config: ScrapingSelectorConfig | None = None) -> str:
    """Return the HTML handed to the analysis collaborator for date inference.

    The configured date element (if any) comes first, then date-bearing
    ``<meta>``/``<time>`` tags, then the start of the document.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    parts: list[str] = []
    if config and config.date_selector:
        parts.extend(str(el) for el in _select(soup, config.date_selector)[:3])
    for meta in soup.find_all("meta"):
        key = " ".join(str(meta.get(a, "")) for a in ("property", "name", "itemprop")).lower()
        if "date" in key or "time" in key:
            parts.append(str(meta))
    parts.extend(str(t) for t in soup.find_all("time")[:3])
    parts.append((html or "")[:ANALYSIS_HTML_SNIPPET_CHARS])
    return "\n".join(parts)[: ANALYSIS_HTML_SNIPPET_CHARS * 2]


async def extract_complete_article(
    html: str,
    config: ScrapingSelectorConfig | None = None,
    *,
    analyzer: ContentAnalyzer | None = None,
    timeout: float | None = None,
    min_article_length: int | None = None,
) -> ExtractedArticle:
    """Extract an article and enrich it with the analysis collaborator.

    Args:
        html: Article HTML.
        config: Source selectors.
        analyzer: Content/date analysis collaborator; ``None`` skips analysis.
        timeout: Ceiling in seconds for the analyzer call.
        min_article_length: When set, the content is validated first (see
            :func:`~newsradar.scraper.content_validator.validate_article_content`).
            A rejected article carries ``rejection_reason`` and is not analyzed.

    Returns:
        The :class:`ExtractedArticle` with ``analysis`` and ``publish_date``
        set when the analyzer produced them.  Analyzer failures leave both
        as ``None``.
    """
    article = extract_article(html, config)
    if article.is_empty:
        return article
    if min_article_length is not None:
        article.rejection_reason = validate_article_content(
            article.content, min_length=min_article_length
        )
        if article.rejection_reason:
            return article
    if analyzer is None:
        return article

    try:
        analysis = await asyncio.wait_for(
            analyzer.analyze(article.content, article.title, build_analysis_snippet(html, config)),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("scraper: content analysis timed out after %ss", timeout)
        return article
    except Exception as exc:  # noqa: BLE001
        logger.warning("scraper: content analysis failed: %s", exc)
        return article

    article.analysis = analysis
    article.publish_date = analysis.publish_date if analysis else None
    return article
