"""Candidate link discovery on source pages.

Turns a source page into a set of :class:`CandidateLink` values: every usable
anchor resolved to an absolute URL, with its text and a short window of
surrounding text for the AI link classifier.  Deciding which links are
articles is the classifier's job, not this module's.
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from collections.abc import Iterable
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from newsradar.core.exceptions import AutomationError
from newsradar.scraper.config import (
    CONTEXT_CONTAINER_TAGS,
    IGNORED_HREF_PREFIXES,
    LINK_CONTEXT_WINDOW,
    TRACKING_PARAMS,
)
from newsradar.scraper.detector import DYNAMIC_CONTENT
from newsradar.scraper.http_fetcher import FetchResult
from newsradar.scraper.playwright_fetcher import BrowserDriver, RenderOptions

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_PATH_SAFE = "/%:@!$&'()*+,;=~"
_QUERY_SAFE = _PATH_SAFE + "?[]"


@dataclass(frozen=True)
class CandidateLink:
    """An anchor found on a source page.

    Attributes:
        href: Absolute URL without fragment.
        text: Anchor text, whitespace-collapsed.
        context: Text surrounding the anchor inside its enclosing block.
        is_external: ``True`` when the link leaves the page's site.
    """

    href: str
    text: str
    context: str
    is_external: bool


# ---------------------------------------------------------------------------
# URL helpers
# ---------------------------------------------------------------------------


def _site(url: str) -> str:
    return (urllib.parse.urlparse(url).hostname or "").lower().removeprefix("www.")


def normalize_href(url: str) -> str:
    """Normalize an absolute URL for deduplication.

    Lower-cases scheme and host, strips the trailing slash (root ``/`` is
    kept), drops tracking parameters and the fragment.
    """
    try:
        parsed = urllib.parse.urlparse(url)
        path = parsed.path.rstrip("/") or "/"
        query = urllib.parse.urlencode(
            [
                (k, v)
                for k, v in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
                if k.lower() not in TRACKING_PARAMS
            ]
        )
        return urllib.parse.urlunparse(
            (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, query, "")
        )
    except ValueError:
        return url


def _resolve_href(raw: str, base_url: str) -> str | None:
    """Resolve an href to an absolute http(s) URL, or ``None`` when unusable.

    Stray whitespace and other unsafe characters in the path and query are
    percent-encoded; hrefs with a broken host or port are dropped.
    """
    href = raw.strip()
    if not href or href.lower().startswith(IGNORED_HREF_PREFIXES):
        return None
    try:
        absolute, _fragment = urllib.parse.urldefrag(urllib.parse.urljoin(base_url, href))
        parts = urllib.parse.urlsplit(absolute)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return None
        if any(ch.isspace() for ch in parts.netloc):
            return None
        parts.port  # raises ValueError on a non-numeric or out-of-range port
    except ValueError:
        return None
    return urllib.parse.urlunsplit(
        parts._replace(
            path=urllib.parse.quote(parts.path, safe=_PATH_SAFE),
            query=urllib.parse.quote(parts.query, safe=_QUERY_SAFE),
        )
    )


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _context_for(anchor: Tag, text: str) -> str:
    container = anchor.find_parent(list(CONTEXT_CONTAINER_TAGS))
    if container is None:
        return text
    block = _collapse(container.get_text(" "))
    if not text:
        return block[: 2 * LINK_CONTEXT_WINDOW]
    pos = block.find(text)
    if pos < 0:
        return block[: 2 * LINK_CONTEXT_WINDOW + len(text)]
    start = max(pos - LINK_CONTEXT_WINDOW, 0)
    end = pos + len(text) + LINK_CONTEXT_WINDOW
    return block[start:end].strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_links(html: str, base_url: str) -> frozenset[CandidateLink]:
    """Extract candidate links from a source page.

    Args:
        html: Page HTML.
        base_url: URL the page was served from; relative hrefs resolve
            against it (a ``<base href>`` in the document takes precedence).

    Returns:
        Candidate links, one per normalized href (first occurrence wins).
    """
    if not html:
        return frozenset()

    soup = BeautifulSoup(html, "html.parser")
    base_tag = soup.find("base", href=True)
    if isinstance(base_tag, Tag):
        base_url = urllib.parse.urljoin(base_url, str(base_tag["href"]))

    page_site = _site(base_url)
    seen: set[str] = set()
    links: list[CandidateLink] = []

    for anchor in soup.find_all("a", href=True):
        href = _resolve_href(str(anchor["href"]), base_url)
        if href is None:
            continue
        key = normalize_href(href)
        if key in seen:
            continue
        seen.add(key)

        text = _collapse(anchor.get_text(" "))
        if not text:
            text = _collapse(str(anchor.get("title") or anchor.get("aria-label") or ""))
        links.append(
            CandidateLink(
                href=href,
                text=text,
                context=_context_for(anchor, text),
                is_external=_site(href) != page_site,
            )
        )

    logger.debug("scraper: extracted %d candidate links from %s", len(links), base_url)
    return frozenset(links)


async def discover_links(
    page: FetchResult,
    *,
    driver: BrowserDriver | None,
    allow_browser: bool = True,
) -> frozenset[CandidateLink]:
    """Extract links from a fetched source page, loading dynamic content first.

    When the page is labelled ``dynamic-content`` and was not rendered with
    the dynamic-load rounds, it is re-rendered with them before extraction.
    If that fails the original HTML is used.
    """
    html = page.html or ""
    base_url = page.final_url or page.url

    if (
        DYNAMIC_CONTENT in page.labels
        and not page.dynamic_loaded
        and driver is not None
        and allow_browser
    ):
        try:
            rendered = await driver.render_and_fetch(
                page.url, RenderOptions(trigger_dynamic_load=True)
            )
        except AutomationError as exc:
            logger.warning(
                "scraper: dynamic load failed for %s, using original HTML: %s", page.url, exc
            )
        else:
            if rendered.html:
                html = rendered.html
                base_url = rendered.final_url or base_url

    return extract_links(html, base_url)


def sorted_links(links: Iterable[CandidateLink]) -> list[CandidateLink]:
    """Deterministic ordering used for prompts and processing."""
    return sorted(links, key=lambda link: link.href)


def format_links_for_classifier(links: Iterable[CandidateLink]) -> str:
    """Render links as numbered plain-text blocks for the AI link classifier."""
    blocks: list[str] = []
    for idx, link in enumerate(sorted_links(links), start=1):
        lines = [f"[{idx}] URL: {link.href}", f"    Text: {link.text or '(none)'}"]
        if link.context and link.context != link.text:
            lines.append(f"    Context: {link.context}")
        lines.append(f"    External: {'yes' if link.is_external else 'no'}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)
