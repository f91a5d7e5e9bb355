"""Interfaces of the external collaborators the scraping core depends on.

The core never implements article classification, content analysis or
selector storage itself; it talks to these protocols.
:mod:`newsradar.scraper.ai_client` provides an OpenRouter-backed
implementation of the two AI protocols.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from newsradar.scraper.content_extractor import ScrapingSelectorConfig


@dataclass
class ContentAnalysis:
    """Structured result of the AI content analysis.

    Attributes:
        keywords: Keywords/topics found in the article.
        summary: Short summary, if produced.
        publish_date: Publication date inferred from the page, if any.
    """

    keywords: list[str] = field(default_factory=list)
    summary: str | None = None
    publish_date: datetime | None = None


@runtime_checkable
class ArticleLinkClassifier(Protocol):
    """Selects the article links among a page's candidate links."""

    async def classify(self, structured_text: str, context_hint: str | None) -> list[str]:
        """Return the hrefs judged to be articles.

        An empty list or an exception means "no judgment"; the caller then
        uses every candidate.
        """
        ...


@runtime_checkable
class ContentAnalyzer(Protocol):
    """Analyzes extracted article content."""

    async def analyze(self, content: str, title: str, html_snippet: str) -> ContentAnalysis: ...


@runtime_checkable
class SelectorConfigStore(Protocol):
    """Read-only lookup of per-source extraction selectors."""

    async def get_selector_config(self, source_id: str) -> ScrapingSelectorConfig | None: ...


class StaticSelectorConfigStore:
    """In-memory :class:`SelectorConfigStore` backed by a dict."""

    def __init__(self, configs: dict[str, ScrapingSelectorConfig] | None = None) -> None:
        self._configs = dict(configs or {})

    async def get_selector_config(self, source_id: str) -> ScrapingSelectorConfig | None:
        return self._configs.get(source_id)
