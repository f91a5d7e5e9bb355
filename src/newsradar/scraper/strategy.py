"""Fetch strategies: plain HTTP, browser automation, and the hybrid of both.

The hybrid strategy tries HTTP first and, when the fetcher escalates, picks
the browser rendering mode from the detector's labels: pages labelled
``dynamic-content`` are rendered with the dynamic-load rounds enabled, pages
that were only protected are rendered as-is.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx

from newsradar.core.exceptions import ProtectionDetected
from newsradar.scraper.detector import DYNAMIC_CONTENT
from newsradar.scraper.http_fetcher import EscalateSignal, FetchOptions, FetchResult, fetch_url
from newsradar.scraper.playwright_fetcher import BrowserDriver, RenderOptions

logger = logging.getLogger(__name__)


@runtime_checkable
class FetchStrategy(Protocol):
    """Anything that turns a URL into a :class:`FetchResult`."""

    async def fetch(self, url: str) -> FetchResult: ...


def select_render_options(labels: frozenset[str]) -> RenderOptions:
    """Return the browser rendering mode for a page with the given detector labels."""
    return RenderOptions(trigger_dynamic_load=DYNAMIC_CONTENT in labels)


class HttpStrategy:
    """HTTP-only strategy.  Raises :class:`ProtectionDetected` instead of escalating."""

    def __init__(self, client: httpx.AsyncClient, options: FetchOptions | None = None) -> None:
        self.client = client
        self.options = options or FetchOptions()

    async def fetch(self, url: str) -> FetchResult:
        outcome = await fetch_url(url, client=self.client, options=self.options)
        if isinstance(outcome, EscalateSignal):
            raise ProtectionDetected(outcome)
        return outcome


class BrowserStrategy:
    """Browser-only strategy."""

    def __init__(self, driver: BrowserDriver, options: RenderOptions | None = None) -> None:
        self.driver = driver
        self.options = options or RenderOptions()

    async def fetch(self, url: str) -> FetchResult:
        return await self.driver.render_and_fetch(url, self.options)


class HybridFetcher:
    """HTTP first, browser automation when the HTTP fetcher escalates.

    Args:
        client: Shared HTTP client.
        driver: Browser driver, or ``None`` to run HTTP-only.
        options: HTTP fetch options.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        driver: BrowserDriver | None = None,
        options: FetchOptions | None = None,
    ) -> None:
        self.http = HttpStrategy(client, options)
        self.driver = driver

    async def fetch(self, url: str, *, allow_browser: bool = True) -> FetchResult:
        """Fetch ``url``, escalating to the browser when allowed.

        Raises:
            ProtectionDetected: If HTTP escalated and the browser is not
                available or not allowed.
            NetworkError: If every HTTP attempt failed at the network level.
            AutomationError: If the browser fallback failed.
        """
        try:
            return await self.http.fetch(url)
        except ProtectionDetected as exc:
            if self.driver is None or not allow_browser:
                raise
            options = select_render_options(exc.signal.labels)
            logger.info(
                "scraper: escalating %s to browser (dynamic_load=%s)", url, options.trigger_dynamic_load
            )
            return await self.driver.render_and_fetch(url, options)
