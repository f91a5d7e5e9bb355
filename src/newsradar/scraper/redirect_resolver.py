"""Two-stage redirect resolution.

Stage 1 (HTTP) walks ``3xx`` hops manually through the HTTP fetcher and then
follows a ``<meta http-equiv="refresh">`` on the landing page.  Stage 2
(browser) is entered when the landing page carries client-side redirect
markers, when plain HTTP was blocked, or when the input URL matches the
indirection rule table; it lets the page run its scripts and records where
the main frame settles.

A failed browser stage never fails the resolution: the HTTP-stage result is
returned with reduced confidence and the failure reason attached.
"""

from __future__ import annotations

import logging
import re
import urllib.parse
from dataclasses import dataclass, field, replace
from typing import Any, Literal

import httpx
from bs4 import BeautifulSoup

from newsradar.config.settings import Settings
from newsradar.core.exceptions import AutomationError, NetworkError
from newsradar.scraper.config import (
    BROWSER_FAILURE_PENALTY,
    BROWSER_STAGE_CONFIDENCE,
    HTTP_STAGE_CONFIDENCE,
    INTERSTITIAL_BODY_LENGTH,
)
from newsradar.scraper.http_fetcher import EscalateSignal, FetchOptions, fetch_url
from newsradar.scraper.pacing import HostPacer
from newsradar.scraper.playwright_fetcher import BrowserDriver, RenderOptions
from newsradar.scraper.redirect_rules import DEFAULT_RULES, RedirectRule, match_indirection_patterns

logger = logging.getLogger(__name__)

ResolutionMethod = Literal["http", "browser", "none"]

_CLIENT_REDIRECT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("js-location-assign", re.compile(r"(?:window|document|top|self)\.location(?:\.href)?\s*=\s*[\"'`]", re.I)),
    ("js-location-assign", re.compile(r"\blocation\.href\s*=\s*[\"'`]", re.I)),
    ("js-location-replace", re.compile(r"\blocation\.(?:replace|assign)\s*\(", re.I)),
    ("redirect-notice", re.compile(r"you are being redirected|redirecting you to|if you are not redirected", re.I)),
)
_SCRIPT_RE = re.compile(r"<script\b", re.I)
_REFRESH_URL_RE = re.compile(r"url\s*=\s*[\"']?\s*([^\"'\s;]+)", re.I)


def is_valid_http_url(url: str | None) -> bool:
    """Return ``True`` for a syntactically valid absolute http(s) URL."""
    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RedirectOutcome:
    """Result of resolving one URL.

    Invariants (checked on construction):

    * ``final_url`` is a valid absolute http(s) URL;
    * ``hops`` excludes ``original_url``, is non-empty iff ``has_redirect``,
      and ends with ``final_url``;
    * without a redirect ``final_url == original_url``;
    * ``0 <= confidence <= 1``.
    """

    original_url: str
    final_url: str
    hops: tuple[str, ...] = ()
    has_redirect: bool = False
    method: ResolutionMethod = "none"
    confidence: float = 1.0
    reasons: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not is_valid_http_url(self.final_url):
            raise ValueError(f"final_url is not an absolute http(s) URL: {self.final_url!r}")
        if self.method not in ("http", "browser", "none"):
            raise ValueError(f"unknown resolution method: {self.method!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if bool(self.hops) != self.has_redirect:
            raise ValueError("hops must be non-empty exactly when has_redirect is set")
        if self.hops and self.hops[-1] != self.final_url:
            raise ValueError("last hop must equal final_url")
        if not self.has_redirect and self.final_url != self.original_url:
            raise ValueError("final_url must equal original_url when there is no redirect")

    @classmethod
    def unresolved(
        cls,
        url: str,
        *,
        method: ResolutionMethod = "none",
        confidence: float = HTTP_STAGE_CONFIDENCE,
        reasons: Any = (),
    ) -> RedirectOutcome:
        return cls(
            original_url=url,
            final_url=url,
            method=method,
            confidence=confidence,
            reasons=frozenset(reasons),
        )

    @classmethod
    def redirected(
        cls,
        url: str,
        hops: Any,
        *,
        method: ResolutionMethod,
        confidence: float,
        reasons: Any = (),
    ) -> RedirectOutcome:
        hops = tuple(hops)
        return cls(
            original_url=url,
            final_url=hops[-1],
            hops=hops,
            has_redirect=True,
            method=method,
            confidence=confidence,
            reasons=frozenset(reasons),
        )

    def with_penalty(self, factor: float, reason: str) -> RedirectOutcome:
        """Return a copy with confidence scaled by ``factor`` and ``reason`` added."""
        return replace(
            self,
            confidence=max(0.0, min(1.0, self.confidence * factor)),
            reasons=self.reasons | {reason},
        )


# ---------------------------------------------------------------------------
# Page inspection helpers
# ---------------------------------------------------------------------------


def meta_refresh_target(html: str | None, base_url: str) -> str | None:
    """Return the absolute target of a ``<meta http-equiv="refresh">`` tag, if any."""
    if not html or "refresh" not in html.lower():
        return None
    soup = BeautifulSoup(html, "html.parser")
    for meta in soup.find_all("meta"):
        if str(meta.get("http-equiv", "")).strip().lower() != "refresh":
            continue
        match = _REFRESH_URL_RE.search(str(meta.get("content", "")))
        if match:
            return urllib.parse.urljoin(base_url, match.group(1))
    return None


def client_redirect_markers(html: str | None) -> list[str]:
    """Return reason strings for client-side redirect markers found in ``html``."""
    if not html:
        return []
    reasons: list[str] = []
    for name, pattern in _CLIENT_REDIRECT_PATTERNS:
        if name not in reasons and pattern.search(html):
            reasons.append(name)
    if len(html) < INTERSTITIAL_BODY_LENGTH and _SCRIPT_RE.search(html):
        reasons.append("script-only-interstitial")
    return reasons


def _compose_hops(original_url: str, candidates: list[str], final_url: str) -> tuple[str, ...]:
    """Order-preserving, de-duplicated hop list ending with ``final_url``."""
    hops: list[str] = []
    for url in [*candidates, final_url]:
        if url == original_url or not is_valid_http_url(url):
            continue
        if url in hops:
            hops.remove(url)
        hops.append(url)
    return tuple(hops)


@dataclass
class _HttpStage:
    final_url: str
    hops: list[str] = field(default_factory=list)
    body: str | None = None
    reasons: set[str] = field(default_factory=set)
    blocked: bool = False


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class RedirectResolver:
    """Resolve indirection layers in front of article URLs.

    Each :meth:`resolve` call is independent; nothing is cached between calls.

    Args:
        client: Shared HTTP client.
        driver: Browser driver for the second stage, or ``None`` for HTTP-only.
        max_hops: Maximum hops followed in the HTTP stage.
        browser_max_wait_ms: Ceiling for the browser stage (navigation plus
            settle wait); ``None`` uses the driver default.
        fetch_options: Base HTTP options; redirect following and the
            anchor/content thresholds are always switched off.
        rules: Indirection rule table.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        driver: BrowserDriver | None = None,
        *,
        max_hops: int = 5,
        browser_max_wait_ms: int | None = None,
        fetch_options: FetchOptions | None = None,
        rules: tuple[RedirectRule, ...] = DEFAULT_RULES,
    ) -> None:
        self.client = client
        self.driver = driver
        self.max_hops = max_hops
        self.browser_max_wait_ms = browser_max_wait_ms
        self.fetch_options = replace(
            fetch_options or FetchOptions(),
            follow_redirects=False,
            min_anchor_count=0,
            min_content_length=0,
        )
        self.rules = rules

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient,
        driver: BrowserDriver | None = None,
        *,
        pacer: HostPacer | None = None,
    ) -> RedirectResolver:
        return cls(
            client,
            driver,
            max_hops=settings.redirect_max_hops,
            browser_max_wait_ms=settings.browser_navigation_timeout_ms,
            fetch_options=FetchOptions.from_settings(settings, pacer=pacer),
        )

    async def resolve(self, url: str, *, allow_browser: bool = True) -> RedirectOutcome:
        """Resolve ``url`` to its final destination.

        Args:
            url: Absolute http(s) URL.
            allow_browser: Permit the browser stage (the orchestrator disables
                it after the memory guard trips).

        Returns:
            A :class:`RedirectOutcome`.

        Raises:
            ValueError: If ``url`` is not an absolute http(s) URL.
        """
        if not is_valid_http_url(url):
            raise ValueError(f"not an absolute http(s) URL: {url!r}")

        rule_match = match_indirection_patterns(url, self.rules)
        stage = await self._http_stage(url)
        http_outcome = self._http_outcome(url, stage)

        escalation_reasons = [f"rule:{name}" for name in rule_match.reasons]
        escalation_reasons += client_redirect_markers(stage.body)
        if stage.blocked:
            escalation_reasons.append("http-blocked")

        if not escalation_reasons:
            return http_outcome

        logger.info(
            "scraper: %s needs browser stage (%s)", url, ", ".join(escalation_reasons)
        )
        if self.driver is None or not allow_browser:
            return http_outcome.with_penalty(BROWSER_FAILURE_PENALTY, "browser-unavailable")

        return await self._browser_stage(url, stage, http_outcome, escalation_reasons)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _http_stage(self, url: str) -> _HttpStage:
        stage = _HttpStage(final_url=url)
        visited = {url}
        current = url

        while True:
            try:
                outcome = await fetch_url(current, client=self.client, options=self.fetch_options)
            except NetworkError as exc:
                logger.info("scraper: HTTP stage network failure for %s: %s", current, exc)
                stage.reasons.add("http-network-error")
                break

            if isinstance(outcome, EscalateSignal):
                stage.body = outcome.html
                stage.blocked = True
                break

            if outcome.is_redirect:
                target = outcome.location
                if len(stage.hops) >= self.max_hops:
                    stage.reasons.add("max-hops-reached")
                    break
                if not is_valid_http_url(target):
                    stage.reasons.add("invalid-location")
                    break
                if target in visited:
                    logger.info("scraper: circular redirect at %s", target)
                    stage.reasons.add("circular-redirect")
                    break
                visited.add(target)
                stage.hops.append(target)
                stage.reasons.add("http-redirect")
                current = target
                continue

            stage.body = outcome.html
            target = meta_refresh_target(outcome.html, current)
            if target and is_valid_http_url(target) and target not in visited:
                if len(stage.hops) >= self.max_hops:
                    stage.reasons.add("max-hops-reached")
                    break
                visited.add(target)
                stage.hops.append(target)
                stage.reasons.add("meta-refresh")
                current = target
                continue
            break

        stage.final_url = current
        return stage

    def _http_outcome(self, url: str, stage: _HttpStage) -> RedirectOutcome:
        if stage.hops:
            return RedirectOutcome.redirected(
                url,
                stage.hops,
                method="http",
                confidence=HTTP_STAGE_CONFIDENCE,
                reasons=stage.reasons,
            )
        return RedirectOutcome.unresolved(
            url, confidence=HTTP_STAGE_CONFIDENCE, reasons=stage.reasons
        )

    async def _browser_stage(
        self,
        url: str,
        stage: _HttpStage,
        http_outcome: RedirectOutcome,
        escalation_reasons: list[str],
    ) -> RedirectOutcome:
        if self.driver is None:
            return http_outcome.with_penalty(BROWSER_FAILURE_PENALTY, "browser-unavailable")
        options = RenderOptions(settle_navigation=True, max_wait_ms=self.browser_max_wait_ms)
        try:
            result = await self.driver.render_and_fetch(stage.final_url, options)
        except AutomationError as exc:
            logger.warning("scraper: browser stage failed for %s: %s", url, exc)
            return http_outcome.with_penalty(
                BROWSER_FAILURE_PENALTY, f"browser-failed:{type(exc).__name__}"
            )

        final_url = result.final_url
        if not is_valid_http_url(final_url):
            logger.warning("scraper: browser stage for %s ended on %r", url, final_url)
            return http_outcome.with_penalty(BROWSER_FAILURE_PENALTY, "browser-invalid-final-url")

        reasons = set(stage.reasons) | set(escalation_reasons)
        hops = _compose_hops(url, [*stage.hops, stage.final_url, *result.history], final_url)
        if final_url == url or not hops:
            return RedirectOutcome.unresolved(
                url, method="browser", confidence=BROWSER_STAGE_CONFIDENCE, reasons=reasons
            )
        reasons.add("browser-navigation")
        logger.info("scraper: resolved %s -> %s via browser", url, final_url)
        return RedirectOutcome.redirected(
            url, hops, method="browser", confidence=BROWSER_STAGE_CONFIDENCE, reasons=reasons
        )
