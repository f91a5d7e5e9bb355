"""Playwright-based browser-automation fallback driver.

Used when the HTTP fetcher escalates (bot protection, client-rendered
content) and by the redirect resolver's browser stage.  Every call opens one
scoped Chromium session that is closed on every exit path; sessions are never
shared between calls.

Install the Chromium binary once per environment::

    playwright install chromium
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from newsradar.config.settings import Settings
from newsradar.core.exceptions import (
    AutomationError,
    AutomationLaunchFailure,
    AutomationScriptError,
    AutomationTimeout,
)
from newsradar.scraper.config import (
    BROWSER_HEADERS,
    BROWSER_LAUNCH_ARGS,
    BROWSER_LOCALE,
    BROWSER_TIMEZONE,
    BROWSER_VIEWPORT,
    DYNAMIC_STEP_WAIT_MS,
    MAX_DYNAMIC_ENDPOINTS,
    MAX_LOAD_MORE_CLICKS,
    NAVIGATION_POLL_MS,
    SCROLL_PASSES,
    SCROLL_WAIT_MS,
    USER_AGENT,
)
from newsradar.scraper.detector import detect, has_protection_signal
from newsradar.scraper.http_fetcher import FetchResult
from newsradar.scraper.memory_guard import MemoryGuard

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

STEALTH_INIT_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'plugins', {
    get: () => [
        { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
        { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
        { name: 'Native Client', filename: 'internal-nacl-plugin' },
    ],
});
if (!window.chrome) {
    window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {} };
}
const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
if (originalQuery) {
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications'
            ? Promise.resolve({ state: Notification.permission })
            : originalQuery(parameters)
    );
}
"""

# Processed endpoints are tagged with data-nr-loaded so a second round
# never fetches them again.
_FETCH_ENDPOINTS_JS = """
async (maxEndpoints) => {
    const selector = '[hx-get]:not([data-nr-loaded]), [data-hx-get]:not([data-nr-loaded])';
    const nodes = Array.from(document.querySelectorAll(selector)).slice(0, maxEndpoints);
    let appended = 0;
    for (const node of nodes) {
        node.setAttribute('data-nr-loaded', '1');
        const endpoint = node.getAttribute('hx-get') || node.getAttribute('data-hx-get');
        if (!endpoint || /search|filter|login|logout/i.test(endpoint)) continue;
        try {
            const resp = await fetch(new URL(endpoint, location.href).href, {
                credentials: 'include',
                headers: { 'HX-Request': 'true' },
            });
            if (!resp.ok) continue;
            const holder = document.createElement('div');
            holder.setAttribute('data-nr-dynamic', endpoint);
            holder.innerHTML = await resp.text();
            document.body.appendChild(holder);
            appended += 1;
        } catch (e) {
            // unreachable endpoint
        }
    }
    return appended;
}
"""

_CLICK_LOAD_MORE_JS = """
(maxClicks) => {
    const pattern = /(load|show|view|see)\\s+more|more\\s+(articles|stories|news|posts)|older\\s+posts/i;
    const candidates = document.querySelectorAll('button, a, [role="button"], [data-load-more]');
    let clicked = 0;
    for (const el of candidates) {
        if (clicked >= maxClicks) break;
        if (el.hasAttribute('data-nr-clicked')) continue;
        const explicit = el.hasAttribute('data-load-more');
        const label = (el.innerText || el.getAttribute('aria-label') || '').trim();
        if (!explicit && !pattern.test(label)) continue;
        const href = el.tagName === 'A' ? (el.getAttribute('href') || '') : '';
        if (!explicit && href && !href.startsWith('#') && !href.startsWith('javascript:')) continue;
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        el.setAttribute('data-nr-clicked', '1');
        el.click();
        clicked += 1;
    }
    return clicked;
}
"""

_SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"
_ANCHOR_COUNT_JS = "() => document.querySelectorAll('a[href]').length"
_LOCATION_JS = "() => window.location.href"


# ---------------------------------------------------------------------------
# Options and session
# ---------------------------------------------------------------------------


@dataclass
class RenderOptions:
    """Per-call rendering behaviour.

    Attributes:
        trigger_dynamic_load: Run endpoint-fetch / load-more / scroll rounds
            until the anchor count stabilizes.
        max_wait_ms: Hard ceiling for navigation and the settle wait.
            ``None`` uses the driver's navigation timeout.
        settle_navigation: Wait for client-side redirects to finish and record
            the main-frame navigation history.
    """

    trigger_dynamic_load: bool = False
    max_wait_ms: int | None = None
    settle_navigation: bool = False


class BrowserSession:
    """One Playwright browser/context/page triple owned by a single call."""

    def __init__(
        self,
        playwright_cm: Any,
        browser: Any = None,
        context: Any = None,
        page: Any = None,
    ) -> None:
        self._playwright_cm = playwright_cm
        self.browser = browser
        self.context = context
        self.page = page
        self.closed = False

    async def close(self) -> None:
        """Close page, context, browser and the Playwright driver.

        Idempotent.  Errors from individual steps are logged and ignored so
        that every step is attempted.
        """
        if self.closed:
            return
        self.closed = True
        for name, target in (("page", self.page), ("context", self.context), ("browser", self.browser)):
            if target is None:
                continue
            try:
                await target.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("scraper: error closing browser %s: %s", name, exc)
        if self._playwright_cm is not None:
            try:
                await self._playwright_cm.__aexit__(None, None, None)
            except Exception as exc:  # noqa: BLE001
                logger.debug("scraper: error stopping playwright: %s", exc)


@asynccontextmanager
async def _mapped_errors(url: str, action: str) -> AsyncIterator[None]:
    """Translate Playwright exceptions raised by ``action`` into automation errors."""
    try:
        yield
    except PlaywrightTimeoutError as exc:
        raise AutomationTimeout(f"{action} timed out: {exc}", url=url) from exc
    except PlaywrightError as exc:
        raise AutomationScriptError(f"{action} failed: {exc}", url=url) from exc


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


class BrowserDriver:
    """Render pages in headless Chromium with stealth settings.

    Args:
        headless: Launch Chromium headless.
        navigation_timeout_ms: Ceiling for ``page.goto`` and the default
            ``max_wait_ms``.
        challenge_wait_ceiling_ms: Longest wait for a challenge page to clear.
        challenge_poll_ms: Polling interval of the challenge wait.
        dynamic_load_max_steps: Maximum dynamic-load rounds.
        settle_ms: Time ``window.location`` must stay unchanged to count as
            settled.
        min_anchor_count: Forwarded to the detector for rendered pages.
        min_content_length: Forwarded to the detector for rendered pages.
        launcher: Factory returning the Playwright async context manager;
            defaults to :func:`playwright.async_api.async_playwright`.
        memory_guard: Consulted after the challenge wait and before every
            dynamic-load round while the session is open.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        navigation_timeout_ms: int = 30_000,
        challenge_wait_ceiling_ms: int = 15_000,
        challenge_poll_ms: int = 1_000,
        dynamic_load_max_steps: int = 3,
        settle_ms: int = 2_000,
        min_anchor_count: int = 10,
        min_content_length: int = 500,
        launcher: Callable[[], Any] | None = None,
        memory_guard: MemoryGuard | None = None,
    ) -> None:
        self.headless = headless
        self.navigation_timeout_ms = navigation_timeout_ms
        self.challenge_wait_ceiling_ms = challenge_wait_ceiling_ms
        self.challenge_poll_ms = max(challenge_poll_ms, 1)
        self.dynamic_load_max_steps = dynamic_load_max_steps
        self.settle_ms = settle_ms
        self.min_anchor_count = min_anchor_count
        self.min_content_length = min_content_length
        self._launcher = launcher or async_playwright
        self.memory_guard = memory_guard
        self._active: BrowserSession | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> BrowserDriver:
        return cls(
            headless=settings.browser_headless,
            navigation_timeout_ms=settings.browser_navigation_timeout_ms,
            challenge_wait_ceiling_ms=settings.challenge_wait_ceiling_ms,
            challenge_poll_ms=settings.challenge_poll_ms,
            dynamic_load_max_steps=settings.dynamic_load_max_steps,
            settle_ms=settings.redirect_settle_ms,
            min_anchor_count=settings.min_anchor_count,
            min_content_length=settings.min_content_length,
            **kwargs,
        )

    @property
    def has_active_session(self) -> bool:
        return self._active is not None and not self._active.closed

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _open_session(self) -> BrowserSession:
        cm = self._launcher()
        session = BrowserSession(None)
        try:
            playwright = await cm.__aenter__()
            session._playwright_cm = cm
            session.browser = await playwright.chromium.launch(
                headless=self.headless,
                args=list(BROWSER_LAUNCH_ARGS),
            )
            session.context = await session.browser.new_context(
                user_agent=USER_AGENT,
                viewport=dict(BROWSER_VIEWPORT),
                locale=BROWSER_LOCALE,
                timezone_id=BROWSER_TIMEZONE,
                extra_http_headers={"Accept-Language": BROWSER_HEADERS["Accept-Language"]},
            )
            await session.context.add_init_script(STEALTH_INIT_SCRIPT)
            session.page = await session.context.new_page()
        except Exception as exc:  # noqa: BLE001
            await session.close()
            raise AutomationLaunchFailure(f"browser launch failed: {exc}") from exc
        return session

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserSession]:
        """Open a browser session that is closed however the block exits.

        Raises:
            AutomationError: If another session of this driver is still open.
            AutomationLaunchFailure: If Chromium could not be started.
        """
        if self.has_active_session:
            raise AutomationError("a browser session is already active")
        session = await self._open_session()
        self._active = session
        try:
            yield session
        finally:
            await session.close()
            if self._active is session:
                self._active = None

    async def force_close(self) -> bool:
        """Close the active session, if any.  Returns ``True`` if one was closed."""
        session = self._active
        if session is None or session.closed:
            return False
        logger.warning("scraper: force-closing active browser session")
        await session.close()
        return True

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    async def render_and_fetch(self, url: str, options: RenderOptions | None = None) -> FetchResult:
        """Navigate to ``url`` in a fresh session and return the rendered page.

        Args:
            url: Target URL.
            options: Rendering behaviour; defaults to :class:`RenderOptions()`.

        Returns:
            A :class:`~newsradar.scraper.http_fetcher.FetchResult` with
            ``rendered_by_browser=True``.

        Raises:
            AutomationTimeout: Navigation exceeded its ceiling.
            AutomationLaunchFailure: Chromium could not be started.
            AutomationScriptError: Navigation or page access failed.
            ResourceExhausted: The memory guard tripped mid-render.  The
                session is closed before this propagates.
        """
        options = options or RenderOptions()
        max_wait_ms = options.max_wait_ms or self.navigation_timeout_ms

        async with self.session() as session:
            page = session.page
            navigations: list[str] = []
            if options.settle_navigation:
                page.on(
                    "framenavigated",
                    lambda frame: navigations.append(frame.url)
                    if frame == page.main_frame
                    else None,
                )

            async with _mapped_errors(url, "navigation"):
                response = await page.goto(url, timeout=max_wait_ms, wait_until="domcontentloaded")

            status_code = response.status if response is not None else None
            headers = dict(response.headers) if response is not None else {}

            await self._wait_for_challenge(page, url)
            self._guard_memory()

            if options.trigger_dynamic_load:
                await self._trigger_dynamic_load(page, url)

            if options.settle_navigation:
                await self._settle_navigation(page, max_wait_ms)

            async with _mapped_errors(url, "content read"):
                html = await page.content()
            final_url = page.url

            cookies: dict[str, str] = {}
            try:
                cookies = {c["name"]: c["value"] for c in await session.context.cookies()}
            except PlaywrightError as exc:
                logger.debug("scraper: could not read browser cookies for %s: %s", url, exc)

        history = tuple(u for u in navigations[:-1] if u and u != "about:blank")
        labels = detect(
            status_code,
            headers,
            html,
            min_anchor_count=self.min_anchor_count,
            min_content_length=self.min_content_length,
        )
        logger.info("scraper: browser rendered %s -> %s (%s)", url, final_url, ",".join(sorted(labels)))
        return FetchResult(
            url=url,
            status_code=status_code,
            headers={k.lower(): v for k, v in headers.items()},
            html=html,
            rendered_by_browser=True,
            final_url=final_url,
            history=history,
            cookies=cookies,
            labels=labels,
            dynamic_loaded=options.trigger_dynamic_load,
        )

    # ------------------------------------------------------------------
    # Challenge wait
    # ------------------------------------------------------------------

    async def _challenge_present(self, page: Any) -> bool:
        try:
            html = await page.content()
        except PlaywrightError:
            # Content is unavailable while the challenge navigates away.
            return True
        return has_protection_signal(None, None, html)

    async def _wait_for_challenge(self, page: Any, url: str) -> None:
        """Poll until challenge markers disappear or the ceiling is reached."""
        waited = 0
        while await self._challenge_present(page):
            if waited >= self.challenge_wait_ceiling_ms:
                logger.info(
                    "scraper: challenge still present on %s after %dms, proceeding", url, waited
                )
                return
            try:
                await page.wait_for_timeout(self.challenge_poll_ms)
            except PlaywrightError as exc:
                logger.debug("scraper: challenge wait interrupted on %s: %s", url, exc)
                return
            waited += self.challenge_poll_ms
        if waited:
            logger.info("scraper: challenge cleared on %s after %dms", url, waited)

    # ------------------------------------------------------------------
    # Dynamic load
    # ------------------------------------------------------------------

    async def _step(self, page: Any, url: str, name: str, script: str, arg: Any = None) -> int:
        """Run one in-page step; failures are logged and count as no progress."""
        try:
            if arg is None:
                result = await page.evaluate(script)
            else:
                result = await page.evaluate(script, arg)
        except PlaywrightError as exc:
            logger.debug("scraper: dynamic-load step '%s' failed on %s: %s", name, url, exc)
            return 0
        try:
            return int(result or 0)
        except (TypeError, ValueError):
            return 0

    def _guard_memory(self) -> None:
        if self.memory_guard is not None:
            self.memory_guard.check()

    async def _pause(self, page: Any, ms: int) -> None:
        try:
            await page.wait_for_timeout(ms)
        except PlaywrightError as exc:
            logger.debug("scraper: wait interrupted: %s", exc)

    async def _trigger_dynamic_load(self, page: Any, url: str) -> None:
        previous = await self._step(page, url, "anchor count", _ANCHOR_COUNT_JS)
        for round_no in range(1, self.dynamic_load_max_steps + 1):
            self._guard_memory()
            fetched = await self._step(page, url, "endpoint fetch", _FETCH_ENDPOINTS_JS, MAX_DYNAMIC_ENDPOINTS)
            if fetched:
                await self._pause(page, DYNAMIC_STEP_WAIT_MS)

            clicked = await self._step(page, url, "load more", _CLICK_LOAD_MORE_JS, MAX_LOAD_MORE_CLICKS)
            if clicked:
                await self._pause(page, DYNAMIC_STEP_WAIT_MS)

            for _ in range(SCROLL_PASSES):
                await self._step(page, url, "scroll", _SCROLL_TO_BOTTOM_JS)
                await self._pause(page, SCROLL_WAIT_MS)

            current = await self._step(page, url, "anchor count", _ANCHOR_COUNT_JS)
            logger.debug(
                "scraper: dynamic-load round %d on %s: endpoints=%d clicks=%d anchors %d -> %d",
                round_no, url, fetched, clicked, previous, current,
            )
            if current <= previous:
                break
            previous = current

    # ------------------------------------------------------------------
    # Client-side navigation
    # ------------------------------------------------------------------

    async def _settle_navigation(self, page: Any, max_wait_ms: int) -> None:
        """Wait until ``window.location.href`` is unchanged for ``settle_ms``."""
        elapsed = 0
        stable_for = 0
        last = page.url
        while elapsed < max_wait_ms:
            await self._pause(page, NAVIGATION_POLL_MS)
            elapsed += NAVIGATION_POLL_MS
            try:
                current = await page.evaluate(_LOCATION_JS)
            except PlaywrightError:
                # Execution context destroyed by an in-flight navigation.
                stable_for = 0
                continue
            if current != last:
                last = current
                stable_for = 0
                continue
            stable_for += NAVIGATION_POLL_MS
            if stable_for >= self.settle_ms:
                return
        logger.info("scraper: navigation did not settle within %dms", max_wait_ms)
