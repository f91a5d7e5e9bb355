"""In-memory stand-ins for the Playwright objects used by the browser driver.

Usage::

    from tests.factories.browser import FakeLauncher, FakePage

    page = FakePage(html="<html>...</html>", redirect_to="https://real.example/a")
    launcher = FakeLauncher(page)
    driver = BrowserDriver(launcher=launcher, challenge_wait_ceiling_ms=0)
"""

from __future__ import annotations

from typing import Any


class FakeResponse:
    def __init__(self, status: int = 200, headers: dict[str, str] | None = None) -> None:
        self.status = status
        self.headers = headers if headers is not None else {"content-type": "text/html"}


class FakeFrame:
    def __init__(self, url: str) -> None:
        self.url = url


class FakePage:
    """Scriptable page.

    Args:
        html: Returned by ``content()`` once ``content_sequence`` is used up.
        status: Status of the navigation response.
        headers: Headers of the navigation response.
        goto_error: Raised by ``goto()`` when set.
        redirect_to: Simulated client-side redirect right after navigation.
        content_sequence: Successive ``content()`` results (challenge pages).
        anchor_counts: Successive results of the anchor-count script.
    """

    def __init__(
        self,
        *,
        html: str = "<html><body></body></html>",
        status: int = 200,
        headers: dict[str, str] | None = None,
        goto_error: Exception | None = None,
        redirect_to: str | None = None,
        content_sequence: list[str] | None = None,
        anchor_counts: list[int] | None = None,
    ) -> None:
        self.html = html
        self.status = status
        self.headers = headers
        self.goto_error = goto_error
        self.redirect_to = redirect_to
        self.content_sequence = list(content_sequence or [])
        self.anchor_counts = list(anchor_counts or [0])
        self.url = "about:blank"
        self.main_frame = FakeFrame("about:blank")
        self.handlers: dict[str, list[Any]] = {}
        self.goto_calls: list[str] = []
        self.evaluate_calls: list[str] = []
        self.waits: list[int] = []
        self.closed = False

    def on(self, event: str, handler: Any) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def _navigate(self, url: str) -> None:
        self.url = url
        self.main_frame.url = url
        for handler in self.handlers.get("framenavigated", []):
            handler(self.main_frame)

    async def goto(self, url: str, timeout: int | None = None, wait_until: str | None = None) -> FakeResponse:
        self.goto_calls.append(url)
        if self.goto_error is not None:
            raise self.goto_error
        self._navigate(url)
        if self.redirect_to:
            self._navigate(self.redirect_to)
        return FakeResponse(self.status, self.headers)

    async def content(self) -> str:
        if self.content_sequence:
            return self.content_sequence.pop(0)
        return self.html

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluate_calls.append(script)
        if "window.location.href" in script:
            return self.url
        if "a[href]" in script and "length" in script:
            if len(self.anchor_counts) > 1:
                return self.anchor_counts.pop(0)
            return self.anchor_counts[0]
        return 0

    async def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage, cookies: list[dict[str, str]] | None = None) -> None:
        self.page = page
        self._cookies = cookies or []
        self.init_scripts: list[str] = []
        self.closed = False

    async def add_init_script(self, script: str) -> None:
        self.init_scripts.append(script)

    async def new_page(self) -> FakePage:
        return self.page

    async def cookies(self) -> list[dict[str, str]]:
        return list(self._cookies)

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, context: FakeContext) -> None:
        self.context = context
        self.context_kwargs: dict[str, Any] = {}
        self.closed = False

    async def new_context(self, **kwargs: Any) -> FakeContext:
        self.context_kwargs = kwargs
        return self.context

    async def close(self) -> None:
        self.closed = True


class _FakeChromium:
    def __init__(self, launcher: FakeLauncher) -> None:
        self._launcher = launcher

    async def launch(self, **kwargs: Any) -> FakeBrowser:
        self._launcher.launch_kwargs = kwargs
        if self._launcher.launch_error is not None:
            raise self._launcher.launch_error
        page = self._launcher.next_page()
        browser = FakeBrowser(FakeContext(page, self._launcher.cookies))
        self._launcher.browsers.append(browser)
        return browser


class _FakePlaywrightCM:
    def __init__(self, launcher: FakeLauncher) -> None:
        self.chromium = _FakeChromium(launcher)
        self._launcher = launcher

    async def __aenter__(self) -> _FakePlaywrightCM:
        self._launcher.started += 1
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._launcher.stopped += 1


class FakeLauncher:
    """Replacement for ``async_playwright``; each call opens one fake session.

    Args:
        *pages: Pages handed out to successive sessions; the last one is
            reused once the list is exhausted.
        launch_error: Raised by ``chromium.launch()`` when set.
        cookies: Cookies reported by every context.
    """

    def __init__(
        self,
        *pages: FakePage,
        launch_error: Exception | None = None,
        cookies: list[dict[str, str]] | None = None,
    ) -> None:
        self.pages = list(pages) or [FakePage()]
        self.launch_error = launch_error
        self.cookies = cookies
        self.launch_kwargs: dict[str, Any] = {}
        self.browsers: list[FakeBrowser] = []
        self.started = 0
        self.stopped = 0

    def next_page(self) -> FakePage:
        if len(self.pages) > 1:
            return self.pages.pop(0)
        return self.pages[0]

    def __call__(self) -> _FakePlaywrightCM:
        return _FakePlaywrightCM(self)
