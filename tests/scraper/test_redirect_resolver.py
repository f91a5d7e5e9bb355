"""Tests for two-stage redirect resolution.

HTTP hops are mocked with respx; the browser stage runs against a fake
Playwright launcher whose page simulates a client-side redirect.
"""

from __future__ import annotations

import httpx
import pytest
import respx
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from newsradar.scraper.http_fetcher import FetchOptions
from newsradar.scraper.playwright_fetcher import BrowserDriver
from newsradar.scraper.redirect_resolver import (
    RedirectOutcome,
    RedirectResolver,
    client_redirect_markers,
    is_valid_http_url,
    meta_refresh_target,
)
from tests.factories.browser import FakeLauncher, FakePage

_PLAIN = "<html><body><p>Landing page</p></body></html>"
_AGGREGATOR_URL = "https://news.aggregator.example/read/AbCd1234"
_REAL_URL = "https://realsite.example/2024/05/01/breach"


def _resolver(client: httpx.AsyncClient, page: FakePage | None = None, **kwargs) -> RedirectResolver:
    driver = None
    if page is not None:
        driver = BrowserDriver(
            launcher=FakeLauncher(page), challenge_wait_ceiling_ms=0, settle_ms=0
        )
    kwargs.setdefault("fetch_options", FetchOptions(backoff_min=0.0, backoff_max=0.0))
    return RedirectResolver(client, driver, browser_max_wait_ms=5_000, **kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_is_valid_http_url(self) -> None:
        assert is_valid_http_url("https://example.com/a")
        assert not is_valid_http_url("ftp://example.com/a")
        assert not is_valid_http_url("/relative/path")
        assert not is_valid_http_url("https://exa mple.com/")
        assert not is_valid_http_url(None)

    def test_meta_refresh_target(self) -> None:
        html = '<html><head><meta http-equiv="Refresh" content="0; URL=\'/next\'"></head></html>'
        assert meta_refresh_target(html, "https://example.com/a") == "https://example.com/next"

    def test_meta_refresh_absent(self) -> None:
        assert meta_refresh_target(_PLAIN, "https://example.com/") is None

    def test_client_redirect_markers(self) -> None:
        html = "<html><script>window.location.replace('https://dest.example/')</script></html>"
        reasons = client_redirect_markers(html)
        assert "js-location-replace" in reasons
        assert "script-only-interstitial" in reasons

    def test_no_markers_on_plain_page(self) -> None:
        assert client_redirect_markers(_PLAIN) == []


class TestRedirectOutcomeInvariants:
    def test_unresolved(self) -> None:
        outcome = RedirectOutcome.unresolved("https://example.com/a")
        assert outcome.final_url == outcome.original_url
        assert outcome.hops == ()
        assert outcome.has_redirect is False

    def test_final_url_must_match_without_redirect(self) -> None:
        with pytest.raises(ValueError):
            RedirectOutcome(original_url="https://a.example/", final_url="https://b.example/")

    def test_confidence_range(self) -> None:
        with pytest.raises(ValueError):
            RedirectOutcome.unresolved("https://a.example/", confidence=1.5)

    def test_last_hop_is_final_url(self) -> None:
        with pytest.raises(ValueError):
            RedirectOutcome(
                original_url="https://a.example/",
                final_url="https://c.example/",
                hops=("https://b.example/",),
                has_redirect=True,
            )

    def test_penalty_scales_confidence(self) -> None:
        outcome = RedirectOutcome.unresolved("https://a.example/").with_penalty(0.5, "browser-unavailable")
        assert outcome.confidence == 0.5
        assert "browser-unavailable" in outcome.reasons


# ---------------------------------------------------------------------------
# HTTP stage
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestHttpStage:
    async def test_follows_http_hops(self, http_client: httpx.AsyncClient) -> None:
        with respx.mock(base_url="https://hop.example") as mock:
            mock.get("/a").mock(return_value=httpx.Response(301, headers={"location": "/b"}))
            mock.get("/b").mock(
                return_value=httpx.Response(302, headers={"location": "https://dest.example/c"})
            )
            mock.get("https://dest.example/c").mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client).resolve("https://hop.example/a")

        assert outcome.has_redirect is True
        assert outcome.method == "http"
        assert outcome.hops == ("https://hop.example/b", "https://dest.example/c")
        assert outcome.final_url == "https://dest.example/c"
        assert outcome.confidence == 1.0

    async def test_no_redirect(self, http_client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.get("https://news.example.com/story").mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client).resolve("https://news.example.com/story")

        assert outcome.has_redirect is False
        assert outcome.final_url == "https://news.example.com/story"
        assert outcome.method == "none"
        assert outcome.confidence == 1.0

    async def test_circular_redirect_stops(self, http_client: httpx.AsyncClient) -> None:
        with respx.mock(base_url="https://loop.example") as mock:
            mock.get("/a").mock(return_value=httpx.Response(302, headers={"location": "/b"}))
            mock.get("/b").mock(return_value=httpx.Response(302, headers={"location": "/a"}))
            outcome = await _resolver(http_client).resolve("https://loop.example/a")

        assert outcome.hops == ("https://loop.example/b",)
        assert "circular-redirect" in outcome.reasons

    async def test_max_hops(self, http_client: httpx.AsyncClient) -> None:
        with respx.mock(base_url="https://chain.example") as mock:
            for i in range(1, 4):
                mock.get(f"/{i}").mock(
                    return_value=httpx.Response(302, headers={"location": f"/{i + 1}"})
                )
            outcome = await _resolver(http_client, max_hops=2).resolve("https://chain.example/1")

        assert outcome.hops == ("https://chain.example/2", "https://chain.example/3")
        assert "max-hops-reached" in outcome.reasons

    async def test_meta_refresh_followed(self, http_client: httpx.AsyncClient) -> None:
        refresh = '<html><head><meta http-equiv="refresh" content="0; url=https://dest.example/x"></head></html>'
        with respx.mock:
            respx.get("https://portal.example/m").mock(return_value=httpx.Response(200, text=refresh))
            respx.get("https://dest.example/x").mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client).resolve("https://portal.example/m")

        assert outcome.final_url == "https://dest.example/x"
        assert outcome.method == "http"
        assert "meta-refresh" in outcome.reasons

    async def test_network_failure_yields_unresolved(self, http_client: httpx.AsyncClient) -> None:
        with respx.mock:
            respx.get("https://down.example/a").mock(side_effect=httpx.ConnectError("refused"))
            outcome = await _resolver(http_client).resolve("https://down.example/a")

        assert outcome.has_redirect is False
        assert "http-network-error" in outcome.reasons

    @pytest.mark.parametrize("url", ["not a url", "ftp://example.com/a", "/relative"])
    async def test_invalid_input_rejected(self, http_client: httpx.AsyncClient, url: str) -> None:
        with pytest.raises(ValueError):
            await _resolver(http_client).resolve(url)


# ---------------------------------------------------------------------------
# Browser stage
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestBrowserStage:
    async def test_aggregator_link_resolved_by_browser(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(html=_PLAIN, redirect_to=_REAL_URL)
        with respx.mock:
            respx.get(_AGGREGATOR_URL).mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client, page).resolve(_AGGREGATOR_URL)

        assert outcome.has_redirect is True
        assert outcome.method == "browser"
        assert outcome.final_url == _REAL_URL
        assert outcome.hops == (_REAL_URL,)
        assert outcome.confidence == pytest.approx(0.9)
        assert "rule:read-path" in outcome.reasons

    async def test_browser_timeout_degrades_gracefully(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 5000ms exceeded."))
        with respx.mock:
            respx.get(_AGGREGATOR_URL).mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client, page).resolve(_AGGREGATOR_URL)

        assert outcome.has_redirect is False
        assert outcome.final_url == _AGGREGATOR_URL
        assert outcome.confidence < 1.0
        assert "browser-failed:AutomationTimeout" in outcome.reasons

    async def test_js_redirect_without_driver_penalized(self, http_client: httpx.AsyncClient) -> None:
        body = "<html><script>window.location.href = 'https://dest.example/';</script></html>"
        with respx.mock:
            respx.get("https://interstitial.example/x").mock(return_value=httpx.Response(200, text=body))
            outcome = await _resolver(http_client).resolve("https://interstitial.example/x")

        assert outcome.has_redirect is False
        assert outcome.confidence == pytest.approx(0.5)
        assert "browser-unavailable" in outcome.reasons

    async def test_browser_not_allowed(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(html=_PLAIN, redirect_to=_REAL_URL)
        with respx.mock:
            respx.get(_AGGREGATOR_URL).mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client, page).resolve(_AGGREGATOR_URL, allow_browser=False)

        assert outcome.has_redirect is False
        assert "browser-unavailable" in outcome.reasons
        assert page.goto_calls == []

    async def test_blocked_http_falls_through_to_browser(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(html=_PLAIN)
        with respx.mock:
            respx.get("https://protected.example/a").mock(return_value=httpx.Response(403, text="no"))
            outcome = await _resolver(http_client, page).resolve("https://protected.example/a")

        assert outcome.method == "browser"
        assert outcome.has_redirect is False
        assert outcome.confidence == pytest.approx(0.9)
        assert "http-blocked" in outcome.reasons
        assert page.goto_calls == ["https://protected.example/a"]

    async def test_browser_ending_on_non_http_url(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(html=_PLAIN, redirect_to="about:blank")
        with respx.mock:
            respx.get(_AGGREGATOR_URL).mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client, page).resolve(_AGGREGATOR_URL)

        assert outcome.has_redirect is False
        assert "browser-invalid-final-url" in outcome.reasons

    async def test_http_hops_kept_when_browser_continues(self, http_client: httpx.AsyncClient) -> None:
        page = FakePage(html=_PLAIN, redirect_to=_REAL_URL)
        with respx.mock:
            respx.get("https://bit.ly/abc").mock(
                return_value=httpx.Response(301, headers={"location": _AGGREGATOR_URL})
            )
            respx.get(_AGGREGATOR_URL).mock(return_value=httpx.Response(200, text=_PLAIN))
            outcome = await _resolver(http_client, page).resolve("https://bit.ly/abc")

        assert outcome.hops == (_AGGREGATOR_URL, _REAL_URL)
        assert outcome.method == "browser"
        assert page.goto_calls == [_AGGREGATOR_URL]
