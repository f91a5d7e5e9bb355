"""Async HTTP fetcher with protection-aware retries.

Uses ``httpx`` for all HTTP requests.  Every response is classified by
:func:`newsradar.scraper.detector.detect`; pages labelled ``bot-protection``
or ``dynamic-content`` are retried with a ``Referer`` header, the cookies set
by the previous response, and a short randomized backoff.  Once the attempts
are exhausted the fetcher returns an :class:`EscalateSignal` so the caller can
switch to :mod:`newsradar.scraper.playwright_fetcher`.

Cookies are an explicit value: the caller passes a dict in, every attempt
sends exactly the cookies carried so far, and the resulting dict is returned
on the result.  The shared client's own cookie jar is never relied upon.

Bodies without a charset in ``Content-Type`` are decoded from their
``<meta charset>`` declaration, falling back to bs4's ``UnicodeDammit``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import urllib.parse
from dataclasses import dataclass, field
from typing import Any

import httpx
from bs4.dammit import EncodingDetector, UnicodeDammit

from newsradar.config.settings import Settings
from newsradar.core.exceptions import NetworkError
from newsradar.scraper.config import (
    BINARY_CONTENT_TYPES,
    BROWSER_HEADERS,
    MAX_FETCH_ATTEMPTS,
    MAX_RETRY_AFTER_SECONDS,
    PROTECTION_STATUS_CODES,
    TRANSIENT_STATUS_CODES,
)
from newsradar.scraper.detector import (
    BOT_PROTECTION,
    CLEAN,
    detect,
    has_protection_signal,
    needs_escalation,
)
from newsradar.scraper.pacing import HostPacer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Options and result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class FetchOptions:
    """Per-call fetch tuning.

    Attributes:
        timeout: Per-attempt request timeout in seconds.
        max_attempts: Attempts before escalating; clamped to
            :data:`~newsradar.scraper.config.MAX_FETCH_ATTEMPTS`.
        backoff_min: Lower bound of the randomized backoff (seconds).
        backoff_max: Upper bound of the randomized backoff (seconds).
        follow_redirects: Let httpx follow 3xx responses.  The redirect
            resolver turns this off to walk hops itself.
        min_anchor_count: Forwarded to the detector (``0`` disables the check).
        min_content_length: Forwarded to the detector (``0`` disables the check).
        extra_headers: Headers merged over the browser-like defaults.
        pacer: Shared per-host pacer consulted before every request.
    """

    timeout: float = 30.0
    max_attempts: int = MAX_FETCH_ATTEMPTS
    backoff_min: float = 0.5
    backoff_max: float = 2.0
    follow_redirects: bool = True
    min_anchor_count: int = 10
    min_content_length: int = 500
    extra_headers: dict[str, str] = field(default_factory=dict)
    pacer: HostPacer | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> FetchOptions:
        """Build options from application settings, applying keyword overrides."""
        values: dict[str, Any] = {
            "timeout": settings.http_timeout_seconds,
            "max_attempts": settings.http_max_attempts,
            "backoff_min": settings.http_backoff_min,
            "backoff_max": settings.http_backoff_max,
            "min_anchor_count": settings.min_anchor_count,
            "min_content_length": settings.min_content_length,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class FetchResult:
    """Result of a single successful fetch, by HTTP or by the browser driver.

    Attributes:
        url: The URL that was requested.
        status_code: HTTP status code, or ``None`` if the browser did not
            report one.
        headers: Response headers with lower-cased names.
        html: Decoded body, or ``None`` for binary or failed responses.
        rendered_by_browser: ``True`` when produced by the browser driver.
        final_url: URL after redirects / client-side navigation.
        history: URLs traversed before ``final_url``, oldest first.
        cookies: Cookies carried after this response (name -> value).
        labels: Detector labels for this response.
        dynamic_loaded: ``True`` when the browser ran the dynamic-load steps.
        error: Human-readable error for non-success responses.
    """

    url: str
    status_code: int | None
    headers: dict[str, str]
    html: str | None
    rendered_by_browser: bool = False
    final_url: str | None = None
    history: tuple[str, ...] = ()
    cookies: dict[str, str] = field(default_factory=dict)
    labels: frozenset[str] = frozenset({CLEAN})
    dynamic_loaded: bool = False
    error: str | None = None

    @property
    def is_redirect(self) -> bool:
        """``True`` for a 3xx response carrying a ``Location`` header."""
        return (
            self.status_code is not None
            and 300 <= self.status_code < 400
            and bool(self.headers.get("location"))
        )

    @property
    def location(self) -> str | None:
        """Absolute redirect target of a 3xx response, or ``None``."""
        if not self.is_redirect:
            return None
        return urllib.parse.urljoin(self.final_url or self.url, self.headers["location"])


@dataclass
class EscalateSignal:
    """Returned instead of a result when plain HTTP cannot get past the page.

    This is an expected outcome, not an error: it tells the caller to render
    the URL with the browser driver.

    Attributes:
        url: The URL that was requested.
        labels: Detector labels of the last attempt.
        attempts: Number of attempts made.
        status_code: Status code of the last attempt.
        cookies: Cookies carried after the last attempt.
        html: Body of the last attempt (may be a challenge page).
    """

    url: str
    labels: frozenset[str]
    attempts: int
    status_code: int | None = None
    cookies: dict[str, str] = field(default_factory=dict)
    html: str | None = None


# ---------------------------------------------------------------------------
# Header and cookie helpers
# ---------------------------------------------------------------------------


def _origin(url: str) -> str:
    parsed = urllib.parse.urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def build_request_headers(
    url: str,
    *,
    attempt: int,
    cookies: dict[str, str],
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    """Return the browser-like header set for one attempt.

    Retries (``attempt > 1``) add a same-origin ``Referer``.  Carried cookies
    are sent as an explicit ``Cookie`` header.
    """
    headers = dict(BROWSER_HEADERS)
    if extra:
        headers.update(extra)
    if attempt > 1:
        headers["Referer"] = _origin(url)
        headers["Sec-Fetch-Site"] = "same-origin"
    if cookies:
        headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in cookies.items())
    return headers


def merge_cookies(previous: dict[str, str], response: httpx.Response) -> dict[str, str]:
    """Return a new dict of ``previous`` cookies updated with those set by ``response``."""
    merged = dict(previous)
    for cookie in response.cookies.jar:
        if cookie.value is not None:
            merged[cookie.name] = cookie.value
    return merged


def _is_binary_content_type(content_type: str) -> bool:
    """Return ``True`` if the Content-Type indicates a non-text binary resource."""
    ct = content_type.lower().split(";")[0].strip()
    return any(ct.startswith(prefix) for prefix in BINARY_CONTENT_TYPES)


def _retry_after_seconds(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return min(max(float(value), 0.0), MAX_RETRY_AFTER_SECONDS)
    except ValueError:
        return None


def _backoff_delay(attempt: int, options: FetchOptions) -> float:
    """Randomized delay before ``attempt`` (attempt 2 waits one unit, 3 two units...)."""
    low = min(options.backoff_min, options.backoff_max)
    high = max(options.backoff_min, options.backoff_max)
    return random.uniform(low, high) * max(attempt - 1, 0)


def _decode_body(response: httpx.Response) -> str:
    """Decode a response body, trusting a declared charset before guessing.

    Order: the ``Content-Type`` charset, a ``<meta charset>`` or XML
    declaration, then :class:`~bs4.dammit.UnicodeDammit` trying UTF-8 and
    its own fallbacks.
    """
    if response.charset_encoding:
        return response.text
    content = response.content
    declared = EncodingDetector.find_declared_encoding(content, is_html=True)
    if declared:
        try:
            return content.decode(declared)
        except (LookupError, UnicodeDecodeError) as exc:
            logger.debug("scraper: declared charset %s unusable: %s", declared, exc)
    dammit = UnicodeDammit(content, ["utf-8"], is_html=True)
    if dammit.unicode_markup is None:
        return response.text
    return dammit.unicode_markup


def _build_result(url: str, response: httpx.Response, cookies: dict[str, str]) -> FetchResult:
    headers = {k.lower(): v for k, v in response.headers.items()}
    return FetchResult(
        url=url,
        status_code=response.status_code,
        headers=headers,
        html=None,
        final_url=str(response.url),
        history=tuple(str(r.url) for r in response.history),
        cookies=cookies,
    )


# ---------------------------------------------------------------------------
# Public fetch function
# ---------------------------------------------------------------------------


async def fetch_url(
    url: str,
    *,
    client: httpx.AsyncClient,
    options: FetchOptions | None = None,
    cookies: dict[str, str] | None = None,
) -> FetchResult | EscalateSignal:
    """Fetch a URL with browser-like headers and protection-aware retries.

    Each attempt:

    1. **HTTP GET** with the browser header set, a ``Referer`` on retries and
       the cookies carried so far.
    2. **Redirect passthrough**: 3xx responses (only seen when
       ``follow_redirects`` is off) are returned as-is.
    3. **Transient statuses** (429/5xx without a challenge) are retried,
       honouring a bounded ``Retry-After``.
    4. **Binary content-type**: returned with ``html=None``.
    5. **Detection**: ``clean`` / ``insufficient-content`` pages are returned;
       ``bot-protection`` / ``dynamic-content`` pages are retried.

    Args:
        url: Target URL.
        client: Shared :class:`httpx.AsyncClient` instance.
        options: Fetch tuning; defaults to :class:`FetchOptions()`.
        cookies: Cookies to send with the first attempt.

    Returns:
        A :class:`FetchResult`, or an :class:`EscalateSignal` when the page
        still needed escalation after the last attempt.

    Raises:
        NetworkError: If every attempt failed at the network level, or the
            URL cannot be sent at all.
    """
    options = options or FetchOptions()
    max_attempts = max(1, min(options.max_attempts, MAX_FETCH_ATTEMPTS))
    carried: dict[str, str] = dict(cookies or {})

    last_result: FetchResult | None = None
    last_labels: frozenset[str] = frozenset()
    last_network_error: Exception | None = None
    next_delay: float | None = None

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = next_delay if next_delay is not None else _backoff_delay(attempt, options)
            next_delay = None
            if delay > 0:
                logger.debug("scraper: waiting %.2fs before attempt %d for %s", delay, attempt, url)
            await asyncio.sleep(delay)

        headers = build_request_headers(
            url, attempt=attempt, cookies=carried, extra=options.extra_headers
        )
        if options.pacer is not None:
            await options.pacer.wait(url)

        try:
            response = await client.get(
                url,
                headers=headers,
                timeout=options.timeout,
                follow_redirects=options.follow_redirects,
            )
        except httpx.InvalidURL as exc:
            raise NetworkError(f"invalid URL: {exc}", url=url) from exc
        except httpx.TooManyRedirects as exc:
            raise NetworkError(f"too many redirects: {exc}", url=url) from exc
        except httpx.TimeoutException as exc:
            logger.warning("scraper: timeout fetching %s (attempt %d/%d)", url, attempt, max_attempts)
            last_network_error = exc
            continue
        except httpx.RequestError as exc:
            logger.warning(
                "scraper: request error for %s (attempt %d/%d): %s", url, attempt, max_attempts, exc
            )
            last_network_error = exc
            continue

        last_network_error = None
        carried = merge_cookies(carried, response)
        result = _build_result(url, response, carried)
        status = response.status_code

        if result.is_redirect:
            return result

        try:
            body = _decode_body(response)
        except Exception as exc:  # noqa: BLE001
            logger.warning("scraper: decode error for %s: %s", url, exc)
            result.error = f"decode error: {exc}"
            return result

        if status >= 400 and status not in PROTECTION_STATUS_CODES:
            if has_protection_signal(status, result.headers, body):
                result.html = body
                result.labels = frozenset({BOT_PROTECTION})
                last_result, last_labels = result, result.labels
                logger.info(
                    "scraper: challenge on HTTP %d for %s (attempt %d/%d)",
                    status, url, attempt, max_attempts,
                )
                continue
            result.error = f"HTTP {status}"
            if status in TRANSIENT_STATUS_CODES:
                next_delay = _retry_after_seconds(result.headers.get("retry-after"))
                last_result, last_labels = result, frozenset()
                logger.info(
                    "scraper: transient HTTP %d for %s (attempt %d/%d)",
                    status, url, attempt, max_attempts,
                )
                continue
            logger.info("scraper: HTTP %d for %s", status, url)
            return result

        content_type = result.headers.get("content-type", "")
        if _is_binary_content_type(content_type):
            logger.info("scraper: skipping binary content-type '%s' for %s", content_type, url)
            result.error = f"binary content-type: {content_type}"
            return result

        result.html = body
        result.labels = detect(
            status,
            result.headers,
            body,
            min_anchor_count=options.min_anchor_count,
            min_content_length=options.min_content_length,
        )
        if not needs_escalation(result.labels):
            return result

        last_result, last_labels = result, result.labels
        logger.info(
            "scraper: %s for %s (attempt %d/%d)",
            ",".join(sorted(result.labels)), url, attempt, max_attempts,
        )

    if last_network_error is not None and last_result is None:
        raise NetworkError(f"request failed: {last_network_error}", url=url)

    if last_labels and needs_escalation(last_labels) and last_result is not None:
        logger.info("scraper: escalating %s after %d attempts", url, max_attempts)
        return EscalateSignal(
            url=url,
            labels=last_labels,
            attempts=max_attempts,
            status_code=last_result.status_code,
            cookies=carried,
            html=last_result.html,
        )

    if last_result is None:
        raise NetworkError("no response received", url=url)
    return last_result
