"""Application-wide exception hierarchy for NewsRadar.

All custom exceptions subclass ``NewsRadarError``, enabling consistent error
handling and structured logging across the scraping core.

Hierarchy::

    NewsRadarError
    ├── ScrapingError
    │   ├── NetworkError
    │   ├── ProtectionDetected       (signal: EscalateSignal)
    │   ├── AutomationError
    │   │   ├── AutomationTimeout
    │   │   ├── AutomationLaunchFailure
    │   │   └── AutomationScriptError
    │   ├── ContentRejected          (reason)
    │   └── ResourceExhausted        (rss_mb, threshold_mb)
    ├── AIServiceError
    └── JobError
        ├── JobAlreadyRunningError
        └── JobStateError

An empty extraction is not an exception: the content extractor returns an
``ExtractedArticle`` with empty fields instead.
"""

from __future__ import annotations

from typing import Any


class NewsRadarError(Exception):
    """Base class for all NewsRadar exceptions.

    All application-specific exceptions inherit from this class so that
    callers can catch the entire hierarchy with a single ``except`` clause
    when needed.
    """


# ---------------------------------------------------------------------------
# Scraping exceptions
# ---------------------------------------------------------------------------


class ScrapingError(NewsRadarError):
    """Raised when fetching or rendering a single URL fails.

    Args:
        message: Human-readable description of the failure.
        url: The URL being processed, when known.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NetworkError(ScrapingError):
    """Transient network failure (DNS, connect, read timeout).  Retryable."""


class ProtectionDetected(ScrapingError):
    """Bot protection or dynamic content prevented a plain HTTP fetch.

    This is an expected outcome that triggers escalation to the browser
    driver, never a job failure.

    Args:
        signal: The :class:`~newsradar.scraper.http_fetcher.EscalateSignal`
            returned by the fetcher after exhausting its attempts.
    """

    def __init__(self, signal: Any) -> None:
        labels = ", ".join(sorted(getattr(signal, "labels", ()) or ())) or "unknown"
        super().__init__(f"escalation required ({labels})", url=getattr(signal, "url", None))
        self.signal = signal


class AutomationError(ScrapingError):
    """Base class for browser-automation failures."""


class AutomationTimeout(AutomationError):
    """A navigation or wait step exceeded its hard ceiling.

    Callers tolerate this with partial results.
    """


class AutomationLaunchFailure(AutomationError):
    """The browser session could not be started.  Fatal for the current source only."""


class AutomationScriptError(AutomationError):
    """An in-page script evaluation failed."""


class ContentRejected(ScrapingError):
    """Extracted text is not a usable article (error page, noise, too short).

    Args:
        reason: Short validation reason, e.g. ``"too short (87 chars)"``.
        url: The article URL.
    """

    def __init__(self, reason: str, url: str | None = None) -> None:
        super().__init__(f"content rejected: {reason}", url=url)
        self.reason = reason


class ResourceExhausted(ScrapingError):
    """Process memory exceeded the configured threshold.

    The orchestrator force-closes the active automation session and continues
    the job without browser automation for the current source.

    Args:
        rss_mb: Observed resident set size in megabytes.
        threshold_mb: Configured threshold in megabytes.
    """

    def __init__(self, rss_mb: float, threshold_mb: float) -> None:
        super().__init__(
            f"process memory {rss_mb:.0f} MB exceeds threshold {threshold_mb:.0f} MB"
        )
        self.rss_mb = rss_mb
        self.threshold_mb = threshold_mb


# ---------------------------------------------------------------------------
# AI collaborator exceptions
# ---------------------------------------------------------------------------


class AIServiceError(NewsRadarError):
    """Raised when the AI classification/analysis service fails or returns garbage.

    Args:
        message: Human-readable description of the failure.
        status_code: Upstream HTTP status code, when available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Job exceptions
# ---------------------------------------------------------------------------


class JobError(NewsRadarError):
    """Base class for job-orchestration errors."""


class JobAlreadyRunningError(JobError):
    """Raised when a scrape job is started while another one is running.

    Args:
        current_source_id: Source being processed by the running job, if any.
    """

    def __init__(self, current_source_id: str | None = None) -> None:
        msg = "A scrape job is already running"
        if current_source_id:
            msg += f" (current source '{current_source_id}')"
        super().__init__(msg)
        self.current_source_id = current_source_id


class JobStateError(JobError):
    """The single-flight job state is inconsistent.  Fatal to the process."""
