"""Single-flight scrape job orchestration.

One job runs per process.  A job walks its sources one at a time:

1. fetch the source page (HTTP, escalating to the browser driver);
2. discover candidate links, loading dynamic content when needed;
3. let the AI link classifier pick the article links (all candidates when
   it has no answer);
4. per article link: resolve redirects, fetch the landing page, extract the
   article, reject error pages and noise, and run the content analyzer.

Failures are isolated per source and recorded as short reason strings.  The
memory guard is consulted after every unit of browser work; when it trips the
active session is force-closed and the browser is disabled for the rest of
that source.  :class:`JobState` is reset on every exit path.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from newsradar.config.settings import Settings, get_settings
from newsradar.core.exceptions import (
    AutomationLaunchFailure,
    ContentRejected,
    JobAlreadyRunningError,
    JobStateError,
    ProtectionDetected,
    ResourceExhausted,
    ScrapingError,
)
from newsradar.core.logging_config import job_id_var
from newsradar.scraper.collaborators import (
    ArticleLinkClassifier,
    ContentAnalyzer,
    SelectorConfigStore,
)
from newsradar.scraper.content_extractor import ScrapingSelectorConfig, extract_complete_article
from newsradar.scraper.content_validator import is_valid_title, title_from_url
from newsradar.scraper.http_fetcher import FetchOptions
from newsradar.scraper.link_extractor import (
    CandidateLink,
    discover_links,
    format_links_for_classifier,
    normalize_href,
    sorted_links,
)
from newsradar.scraper.memory_guard import MemoryGuard
from newsradar.scraper.pacing import HostPacer
from newsradar.scraper.playwright_fetcher import BrowserDriver
from newsradar.scraper.redirect_resolver import RedirectOutcome, RedirectResolver
from newsradar.scraper.strategy import HybridFetcher

logger = structlog.get_logger(__name__)

_MAX_REASON_CHARS = 160
_MEMORY_REASON = "memory limit reached; browser automation disabled"


# ---------------------------------------------------------------------------
# Job and result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceSpec:
    """A news source page to scrape."""

    source_id: str
    url: str
    context_hint: str | None = None


@dataclass(frozen=True)
class ScrapeJobSpec:
    """Scope of one scrape job.

    Attributes:
        sources: Sources processed in order.
        context_hint: Default hint for the link classifier (e.g. the topic).
        max_articles: Per-source article cap; ``None`` uses the settings value.
    """

    sources: tuple[SourceSpec, ...]
    context_hint: str | None = None
    max_articles: int | None = None


@dataclass
class ScrapedArticle:
    source_id: str
    url: str
    final_url: str
    title: str
    content: str
    author: str | None
    publish_date: datetime | None
    extraction_method: str
    confidence: float
    keywords: list[str] = field(default_factory=list)
    summary: str | None = None
    redirect: RedirectOutcome | None = None


@dataclass
class SourceOutcome:
    """Per-source result exposed through :meth:`ScrapeOrchestrator.status`.

    ``status`` is one of ``completed``, ``partial`` or ``failed``; ``reason``
    is a short human-readable string, never a traceback.
    """

    source_id: str
    status: str = "completed"
    reason: str | None = None
    articles: int = 0
    links_found: int = 0


@dataclass
class JobReport:
    job_id: str
    started_at: datetime
    finished_at: datetime | None = None
    stopped: bool = False
    outcomes: list[SourceOutcome] = field(default_factory=list)
    articles: list[ScrapedArticle] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobStateSnapshot:
    running: bool
    job_id: str | None
    current_source_id: str | None
    started_at: datetime | None


class JobState:
    """Lock-guarded single-flight flag.

    The only transitions are :meth:`try_start` (idle -> running),
    :meth:`set_current_source` (while running) and :meth:`finish`
    (running -> idle).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._job_id: str | None = None
        self._current_source_id: str | None = None
        self._started_at: datetime | None = None

    def try_start(self, job_id: str) -> bool:
        """Atomically claim the state for ``job_id``.  ``False`` if already running."""
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._job_id = job_id
            self._current_source_id = None
            self._started_at = datetime.now(tz=timezone.utc)
            return True

    def set_current_source(self, job_id: str, source_id: str | None) -> None:
        with self._lock:
            if not self._running or self._job_id != job_id:
                raise JobStateError(f"job {job_id} does not own the job state")
            self._current_source_id = source_id

    def finish(self, job_id: str) -> None:
        """Reset to idle.

        Raises:
            JobStateError: If the state was not owned by ``job_id``.  The
                state is reset regardless.
        """
        with self._lock:
            owner = self._job_id if self._running else None
            self._running = False
            self._job_id = None
            self._current_source_id = None
            self._started_at = None
        if owner != job_id:
            raise JobStateError(f"job {job_id} finished but state was owned by {owner}")

    def snapshot(self) -> JobStateSnapshot:
        with self._lock:
            return JobStateSnapshot(
                running=self._running,
                job_id=self._job_id,
                current_source_id=self._current_source_id,
                started_at=self._started_at,
            )


@dataclass
class _SourceRun:
    """Mutable bookkeeping for the source being processed."""

    source: SourceSpec
    browser_allowed: bool
    outcome: SourceOutcome
    articles: list[ScrapedArticle] = field(default_factory=list)
    failures: int = 0
    memory_tripped: bool = False


def _short_reason(exc: BaseException) -> str:
    text = str(exc).splitlines()[0] if str(exc) else ""
    reason = f"{type(exc).__name__}: {text}" if text else type(exc).__name__
    return reason[:_MAX_REASON_CHARS]


def _pick_title(extracted: str, link_text: str, url: str) -> str:
    for candidate in (extracted, link_text):
        if is_valid_title(candidate):
            return candidate.strip()
    return title_from_url(url) or extracted or link_text


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ScrapeOrchestrator:
    """Runs scrape jobs, one at a time.

    Args:
        client: Shared HTTP client.
        settings: Application settings; defaults to :func:`get_settings`.
        driver: Browser driver; ``None`` runs HTTP-only.
        classifier: AI link classifier; ``None`` uses every candidate link.
        analyzer: AI content analyzer; ``None`` skips analysis.
        selector_store: Per-source selector lookup.
        memory_guard: Memory guard; defaults to the settings threshold.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        settings: Settings | None = None,
        driver: BrowserDriver | None = None,
        classifier: ArticleLinkClassifier | None = None,
        analyzer: ContentAnalyzer | None = None,
        selector_store: SelectorConfigStore | None = None,
        memory_guard: MemoryGuard | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.client = client
        self.driver = driver
        self.classifier = classifier
        self.analyzer = analyzer
        self.selector_store = selector_store
        self.memory_guard = memory_guard or MemoryGuard(self.settings.memory_threshold_mb)
        if driver is not None and driver.memory_guard is None:
            driver.memory_guard = self.memory_guard

        self.pacer = HostPacer(self.settings.per_host_min_interval_seconds)
        self.source_fetcher = HybridFetcher(
            client, driver, FetchOptions.from_settings(self.settings, pacer=self.pacer)
        )
        self.article_fetcher = HybridFetcher(
            client,
            driver,
            FetchOptions.from_settings(self.settings, min_anchor_count=0, pacer=self.pacer),
        )
        self.resolver = RedirectResolver.from_settings(self.settings, client, driver, pacer=self.pacer)

        self.state = JobState()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[JobReport] | None = None
        self._total_sources = 0
        self._outcomes: list[SourceOutcome] = []

    # ------------------------------------------------------------------
    # Job control
    # ------------------------------------------------------------------

    def _acquire(self, job: ScrapeJobSpec) -> str:
        job_id = uuid.uuid4().hex
        if not self.state.try_start(job_id):
            current = self.state.snapshot()
            logger.info("job_rejected", running_job_id=current.job_id)
            raise JobAlreadyRunningError(current.current_source_id)
        self._stop_event.clear()
        self._total_sources = len(job.sources)
        self._outcomes = []
        return job_id

    def start(self, job: ScrapeJobSpec) -> asyncio.Task[JobReport]:
        """Start ``job`` in a background task.

        Must be called from a running event loop.

        Raises:
            JobAlreadyRunningError: If a job is running.  Nothing is queued and
                the job state is left unchanged.
        """
        job_id = self._acquire(job)
        try:
            task = asyncio.get_running_loop().create_task(self._execute(job_id, job))
        except Exception:
            self.state.finish(job_id)
            raise
        task.add_done_callback(self._log_task_result)
        self._task = task
        return task

    async def run(self, job: ScrapeJobSpec) -> JobReport:
        """Run ``job`` to completion in the current task.

        Raises:
            JobAlreadyRunningError: If a job is running.
        """
        job_id = self._acquire(job)
        return await self._execute(job_id, job)

    def stop(self) -> bool:
        """Ask the running job to stop after the current source.

        Returns:
            ``True`` if a job was running.
        """
        if not self.state.snapshot().running:
            return False
        self._stop_event.set()
        logger.info("job_stop_requested")
        return True

    async def shutdown(self) -> None:
        """Cancel the background job and wait until its cleanup has run.

        Called before the shared HTTP client is closed, so an in-flight source
        never runs against a closed client and the browser session is closed
        by the job's own ``finally`` block.
        """
        task = self._task
        if task is None or task.done():
            return
        self._stop_event.set()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("job_cancelled_on_shutdown")
        except Exception as exc:  # noqa: BLE001
            logger.warning("job_failed_during_shutdown", error=str(exc))

    def _log_task_result(self, task: asyncio.Task[JobReport]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job_task_failed", error=str(exc), exc_info=exc)

    def status(self) -> dict[str, Any]:
        snap = self.state.snapshot()
        return {
            "running": snap.running,
            "job_id": snap.job_id,
            "current_source_id": snap.current_source_id,
            "started_at": snap.started_at,
            "total_sources": self._total_sources,
            "processed_sources": len(self._outcomes),
            "outcomes": [asdict(o) for o in self._outcomes],
        }

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def _execute(self, job_id: str, job: ScrapeJobSpec) -> JobReport:
        token = job_id_var.set(job_id)
        log = logger.bind(job_id=job_id)
        report = JobReport(job_id=job_id, started_at=datetime.now(tz=timezone.utc))
        log.info("job_started", sources=len(job.sources))
        try:
            for source in job.sources:
                if self._stop_event.is_set():
                    report.stopped = True
                    log.info("job_stopped", processed_sources=len(report.outcomes))
                    break
                self.state.set_current_source(job_id, source.source_id)
                run = await self._process_source(source, job)
                report.outcomes.append(run.outcome)
                report.articles.extend(run.articles)
                self._outcomes.append(run.outcome)
                log.info(
                    "source_finished",
                    source_id=source.source_id,
                    status=run.outcome.status,
                    articles=run.outcome.articles,
                    links_found=run.outcome.links_found,
                    reason=run.outcome.reason,
                )
            return report
        finally:
            report.finished_at = datetime.now(tz=timezone.utc)
            try:
                if self.driver is not None:
                    await self.driver.force_close()
                self.state.finish(job_id)
            finally:
                job_id_var.reset(token)
                log.info("job_finished", stopped=report.stopped, articles=len(report.articles))

    async def _process_source(self, source: SourceSpec, job: ScrapeJobSpec) -> _SourceRun:
        run = _SourceRun(
            source=source,
            browser_allowed=self.driver is not None,
            outcome=SourceOutcome(source_id=source.source_id),
        )
        log = logger.bind(source_id=source.source_id)
        try:
            await self._scrape_source(run, job)
        except JobStateError:
            raise
        except ProtectionDetected as exc:
            run.outcome.status = "failed"
            run.outcome.reason = f"blocked: {', '.join(sorted(exc.signal.labels))}"
        except AutomationLaunchFailure as exc:
            run.outcome.status = "failed"
            run.outcome.reason = _short_reason(exc)
        except ResourceExhausted as exc:
            self._memory_tripped(run, exc)
            run.outcome.status = "failed"
            run.outcome.reason = _MEMORY_REASON
        except Exception as exc:  # noqa: BLE001
            log.warning("source_failed", error=str(exc))
            run.outcome.status = "failed"
            run.outcome.reason = _short_reason(exc)
        else:
            if run.memory_tripped:
                run.outcome.status = "partial"
                run.outcome.reason = _MEMORY_REASON
            elif run.failures and run.articles:
                run.outcome.status = "partial"
                run.outcome.reason = f"{run.failures} article(s) failed"
            elif run.failures:
                run.outcome.status = "failed"
                run.outcome.reason = f"all {run.failures} article(s) failed"
        run.outcome.articles = len(run.articles)
        return run

    def _memory_tripped(self, run: _SourceRun, exc: ResourceExhausted) -> None:
        logger.warning("memory_guard_tripped", source_id=run.source.source_id, error=str(exc))
        run.browser_allowed = False
        run.memory_tripped = True

    async def _check_memory(self, run: _SourceRun) -> None:
        """Consult the memory guard after a unit of possible browser work.

        Sessions are already closed at this point; a trip mid-render is raised
        by the driver itself, which closes its session on the way out.
        """
        if not run.browser_allowed:
            return
        try:
            self.memory_guard.check()
        except ResourceExhausted as exc:
            self._memory_tripped(run, exc)

    async def _scrape_source(self, run: _SourceRun, job: ScrapeJobSpec) -> None:
        source = run.source
        page = await self.source_fetcher.fetch(source.url, allow_browser=run.browser_allowed)
        await self._check_memory(run)
        if not page.html:
            raise ScrapingError(page.error or "source page has no HTML", url=source.url)

        links = await discover_links(page, driver=self.driver, allow_browser=run.browser_allowed)
        await self._check_memory(run)
        run.outcome.links_found = len(links)
        if not links:
            run.outcome.reason = "no links found"
            return

        hint = source.context_hint or job.context_hint
        limit = job.max_articles or self.settings.max_articles_per_source
        selected = (await self._select_article_links(links, hint))[:limit]
        config = await self._selector_config(source.source_id)

        seen_final: set[str] = set()
        for link in selected:
            try:
                article = await self._scrape_article(run, link, config, seen_final)
            except AutomationLaunchFailure:
                raise
            except ResourceExhausted as exc:
                self._memory_tripped(run, exc)
                run.failures += 1
                continue
            except ContentRejected as exc:
                run.failures += 1
                logger.info("article_rejected", url=exc.url or link.href, reason=exc.reason)
                continue
            except (ScrapingError, ValueError) as exc:
                run.failures += 1
                logger.info("article_failed", url=link.href, error=_short_reason(exc))
                continue
            if article is not None:
                run.articles.append(article)

    async def _select_article_links(
        self, links: frozenset[CandidateLink], hint: str | None
    ) -> list[CandidateLink]:
        candidates = sorted_links(links)
        if self.classifier is None:
            return candidates
        try:
            chosen = await asyncio.wait_for(
                self.classifier.classify(format_links_for_classifier(candidates), hint),
                timeout=self.settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("link_classifier_timeout")
            return candidates
        except Exception as exc:  # noqa: BLE001
            logger.warning("link_classifier_failed", error=str(exc))
            return candidates

        by_key = {normalize_href(link.href): link for link in candidates}
        selected: list[CandidateLink] = []
        for href in chosen or []:
            link = by_key.pop(normalize_href(href), None)
            if link is not None:
                selected.append(link)
        if not selected:
            logger.info("link_classifier_empty", candidates=len(candidates))
            return candidates
        return selected

    async def _selector_config(self, source_id: str) -> ScrapingSelectorConfig | None:
        if self.selector_store is None:
            return None
        try:
            return await self.selector_store.get_selector_config(source_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("selector_config_failed", source_id=source_id, error=str(exc))
            return None

    async def _scrape_article(
        self,
        run: _SourceRun,
        link: CandidateLink,
        config: ScrapingSelectorConfig | None,
        seen_final: set[str],
    ) -> ScrapedArticle | None:
        redirect = await self.resolver.resolve(link.href, allow_browser=run.browser_allowed)
        await self._check_memory(run)

        key = normalize_href(redirect.final_url)
        if key in seen_final:
            return None
        seen_final.add(key)

        page = await self.article_fetcher.fetch(redirect.final_url, allow_browser=run.browser_allowed)
        await self._check_memory(run)
        if not page.html:
            raise ScrapingError(page.error or "article page has no HTML", url=redirect.final_url)

        extracted = await extract_complete_article(
            page.html,
            config,
            analyzer=self.analyzer,
            timeout=self.settings.ai_timeout_seconds,
            min_article_length=self.settings.min_article_length,
        )
        final_url = page.final_url or redirect.final_url
        if extracted.is_empty:
            raise ScrapingError("no article content extracted", url=final_url)
        if extracted.rejection_reason:
            raise ContentRejected(extracted.rejection_reason, url=final_url)

        analysis = extracted.analysis
        return ScrapedArticle(
            source_id=run.source.source_id,
            url=link.href,
            final_url=final_url,
            title=_pick_title(extracted.title, link.text, final_url),
            content=extracted.content,
            author=extracted.author,
            publish_date=extracted.publish_date,
            extraction_method=extracted.extraction_method,
            confidence=extracted.confidence,
            keywords=list(analysis.keywords) if analysis else [],
            summary=analysis.summary if analysis else None,
            redirect=redirect,
        )
