"""FastAPI router for scrape job control.

Routes:
    POST   /scrape-jobs/         — start a job (202; 409 while one is running)
    POST   /scrape-jobs/stop     — ask the running job to stop after the current source
    GET    /scrape-jobs/status   — job state and per-source outcomes
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from newsradar.core.exceptions import JobAlreadyRunningError
from newsradar.core.schemas.scraping import (
    ScrapeJobCreate,
    ScrapeJobStatus,
    ScrapeJobStopResult,
)
from newsradar.scraper.orchestrator import ScrapeJobSpec, ScrapeOrchestrator, SourceSpec

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> ScrapeOrchestrator:
    """Return the process-wide orchestrator stored on ``app.state``."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scrape orchestrator is not initialised.",
        )
    return orchestrator


OrchestratorDep = Annotated[ScrapeOrchestrator, Depends(get_orchestrator)]


@router.post("/", response_model=ScrapeJobStatus, status_code=status.HTTP_202_ACCEPTED)
async def start_scrape_job(payload: ScrapeJobCreate, orchestrator: OrchestratorDep) -> ScrapeJobStatus:
    """Start a scrape job in the background.

    Raises:
        HTTPException 409: If a job is already running.  Nothing is queued.
    """
    job = ScrapeJobSpec(
        sources=tuple(
            SourceSpec(source_id=s.source_id, url=s.url, context_hint=s.context_hint)
            for s in payload.sources
        ),
        context_hint=payload.context_hint,
        max_articles=payload.max_articles,
    )
    try:
        orchestrator.start(job)
    except JobAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    logger.info("scrape_job_accepted", sources=len(job.sources))
    return ScrapeJobStatus(**orchestrator.status())


@router.post("/stop", response_model=ScrapeJobStopResult)
async def stop_scrape_job(orchestrator: OrchestratorDep) -> ScrapeJobStopResult:
    """Request the running job to stop between sources."""
    return ScrapeJobStopResult(stopping=orchestrator.stop())


@router.get("/status", response_model=ScrapeJobStatus)
async def get_scrape_job_status(orchestrator: OrchestratorDep) -> ScrapeJobStatus:
    return ScrapeJobStatus(**orchestrator.status())
