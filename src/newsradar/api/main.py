"""FastAPI application factory and entry point.

Creates the application instance, wires the shared HTTP client, browser
driver, AI collaborators and the scrape orchestrator onto ``app.state``, and
mounts the scrape job router.

Usage::

    uvicorn newsradar.api.main:app --reload
"""

from __future__ import annotations

import httpx
import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from newsradar.config.settings import get_settings
from newsradar.core.logging_config import configure_logging
from newsradar.scraper.ai_client import OpenRouterAnalyst
from newsradar.scraper.orchestrator import ScrapeOrchestrator
from newsradar.scraper.playwright_fetcher import BrowserDriver
from newsradar.scraper.router import router as scrape_jobs_router

configure_logging("INFO")

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can call
    ``create_app()`` with a patched settings environment.

    Returns:
        A configured ``FastAPI`` instance.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description="Article discovery and extraction from third-party news sites.",
        version="0.1.0",
        redirect_slashes=False,
    )

    application.include_router(scrape_jobs_router, prefix="/scrape-jobs", tags=["scrape-jobs"])

    @application.on_event("startup")
    async def on_startup() -> None:
        """Create the shared client and the orchestrator."""
        client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        analyst = OpenRouterAnalyst.from_settings(settings, client)
        application.state.http_client = client
        application.state.orchestrator = ScrapeOrchestrator(
            client,
            settings=settings,
            driver=BrowserDriver.from_settings(settings),
            classifier=analyst,
            analyzer=analyst,
        )
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            log_level=settings.log_level,
            ai_enabled=analyst is not None,
        )

    @application.on_event("shutdown")
    async def on_shutdown() -> None:
        """Cancel the running job, then close the shared client."""
        orchestrator = getattr(application.state, "orchestrator", None)
        if orchestrator is not None:
            await orchestrator.shutdown()
        client = getattr(application.state, "http_client", None)
        if client is not None:
            await client.aclose()
        logger.info("application_shutdown")

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status."""
        return JSONResponse({"status": "ok"})

    return application


app = create_app()
