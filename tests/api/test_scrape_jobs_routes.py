"""Route tests for the scrape job API.

Requests go through ``httpx.ASGITransport``; startup events are not run, so
each test places its orchestrator on ``app.state`` or overrides the
dependency directly.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from newsradar.api.main import create_app
from newsradar.core.exceptions import JobAlreadyRunningError
from newsradar.scraper.http_fetcher import FetchResult
from newsradar.scraper.memory_guard import MemoryGuard
from newsradar.scraper.orchestrator import ScrapeJobSpec, ScrapeOrchestrator
from newsradar.scraper.router import get_orchestrator

_PAYLOAD = {
    "sources": [
        {"source_id": "src-1", "url": "https://news.example.com/", "context_hint": "local"},
        {"source_id": "src-2", "url": "https://other.example.com/news"},
    ],
    "context_hint": "cybersecurity",
    "max_articles": 5,
}


class _FakeOrchestrator:
    def __init__(self, running: bool = False) -> None:
        self.running = running
        self.jobs: list[ScrapeJobSpec] = []

    def start(self, job: ScrapeJobSpec) -> None:
        if self.running:
            raise JobAlreadyRunningError("src-1")
        self.jobs.append(job)
        self.running = True

    def stop(self) -> bool:
        return self.running

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "job_id": "job-1" if self.running else None,
            "current_source_id": None,
            "started_at": None,
            "total_sources": len(self.jobs[-1].sources) if self.jobs else 0,
            "processed_sources": 0,
            "outcomes": [],
        }


class _BlockingFetcher:
    def __init__(self) -> None:
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, url: str, *, allow_browser: bool = True) -> FetchResult:
        self.entered.set()
        await self.release.wait()
        return FetchResult(url=url, status_code=200, headers={}, html=None, error="empty")


@pytest.fixture
def app() -> FastAPI:
    return create_app()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.mark.asyncio
class TestScrapeJobRoutes:
    async def test_start_job_accepted(self, app: FastAPI, client: AsyncClient) -> None:
        fake = _FakeOrchestrator()
        app.dependency_overrides[get_orchestrator] = lambda: fake

        resp = await client.post("/scrape-jobs/", json=_PAYLOAD)

        assert resp.status_code == 202
        assert resp.json()["running"] is True
        assert resp.json()["total_sources"] == 2
        job = fake.jobs[0]
        assert [s.source_id for s in job.sources] == ["src-1", "src-2"]
        assert job.sources[0].context_hint == "local"
        assert job.context_hint == "cybersecurity"
        assert job.max_articles == 5

    async def test_start_while_running_conflicts(self, app: FastAPI, client: AsyncClient) -> None:
        fake = _FakeOrchestrator(running=True)
        app.dependency_overrides[get_orchestrator] = lambda: fake

        resp = await client.post("/scrape-jobs/", json=_PAYLOAD)

        assert resp.status_code == 409
        assert "already running" in resp.json()["detail"]
        assert fake.jobs == []

    @pytest.mark.parametrize(
        "payload",
        [
            {"sources": []},
            {"sources": [{"source_id": "a", "url": "not-a-url"}]},
            {"sources": [{"source_id": "a", "url": "ftp://files.example.com/"}]},
            {"sources": [{"source_id": "a", "url": "https://a.example/"}], "max_articles": 0},
        ],
    )
    async def test_invalid_payload_rejected(
        self, app: FastAPI, client: AsyncClient, payload: dict
    ) -> None:
        fake = _FakeOrchestrator()
        app.dependency_overrides[get_orchestrator] = lambda: fake

        resp = await client.post("/scrape-jobs/", json=payload)

        assert resp.status_code == 422
        assert fake.jobs == []

    async def test_stop(self, app: FastAPI, client: AsyncClient) -> None:
        app.dependency_overrides[get_orchestrator] = lambda: _FakeOrchestrator(running=True)

        resp = await client.post("/scrape-jobs/stop")

        assert resp.status_code == 200
        assert resp.json() == {"stopping": True}

    async def test_status_idle(self, app: FastAPI, client: AsyncClient) -> None:
        app.dependency_overrides[get_orchestrator] = lambda: _FakeOrchestrator()

        resp = await client.get("/scrape-jobs/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["running"] is False
        assert body["outcomes"] == []

    async def test_orchestrator_missing_returns_503(self, client: AsyncClient) -> None:
        resp = await client.get("/scrape-jobs/status")
        assert resp.status_code == 503

    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_single_flight_through_the_api(app: FastAPI, client: AsyncClient) -> None:
    async with httpx.AsyncClient() as http_client:
        orchestrator = ScrapeOrchestrator(
            http_client, memory_guard=MemoryGuard(10_000, measure=lambda: 1.0)
        )
        blocking = _BlockingFetcher()
        orchestrator.source_fetcher = blocking
        app.state.orchestrator = orchestrator

        first = await client.post("/scrape-jobs/", json=_PAYLOAD)
        assert first.status_code == 202
        await asyncio.wait_for(blocking.entered.wait(), timeout=5)

        status_before = (await client.get("/scrape-jobs/status")).json()
        second = await client.post("/scrape-jobs/", json=_PAYLOAD)
        status_after = (await client.get("/scrape-jobs/status")).json()

        assert second.status_code == 409
        assert status_after == status_before
        assert status_before["running"] is True
        assert status_before["current_source_id"] == "src-1"

        stop = await client.post("/scrape-jobs/stop")
        assert stop.json() == {"stopping": True}
        blocking.release.set()
        await asyncio.wait_for(orchestrator._task, timeout=5)

        final = (await client.get("/scrape-jobs/status")).json()
        assert final["running"] is False
        assert final["processed_sources"] == 1
        assert final["outcomes"][0]["status"] == "failed"


@pytest.mark.asyncio
async def test_shutdown_hook_cancels_job_before_closing_client(app: FastAPI, client: AsyncClient) -> None:
    http_client = httpx.AsyncClient()
    orchestrator = ScrapeOrchestrator(http_client, memory_guard=MemoryGuard(10_000, measure=lambda: 1.0))
    blocking = _BlockingFetcher()
    orchestrator.source_fetcher = blocking
    app.state.orchestrator = orchestrator
    app.state.http_client = http_client

    resp = await client.post("/scrape-jobs/", json=_PAYLOAD)
    assert resp.status_code == 202
    await asyncio.wait_for(blocking.entered.wait(), timeout=5)
    task = orchestrator._task

    await app.router.shutdown()

    assert task is not None and task.cancelled()
    assert orchestrator.status()["running"] is False
    assert http_client.is_closed
