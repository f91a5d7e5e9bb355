"""Shared pytest fixtures for NewsRadar tests.

Fixture summary
---------------
fast_fetch_options — FetchOptions without backoff delays.
http_client        — plain httpx.AsyncClient (mock it with respx).

All tests run without network access or a Chromium install: HTTP traffic is
mocked with respx and the browser driver is given a fake Playwright launcher.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Settings are read from the environment; pin the values that would otherwise
# make tests slow or reach external services.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "HTTP_BACKOFF_MIN": "0",
    "HTTP_BACKOFF_MAX": "0",
    "CHALLENGE_WAIT_CEILING_MS": "0",
    "LOG_LEVEL": "WARNING",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)
os.environ.pop("OPENROUTER_API_KEY", None)

from newsradar.config.settings import get_settings  # noqa: E402
from newsradar.scraper.http_fetcher import FetchOptions  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def fast_fetch_options() -> FetchOptions:
    return FetchOptions(backoff_min=0.0, backoff_max=0.0, timeout=5.0)


@pytest_asyncio.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient() as client:
        yield client
