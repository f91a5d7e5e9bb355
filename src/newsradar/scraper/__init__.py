"""Fetch-and-resolve scraping core.

Sub-modules:

- :mod:`~newsradar.scraper.detector` — protection / dynamic-content labels
- :mod:`~newsradar.scraper.http_fetcher` — httpx fetcher with escalation
- :mod:`~newsradar.scraper.playwright_fetcher` — Playwright fallback driver
- :mod:`~newsradar.scraper.strategy` — HTTP / browser / hybrid fetch strategies
- :mod:`~newsradar.scraper.redirect_rules` — indirection rule table
- :mod:`~newsradar.scraper.redirect_resolver` — two-stage redirect resolution
- :mod:`~newsradar.scraper.link_extractor` — candidate link discovery
- :mod:`~newsradar.scraper.content_extractor` — article extraction
- :mod:`~newsradar.scraper.content_validator` — article and title validation
- :mod:`~newsradar.scraper.pacing` — per-host request pacing
- :mod:`~newsradar.scraper.ai_client` — OpenRouter link classifier / analyzer
- :mod:`~newsradar.scraper.memory_guard` — process memory guard
- :mod:`~newsradar.scraper.orchestrator` — single-flight job orchestration
- :mod:`~newsradar.scraper.router` — FastAPI job control routes
"""
