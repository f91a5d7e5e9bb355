"""Environment-driven settings for the scraping core.

All tunables (timeouts, retry limits, browser and memory thresholds, the
OpenRouter key) are read here.  Other modules receive a ``Settings`` object
or values derived from it and do not read the environment themselves.

Usage::

    from newsradar.config.settings import get_settings

    settings = get_settings()
    timeout = settings.http_timeout_seconds
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Scraping-core configuration backed by environment variables and an optional .env file.

    Every field has a default so that the core can run (HTTP-only, without AI
    classification) with an empty environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "NewsRadar"
    """Human-readable application name shown in the OpenAPI docs."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    # ------------------------------------------------------------------
    # HTTP fetcher
    # ------------------------------------------------------------------

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    """Per-attempt HTTP request timeout."""

    http_max_attempts: int = Field(default=5, ge=1, le=5)
    """Attempts made before a protected or dynamic page is escalated.
    Capped at 5; the fetcher never retries beyond this."""

    http_backoff_min: float = Field(default=0.5, ge=0.0)
    """Lower bound (seconds) of the randomized backoff between attempts."""

    http_backoff_max: float = Field(default=2.0, ge=0.0)
    """Upper bound (seconds) of the randomized backoff between attempts."""

    # ------------------------------------------------------------------
    # Detector thresholds
    # ------------------------------------------------------------------

    min_anchor_count: int = Field(default=10, ge=0)
    """Source pages with fewer anchors than this are labelled dynamic-content."""

    min_content_length: int = Field(default=500, ge=0)
    """Visible text length (after boilerplate removal) below which a page is
    labelled insufficient-content."""

    # ------------------------------------------------------------------
    # Browser automation
    # ------------------------------------------------------------------

    browser_headless: bool = True
    """Run Chromium headless.  Disable only for local debugging."""

    browser_navigation_timeout_ms: int = Field(default=30_000, gt=0)
    """Hard ceiling for every browser navigation."""

    challenge_wait_ceiling_ms: int = Field(default=15_000, ge=0)
    """Maximum time spent waiting for an anti-bot challenge page to clear."""

    challenge_poll_ms: int = Field(default=1_000, gt=0)
    """Polling interval of the challenge-wait loop."""

    dynamic_load_max_steps: int = Field(default=3, ge=0)
    """Rounds of endpoint-fetch / load-more / scroll steps before giving up."""

    # ------------------------------------------------------------------
    # Redirect resolution
    # ------------------------------------------------------------------

    redirect_max_hops: int = Field(default=5, ge=1)
    """Maximum HTTP redirect hops followed in the HTTP stage."""

    redirect_settle_ms: int = Field(default=2_000, ge=0)
    """Time ``window.location`` must stay unchanged before the browser stage
    considers client-side navigation settled."""

    # ------------------------------------------------------------------
    # Job orchestration
    # ------------------------------------------------------------------

    memory_threshold_mb: float = Field(default=1_536.0, gt=0)
    """Process RSS above which the active automation session is force-closed."""

    max_articles_per_source: int = Field(default=20, ge=1)
    """Upper bound on article links processed per source."""

    min_article_length: int = Field(default=200, ge=0)
    """Extracted articles shorter than this many characters are rejected."""

    per_host_min_interval_seconds: float = Field(default=0.0, ge=0.0)
    """Minimum gap between HTTP requests to the same host.  ``0`` disables pacing."""

    # ------------------------------------------------------------------
    # AI collaborator (OpenRouter)
    # ------------------------------------------------------------------

    openrouter_api_key: Optional[str] = None
    """OpenRouter API key.  When ``None`` the orchestrator runs without link
    classification or content analysis (all candidates are used)."""

    openrouter_model: str = "openai/gpt-4o-mini"
    """Model identifier used for link classification and content analysis."""

    ai_timeout_seconds: float = Field(default=60.0, gt=0)
    """Hard ceiling for a single AI collaborator call."""


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide ``Settings`` instance.

    The environment is read on first call only; tests that change variables
    must call ``get_settings.cache_clear()`` afterwards.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
