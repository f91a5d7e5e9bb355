"""Pydantic request/response schemas for scrape jobs.

Used by the scrape job routes for validation, serialisation, and OpenAPI
documentation generation.
"""

from __future__ import annotations

import urllib.parse
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ScrapeSourceIn(BaseModel):
    """One source page of a scrape job."""

    source_id: str = Field(min_length=1, max_length=200)
    url: str
    context_hint: Optional[str] = None

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        parsed = urllib.parse.urlparse(value.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value.strip()


class ScrapeJobCreate(BaseModel):
    """Payload for starting a scrape job.

    Attributes:
        sources: Source pages, processed in order.
        context_hint: Default hint passed to the link classifier.
        max_articles: Per-source article cap; defaults to the server setting.
    """

    sources: List[ScrapeSourceIn] = Field(min_length=1)
    context_hint: Optional[str] = None
    max_articles: Optional[int] = Field(default=None, ge=1, le=500)


class SourceOutcomeRead(BaseModel):
    source_id: str
    status: str
    reason: Optional[str] = None
    articles: int = 0
    links_found: int = 0


class ScrapeJobStatus(BaseModel):
    """Current job state and per-source outcomes of the latest job."""

    running: bool
    job_id: Optional[str] = None
    current_source_id: Optional[str] = None
    started_at: Optional[datetime] = None
    total_sources: int = 0
    processed_sources: int = 0
    outcomes: List[SourceOutcomeRead] = Field(default_factory=list)


class ScrapeJobStopResult(BaseModel):
    stopping: bool
