"""Test data factories and fake collaborators.

Available helpers
-----------------
SourceSpecFactory       — source page spec
ScrapeJobSpecFactory    — single-source job spec
CandidateLinkFactory    — candidate link
SelectorConfigFactory   — per-source selector configuration
article_html            — article page markup
listing_html            — source listing page markup
FakeLauncher / FakePage — Playwright stand-ins for the browser driver
"""

from __future__ import annotations

from tests.factories.browser import FakeLauncher, FakePage
from tests.factories.scraping import (
    CandidateLinkFactory,
    ScrapeJobSpecFactory,
    SelectorConfigFactory,
    SourceSpecFactory,
    article_html,
    listing_html,
)

__all__ = [
    "CandidateLinkFactory",
    "FakeLauncher",
    "FakePage",
    "ScrapeJobSpecFactory",
    "SelectorConfigFactory",
    "SourceSpecFactory",
    "article_html",
    "listing_html",
]
