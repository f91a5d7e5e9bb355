"""Process memory guard for browser automation.

Chromium runs as child processes, so the measured figure is the RSS of this
process plus all of its descendants.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

import psutil

from newsradar.core.exceptions import ResourceExhausted

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def process_tree_rss_mb(pid: int | None = None) -> float:
    """Return the resident set size of a process and its descendants, in MB."""
    proc = psutil.Process(pid or os.getpid())
    total = proc.memory_info().rss
    for child in proc.children(recursive=True):
        try:
            total += child.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return total / _MB


class MemoryGuard:
    """Raise :class:`ResourceExhausted` when memory use exceeds a threshold.

    Args:
        threshold_mb: Limit in megabytes.
        measure: Returns the current usage in MB; defaults to
            :func:`process_tree_rss_mb`.
    """

    def __init__(self, threshold_mb: float, measure: Callable[[], float] | None = None) -> None:
        self.threshold_mb = threshold_mb
        self._measure = measure or process_tree_rss_mb

    def check(self) -> float:
        """Return the current usage in MB.

        Raises:
            ResourceExhausted: If usage exceeds the threshold.
        """
        rss_mb = self._measure()
        if rss_mb > self.threshold_mb:
            logger.warning(
                "scraper: memory %.0f MB over threshold %.0f MB", rss_mb, self.threshold_mb
            )
            raise ResourceExhausted(rss_mb, self.threshold_mb)
        return rss_mb
