"""In-process per-host request pacing.

Jobs run one at a time and fetch sequentially, so a per-host "next free
slot" is enough to keep a minimum gap between requests to the same site::

    pacer = HostPacer(1.5)
    options = FetchOptions(pacer=pacer)
    await fetch_url(url, client=client, options=options)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


class HostPacer:
    """Keeps at least ``min_interval`` seconds between requests to one host.

    Args:
        min_interval: Minimum gap in seconds; ``0`` disables pacing.
        clock: Monotonic clock, injectable for tests.
        sleep: Coroutine used to wait, injectable for tests.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = max(0.0, min_interval)
        self._clock = clock
        self._sleep = sleep
        self._next_slot: dict[str, float] = {}

    @staticmethod
    def host_key(url: str) -> str:
        return (urlsplit(url).hostname or "").lower()

    async def wait(self, url: str) -> float:
        """Wait for the host's next slot and reserve the one after it.

        Returns:
            Seconds waited.
        """
        if self.min_interval <= 0:
            return 0.0
        host = self.host_key(url)
        now = self._clock()
        slot = max(now, self._next_slot.get(host, now))
        self._next_slot[host] = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            logger.debug("scraper: pacing %s for %.2fs", host, delay)
            await self._sleep(delay)
        return delay
