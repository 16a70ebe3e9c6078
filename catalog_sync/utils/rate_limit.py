"""Per-integration request pacing."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict


class RateLimiter:
    """Minimum interval between requests sharing a key."""

    def __init__(self, *, rate: float = 5.0) -> None:
        self.min_interval = 1.0 / rate if rate > 0 else 0.0
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = {}

    async def wait(self, key: str) -> None:
        if not self.min_interval:
            return
        async with self._locks[key]:
            last = self._last_request.get(key)
            if last is not None:
                remaining = self.min_interval - (time.monotonic() - last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request[key] = time.monotonic()
