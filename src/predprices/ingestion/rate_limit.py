"""Fixed-delay request pacing for the CLOB REST API. Cooldown on 429."""

from __future__ import annotations

import asyncio
import math

# Remote limit is 100 req/min; stay under it
DEFAULT_REQUESTS_PER_MINUTE = 90
RATE_LIMIT_COOLDOWN_SEC = 30.0


def delay_for_rate(requests_per_minute: float) -> float:
    """Seconds to wait before each request, rounded up to whole ms (90/min -> 0.667)."""
    if requests_per_minute <= 0:
        return 0.0
    return math.ceil(60_000 / requests_per_minute) / 1000


class RequestPacer:
    """Sleeps a fixed delay before every request, capping throughput regardless of latency."""

    def __init__(self, requests_per_minute: float = DEFAULT_REQUESTS_PER_MINUTE) -> None:
        self.requests_per_minute = requests_per_minute
        self.delay_sec = delay_for_rate(requests_per_minute)
        self.waits = 0

    async def wait(self) -> None:
        self.waits += 1
        if self.delay_sec > 0:
            await asyncio.sleep(self.delay_sec)
