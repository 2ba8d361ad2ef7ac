"""Millisecond epoch helpers shared by the liveness query and the scheduler."""

from __future__ import annotations

import time

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS


def now_ms() -> int:
    return int(time.time() * 1000)


def format_duration(ms: float) -> str:
    """Render a duration as '<minutes>m <seconds>s' (negative values clamp to 0)."""
    ms = max(0, int(ms))
    minutes, rest = divmod(ms, MINUTE_MS)
    return f"{minutes}m {rest // 1000}s"
