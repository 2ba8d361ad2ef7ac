"""Adaptive collection loop - high/low cadence from the catalog liveness check."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Sequence

import structlog

from predprices.clock import format_duration, now_ms
from predprices.models import FrequencyDecision
from predprices.storage.catalog import DEFAULT_MARKET_TYPES, get_frequency_decision

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predprices.ingestion.collector import PriceCollector

log = structlog.get_logger(__name__)

HIGH_FREQUENCY_INTERVAL_SEC = 120.0
LOW_FREQUENCY_INTERVAL_SEC = 600.0
ERROR_COOLDOWN_SEC = 60.0


def next_delay(
    decision: FrequencyDecision,
    elapsed_sec: float,
    high_interval_sec: float = HIGH_FREQUENCY_INTERVAL_SEC,
    low_interval_sec: float = LOW_FREQUENCY_INTERVAL_SEC,
) -> float:
    """Sleep until the next cycle: chosen interval minus time already spent, never negative."""
    interval = high_interval_sec if decision.high_frequency else low_interval_sec
    return max(0.0, interval - elapsed_sec)


class PriceScheduler:
    """Runs PriceCollector forever; a failed cycle is logged and retried after a cooldown."""

    def __init__(
        self,
        conn: DuckDBPyConnection,
        collector: PriceCollector,
        *,
        high_interval_sec: float = HIGH_FREQUENCY_INTERVAL_SEC,
        low_interval_sec: float = LOW_FREQUENCY_INTERVAL_SEC,
        error_cooldown_sec: float = ERROR_COOLDOWN_SEC,
        lookahead_hours: float = 48,
        high_frequency_window_min: float = 10,
        market_types: Sequence[str] = DEFAULT_MARKET_TYPES,
        clock: Callable[[], int] = now_ms,
    ):
        self.conn = conn
        self.collector = collector
        self.high_interval_sec = high_interval_sec
        self.low_interval_sec = low_interval_sec
        self.error_cooldown_sec = error_cooldown_sec
        self.lookahead_hours = lookahead_hours
        self.high_frequency_window_min = high_frequency_window_min
        self.market_types = market_types
        self.clock = clock
        self.cycles = 0
        self.failures = 0

    async def run_cycle(self, stop_event: asyncio.Event | None = None) -> float:
        """Run one liveness check + collection pass. Returns seconds to sleep before the next."""
        started = time.monotonic()
        decision = get_frequency_decision(
            self.conn,
            self.clock(),
            lookahead_hours=self.lookahead_hours,
            high_frequency_window_min=self.high_frequency_window_min,
            market_types=self.market_types,
        )
        log.info(
            "frequency_decision",
            mode="high" if decision.high_frequency else "low",
            reason=decision.reason,
            next_start_ms=decision.next_start_ms,
        )
        await self.collector.run(stop_event=stop_event)
        elapsed = time.monotonic() - started
        delay = next_delay(decision, elapsed, self.high_interval_sec, self.low_interval_sec)
        log.info(
            "cycle_completed",
            cycle=self.cycles,
            duration=format_duration(elapsed * 1000),
            next_in=format_duration(delay * 1000),
        )
        return delay

    async def run_forever(
        self,
        stop_event: asyncio.Event | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Loop until stop_event is set (checked between cycles) or max_cycles ran. Returns cycle count."""
        stop = stop_event or asyncio.Event()
        log.info(
            "scheduler_started",
            high_interval_sec=self.high_interval_sec,
            low_interval_sec=self.low_interval_sec,
        )
        while not stop.is_set():
            self.cycles += 1
            log.info("cycle_started", cycle=self.cycles)
            try:
                delay = await self.run_cycle(stop)
            except Exception:
                self.failures += 1
                log.exception("cycle_failed", cycle=self.cycles, cooldown_sec=self.error_cooldown_sec)
                delay = self.error_cooldown_sec
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            await _sleep_until_stopped(stop, delay)
        log.info("scheduler_stopped", cycles=self.cycles, failures=self.failures)
        return self.cycles


async def _sleep_until_stopped(stop: asyncio.Event, seconds: float) -> None:
    """Sleep for seconds, returning early when stop is set."""
    if seconds <= 0:
        return
    try:
        await asyncio.wait_for(stop.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
