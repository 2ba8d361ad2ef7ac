"""Collection orchestrator - owns the DuckDB connection and HTTP client for a process."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog

from predprices.config.settings import Settings
from predprices.ingestion.clob import ClobPriceClient
from predprices.ingestion.collector import PriceCollector
from predprices.ingestion.rate_limit import RequestPacer
from predprices.ingestion.scheduler import PriceScheduler
from predprices.models import RunSummary
from predprices.storage.db import get_connection, init_schema

log = structlog.get_logger(__name__)


class CollectionManager:
    """Wires collector and scheduler from settings. close() releases resources once."""

    def __init__(
        self,
        db_path: str | Path,
        clob_api_base: str,
        *,
        requests_per_minute: int = 90,
        rate_limit_cooldown_sec: float = 30.0,
        request_timeout_sec: float = 10.0,
        lookahead_hours: float = 48,
        high_frequency_window_min: float = 10,
        high_interval_sec: float = 120,
        low_interval_sec: float = 600,
        error_cooldown_sec: float = 60,
        market_types: list[str] | None = None,
        client: ClobPriceClient | None = None,
    ):
        self.db_path = db_path
        self.clob_api_base = clob_api_base
        self.requests_per_minute = requests_per_minute
        self.rate_limit_cooldown_sec = rate_limit_cooldown_sec
        self.request_timeout_sec = request_timeout_sec
        self.lookahead_hours = lookahead_hours
        self.high_frequency_window_min = high_frequency_window_min
        self.high_interval_sec = high_interval_sec
        self.low_interval_sec = low_interval_sec
        self.error_cooldown_sec = error_cooldown_sec
        self.market_types = market_types if market_types is not None else ["moneyline"]
        self._conn = None
        self._client = client
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> CollectionManager:
        kwargs: dict[str, Any] = dict(
            db_path=settings.db_path,
            clob_api_base=settings.clob_api_base,
            requests_per_minute=settings.requests_per_minute,
            rate_limit_cooldown_sec=settings.rate_limit_cooldown_sec,
            request_timeout_sec=settings.request_timeout_sec,
            lookahead_hours=settings.lookahead_hours,
            high_frequency_window_min=settings.high_frequency_window_min,
            high_interval_sec=settings.high_frequency_interval_sec,
            low_interval_sec=settings.low_frequency_interval_sec,
            error_cooldown_sec=settings.error_cooldown_sec,
            market_types=settings.market_types,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    def _get_conn(self):
        if self._closed:
            raise RuntimeError("CollectionManager is closed")
        if self._conn is None:
            self._conn = get_connection(self.db_path)
            init_schema(self._conn)
        return self._conn

    def _get_client(self) -> ClobPriceClient:
        if self._client is None:
            self._client = ClobPriceClient(
                self.clob_api_base,
                timeout=self.request_timeout_sec,
                rate_limit_cooldown_sec=self.rate_limit_cooldown_sec,
            )
        return self._client

    def build_collector(self) -> PriceCollector:
        return PriceCollector(
            self._get_conn(),
            self._get_client(),
            RequestPacer(self.requests_per_minute),
            lookahead_hours=self.lookahead_hours,
            market_types=self.market_types,
        )

    def build_scheduler(self) -> PriceScheduler:
        return PriceScheduler(
            self._get_conn(),
            self.build_collector(),
            high_interval_sec=self.high_interval_sec,
            low_interval_sec=self.low_interval_sec,
            error_cooldown_sec=self.error_cooldown_sec,
            lookahead_hours=self.lookahead_hours,
            high_frequency_window_min=self.high_frequency_window_min,
            market_types=self.market_types,
        )

    async def run_once(self, stop_event: asyncio.Event | None = None) -> RunSummary:
        """Single collection pass; errors propagate to the caller."""
        return await self.build_collector().run(stop_event=stop_event)

    async def run_forever(self, stop_event: asyncio.Event | None = None, max_cycles: int | None = None) -> int:
        """Adaptive loop until stop_event is set."""
        return await self.build_scheduler().run_forever(stop_event, max_cycles=max_cycles)

    async def aclose(self) -> None:
        """Release the HTTP client and DB connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
        finally:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            log.info("resources_released")
