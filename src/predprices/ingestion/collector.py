"""One collection pass: enumerate live outcomes, fetch prices, persist one batch."""

from __future__ import annotations

import asyncio
import time
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Iterator, Protocol, Sequence

import structlog
from pydantic import ValidationError

from predprices.clock import now_ms
from predprices.ingestion.rate_limit import RequestPacer
from predprices.models import CatalogMarket, CatalogOutcome, Game, PriceObservation, PriceSource, RunSummary
from predprices.storage.catalog import DEFAULT_MARKET_TYPES, get_trackable_games
from predprices.storage.prices import write_batch

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)


class PriceFetcher(Protocol):
    async def fetch_price(self, token_id: str) -> Decimal | None: ...


def iter_outcomes(games: Sequence[Game]) -> Iterator[tuple[Game, CatalogMarket, CatalogOutcome]]:
    """Yield (game, market, outcome) in catalog order."""
    for game in games:
        for market in game.markets:
            for outcome in market.outcomes:
                yield game, market, outcome


class PriceCollector:
    """Runs collection passes against one connection and one price client."""

    def __init__(
        self,
        conn: DuckDBPyConnection,
        client: PriceFetcher,
        pacer: RequestPacer | None = None,
        *,
        lookahead_hours: float = 48,
        market_types: Sequence[str] = DEFAULT_MARKET_TYPES,
        clock: Callable[[], int] = now_ms,
    ):
        self.conn = conn
        self.client = client
        self.pacer = pacer or RequestPacer()
        self.lookahead_hours = lookahead_hours
        self.market_types = tuple(market_types)
        self.clock = clock

    async def run(self, stop_event: asyncio.Event | None = None) -> RunSummary:
        """
        Sample every trackable outcome once and store the prices as one batch.
        All observations share the run timestamp. Per-outcome failures are counted, not raised;
        catalog and store errors propagate. If stop_event is set, no new request is started
        and what was already collected is still written.
        """
        started = time.monotonic()
        games = get_trackable_games(
            self.conn,
            self.clock(),
            lookahead_hours=self.lookahead_hours,
            market_types=self.market_types,
        )
        log.info("trackable_games", count=len(games))
        if not games:
            log.info("no_active_games")
            return RunSummary()

        timestamp = self.clock()
        batch: list[PriceObservation] = []
        requests = successes = failures = 0
        seen: set[tuple[str, str]] = set()

        for game, market, outcome in iter_outcomes(games):
            if stop_event is not None and stop_event.is_set():
                log.info("collection_interrupted", requests=requests)
                break
            key = (market.condition_id, outcome.token_id)
            if key in seen:
                log.warning("duplicate_outcome_skipped", game_id=game.game_id, token_id=outcome.token_id)
                continue
            seen.add(key)
            await self.pacer.wait()
            price = await self.client.fetch_price(outcome.token_id)
            requests += 1
            observation = None
            if price is not None:
                try:
                    observation = PriceObservation(
                        market_id=market.condition_id,
                        token_id=outcome.token_id,
                        outcome=outcome.label,
                        price=price,
                        timestamp=timestamp,
                        source=PriceSource.REST,
                    )
                except ValidationError as e:
                    log.warning("price_rejected", token_id=outcome.token_id, price=str(price), error=str(e))
            if observation is None:
                failures += 1
                log.warning(
                    "price_fetch_failed",
                    game_id=game.game_id,
                    condition_id=market.condition_id,
                    outcome=outcome.label,
                )
                continue
            batch.append(observation)
            successes += 1
            log.info(
                "price_fetched",
                game_id=game.game_id,
                outcome=outcome.label,
                price=str(price),
            )

        stored = 0
        if batch:
            stored = write_batch(self.conn, batch)
        else:
            log.warning("no_prices_collected")

        summary = RunSummary(
            games_processed=len(games),
            request_count=requests,
            success_count=successes,
            failure_count=failures,
            price_records_stored=stored,
            duration_sec=round(time.monotonic() - started, 2),
        )
        log.info("run_summary", **summary.model_dump())
        return summary
