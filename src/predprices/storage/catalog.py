"""Game catalog reads - which outcomes need sampling and how often."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Sequence

import structlog
from pydantic import ValidationError

from predprices.clock import HOUR_MS, MINUTE_MS, format_duration
from predprices.models import CatalogMarket, FrequencyDecision, Game

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

DEFAULT_MARKET_TYPES = ("moneyline",)
NO_UPCOMING_REASON = "no upcoming markets"

# Not closed, not ended, and starting before now + lookahead. Games already underway
# satisfy the start bound trivially.
_TRACKABLE_SQL = """
SELECT id, title, start_date, end_date, closed, markets
FROM games
WHERE closed = false
  AND (end_date IS NULL OR end_date > ?)
  AND start_date < ?
ORDER BY start_date ASC, id ASC
"""


def normalize_condition_id(s: str) -> str:
    """Canonicalize condition_id for matching (Gamma and CLOB use 0x + 64 hex)."""
    s = (s or "").strip()
    if not s:
        return s
    if s.startswith("0x"):
        return "0x" + s[2:].lower()
    return s.lower() if len(s) == 64 and all(c in "0123456789abcdefABCDEF" for c in s) else s


def load_markets(raw: Any, game_id: str) -> list[dict[str, Any]]:
    """Decode the markets JSON column (string or already-decoded list)."""
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            data = json.loads(raw) if raw else []
        except json.JSONDecodeError:
            log.warning("catalog_markets_invalid_json", game_id=game_id)
            return []
    else:
        data = raw
    if not isinstance(data, list):
        log.warning("catalog_markets_not_a_list", game_id=game_id)
        return []
    return [m for m in data if isinstance(m, dict)]


def _qualifying_market(
    raw: dict[str, Any], game_id: str, market_types: set[str]
) -> CatalogMarket | None:
    try:
        market = CatalogMarket.model_validate(raw)
    except ValidationError as e:
        log.warning("catalog_market_invalid", game_id=game_id, error=str(e))
        return None
    if market_types and (market.market_type or "").lower() not in market_types:
        return None
    if not market.condition_id:
        log.warning("market_missing_condition_id", game_id=game_id, question=market.question)
        return None
    outcomes = []
    for outcome in market.outcomes:
        if not outcome.token_id:
            log.warning(
                "outcome_missing_token_id",
                game_id=game_id,
                condition_id=market.condition_id,
                outcome=outcome.label,
            )
            continue
        outcomes.append(outcome)
    if not outcomes:
        log.warning("market_without_outcomes", game_id=game_id, condition_id=market.condition_id)
        return None
    return market.model_copy(
        update={"condition_id": normalize_condition_id(market.condition_id), "outcomes": outcomes}
    )


def parse_game(row: Sequence[Any], market_types: Sequence[str] = DEFAULT_MARKET_TYPES) -> Game | None:
    """
    Build a Game from a catalog row (id, title, start_date, end_date, closed, markets).
    Sub-markets are restricted to market_types (empty = no filter); outcomes without a token id
    and markets left without outcomes are dropped. Returns None when nothing is left to sample.
    """
    game_id, title, start_date, end_date, closed, markets_raw = row
    game_id = str(game_id)
    types = {t.lower() for t in market_types}
    markets = []
    for raw in load_markets(markets_raw, game_id):
        market = _qualifying_market(raw, game_id, types)
        if market is not None:
            markets.append(market)
    if not markets:
        log.warning("game_without_markets", game_id=game_id, title=title)
        return None
    return Game(
        game_id=game_id,
        title=title or "",
        start_ms=int(start_date),
        end_ms=int(end_date) if end_date is not None else None,
        closed=bool(closed),
        markets=markets,
    )


def _trackable_rows(conn: DuckDBPyConnection, now_ms: int, lookahead_hours: float) -> list[tuple]:
    horizon = now_ms + int(lookahead_hours * HOUR_MS)
    return conn.execute(_TRACKABLE_SQL, [now_ms, horizon]).fetchall()


def get_trackable_games(
    conn: DuckDBPyConnection,
    now_ms: int,
    lookahead_hours: float = 48,
    market_types: Sequence[str] = DEFAULT_MARKET_TYPES,
) -> list[Game]:
    """Return live or soon-starting games with their sampleable outcomes, by start time."""
    games = []
    for row in _trackable_rows(conn, now_ms, lookahead_hours):
        game = parse_game(row, market_types)
        if game is not None:
            games.append(game)
    return games


def get_frequency_decision(
    conn: DuckDBPyConnection,
    now_ms: int,
    lookahead_hours: float = 48,
    high_frequency_window_min: float = 10,
    market_types: Sequence[str] = DEFAULT_MARKET_TYPES,
) -> FrequencyDecision:
    """
    High frequency when a game with something to sample is underway or starts within the window.
    Uses the same qualification as get_trackable_games, so a game a run would skip never
    raises the cadence.
    """
    games = get_trackable_games(conn, now_ms, lookahead_hours, market_types)
    if not games:
        return FrequencyDecision(high_frequency=False, reason=NO_UPCOMING_REASON)

    active = [g for g in games if g.start_ms <= now_ms]
    upcoming = [g for g in games if g.start_ms > now_ms]
    next_game = min(upcoming, key=lambda g: g.start_ms) if upcoming else None
    next_start = next_game.start_ms if next_game else None
    counts = {"active_count": len(active), "upcoming_count": len(upcoming), "next_start_ms": next_start}

    if active:
        return FrequencyDecision(
            high_frequency=True,
            reason=f"{len(active)} active game(s) in progress",
            **counts,
        )
    until_start = next_start - now_ms
    countdown = format_duration(until_start)
    if until_start <= high_frequency_window_min * MINUTE_MS:
        return FrequencyDecision(
            high_frequency=True,
            reason=f"game starts in {countdown}: {next_game.title or next_game.game_id}",
            **counts,
        )
    return FrequencyDecision(
        high_frequency=False,
        reason=f"next game starts in {countdown}",
        **counts,
    )
