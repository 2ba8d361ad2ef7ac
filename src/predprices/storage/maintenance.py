"""Repair jobs for the price tables: extremes rebuild, orphan cleanup, label and market id backfill."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterator

import structlog
from pydantic import ValidationError

from predprices.clock import now_ms as _now_ms
from predprices.models import CatalogMarket, CatalogOutcome
from predprices.storage.catalog import load_markets, normalize_condition_id

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

_REPLACE_EXTREMES_SQL = """
INSERT INTO market_price_extremes (
    condition_id, token_id, outcome,
    lowest_price, lowest_price_timestamp,
    highest_price, highest_price_timestamp,
    current_price, current_price_timestamp,
    first_recorded, last_updated
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (condition_id, token_id) DO UPDATE SET
    outcome = excluded.outcome,
    lowest_price = excluded.lowest_price,
    lowest_price_timestamp = excluded.lowest_price_timestamp,
    highest_price = excluded.highest_price,
    highest_price_timestamp = excluded.highest_price_timestamp,
    current_price = excluded.current_price,
    current_price_timestamp = excluded.current_price_timestamp,
    first_recorded = excluded.first_recorded,
    last_updated = excluded.last_updated
"""

_MOVE_PRICE_SQL = """
INSERT INTO market_prices (condition_id, token_id, outcome, price, timestamp, source, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (condition_id, token_id, timestamp) DO NOTHING
"""

_DELETE_ORPHANS_SQL = """
DELETE FROM market_price_extremes
WHERE NOT EXISTS (
    SELECT 1 FROM market_prices p
    WHERE p.condition_id = market_price_extremes.condition_id
      AND p.token_id = market_price_extremes.token_id
)
"""


def replay_extremes(rows: list[tuple[Any, ...]]) -> dict[tuple[str, str], dict[str, Any]]:
    """
    Fold (condition_id, token_id, outcome, price, timestamp) rows, already in timestamp order,
    into extremes state per key using the same rules as the incremental update.
    """
    state: dict[tuple[str, str], dict[str, Any]] = {}
    for condition_id, token_id, outcome, price, ts in rows:
        key = (condition_id, token_id)
        s = state.get(key)
        if s is None:
            state[key] = {
                "outcome": outcome,
                "lowest_price": price,
                "lowest_price_ts": ts,
                "highest_price": price,
                "highest_price_ts": ts,
                "current_price": price,
                "current_price_ts": ts,
                "first_recorded": ts,
            }
            continue
        if price < s["lowest_price"]:
            s["lowest_price"], s["lowest_price_ts"] = price, ts
        if price > s["highest_price"]:
            s["highest_price"], s["highest_price_ts"] = price, ts
        s["current_price"], s["current_price_ts"] = price, ts
        if ts < s["first_recorded"]:
            s["first_recorded"] = ts
        if outcome is not None:
            s["outcome"] = outcome
    return state


def _count(conn: DuckDBPyConnection, sql: str) -> int:
    return conn.execute(sql).fetchone()[0]


def delete_orphaned_extremes(conn: DuckDBPyConnection) -> int:
    """Delete extremes rows that have no observation behind them. Returns rows deleted."""
    before = _count(conn, "SELECT COUNT(*) FROM market_price_extremes")
    conn.execute(_DELETE_ORPHANS_SQL)
    deleted = before - _count(conn, "SELECT COUNT(*) FROM market_price_extremes")
    log.info("orphaned_extremes_deleted", count=deleted)
    return deleted


def rebuild_extremes(conn: DuckDBPyConnection, now_ms: int | None = None) -> int:
    """Recompute every extremes row by replaying market_prices in (timestamp, id) order."""
    written_at = now_ms if now_ms is not None else _now_ms()
    rows = conn.execute(
        "SELECT condition_id, token_id, outcome, price, timestamp FROM market_prices ORDER BY timestamp ASC, id ASC"
    ).fetchall()
    state = replay_extremes(rows)
    params = [
        [
            cid,
            tid,
            s["outcome"],
            s["lowest_price"],
            s["lowest_price_ts"],
            s["highest_price"],
            s["highest_price_ts"],
            s["current_price"],
            s["current_price_ts"],
            s["first_recorded"],
            written_at,
        ]
        for (cid, tid), s in state.items()
    ]
    conn.begin()
    try:
        if params:
            conn.executemany(_REPLACE_EXTREMES_SQL, params)
        conn.execute(_DELETE_ORPHANS_SQL)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log.info("extremes_rebuilt", keys=len(state), observations=len(rows))
    return len(state)


def _catalog_outcomes(conn: DuckDBPyConnection) -> Iterator[tuple[str, CatalogOutcome]]:
    """Yield (normalized condition_id, outcome) for every catalog outcome carrying a token id."""
    for game_id, markets_raw in conn.execute("SELECT id, markets FROM games").fetchall():
        for raw in load_markets(markets_raw, str(game_id)):
            try:
                market = CatalogMarket.model_validate(raw)
            except ValidationError:
                continue
            if not market.condition_id:
                continue
            cid = normalize_condition_id(market.condition_id)
            for outcome in market.outcomes:
                if outcome.token_id:
                    yield cid, outcome


def catalog_outcome_labels(conn: DuckDBPyConnection) -> dict[tuple[str, str], str]:
    """Map (condition_id, token_id) -> outcome label across the whole catalog."""
    return {(cid, o.token_id): o.label for cid, o in _catalog_outcomes(conn) if o.label}


def token_condition_ids(conn: DuckDBPyConnection) -> dict[str, str]:
    """
    Map token_id -> 0x condition_id. The catalog wins; tokens that left the catalog fall back to
    the condition_id already stored on their hex-keyed price rows.
    """
    mapping = {
        tid: cid
        for tid, cid in conn.execute(
            "SELECT token_id, MIN(condition_id) FROM market_prices WHERE condition_id LIKE '0x%' GROUP BY token_id"
        ).fetchall()
    }
    for cid, outcome in _catalog_outcomes(conn):
        if cid.startswith("0x"):
            mapping[outcome.token_id] = cid
    return mapping


def repair_condition_ids(
    conn: DuckDBPyConnection,
    delete_unmapped: bool = False,
    now_ms: int | None = None,
) -> dict[str, int]:
    """
    Move price rows keyed by a non-hex market id (an old game id) onto the token's 0x condition_id.
    A moved row that collides with an existing hex row at the same timestamp is dropped.
    With delete_unmapped, rows whose token cannot be mapped are deleted. Extremes are rebuilt
    afterwards, which merges and removes the stale non-hex rows.
    Returns counts: remapped, merged, unmapped, deleted.
    """
    mapping = token_condition_ids(conn)
    bad = conn.execute(
        "SELECT id, token_id, outcome, price, timestamp, source, created_at FROM market_prices "
        "WHERE condition_id NOT LIKE '0x%' ORDER BY id"
    ).fetchall()
    fixable = [r for r in bad if r[1] in mapping]
    unmapped = [r for r in bad if r[1] not in mapping]
    to_delete = fixable + (unmapped if delete_unmapped else [])

    before = _count(conn, "SELECT COUNT(*) FROM market_prices")
    conn.begin()
    try:
        if to_delete:
            conn.executemany("DELETE FROM market_prices WHERE id = ?", [[r[0]] for r in to_delete])
        if fixable:
            conn.executemany(
                _MOVE_PRICE_SQL,
                [[mapping[r[1]], *r[1:]] for r in fixable],
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    after = _count(conn, "SELECT COUNT(*) FROM market_prices")

    deleted = len(unmapped) if delete_unmapped else 0
    merged = before - deleted - after
    result = {
        "remapped": len(fixable) - merged,
        "merged": merged,
        "unmapped": len(unmapped) - deleted,
        "deleted": deleted,
    }
    rebuild_extremes(conn, now_ms)
    log.info("condition_ids_repaired", **result)
    return result


def backfill_null_outcomes(conn: DuckDBPyConnection) -> dict[str, int]:
    """Fill NULL outcome labels in both price tables from the catalog. Returns rows fixed per table."""
    labels = catalog_outcome_labels(conn)
    params = [[label, cid, tid] for (cid, tid), label in labels.items()]
    fixed: dict[str, int] = {}
    for table in ("market_prices", "market_price_extremes"):
        before = _count(conn, f"SELECT COUNT(*) FROM {table} WHERE outcome IS NULL")
        if params and before:
            conn.executemany(
                f"UPDATE {table} SET outcome = ? WHERE condition_id = ? AND token_id = ? AND outcome IS NULL",
                params,
            )
        fixed[table] = before - _count(conn, f"SELECT COUNT(*) FROM {table} WHERE outcome IS NULL")
    log.info("null_outcomes_backfilled", **fixed)
    return fixed
