"""Price time series persistence and incremental price extremes."""

from __future__ import annotations

import time
from collections import Counter
from typing import TYPE_CHECKING, Any, Sequence

import structlog

from predprices.models import PriceExtremes, PriceObservation

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

INSERT_PRICE_SQL = """
INSERT INTO market_prices (condition_id, token_id, outcome, price, timestamp, source, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (condition_id, token_id, timestamp) DO NOTHING
"""

# New price wins lowest/highest only on strict < / > against the stored row, so the
# result does not depend on the order rows of one batch are applied in.
UPSERT_EXTREMES_SQL = """
INSERT INTO market_price_extremes (
    condition_id, token_id, outcome,
    lowest_price, lowest_price_timestamp,
    highest_price, highest_price_timestamp,
    current_price, current_price_timestamp,
    first_recorded, last_updated
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (condition_id, token_id) DO UPDATE SET
    lowest_price = CASE
        WHEN excluded.current_price < lowest_price THEN excluded.current_price
        ELSE lowest_price
    END,
    lowest_price_timestamp = CASE
        WHEN excluded.current_price < lowest_price THEN excluded.current_price_timestamp
        ELSE lowest_price_timestamp
    END,
    highest_price = CASE
        WHEN excluded.current_price > highest_price THEN excluded.current_price
        ELSE highest_price
    END,
    highest_price_timestamp = CASE
        WHEN excluded.current_price > highest_price THEN excluded.current_price_timestamp
        ELSE highest_price_timestamp
    END,
    current_price = excluded.current_price,
    current_price_timestamp = excluded.current_price_timestamp,
    first_recorded = CASE
        WHEN excluded.first_recorded < first_recorded THEN excluded.first_recorded
        ELSE first_recorded
    END,
    outcome = COALESCE(excluded.outcome, outcome),
    last_updated = excluded.last_updated
"""

EXTREMES_COLUMNS = [
    "market_id",
    "token_id",
    "outcome",
    "lowest_price",
    "lowest_price_ts",
    "highest_price",
    "highest_price_ts",
    "current_price",
    "current_price_ts",
    "first_recorded",
    "last_updated",
]

_SELECT_EXTREMES = """
SELECT condition_id, token_id, outcome,
       lowest_price, lowest_price_timestamp,
       highest_price, highest_price_timestamp,
       current_price, current_price_timestamp,
       first_recorded, last_updated
FROM market_price_extremes
"""


class DuplicateObservationError(ValueError):
    """A batch holds more than one observation for the same (market, token)."""

    def __init__(self, keys: list[tuple[str, str]]):
        self.keys = keys
        super().__init__(f"batch has {len(keys)} duplicated (market_id, token_id) key(s): {keys[:5]}")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _check_unique_keys(observations: Sequence[PriceObservation]) -> None:
    counts = Counter(o.key for o in observations)
    dupes = [k for k, n in counts.items() if n > 1]
    if dupes:
        raise DuplicateObservationError(dupes)


def _existing_keys(
    conn: DuckDBPyConnection, observations: Sequence[PriceObservation]
) -> set[tuple[str, str, int]]:
    """Return (condition_id, token_id, timestamp) keys of the batch already stored."""
    timestamps = sorted({o.timestamp for o in observations})
    placeholders = ", ".join("?" for _ in timestamps)
    rows = conn.execute(
        f"SELECT condition_id, token_id, timestamp FROM market_prices WHERE timestamp IN ({placeholders})",
        timestamps,
    ).fetchall()
    return {(r[0], r[1], int(r[2])) for r in rows}


def _price_row(o: PriceObservation, written_at: int) -> list[Any]:
    return [o.market_id, o.token_id, o.outcome, o.price, o.timestamp, o.source.value, written_at]


def _extremes_row(o: PriceObservation, written_at: int) -> list[Any]:
    return [
        o.market_id,
        o.token_id,
        o.outcome,
        o.price,
        o.timestamp,
        o.price,
        o.timestamp,
        o.price,
        o.timestamp,
        o.timestamp,
        written_at,
    ]


def write_batch(
    conn: DuckDBPyConnection,
    observations: Sequence[PriceObservation],
    now_ms: int | None = None,
) -> int:
    """
    Persist a batch of observations and fold the newly inserted ones into market_price_extremes.
    Rows whose (condition_id, token_id, timestamp) already exist are skipped, so re-writing a
    batch is a no-op. Inserts and extremes updates share one transaction.
    Returns the number of rows actually inserted.
    """
    if not observations:
        return 0
    _check_unique_keys(observations)
    written_at = now_ms if now_ms is not None else _now_ms()

    conn.begin()
    try:
        existing = _existing_keys(conn, observations)
        fresh = [o for o in observations if (o.market_id, o.token_id, o.timestamp) not in existing]
        if fresh:
            conn.executemany(INSERT_PRICE_SQL, [_price_row(o, written_at) for o in fresh])
            conn.executemany(UPSERT_EXTREMES_SQL, [_extremes_row(o, written_at) for o in fresh])
        conn.commit()
    except Exception:
        conn.rollback()
        raise

    log.info(
        "price_batch_written",
        submitted=len(observations),
        inserted=len(fresh),
        skipped=len(observations) - len(fresh),
    )
    return len(fresh)


def _row_to_extremes(row: tuple[Any, ...]) -> PriceExtremes:
    return PriceExtremes(**dict(zip(EXTREMES_COLUMNS, row)))


def get_extremes(conn: DuckDBPyConnection, market_id: str, token_id: str) -> PriceExtremes | None:
    """Return the extremes row for one outcome token, or None if it was never priced."""
    row = conn.execute(
        _SELECT_EXTREMES + " WHERE condition_id = ? AND token_id = ?",
        [market_id, token_id],
    ).fetchone()
    return _row_to_extremes(row) if row else None


def list_extremes(
    conn: DuckDBPyConnection,
    market_id: str | None = None,
    limit: int = 200,
) -> list[PriceExtremes]:
    """List extremes rows, most recently updated first."""
    params: list[Any] = []
    where = ""
    if market_id:
        where = " WHERE condition_id = ?"
        params.append(market_id)
    params.append(limit)
    rows = conn.execute(
        _SELECT_EXTREMES + where + " ORDER BY last_updated DESC, condition_id, token_id LIMIT ?",
        params,
    ).fetchall()
    return [_row_to_extremes(r) for r in rows]


def get_price_history(
    conn: DuckDBPyConnection,
    token_id: str,
    market_id: str | None = None,
    start_ts: int | None = None,
    end_ts: int | None = None,
    limit: int | None = None,
) -> list[PriceObservation]:
    """Return stored observations for a token in timestamp order, optionally bounded in time."""
    conditions = ["token_id = ?"]
    params: list[Any] = [token_id]
    if market_id:
        conditions.append("condition_id = ?")
        params.append(market_id)
    if start_ts is not None:
        conditions.append("timestamp >= ?")
        params.append(start_ts)
    if end_ts is not None:
        conditions.append("timestamp <= ?")
        params.append(end_ts)
    sql = (
        "SELECT condition_id, token_id, outcome, price, timestamp, source FROM market_prices "
        f"WHERE {' AND '.join(conditions)} ORDER BY timestamp ASC, id ASC"
    )
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    rows = conn.execute(sql, params).fetchall()
    return [
        PriceObservation(
            market_id=r[0], token_id=r[1], outcome=r[2], price=r[3], timestamp=r[4], source=r[5]
        )
        for r in rows
    ]


def price_stats(conn: DuckDBPyConnection) -> dict[str, Any]:
    """Return price table statistics: counts, time range, rows per source and top markets."""
    total, min_ts, max_ts, tokens = conn.execute(
        "SELECT COUNT(*), MIN(timestamp), MAX(timestamp), COUNT(DISTINCT token_id) FROM market_prices"
    ).fetchone()
    extremes_count = conn.execute("SELECT COUNT(*) FROM market_price_extremes").fetchone()[0]
    by_source = conn.execute(
        "SELECT source, COUNT(*) FROM market_prices GROUP BY source ORDER BY source"
    ).fetchall()
    by_market = conn.execute(
        "SELECT condition_id, COUNT(*) AS cnt FROM market_prices GROUP BY condition_id ORDER BY cnt DESC LIMIT 20"
    ).fetchall()
    return {
        "total_prices": total,
        "distinct_tokens": tokens,
        "extremes_rows": extremes_count,
        "min_timestamp": min_ts,
        "max_timestamp": max_ts,
        "by_source": {r[0]: r[1] for r in by_source},
        "by_market": [{"market_id": r[0], "count": r[1]} for r in by_market],
    }
