"""DuckDB connection and schema init."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

SCHEMA_SQL = """
-- Sequences for auto-increment IDs
CREATE SEQUENCE IF NOT EXISTS price_seq START 1;
CREATE SEQUENCE IF NOT EXISTS extremes_seq START 1;

-- Game catalog, maintained by the discovery job and read-only here. Times are ms epoch.
CREATE TABLE IF NOT EXISTS games (
    id              VARCHAR PRIMARY KEY,
    title           VARCHAR,
    start_date      BIGINT NOT NULL,
    end_date        BIGINT,
    closed          BOOLEAN NOT NULL DEFAULT FALSE,
    markets         JSON
);

-- Price time series, one row per (market, outcome token, sample time)
CREATE TABLE IF NOT EXISTS market_prices (
    id              BIGINT PRIMARY KEY DEFAULT nextval('price_seq'),
    condition_id    VARCHAR NOT NULL,
    token_id        VARCHAR NOT NULL,
    outcome         VARCHAR,
    price           DECIMAL(18, 8) NOT NULL CHECK (price >= 0 AND price <= 1),
    timestamp       BIGINT NOT NULL,
    source          VARCHAR NOT NULL DEFAULT 'rest',
    created_at      BIGINT,
    UNIQUE (condition_id, token_id, timestamp)
);

CREATE INDEX IF NOT EXISTS idx_market_prices_token ON market_prices (token_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_market_prices_timestamp ON market_prices (timestamp);

-- Derived lowest/highest/current per outcome token, maintained by storage.prices.write_batch
CREATE TABLE IF NOT EXISTS market_price_extremes (
    id                      BIGINT PRIMARY KEY DEFAULT nextval('extremes_seq'),
    condition_id            VARCHAR NOT NULL,
    token_id                VARCHAR NOT NULL,
    outcome                 VARCHAR,
    lowest_price            DECIMAL(18, 8),
    lowest_price_timestamp  BIGINT,
    highest_price           DECIMAL(18, 8),
    highest_price_timestamp BIGINT,
    current_price           DECIMAL(18, 8),
    current_price_timestamp BIGINT,
    first_recorded          BIGINT,
    last_updated            BIGINT,
    UNIQUE (condition_id, token_id)
);
"""


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    Use read_only=True for reporting commands while a collector holds the write lock."""
    path = Path(db_path)
    if not read_only and str(db_path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(db_path), read_only=read_only)


def _schema_statements(sql: str) -> list[str]:
    """Split on ';' after dropping full-line '--' comments."""
    body = "\n".join(line for line in sql.splitlines() if not line.lstrip().startswith("--"))
    return [stmt.strip() for stmt in body.split(";") if stmt.strip()]


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables, indexes and sequences if they do not exist."""
    for stmt in _schema_statements(SCHEMA_SQL):
        try:
            conn.execute(stmt)
        except duckdb.Error as e:
            if "already exists" not in str(e).lower():
                raise
