"""Export the price time series to Parquet."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

_EXPORT_COLUMNS = "condition_id, token_id, outcome, price, timestamp, source, created_at"


def export_prices_to_parquet(
    conn: DuckDBPyConnection,
    output_path: str | Path,
    market_id: str | None = None,
) -> int:
    """Export market_prices to a Parquet file in timestamp order. Optional filter by market_id. Returns row count."""
    path = Path(output_path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    path_str = str(path).replace("'", "''")
    if market_id:
        conn.execute(
            f"COPY (SELECT {_EXPORT_COLUMNS} FROM market_prices WHERE condition_id = ? "
            f"ORDER BY timestamp, id) TO '{path_str}' (FORMAT PARQUET)",
            [market_id],
        )
        count = conn.execute(
            "SELECT COUNT(*) FROM market_prices WHERE condition_id = ?", [market_id]
        ).fetchone()[0]
    else:
        conn.execute(
            f"COPY (SELECT {_EXPORT_COLUMNS} FROM market_prices ORDER BY timestamp, id) TO '{path_str}' (FORMAT PARQUET)",
        )
        count = conn.execute("SELECT COUNT(*) FROM market_prices").fetchone()[0]
    return count
