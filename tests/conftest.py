"""Shared fixtures: temp DuckDB with schema, catalog and observation builders."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from predprices.models import PriceObservation
from predprices.storage.db import get_connection, init_schema

NOW = 1_760_000_000_000  # fixed ms epoch used as "now"
MINUTE = 60_000
HOUR = 60 * MINUTE


@pytest.fixture
def temp_db(tmp_path: Path):
    conn = get_connection(tmp_path / "test.duckdb")
    init_schema(conn)
    yield conn
    conn.close()


def market(condition_id, outcomes, market_type="moneyline", question="Who wins?"):
    """Catalog market dict in the shape the discovery job stores."""
    return {
        "conditionId": condition_id,
        "sportsMarketType": market_type,
        "question": question,
        "outcomes": [{"title": label, "tokenID": token} for label, token in outcomes],
    }


def insert_game(conn, game_id, start, end=None, closed=False, markets=None, title=None):
    conn.execute(
        "INSERT INTO games (id, title, start_date, end_date, closed, markets) VALUES (?, ?, ?, ?, ?, ?)",
        [game_id, title or f"Game {game_id}", start, end, closed, json.dumps(markets or [])],
    )


def obs(price, ts, market_id="0xm1", token_id="t1", outcome="Yes", source="rest"):
    return PriceObservation(
        market_id=market_id,
        token_id=token_id,
        outcome=outcome,
        price=Decimal(str(price)),
        timestamp=ts,
        source=source,
    )
