"""CollectionManager wiring and resource release."""

import asyncio
import json

import httpx
import pytest

from conftest import MINUTE, market
from predprices.clock import now_ms
from predprices.config.settings import Settings
from predprices.ingestion.clob import ClobPriceClient
from predprices.ingestion.manager import CollectionManager
from predprices.storage.db import get_connection, init_schema


def _seed(db_path):
    conn = get_connection(db_path)
    init_schema(conn)
    conn.execute(
        "INSERT INTO games (id, title, start_date, end_date, closed, markets) VALUES (?, ?, ?, ?, ?, ?)",
        ["g1", "Game", now_ms() - MINUTE, None, False, json.dumps([market("0xaaa", [("A", "t1")])])],
    )
    conn.close()


def _manager(db_path, handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = ClobPriceClient("https://clob.test", client=http)
    settings = Settings.from_dict({"storage": {"db_path": str(db_path)}})
    manager = CollectionManager.from_settings(settings, client=client, requests_per_minute=0, db_path=str(db_path))
    return manager, http


def test_run_once_and_close(tmp_path):
    db_path = tmp_path / "prices.duckdb"
    _seed(db_path)

    async def go():
        manager, http = _manager(db_path, lambda r: httpx.Response(200, json={"price": "0.5"}))
        try:
            return await manager.run_once(), manager
        finally:
            await manager.aclose()
            await http.aclose()

    summary, manager = asyncio.run(go())
    assert summary.price_records_stored == 1
    with pytest.raises(RuntimeError):
        manager.build_collector()

    conn = get_connection(db_path, read_only=True)
    try:
        assert conn.execute("SELECT COUNT(*) FROM market_prices").fetchone()[0] == 1
    finally:
        conn.close()


def test_aclose_is_idempotent(tmp_path):
    db_path = tmp_path / "prices.duckdb"

    async def go():
        manager, http = _manager(db_path, lambda r: httpx.Response(200, json={"price": "0.5"}))
        manager.build_collector()
        await manager.aclose()
        await manager.aclose()
        await http.aclose()
        return manager

    manager = asyncio.run(go())
    assert manager._conn is None


def test_run_forever_with_cycle_limit(tmp_path):
    db_path = tmp_path / "prices.duckdb"
    _seed(db_path)

    async def go():
        manager, http = _manager(db_path, lambda r: httpx.Response(200, json={"mid": "0.25"}))
        try:
            return await manager.run_forever(max_cycles=1)
        finally:
            await manager.aclose()
            await http.aclose()

    assert asyncio.run(go()) == 1
