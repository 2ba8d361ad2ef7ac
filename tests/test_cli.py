"""CLI smoke tests against a temp database."""

import asyncio
import os
import signal
import sys

import duckdb
import pytest
from typer.testing import CliRunner

from conftest import obs
from predprices.cli.app import app
from predprices.cli.collect import _install_signal_handlers
from predprices.config.settings import DB_PATH_ENV
from predprices.ingestion.manager import CollectionManager
from predprices.storage.db import get_connection, init_schema
from predprices.storage.prices import write_batch

runner = CliRunner()


@pytest.fixture(autouse=True)
def _plain_logging(monkeypatch):
    # Cached structlog loggers would keep a handle on the first runner's stdout
    monkeypatch.setattr("predprices.cli.app.configure_logging", lambda settings: None)


def test_collect_once_with_empty_catalog(tmp_path, monkeypatch):
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "cli.duckdb"))
    result = runner.invoke(app, ["collect", "once"])
    assert result.exit_code == 0, result.output
    assert "Games processed: 0" in result.output
    assert "Prices stored: 0" in result.output


def test_prices_and_maintain_commands(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.duckdb"
    monkeypatch.setenv(DB_PATH_ENV, str(db_path))
    conn = get_connection(db_path)
    init_schema(conn)
    write_batch(conn, [obs(0.3, 1000), obs(0.6, 2000, token_id="t2")])
    conn.close()

    result = runner.invoke(app, ["prices", "stats"])
    assert result.exit_code == 0, result.output
    assert "Total prices: 2" in result.output

    result = runner.invoke(app, ["prices", "history", "--token", "t1"])
    assert result.exit_code == 0, result.output
    assert "Total: 1 prices" in result.output

    result = runner.invoke(app, ["maintain", "rebuild-extremes"])
    assert result.exit_code == 0, result.output
    assert "Rebuilt extremes for 2 outcomes." in result.output

    out = tmp_path / "export" / "prices.parquet"
    result = runner.invoke(app, ["prices", "export", "--output", str(out)])
    assert result.exit_code == 0, result.output
    assert out.exists()


def test_collect_once_exits_1_and_releases_resources_on_failure(tmp_path, monkeypatch):
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "cli.duckdb"))

    def broken_catalog(*args, **kwargs):
        raise duckdb.Error("catalog unavailable")

    closed = []
    real_aclose = CollectionManager.aclose

    async def tracking_aclose(self):
        closed.append(self)
        await real_aclose(self)

    monkeypatch.setattr("predprices.ingestion.collector.get_trackable_games", broken_catalog)
    monkeypatch.setattr(CollectionManager, "aclose", tracking_aclose)

    result = runner.invoke(app, ["collect", "once"])

    assert result.exit_code == 1
    assert "Games processed" not in result.output
    assert len(closed) == 1
    assert closed[0]._conn is None and closed[0]._client is None


@pytest.mark.skipif(sys.platform == "win32", reason="loop signal handlers are unix-only")
def test_sigterm_sets_stop_event():
    loop = asyncio.new_event_loop()
    stop_event = asyncio.Event()
    try:
        _install_signal_handlers(loop, stop_event)

        async def wait_for_stop():
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(stop_event.wait(), timeout=2)

        loop.run_until_complete(wait_for_stop())
        assert stop_event.is_set()
    finally:
        loop.close()
