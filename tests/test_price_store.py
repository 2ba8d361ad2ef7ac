"""Price store: idempotent batch writes and incremental extremes."""

import itertools
from decimal import Decimal

import duckdb
import pytest
from pydantic import ValidationError

from conftest import obs
from predprices.models import PriceObservation, PriceSource
from predprices.storage.db import get_connection, init_schema
from predprices.storage.prices import (
    DuplicateObservationError,
    get_extremes,
    get_price_history,
    price_stats,
    write_batch,
)


def _all_prices(conn):
    return conn.execute(
        "SELECT condition_id, token_id, outcome, price, timestamp, source FROM market_prices ORDER BY id"
    ).fetchall()


def test_empty_batch_is_noop(temp_db):
    assert write_batch(temp_db, []) == 0
    assert _all_prices(temp_db) == []


def test_first_observation_creates_extremes(temp_db):
    inserted = write_batch(temp_db, [obs(0.42, 1000)], now_ms=5000)
    assert inserted == 1
    ex = get_extremes(temp_db, "0xm1", "t1")
    assert ex is not None
    assert ex.lowest_price == ex.highest_price == ex.current_price == Decimal("0.42")
    assert ex.lowest_price_ts == ex.highest_price_ts == ex.current_price_ts == 1000
    assert ex.first_recorded == 1000
    assert ex.last_updated == 5000
    assert ex.outcome == "Yes"


def test_write_batch_twice_is_idempotent(temp_db):
    batch = [
        obs(0.3, 1000, token_id="a"),
        obs(0.7, 1000, token_id="b"),
    ]
    assert write_batch(temp_db, batch) == 2
    rows_after_first = _all_prices(temp_db)
    extremes_after_first = get_extremes(temp_db, "0xm1", "a")

    assert write_batch(temp_db, batch) == 0
    assert _all_prices(temp_db) == rows_after_first
    again = get_extremes(temp_db, "0xm1", "a")
    # Skipped rows do not touch extremes, not even last_updated
    assert again == extremes_after_first


def test_partial_conflict_only_inserts_new_rows(temp_db):
    write_batch(temp_db, [obs(0.5, 1000, token_id="a")])
    # Key "a" at ts 1000 already exists; the differing price is ignored
    inserted = write_batch(temp_db, [obs(0.9, 1000, token_id="a"), obs(0.2, 1000, token_id="b")])
    assert inserted == 1
    assert get_extremes(temp_db, "0xm1", "a").highest_price == Decimal("0.5")
    assert get_extremes(temp_db, "0xm1", "b").current_price == Decimal("0.2")
    assert len(_all_prices(temp_db)) == 2


@pytest.mark.parametrize("order", list(itertools.permutations([0.45, 0.2, 0.8, 0.5])))
def test_extremes_match_min_max_for_any_insertion_order(order):
    conn = get_connection(":memory:")
    init_schema(conn)
    try:
        for i, price in enumerate(order):
            write_batch(conn, [obs(price, 1000 + i)])
        ex = get_extremes(conn, "0xm1", "t1")
        assert ex.lowest_price == Decimal("0.2")
        assert ex.highest_price == Decimal("0.8")
        assert ex.current_price == Decimal(str(order[-1]))
        assert ex.current_price_ts == 1000 + len(order) - 1
        assert ex.lowest_price_ts == 1000 + order.index(0.2)
        assert ex.highest_price_ts == 1000 + order.index(0.8)
        assert ex.lowest_price <= ex.current_price <= ex.highest_price
    finally:
        conn.close()


def test_current_follows_insertion_order_not_timestamp(temp_db):
    write_batch(temp_db, [obs(0.6, 2000)])
    write_batch(temp_db, [obs(0.4, 1000)])  # older sample delivered late
    ex = get_extremes(temp_db, "0xm1", "t1")
    assert ex.current_price == Decimal("0.4")
    assert ex.current_price_ts == 1000
    assert ex.first_recorded == 1000


def test_ties_keep_first_extreme_timestamp(temp_db):
    write_batch(temp_db, [obs(0.5, 1000)])
    write_batch(temp_db, [obs(0.5, 2000)])
    ex = get_extremes(temp_db, "0xm1", "t1")
    assert ex.lowest_price_ts == 1000
    assert ex.highest_price_ts == 1000
    assert ex.current_price_ts == 2000


def test_null_outcome_does_not_erase_label(temp_db):
    write_batch(temp_db, [obs(0.5, 1000, outcome="Lakers")])
    write_batch(temp_db, [obs(0.6, 2000, outcome=None)])
    assert get_extremes(temp_db, "0xm1", "t1").outcome == "Lakers"


def test_duplicate_key_in_batch_is_rejected(temp_db):
    batch = [obs(0.3, 1000), obs(0.4, 2000)]
    with pytest.raises(DuplicateObservationError) as exc:
        write_batch(temp_db, batch)
    assert exc.value.keys == [("0xm1", "t1")]
    assert _all_prices(temp_db) == []


@pytest.mark.parametrize("price", ["1.5", "-0.01", "NaN"])
def test_out_of_range_price_is_rejected_by_model(price):
    with pytest.raises(ValidationError):
        PriceObservation(market_id="0xm1", token_id="t1", price=Decimal(price), timestamp=1)


def test_boundary_prices_are_accepted(temp_db):
    write_batch(temp_db, [obs(0, 1000, token_id="a"), obs(1, 1000, token_id="b")])
    assert get_extremes(temp_db, "0xm1", "a").current_price == Decimal("0")
    assert get_extremes(temp_db, "0xm1", "b").current_price == Decimal("1")


def test_failed_batch_rolls_back_prices_and_extremes(temp_db):
    good = obs(0.5, 1000, token_id="a")
    # Bypass model validation to hit the table CHECK constraint
    bad = PriceObservation.model_construct(
        market_id="0xm1",
        token_id="b",
        outcome=None,
        price=Decimal("1.5"),
        timestamp=1000,
        source=PriceSource.REST,
    )
    with pytest.raises(duckdb.Error):
        write_batch(temp_db, [good, bad])
    assert _all_prices(temp_db) == []
    assert get_extremes(temp_db, "0xm1", "a") is None
    # Connection is still usable after the rollback
    assert write_batch(temp_db, [good]) == 1


def test_price_history_and_stats(temp_db):
    write_batch(temp_db, [obs(0.3, 1000), obs(0.6, 1000, token_id="t2")])
    write_batch(temp_db, [obs(0.35, 2000)])
    write_batch(temp_db, [obs(0.4, 3000, source="backfill")])
    history = get_price_history(temp_db, "t1")
    assert [o.price for o in history] == [Decimal("0.3"), Decimal("0.35"), Decimal("0.4")]
    assert history[-1].source is PriceSource.BACKFILL
    window = get_price_history(temp_db, "t1", start_ts=1500, end_ts=2500)
    assert [o.timestamp for o in window] == [2000]

    s = price_stats(temp_db)
    assert s["total_prices"] == 4
    assert s["distinct_tokens"] == 2
    assert s["extremes_rows"] == 2
    assert s["min_timestamp"] == 1000
    assert s["max_timestamp"] == 3000
    assert s["by_source"] == {"backfill": 1, "rest": 3}


def test_stored_price_equals_observed_price(temp_db):
    with pytest.raises(ValidationError):
        PriceObservation(market_id="0xm1", token_id="t1", price=Decimal("0.123456789"), timestamp=1)
    write_batch(temp_db, [obs("0.12345678", 1000)])
    stored = temp_db.execute("SELECT price FROM market_prices").fetchone()[0]
    assert stored == Decimal("0.12345678")
    assert get_price_history(temp_db, "t1")[0].price == obs("0.12345678", 1000).price
