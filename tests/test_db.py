"""Schema creation on fresh and existing databases."""

from predprices.storage.db import SCHEMA_SQL, _schema_statements, get_connection, init_schema


def _tables(conn):
    rows = conn.execute(
        "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main' ORDER BY table_name"
    ).fetchall()
    return [r[0] for r in rows]


def test_init_schema_on_fresh_file_is_repeatable(tmp_path):
    conn = get_connection(tmp_path / "fresh.duckdb")
    try:
        init_schema(conn)
        init_schema(conn)
        assert _tables(conn) == ["games", "market_price_extremes", "market_prices"]
    finally:
        conn.close()


def test_schema_statements_ignore_semicolons_in_comments():
    sql = "-- a; b\nCREATE TABLE x (id INTEGER);\n  -- trailing; note\nCREATE TABLE y (id INTEGER);"
    assert _schema_statements(sql) == ["CREATE TABLE x (id INTEGER)", "CREATE TABLE y (id INTEGER)"]
    assert not any(s.startswith("--") or "read-only" in s for s in _schema_statements(SCHEMA_SQL))
