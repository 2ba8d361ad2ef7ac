"""Prices subcommand: extremes, history, stats, export."""

from __future__ import annotations

import typer

from predprices.storage.db import get_connection, init_schema
from predprices.storage.export import export_prices_to_parquet
from predprices.storage.prices import get_price_history, list_extremes, price_stats

app = typer.Typer(help="Inspect and export stored prices")


@app.command("extremes")
def extremes(
    ctx: typer.Context,
    market: str | None = typer.Option(None, "--market", "-m", help="Filter by market (condition) ID"),
    limit: int = typer.Option(50, "--limit", "-n", help="Max rows"),
) -> None:
    """Show lowest/highest/current price per outcome."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        rows = list_extremes(conn, market_id=market, limit=limit)
        for r in rows:
            label = (r.outcome or "?")[:24]
            typer.echo(
                f"  {r.market_id[:20]}...  {label:<24}  low {r.lowest_price:.4f}  "
                f"high {r.highest_price:.4f}  cur {r.current_price:.4f}"
            )
        typer.echo(f"Total: {len(rows)} outcomes")
    finally:
        conn.close()


@app.command("history")
def history(
    ctx: typer.Context,
    token: str = typer.Option(..., "--token", "-t", help="Outcome token ID"),
    start: int | None = typer.Option(None, "--start", help="Start time (ms epoch)"),
    end: int | None = typer.Option(None, "--end", help="End time (ms epoch)"),
    limit: int = typer.Option(100, "--limit", "-n", help="Max rows"),
) -> None:
    """Print the stored price series for one outcome token."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        series = get_price_history(conn, token, start_ts=start, end_ts=end, limit=limit)
        for obs in series:
            typer.echo(f"  {obs.timestamp}  {obs.price}  {obs.source.value}")
        typer.echo(f"Total: {len(series)} prices")
    finally:
        conn.close()


@app.command("stats")
def stats(ctx: typer.Context) -> None:
    """Show price table statistics (counts, time range, by source and market)."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        s = price_stats(conn)
        typer.echo(f"Total prices: {s['total_prices']}")
        typer.echo(f"Distinct tokens: {s['distinct_tokens']}")
        typer.echo(f"Extremes rows: {s['extremes_rows']}")
        typer.echo(f"Time range: {s.get('min_timestamp')} - {s.get('max_timestamp')} (ms)")
        for source, count in s["by_source"].items():
            typer.echo(f"  source={source}  {count}")
        if s.get("by_market"):
            typer.echo("By market (top 20):")
            for row in s["by_market"]:
                typer.echo(f"  {row['market_id']}  {row['count']}")
    finally:
        conn.close()


@app.command("export")
def export(
    ctx: typer.Context,
    market: str | None = typer.Option(None, "--market", "-m", help="Filter by market (condition) ID"),
    output: str = typer.Option("prices.parquet", "--output", "-o", help="Output path"),
) -> None:
    """Export the price series to Parquet."""
    settings = ctx.obj["settings"]
    conn = get_connection(settings.db_path)
    init_schema(conn)
    try:
        count = export_prices_to_parquet(conn, output, market_id=market)
        typer.echo(f"Exported {count} prices to {output}")
    finally:
        conn.close()
