"""Maintain subcommand: rebuild-extremes, prune-extremes, backfill-outcomes, repair-condition-ids."""

from __future__ import annotations

import typer

from predprices.storage.db import get_connection, init_schema
from predprices.storage.maintenance import (
    backfill_null_outcomes,
    delete_orphaned_extremes,
    rebuild_extremes,
    repair_condition_ids,
)

app = typer.Typer(help="Repair derived price data")


@app.command("rebuild-extremes")
def rebuild(ctx: typer.Context) -> None:
    """Recompute market_price_extremes from the full price series."""
    conn = get_connection(ctx.obj["settings"].db_path)
    init_schema(conn)
    try:
        n = rebuild_extremes(conn)
        typer.echo(f"Rebuilt extremes for {n} outcomes.")
    finally:
        conn.close()


@app.command("prune-extremes")
def prune(ctx: typer.Context) -> None:
    """Delete extremes rows that have no stored prices."""
    conn = get_connection(ctx.obj["settings"].db_path)
    init_schema(conn)
    try:
        n = delete_orphaned_extremes(conn)
        typer.echo(f"Deleted {n} orphaned extremes rows.")
    finally:
        conn.close()


@app.command("backfill-outcomes")
def backfill(ctx: typer.Context) -> None:
    """Fill missing outcome labels from the game catalog."""
    conn = get_connection(ctx.obj["settings"].db_path)
    init_schema(conn)
    try:
        fixed = backfill_null_outcomes(conn)
        for table, count in fixed.items():
            typer.echo(f"{table}: {count} rows updated")
    finally:
        conn.close()


@app.command("repair-condition-ids")
def repair(
    ctx: typer.Context,
    delete_unmapped: bool = typer.Option(
        False, "--delete-unmapped", help="Delete rows whose token has no known condition id"
    ),
) -> None:
    """Move prices stored under old game ids onto their 0x condition ids."""
    conn = get_connection(ctx.obj["settings"].db_path)
    init_schema(conn)
    try:
        result = repair_condition_ids(conn, delete_unmapped=delete_unmapped)
        for name, count in result.items():
            typer.echo(f"{name}: {count}")
    finally:
        conn.close()
