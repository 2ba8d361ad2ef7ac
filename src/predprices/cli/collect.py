"""Collect subcommand: once, start."""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog
import typer

from predprices.ingestion.manager import CollectionManager

app = typer.Typer(help="Run price collection once or on the adaptive schedule")

log = structlog.get_logger(__name__)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event) -> None:
    """SIGINT/SIGTERM set stop_event so the pass or loop winds down and resources get released."""

    def shutdown(signame: str) -> None:
        log.info("shutdown_requested", signal=signame)
        stop_event.set()

    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, shutdown, "SIGINT")
        loop.add_signal_handler(signal.SIGTERM, shutdown, "SIGTERM")


@app.command("once")
def once(ctx: typer.Context) -> None:
    """Run a single collection pass and exit (exit code 1 if the pass fails)."""
    settings = ctx.obj["settings"]
    manager = CollectionManager.from_settings(settings)
    stop_event = asyncio.Event()
    loop = asyncio.new_event_loop()
    _install_signal_handlers(loop, stop_event)
    summary = None
    try:
        summary = loop.run_until_complete(manager.run_once(stop_event))
    except KeyboardInterrupt:
        log.info("collection_interrupted")
    except Exception:
        log.exception("collection_failed")
    finally:
        loop.run_until_complete(manager.aclose())
        loop.close()
    if summary is None:
        raise typer.Exit(1)
    typer.echo(f"Games processed: {summary.games_processed}")
    typer.echo(f"API requests: {summary.request_count}")
    typer.echo(f"Successful: {summary.success_count}")
    typer.echo(f"Failed: {summary.failure_count}")
    typer.echo(f"Prices stored: {summary.price_records_stored}")


@app.command("start")
def start(
    ctx: typer.Context,
    cycles: int | None = typer.Option(None, "--cycles", "-n", help="Stop after N cycles (default: run forever)"),
) -> None:
    """Run collection forever: 2 min cadence around live games, 10 min otherwise."""
    settings = ctx.obj["settings"]
    manager = CollectionManager.from_settings(settings)
    stop_event = asyncio.Event()
    loop = asyncio.new_event_loop()
    _install_signal_handlers(loop, stop_event)
    exit_code = 0
    try:
        typer.echo("Starting price collection (Ctrl+C to stop)...")
        loop.run_until_complete(manager.run_forever(stop_event, max_cycles=cycles))
    except KeyboardInterrupt:
        pass
    except Exception:
        log.exception("fatal_error")
        exit_code = 1
    finally:
        loop.run_until_complete(manager.aclose())
        loop.close()
    if exit_code:
        raise typer.Exit(exit_code)
    typer.echo("Stopped.")
