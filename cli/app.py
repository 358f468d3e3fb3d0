from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from app.schemas import Region
from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_entries, render_reading, render_status
from datastore.glucose_log import GlucoseLog
from datastore.kv_store import JsonKeyValueStore
from logging_config import configure_logging
from services.errors import CgmSyncError, SessionExpired
from sync.alerts import LoggingAlertSink, ThresholdAlerts
from sync.controller import ConnectionController, message_for
from sync.loop import SyncLoop
from sync.simulated import SimulatedSource
from sync.state import LiveCell, StoredCell
from sync.status import StatusMachine

SESSION_KEY = "session_id"


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient
    log: GlucoseLog
    loop: SyncLoop
    controller: ConnectionController


app = typer.Typer(
    help="Connect to the CGM session service and keep the local glucose log in sync.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def build_state(config: CLIConfig, client: ApiClient) -> CLIState:
    store = JsonKeyValueStore(name="client", persistence_path=Path(config.state_path))
    log = GlucoseLog(store)
    loop = SyncLoop(
        source=client,
        log=log,
        status=StatusMachine(store),
        session=StoredCell(store, SESSION_KEY),
        profile=LiveCell(config.profile_id),
        alerts=ThresholdAlerts(
            sink=LoggingAlertSink(),
            low=config.target_low,
            high=config.target_high,
            enabled=config.alerts_enabled,
        ),
        simulated_source=SimulatedSource(),
        interval=config.sync_interval,
    )
    controller = ConnectionController(
        source=client, loop=loop, store=store, connect_timeout=config.connect_timeout
    )
    return CLIState(config=config, client=client, log=log, loop=loop, controller=controller)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Session service base URL (defaults to CGM_API_BASE_URL env or http://localhost:8000).",
    ),
    state_path: Optional[str] = typer.Option(
        None,
        "--state-path",
        help="Local store for the session marker, status and glucose log.",
    ),
    profile: Optional[str] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Profile that fetched readings are recorded under.",
    ),
    interval: Optional[float] = typer.Option(
        None,
        "--interval",
        help="Seconds between sync ticks.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(
        base_url=base_url,
        state_path=state_path,
        profile_id=profile,
        sync_interval=interval,
    )
    client = ApiClient(config)
    state = build_state(config, client)
    ctx.obj = state
    ctx.call_on_close(client.close)
    ctx.call_on_close(state.controller.shutdown)


@app.command("connect")
def connect_command(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Vendor account email."),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    region: Region = typer.Option(Region.EU, "--region", "-r", case_sensitive=False),
) -> None:
    """Log in through the session service and run the first sync."""
    state = _get_state(ctx)
    typer.echo(f"Connecting to {state.config.base_url} ({region.value}) ...")
    try:
        result = state.controller.connect(email, password, region)
    except CgmSyncError as exc:
        _fail(f"Connection status: {exc}")
        return
    if not result.ok:
        _fail(f"Connection status: {result.message}")
    color = typer.colors.YELLOW if result.simulated else typer.colors.GREEN
    typer.secho(f"Connection status: {result.message}", fg=color)


@app.command("disconnect")
def disconnect_command(ctx: typer.Context) -> None:
    """Close the session and reset the connection status."""
    state = _get_state(ctx)
    state.controller.disconnect()
    typer.echo("Disconnected.")


@app.command("read")
def read_command(ctx: typer.Context) -> None:
    """Fetch and display the latest reading without recording it."""
    state = _get_state(ctx)
    session_id = state.loop.session.get()
    if session_id is None:
        _fail("Not connected. Run 'connect' first.")
    try:
        reading = state.client.read(session_id)
    except SessionExpired:
        state.loop.handle_expired(session_id)
        _fail("Session expired. Connect again.")
        return
    except CgmSyncError as exc:
        _fail(message_for(exc))
        return
    render_reading(reading)


@app.command("sync")
def sync_command(
    ctx: typer.Context,
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit."),
) -> None:
    """Poll the session service and merge new readings into the log."""
    state = _get_state(ctx)
    if once:
        outcome = state.loop.tick()
        typer.echo(f"Sync outcome: {outcome.value}")
        return

    configure_logging()
    typer.echo(f"Syncing every {state.loop.interval:g}s (Ctrl+C to stop) ...")
    state.loop.start()
    try:
        state.loop.wait()
    except KeyboardInterrupt:
        typer.echo("Stopping.")
    finally:
        state.loop.stop()


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show the connection status, last sync and sensor wear-life."""
    state = _get_state(ctx)
    render_status(state.loop.status.snapshot())


@app.command("log")
def log_command(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", min=1, help="Number of entries to show."),
) -> None:
    """List the most recent log entries of the active profile."""
    state = _get_state(ctx)
    render_entries(state.log.entries(state.config.profile_id)[:limit])


@app.command("simulate")
def simulate_command(
    ctx: typer.Context,
    enable: bool = typer.Option(True, "--enable/--disable", help="Fall back to simulated readings on connect timeouts."),
) -> None:
    """Toggle the simulated-mode fallback for connect timeouts."""
    state = _get_state(ctx)
    state.controller.set_fallback(enable)
    typer.echo(f"Simulated fallback {'enabled' if enable else 'disabled'}.")
