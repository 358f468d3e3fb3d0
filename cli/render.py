from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

import typer

from app.schemas import Reading, SensorInfo
from models.records import BloodSugarEntry, LogEntry
from sync.status import ConnectionStatus

TREND_SYMBOLS = {1: "↓↓", 2: "↓", 3: "→", 4: "↑", 5: "↑↑"}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def _render_sensor(sensor: Optional[SensorInfo]) -> None:
    typer.echo()
    echo_heading("Sensor")
    if sensor is None:
        typer.echo("No sensor information.")
        return
    echo_key_values(
        [
            ("serial", sensor.serial or "-"),
            ("state", sensor.label),
            ("started", sensor.start_date.isoformat()),
            ("ends", sensor.end_date.isoformat()),
            ("days_left", sensor.days_left),
        ]
    )


def render_reading(reading: Optional[Reading]) -> None:
    echo_heading("Latest Reading")
    if reading is None:
        typer.echo("No reading available.")
        return
    value = "-" if reading.value is None else f"{reading.value:g} mg/dL"
    echo_key_values(
        [
            ("value", value),
            ("timestamp", reading.timestamp.isoformat()),
            ("trend", TREND_SYMBOLS.get(reading.trend_arrow or 0, "-")),
        ]
    )
    _render_sensor(reading.sensor)


def render_status(status: ConnectionStatus) -> None:
    echo_heading("Connection")
    echo_key_values(
        [
            ("status", status.state.value),
            ("simulated", status.simulated),
            ("last_sync", status.last_sync.isoformat() if status.last_sync else "never"),
        ]
    )
    _render_sensor(status.sensor)


def render_entries(entries: Sequence[LogEntry]) -> None:
    echo_heading("Glucose Log")
    if not entries:
        typer.echo("No entries recorded.")
        return
    for entry in entries:
        if isinstance(entry, BloodSugarEntry):
            trend = TREND_SYMBOLS.get(entry.trend_arrow or 0, "")
            typer.echo(
                f"  - {entry.timestamp.isoformat()} {entry.value:g} mg/dL {trend} ({entry.measurement_type.value})"
            )
        else:
            typer.echo(f"  - {entry.timestamp.isoformat()} {entry.kind}")
