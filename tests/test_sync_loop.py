"""Tests for the periodic sync loop."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import pytest

from app.schemas import Reading, SensorInfo, SensorState
from datastore.glucose_log import GlucoseLog
from datastore.kv_store import JsonKeyValueStore
from services.errors import GatewayTimeout, SessionExpired, UpstreamError
from sync.alerts import ThresholdAlerts
from sync.loop import SyncLoop, TickOutcome
from sync.simulated import SimulatedSource
from sync.state import LiveCell
from sync.status import ConnectionState, StatusMachine

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class StubSource:
    def __init__(self) -> None:
        self.reading: Optional[Reading] = None
        self.error: Optional[Exception] = None
        self.on_read: Optional[Callable[[], None]] = None
        self.reads: List[Optional[str]] = []
        self.disconnected: List[str] = []

    def connect(self, email, password, region) -> str:
        return "session-1"

    def read(self, session_id: Optional[str]) -> Optional[Reading]:
        self.reads.append(session_id)
        if self.on_read is not None:
            self.on_read()
        if self.error is not None:
            raise self.error
        return self.reading

    def disconnect(self, session_id: str) -> None:
        self.disconnected.append(session_id)


class RecordingSink:
    def __init__(self) -> None:
        self.alerts: List[tuple[str, str]] = []

    def notify(self, severity: str, message: str) -> None:
        self.alerts.append((severity, message))


def _connected_status() -> StatusMachine:
    status = StatusMachine()
    status.request_connect()
    status.login_succeeded()
    return status


def _loop(source: StubSource, session: Optional[str] = "session-1", **kwargs) -> SyncLoop:
    return SyncLoop(
        source=source,
        log=GlucoseLog(JsonKeyValueStore(name="client")),
        status=kwargs.pop("status", None) or _connected_status(),
        session=LiveCell(session),
        profile=LiveCell("profile-1"),
        clock=lambda: NOW,
        **kwargs,
    )


def _sensor() -> SensorInfo:
    return SensorInfo(
        serial="SN1",
        start_date=NOW - timedelta(days=10),
        end_date=NOW + timedelta(days=4),
        days_left=4,
        state=SensorState.active,
        label="active",
    )


def test_tick_without_session_is_a_no_op() -> None:
    source = StubSource()
    loop = _loop(source, session=None)

    assert loop.tick() is TickOutcome.skipped
    assert source.reads == []


def test_tick_appends_reading_and_updates_status() -> None:
    source = StubSource()
    source.reading = Reading(value=110, timestamp=NOW, trend_arrow=3, sensor=_sensor())
    loop = _loop(source)

    assert loop.tick() is TickOutcome.appended

    entries = loop.log.entries("profile-1")
    assert len(entries) == 1
    assert entries[0].value == 110
    snapshot = loop.status.snapshot()
    assert snapshot.last_sync == NOW
    assert snapshot.sensor is not None
    assert snapshot.sensor.days_left == 4


def test_polling_unchanged_reading_is_idempotent() -> None:
    source = StubSource()
    source.reading = Reading(value=110, timestamp=NOW)
    loop = _loop(source)

    outcomes = [loop.tick() for _ in range(5)]

    assert outcomes[0] is TickOutcome.appended
    assert set(outcomes[1:]) == {TickOutcome.duplicate}
    assert len(loop.log) == 1


def test_warm_up_reading_updates_sensor_without_log_entry() -> None:
    source = StubSource()
    source.reading = Reading(value=None, timestamp=NOW, sensor=_sensor())
    loop = _loop(source)

    assert loop.tick() is TickOutcome.no_data
    assert len(loop.log) == 0
    assert loop.status.snapshot().sensor is not None
    assert loop.status.snapshot().last_sync is None


def test_session_expiry_forces_disconnect() -> None:
    source = StubSource()
    source.error = SessionExpired("401")
    loop = _loop(source)

    assert loop.tick() is TickOutcome.expired

    assert loop.session.get() is None
    assert loop.status.state is ConnectionState.disconnected
    assert source.disconnected == ["session-1"]


@pytest.mark.parametrize("error", [GatewayTimeout("slow"), UpstreamError("boom")])
def test_other_failures_abandon_tick_silently(error: Exception) -> None:
    source = StubSource()
    source.error = error
    loop = _loop(source)

    assert loop.tick() is TickOutcome.failed

    assert loop.session.get() == "session-1"
    assert loop.status.state is ConnectionState.connected


def test_reconnect_during_tick_discards_stale_result() -> None:
    source = StubSource()
    source.reading = Reading(value=110, timestamp=NOW)
    loop = _loop(source)
    source.on_read = lambda: loop.session.set("session-2")

    assert loop.tick() is TickOutcome.stale
    assert len(loop.log) == 0


def test_stale_expiry_does_not_tear_down_new_session() -> None:
    source = StubSource()
    source.error = SessionExpired("401")
    loop = _loop(source)
    source.on_read = lambda: loop.session.set("session-2")

    assert loop.tick() is TickOutcome.stale
    assert loop.session.get() == "session-2"
    assert loop.status.state is ConnectionState.connected


def test_overlapping_tick_is_suppressed() -> None:
    source = StubSource()
    source.reading = Reading(value=110, timestamp=NOW)
    loop = _loop(source)
    nested: List[TickOutcome] = []
    source.on_read = lambda: nested.append(loop.tick())

    assert loop.tick() is TickOutcome.appended
    assert nested == [TickOutcome.busy]


def test_out_of_range_reading_raises_alert() -> None:
    source = StubSource()
    source.reading = Reading(value=62, timestamp=NOW)
    sink = RecordingSink()
    loop = _loop(source, alerts=ThresholdAlerts(sink=sink, low=70, high=180))

    loop.tick()
    loop.tick()

    assert [severity for severity, _ in sink.alerts] == ["low"]


def test_simulated_status_reads_from_simulated_source() -> None:
    source = StubSource()
    status = StatusMachine()
    status.request_connect()
    status.login_succeeded(simulated=True)
    loop = _loop(
        source,
        session=None,
        status=status,
        simulated_source=SimulatedSource(seed=1, clock=lambda: NOW),
    )

    assert loop.tick() is TickOutcome.appended
    assert source.reads == []
    assert len(loop.log) == 1


def test_started_loop_keeps_ticking_until_stopped() -> None:
    source = StubSource()
    ticked = threading.Event()

    def on_read() -> None:
        if len(source.reads) >= 3:
            ticked.set()

    source.on_read = on_read
    loop = _loop(source, interval=0.01)

    loop.start()
    try:
        assert ticked.wait(timeout=5)
    finally:
        loop.stop(timeout=5)

    assert not loop.running
