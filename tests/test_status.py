"""Tests for the connection status state machine."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.schemas import SensorInfo, SensorState
from datastore.kv_store import JsonKeyValueStore
from services.errors import InvalidTransition
from sync.status import STATUS_KEY, ConnectionState, StatusMachine


def _machine_in(state: ConnectionState) -> StatusMachine:
    machine = StatusMachine()
    if state is ConnectionState.disconnected:
        return machine
    machine.request_connect()
    if state is ConnectionState.connected:
        machine.login_succeeded()
    elif state is ConnectionState.error:
        machine.connect_failed()
    return machine


def test_initial_state_is_disconnected() -> None:
    assert StatusMachine().state is ConnectionState.disconnected


def test_successful_connect_path() -> None:
    machine = StatusMachine()

    machine.request_connect()
    assert machine.state is ConnectionState.connecting

    machine.login_succeeded()
    assert machine.state is ConnectionState.connected


def test_connect_failure_then_retry() -> None:
    machine = _machine_in(ConnectionState.error)

    machine.request_connect()

    assert machine.state is ConnectionState.connecting


@pytest.mark.parametrize(
    ("state", "event"),
    [
        (ConnectionState.connecting, "request_connect"),
        (ConnectionState.connected, "request_connect"),
        (ConnectionState.disconnected, "login_succeeded"),
        (ConnectionState.error, "login_succeeded"),
        (ConnectionState.connected, "login_succeeded"),
        (ConnectionState.disconnected, "connect_failed"),
        (ConnectionState.connected, "connect_failed"),
    ],
)
def test_undefined_transitions_are_rejected(state: ConnectionState, event: str) -> None:
    machine = _machine_in(state)

    with pytest.raises(InvalidTransition):
        getattr(machine, event)()

    assert machine.state is state


@pytest.mark.parametrize("state", list(ConnectionState))
def test_disconnect_is_allowed_from_any_state(state: ConnectionState) -> None:
    machine = _machine_in(state)

    machine.disconnect()

    assert machine.state is ConnectionState.disconnected


def test_session_expiry_while_connected_disconnects() -> None:
    machine = _machine_in(ConnectionState.connected)
    machine.record_sync(datetime(2024, 1, 1, tzinfo=timezone.utc), None)

    assert machine.session_expired() is ConnectionState.disconnected
    assert machine.snapshot().last_sync is None


def test_session_expiry_while_connecting_surfaces_error() -> None:
    machine = _machine_in(ConnectionState.connecting)

    assert machine.session_expired() is ConnectionState.error


@pytest.mark.parametrize("state", [ConnectionState.disconnected, ConnectionState.error])
def test_session_expiry_is_ignored_when_not_connected(state: ConnectionState) -> None:
    machine = _machine_in(state)

    assert machine.session_expired() is state


def test_only_error_or_disconnected_reachable_without_login() -> None:
    machine = StatusMachine()
    reachable = {machine.state}
    for event in ("request_connect", "connect_failed", "session_expired", "disconnect"):
        try:
            getattr(machine, event)()
        except InvalidTransition:
            pass
        reachable.add(machine.state)

    settled = reachable - {ConnectionState.connecting}
    assert settled <= {ConnectionState.disconnected, ConnectionState.error}


def test_record_sync_keeps_existing_values_for_none() -> None:
    machine = _machine_in(ConnectionState.connected)
    synced_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    machine.record_sync(synced_at, None)

    machine.record_sync(None, None)

    assert machine.snapshot().last_sync == synced_at


def test_status_is_persisted_and_connecting_restores_as_error() -> None:
    store = JsonKeyValueStore(name="client")
    machine = StatusMachine(store)
    machine.request_connect()

    assert store.get(STATUS_KEY)["state"] == "connecting"
    assert StatusMachine(store).state is ConnectionState.error


def test_simulated_flag_is_cleared_on_disconnect() -> None:
    machine = StatusMachine()
    machine.request_connect()
    machine.login_succeeded(simulated=True)
    assert machine.snapshot().simulated is True

    machine.disconnect()

    assert machine.snapshot().simulated is False


def test_sensor_info_survives_restart() -> None:
    store = JsonKeyValueStore(name="client")
    started = datetime(2024, 3, 1, tzinfo=timezone.utc)
    sensor = SensorInfo(
        serial="SN1",
        start_date=started,
        end_date=datetime(2024, 3, 15, tzinfo=timezone.utc),
        days_left=5,
        state=SensorState.active,
        label="active",
    )
    machine = StatusMachine(store)
    machine.request_connect()
    machine.login_succeeded()
    machine.record_sync(started, sensor)

    restored = StatusMachine(store).snapshot()

    assert restored.sensor == sensor
    assert restored.last_sync == started
