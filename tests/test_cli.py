from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import pytest
from typer.testing import CliRunner

from app.schemas import Reading, Region
from cli.app import app
from services.errors import AuthError, GatewayTimeout, SessionExpired

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class StubClient:
    def __init__(self, config) -> None:
        self.config = config
        self.reading: Optional[Reading] = Reading(value=110, timestamp=NOW, trend_arrow=3)
        self.connect_error: Optional[Exception] = None
        self.read_error: Optional[Exception] = None
        self.connects: List[tuple[str, str, Region]] = []
        self.disconnected: List[str] = []
        self.closed = False

    def connect(self, email: str, password: str, region: Region) -> str:
        self.connects.append((email, password, region))
        if self.connect_error is not None:
            raise self.connect_error
        return f"session-{len(self.connects)}"

    def read(self, session_id: Optional[str]) -> Optional[Reading]:
        if self.read_error is not None:
            raise self.read_error
        return self.reading

    def disconnect(self, session_id: str) -> None:
        self.disconnected.append(session_id)

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def stub(monkeypatch) -> StubClient:
    stub = StubClient(config=None)

    def factory(config):
        stub.config = config
        return stub

    monkeypatch.setattr("cli.app.ApiClient", factory)
    return stub


@pytest.fixture()
def base_args(tmp_path) -> List[str]:
    return ["--state-path", str(tmp_path / "client.json"), "--profile", "me"]


def test_connect_runs_first_sync(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    result = runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret", "-r", "us"])

    assert result.exit_code == 0, result.stdout
    assert "Connection status: Connected." in result.stdout
    assert stub.connects == [("me@example.com", "secret", Region.US)]
    assert stub.closed is True

    log = runner.invoke(app, [*base_args, "log"])
    assert "110 mg/dL" in log.stdout

    status = runner.invoke(app, [*base_args, "status"])
    assert "status: connected" in status.stdout


def test_connect_with_bad_credentials_exits_non_zero(
    runner: CliRunner, stub: StubClient, base_args: List[str]
) -> None:
    stub.connect_error = AuthError("Login rejected")

    result = runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "wrong"])

    assert result.exit_code == 1
    status = runner.invoke(app, [*base_args, "status"])
    assert "status: error" in status.stdout


def test_simulated_fallback_is_remembered(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    toggled = runner.invoke(app, [*base_args, "simulate", "--enable"])
    assert "Simulated fallback enabled." in toggled.stdout
    stub.connect_error = GatewayTimeout("slow")

    result = runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret"])

    assert result.exit_code == 0, result.stdout
    assert "Switched to simulated mode." in result.stdout
    status = runner.invoke(app, [*base_args, "status"])
    assert "simulated: True" in status.stdout


def test_sync_once_reports_outcome(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret"])
    stub.reading = Reading(value=125, timestamp=NOW.replace(minute=5))

    result = runner.invoke(app, [*base_args, "sync", "--once"])

    assert result.exit_code == 0
    assert "Sync outcome: appended" in result.stdout


def test_sync_once_without_session_is_skipped(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    result = runner.invoke(app, [*base_args, "sync", "--once"])

    assert "Sync outcome: skipped" in result.stdout


def test_read_shows_latest_reading(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret"])

    result = runner.invoke(app, [*base_args, "read"])

    assert result.exit_code == 0
    assert "value: 110 mg/dL" in result.stdout


def test_read_requires_connection(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    result = runner.invoke(app, [*base_args, "read"])

    assert result.exit_code == 1


def test_read_after_expiry_drops_session(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret"])
    stub.read_error = SessionExpired("401")

    result = runner.invoke(app, [*base_args, "read"])

    assert result.exit_code == 1
    status = runner.invoke(app, [*base_args, "status"])
    assert "status: disconnected" in status.stdout


def test_disconnect_resets_status(runner: CliRunner, stub: StubClient, base_args: List[str]) -> None:
    runner.invoke(app, [*base_args, "connect", "me@example.com", "--password", "secret"])

    result = runner.invoke(app, [*base_args, "disconnect"])

    assert "Disconnected." in result.stdout
    assert stub.disconnected == ["session-1"]
    status = runner.invoke(app, [*base_args, "status"])
    assert "status: disconnected" in status.stdout
