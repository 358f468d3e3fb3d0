"""Timer-driven polling of the session service and merge into the glucose log."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock, Thread
from typing import Callable, Optional, Protocol

from app.schemas import Reading, Region
from datastore.glucose_log import GlucoseLog
from services.errors import CgmSyncError, SessionExpired
from sync.alerts import ThresholdAlerts
from sync.state import LiveCell
from sync.status import StatusMachine

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadingSource(Protocol):
    def connect(self, email: str, password: str, region: Region) -> str:
        ...

    def read(self, session_id: Optional[str]) -> Optional[Reading]:
        ...

    def disconnect(self, session_id: str) -> None:
        ...


class TickOutcome(str, Enum):
    skipped = "skipped"
    busy = "busy"
    no_data = "no_data"
    duplicate = "duplicate"
    appended = "appended"
    stale = "stale"
    expired = "expired"
    failed = "failed"


class SyncLoop:
    """Polls for the latest reading every ``interval`` seconds while started.

    The current session id and active profile are read from live cells at
    every use, so a tick that straddles a reconnect never writes on behalf of
    the session it started with. Overlapping ticks are suppressed.
    """

    def __init__(
        self,
        source: ReadingSource,
        log: GlucoseLog,
        status: StatusMachine,
        session: LiveCell[str],
        profile: LiveCell[str],
        alerts: Optional[ThresholdAlerts] = None,
        simulated_source: Optional[ReadingSource] = None,
        interval: float = DEFAULT_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.source = source
        self.log = log
        self.status = status
        self.session = session
        self.profile = profile
        self.alerts = alerts
        self.simulated_source = simulated_source
        self.interval = interval
        self._clock = clock
        self._tick_lock = Lock()
        self._stop = Event()
        self._thread: Optional[Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self._run, name="cgm-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until :meth:`stop` is called; returns ``True`` if it was."""
        return self._stop.wait(timeout)

    def tick(self) -> TickOutcome:
        if not self._tick_lock.acquire(blocking=False):
            return TickOutcome.busy
        try:
            outcome = self._tick()
        finally:
            self._tick_lock.release()
        logger.debug("Sync tick finished", extra={"outcome": outcome.value})
        return outcome

    def handle_expired(self, session_id: str) -> None:
        """Tear down a session the vendor no longer accepts."""
        if session_id is None or not self.session.compare_and_clear(session_id):
            return
        try:
            self.source.disconnect(session_id)
        except CgmSyncError as exc:
            logger.warning("Disconnect after expiry failed", extra={"reason": str(exc)})
        state = self.status.session_expired()
        logger.warning(
            "Session expired during sync",
            extra={"session_id": session_id, "outcome": state.value},
        )

    def _tick(self) -> TickOutcome:
        simulated = self.status.snapshot().simulated and self.simulated_source is not None
        session_id = self.session.get()
        if session_id is None and not simulated:
            return TickOutcome.skipped

        source = self.simulated_source if simulated else self.source
        try:
            reading = source.read(session_id)
        except SessionExpired:
            if self.session.get() != session_id:
                return TickOutcome.stale
            self.handle_expired(session_id)
            return TickOutcome.expired
        except CgmSyncError as exc:
            logger.warning(
                "Sync tick abandoned",
                extra={"session_id": session_id, "reason": str(exc)},
            )
            return TickOutcome.failed

        if self.session.get() != session_id:
            return TickOutcome.stale
        if reading is None:
            return TickOutcome.no_data
        profile_id = self.profile.get()
        if profile_id is None:
            return TickOutcome.skipped

        if reading.value is None:
            self.status.record_sync(None, reading.sensor)
            return TickOutcome.no_data

        entry = self.log.append_reading(profile_id, reading)
        if entry is None:
            self.status.record_sync(None, reading.sensor)
            return TickOutcome.duplicate

        if self.alerts is not None:
            self.alerts.check(entry)
        self.status.record_sync(self._clock(), reading.sensor)
        return TickOutcome.appended

    def _run(self) -> None:
        while True:
            try:
                self.tick()
            except Exception:  # pragma: no cover - keep the timer armed
                logger.exception("Unexpected error during sync tick")
            if self._stop.wait(self.interval):
                return
