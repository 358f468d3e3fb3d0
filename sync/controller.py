"""Explicit connect/disconnect flow wrapped around the sync loop."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from threading import Lock
from typing import Optional

from app.schemas import Region
from datastore.kv_store import JsonKeyValueStore
from logging_config import mask_email
from services.errors import (
    AuthError,
    CgmSyncError,
    ConnectTimeout,
    GatewayTimeout,
    SessionExpired,
    StorageWriteError,
    UpstreamError,
)
from sync.loop import ReadingSource, SyncLoop, TickOutcome
from sync.state import LiveCell
from sync.status import ConnectionState, StatusMachine

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 75.0
SIMULATED_FALLBACK_KEY = "simulated_fallback"

_MESSAGES = (
    (AuthError, "Login failed. Check your email and password and try again."),
    (ConnectTimeout, "The connection timed out."),
    (GatewayTimeout, "The vendor could not be reached in time."),
    (SessionExpired, "The vendor session expired while connecting."),
    (UpstreamError, "The vendor service returned an error. Please try again later."),
)


def message_for(exc: BaseException) -> str:
    for kind, message in _MESSAGES:
        if isinstance(exc, kind):
            return message
    return "Unknown error."


@dataclass(frozen=True)
class ConnectResult:
    state: ConnectionState
    message: str
    session_id: Optional[str] = None
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.state is ConnectionState.connected


class ConnectionController:
    """Runs login plus the first sync under one hard deadline.

    Each attempt gets a generation number. An attempt that finishes after the
    deadline, or after a newer attempt started, tears down its own session
    instead of publishing it.
    """

    def __init__(
        self,
        source: ReadingSource,
        loop: SyncLoop,
        store: JsonKeyValueStore,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        self.source = source
        self.loop = loop
        self.store = store
        self.connect_timeout = connect_timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="cgm-connect")
        self._generation = 0
        self._generation_lock = Lock()

    @property
    def status(self) -> StatusMachine:
        return self.loop.status

    @property
    def session(self) -> LiveCell[str]:
        return self.loop.session

    @property
    def fallback_enabled(self) -> bool:
        return bool(self.store.get(SIMULATED_FALLBACK_KEY, False))

    def set_fallback(self, enabled: bool) -> None:
        try:
            self.store.set(SIMULATED_FALLBACK_KEY, enabled)
        except StorageWriteError as exc:
            logger.error("Failed to persist simulated fallback flag", extra={"reason": str(exc)})

    def connect(self, email: str, password: str, region: Region) -> ConnectResult:
        if self.status.state is ConnectionState.connected:
            self.disconnect()
        self._drop_session()
        self.status.request_connect()

        with self._generation_lock:
            self._generation += 1
            generation = self._generation

        future = self._executor.submit(self._connect_sequence, generation, email, password, region)
        try:
            session_id = future.result(timeout=self.connect_timeout)
        except FutureTimeout:
            with self._generation_lock:
                self._generation += 1
            self._drop_session()
            return self._fail(ConnectTimeout(f"Connect exceeded {self.connect_timeout:g}s."), email)
        except CgmSyncError as exc:
            return self._fail(exc, email)

        self.status.login_succeeded()
        logger.info("Connected as %s", mask_email(email), extra={"session_id": session_id})
        return ConnectResult(ConnectionState.connected, "Connected.", session_id=session_id)

    def disconnect(self) -> None:
        with self._generation_lock:
            self._generation += 1
        self._drop_session()
        self.status.disconnect()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _connect_sequence(self, generation: int, email: str, password: str, region: Region) -> str:
        session_id = self.source.connect(email, password, region)
        with self._generation_lock:
            current = generation == self._generation
            if current:
                self.session.set(session_id)
        if not current:
            logger.info("Discarding session from abandoned connect attempt", extra={"session_id": session_id})
            self._remote_disconnect(session_id)
            raise ConnectTimeout("Connect attempt was abandoned.")

        if self.loop.tick() is TickOutcome.expired:
            raise SessionExpired("Session expired during the first sync.")
        return session_id

    def _fail(self, exc: CgmSyncError, email: str) -> ConnectResult:
        message = message_for(exc)
        logger.warning(
            "Connect failed for %s",
            mask_email(email),
            extra={"reason": type(exc).__name__},
        )
        if isinstance(exc, (ConnectTimeout, GatewayTimeout)) and self.fallback_enabled:
            if self.status.state is ConnectionState.connecting:
                self.status.login_succeeded(simulated=True)
                self.loop.tick()
                return ConnectResult(
                    ConnectionState.connected,
                    f"{message} Switched to simulated mode.",
                    simulated=True,
                )
        if self.status.state is ConnectionState.connecting:
            self.status.connect_failed()
        return ConnectResult(self.status.state, message)

    def _drop_session(self) -> None:
        session_id = self.session.get()
        if session_id is None or not self.session.compare_and_clear(session_id):
            return
        self._remote_disconnect(session_id)

    def _remote_disconnect(self, session_id: str) -> None:
        try:
            self.source.disconnect(session_id)
        except CgmSyncError as exc:
            logger.warning("Remote disconnect failed", extra={"session_id": session_id, "reason": str(exc)})
