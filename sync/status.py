"""Connection status state machine.

Five events drive it::

    request_connect   disconnected | error -> connecting
    login_succeeded   connecting -> connected
    connect_failed    connecting -> error
    disconnect        any -> disconnected
    session_expired   connected -> disconnected, connecting -> error

Anything else raises :class:`InvalidTransition`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Optional

from pydantic import BaseModel, ValidationError

from app.schemas import SensorInfo
from datastore.kv_store import JsonKeyValueStore
from services.errors import InvalidTransition, StorageWriteError

logger = logging.getLogger(__name__)

STATUS_KEY = "connection_status"


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    error = "error"


class ConnectionStatus(BaseModel):
    state: ConnectionState = ConnectionState.disconnected
    last_sync: Optional[datetime] = None
    sensor: Optional[SensorInfo] = None
    simulated: bool = False


class StatusMachine:
    def __init__(self, store: Optional[JsonKeyValueStore] = None) -> None:
        self.store = store
        self._lock = Lock()
        self._status = self._restore()

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._status.state

    def snapshot(self) -> ConnectionStatus:
        with self._lock:
            return self._status.model_copy(deep=True)

    def request_connect(self) -> None:
        self._transition(
            "request_connect",
            {ConnectionState.disconnected, ConnectionState.error},
            ConnectionState.connecting,
        )

    def login_succeeded(self, simulated: bool = False) -> None:
        self._transition(
            "login_succeeded",
            {ConnectionState.connecting},
            ConnectionState.connected,
            simulated=simulated,
        )

    def connect_failed(self) -> None:
        self._transition("connect_failed", {ConnectionState.connecting}, ConnectionState.error)

    def disconnect(self) -> None:
        with self._lock:
            self._status = ConnectionStatus()
            self._persist()

    def session_expired(self) -> ConnectionState:
        """Apply a detected session expiry and return the resulting state."""
        with self._lock:
            current = self._status.state
            if current is ConnectionState.connecting:
                self._status = self._status.model_copy(update={"state": ConnectionState.error})
            elif current is ConnectionState.connected:
                self._status = ConnectionStatus()
            else:
                return current
            self._persist()
            return self._status.state

    def record_sync(self, synced_at: Optional[datetime], sensor: Optional[SensorInfo]) -> None:
        """Update derived state after a tick; ``None`` values leave fields untouched."""
        with self._lock:
            update = {}
            if synced_at is not None:
                update["last_sync"] = synced_at
            if sensor is not None:
                update["sensor"] = sensor
            if not update:
                return
            self._status = self._status.model_copy(update=update)
            self._persist()

    def _transition(
        self,
        event: str,
        allowed: set[ConnectionState],
        target: ConnectionState,
        **changes: object,
    ) -> None:
        with self._lock:
            current = self._status.state
            if current not in allowed:
                raise InvalidTransition(event, current.value)
            self._status = self._status.model_copy(update={"state": target, **changes})
            self._persist()
        logger.info("Connection %s -> %s", current.value, target.value, extra={"outcome": event})

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.set(STATUS_KEY, self._status.model_dump(mode="json"))
        except StorageWriteError as exc:
            logger.error("Failed to persist connection status", extra={"reason": str(exc)})

    def _restore(self) -> ConnectionStatus:
        raw = self.store.get(STATUS_KEY) if self.store is not None else None
        if not raw:
            return ConnectionStatus()
        try:
            status = ConnectionStatus.model_validate(raw)
        except ValidationError:
            return ConnectionStatus()
        if status.state is ConnectionState.connecting:
            # A connect attempt that died with the previous process.
            status = status.model_copy(update={"state": ConnectionState.error})
        return status
