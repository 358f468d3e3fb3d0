"""Live, always-current cells for state shared by the connect flow and the sync loop."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Generic, Optional, TypeVar

from datastore.kv_store import JsonKeyValueStore
from services.errors import StorageWriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LiveCell(Generic[T]):
    """Mutable cell read at every use so callers never act on a captured value."""

    def __init__(self, value: Optional[T] = None) -> None:
        self._value = value
        self._lock = Lock()

    def get(self) -> Optional[T]:
        with self._lock:
            return self._value

    def set(self, value: Optional[T]) -> None:
        with self._lock:
            self._value = value

    def compare_and_clear(self, expected: T) -> bool:
        """Clear the cell only if it still holds ``expected``."""
        with self._lock:
            if self._value != expected:
                return False
            self._value = None
            return True


class StoredCell(LiveCell[Any]):
    """A live cell mirrored to a key of the durable store.

    Write failures are logged; the in-memory value stays authoritative.
    """

    def __init__(self, store: JsonKeyValueStore, key: str, default: Any = None) -> None:
        super().__init__(store.get(key, default))
        self.store = store
        self.key = key

    def set(self, value: Any) -> None:
        super().set(value)
        self._flush(value)

    def compare_and_clear(self, expected: Any) -> bool:
        cleared = super().compare_and_clear(expected)
        if cleared:
            self._flush(None)
        return cleared

    def _flush(self, value: Any) -> None:
        try:
            if value is None:
                self.store.delete(self.key)
            else:
                self.store.set(self.key, value)
        except StorageWriteError as exc:
            logger.error("Failed to persist %s", self.key, extra={"reason": str(exc)})
