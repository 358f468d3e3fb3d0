from __future__ import annotations
import logging
from threading import Lock
from typing import Callable, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from app.schemas import Reading
from datastore.kv_store import JsonKeyValueStore
from models.records import LOG_ENTRIES, BloodSugarEntry, LogEntry
from services.errors import StorageWriteError
from sync.merge import merge_reading, sort_entries

logger = logging.getLogger(__name__)

ENTRIES_KEY = "log_entries"


def _new_entry_id() -> str:
    return str(uuid4())


class GlucoseLog:
    """Append-only glucose log kept sorted newest first and mirrored to the store."""

    def __init__(
        self,
        store: JsonKeyValueStore,
        id_factory: Callable[[], str] = _new_entry_id,
    ) -> None:
        self.store = store
        self._id_factory = id_factory
        self._lock = Lock()
        self._entries: List[LogEntry] = self._load()

    def entries(self, profile_id: Optional[str] = None) -> List[LogEntry]:
        with self._lock:
            return [
                entry.model_copy(deep=True)
                for entry in self._entries
                if profile_id is None or entry.profile_id == profile_id
            ]

    def append_reading(self, profile_id: str, reading: Reading) -> Optional[BloodSugarEntry]:
        with self._lock:
            merged, entry = merge_reading(self._entries, profile_id, reading, self._id_factory)
            if entry is None:
                return None
            self._entries = merged
            self._persist()
        logger.info(
            "Appended CGM reading",
            extra={"profile_id": profile_id, "reading_at": reading.timestamp.isoformat()},
        )
        return entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _persist(self) -> None:
        try:
            self.store.set(ENTRIES_KEY, LOG_ENTRIES.dump_python(self._entries, mode="json"))
        except StorageWriteError as exc:
            logger.error("Failed to persist glucose log", extra={"reason": str(exc)})

    def _load(self) -> List[LogEntry]:
        raw = self.store.get(ENTRIES_KEY) or []
        try:
            return sort_entries(LOG_ENTRIES.validate_python(raw))
        except ValidationError as exc:
            logger.warning("Ignoring unreadable glucose log", extra={"reason": str(exc)})
            return []
