from __future__ import annotations
import copy
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from services.errors import StorageWriteError
from settings import get_settings

logger = logging.getLogger(__name__)


class JsonKeyValueStore:
    """Durable ``get``/``set`` store mirrored to a single JSON document.

    Values must be JSON-serializable. Reads and writes hand out deep copies so
    callers never share mutable state with the store.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[str, Any] = {}
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._items:
                return default
            return copy.deepcopy(self._items[key])

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` and flush the whole document.

        The in-memory value is updated even when the flush fails, in which
        case ``StorageWriteError`` is raised for the caller to log.
        """
        with self._lock:
            self._items[key] = copy.deepcopy(value)
            self._persist()

    def delete(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is None:
                return
            self._persist()

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        try:
            payload = json.dumps(self._items, indent=2, sort_keys=True)
            self.persistence_path.write_text(payload)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageWriteError(
                f"Failed to write store {self.name!r} to {self.persistence_path}: {exc}"
            ) from exc

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable store file %s", self.persistence_path,
                extra={"reason": "unreadable"},
            )
            data = {}

        if isinstance(data, dict):
            self._items.update(data)


@lru_cache
def build_default_session_store(path: Optional[str] = None) -> JsonKeyValueStore:
    settings = get_settings()
    store_path = settings.session_store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return JsonKeyValueStore(name="sessions", persistence_path=persistence)
