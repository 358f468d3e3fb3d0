"""Server-resident session table mapping opaque session ids to vendor credentials."""

from __future__ import annotations

import logging
from functools import lru_cache
from threading import Lock
from typing import Callable, Dict, Optional
from uuid import uuid4

from pydantic import ValidationError

from app.schemas import Reading, Region, Session
from datastore.kv_store import JsonKeyValueStore, build_default_session_store
from logging_config import mask_email
from services.errors import SessionExpired, StorageWriteError
from services.gateway import VendorGateway
from services.retry import RetryPolicy
from settings import get_settings

logger = logging.getLogger(__name__)

SESSIONS_KEY = "sessions"


def _new_session_id() -> str:
    return str(uuid4())


class SessionManager:
    """Owns the session table; the in-memory copy is authoritative for the process.

    The durable store only serves restart recovery, so persistence failures
    are logged and never fail the operation that triggered them.
    """

    def __init__(
        self,
        gateway: VendorGateway,
        store: JsonKeyValueStore,
        id_factory: Callable[[], str] = _new_session_id,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self._id_factory = id_factory
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()
        self._load()

    def login(
        self,
        email: str,
        password: str,
        region: Region,
        client_version: Optional[str] = None,
    ) -> str:
        credentials = self.gateway.login(email, password, region, client_version)
        session = Session(
            session_id=self._id_factory(),
            vendor_token=credentials.token,
            vendor_account_hash=credentials.account_hash,
            region=credentials.region,
            client_version=credentials.client_version,
            base_url=credentials.base_url,
        )
        with self._lock:
            self._sessions[session.session_id] = session
            self._persist()
        logger.info(
            "Vendor login succeeded for %s",
            mask_email(email),
            extra={"session_id": session.session_id, "region": session.region.value},
        )
        return session.session_id

    def lookup(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def invalidate(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                return
            self._persist()
        logger.info("Session invalidated", extra={"session_id": session_id})

    def read(self, session_id: str) -> Optional[Reading]:
        """Read the latest reading for a session, dropping it when the vendor reports 401."""
        session = self.lookup(session_id)
        if session is None:
            raise SessionExpired(f"Session {session_id!r} not found.")
        try:
            return self.gateway.read_latest(session)
        except SessionExpired:
            self.invalidate(session_id)
            raise

    def disconnect(self, session_id: str) -> None:
        session = self.lookup(session_id)
        if session is None:
            return
        self.gateway.logout(session)
        self.invalidate(session_id)

    def close(self) -> None:
        self.gateway.close()

    def _persist(self) -> None:
        payload = {
            session_id: session.model_dump(mode="json")
            for session_id, session in self._sessions.items()
        }
        try:
            self.store.set(SESSIONS_KEY, payload)
        except StorageWriteError as exc:
            logger.error("Failed to persist session table", extra={"reason": str(exc)})

    def _load(self) -> None:
        raw = self.store.get(SESSIONS_KEY) or {}
        for session_id, payload in raw.items():
            try:
                self._sessions[session_id] = Session.model_validate(payload)
            except ValidationError:
                logger.warning("Dropping unreadable session record", extra={"session_id": session_id})
        if self._sessions:
            logger.info("Loaded %d sessions from disk", len(self._sessions))


@lru_cache
def build_default_session_manager() -> SessionManager:
    """Factory that wires the session manager with the configured gateway and store."""
    settings = get_settings()
    gateway = VendorGateway(
        retry=RetryPolicy(attempts=settings.retry_attempts, step=settings.retry_step),
        timeout=settings.vendor_timeout,
        client_version=settings.client_version,
    )
    return SessionManager(gateway=gateway, store=build_default_session_store())
