"""Error taxonomy shared by the gateway, the session manager and the sync client."""

from __future__ import annotations


class CgmSyncError(Exception):
    """Base exception for all CGM synchronization errors."""


class AuthError(CgmSyncError):
    """The vendor rejected the supplied credentials."""


class SessionExpired(CgmSyncError):
    """The vendor no longer accepts the session token (HTTP 401)."""


class GatewayTimeout(CgmSyncError):
    """The vendor did not answer within the bounded window, retries included."""


class UpstreamError(CgmSyncError):
    """Vendor-side failure: 5xx after retries, unexpected 4xx or a malformed payload."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class StorageWriteError(CgmSyncError):
    """Persisting to the durable store failed."""


class ConnectTimeout(CgmSyncError):
    """The overall connect sequence exceeded its deadline."""


class InvalidTransition(CgmSyncError):
    """A status transition was requested from a state that does not allow it."""

    def __init__(self, event: str, state: str) -> None:
        self.event = event
        self.state = state
        super().__init__(f"Cannot apply {event!r} while {state!r}.")
