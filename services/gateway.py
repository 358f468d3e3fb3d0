"""HTTP gateway to the CGM vendor cloud API."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx

from app.schemas import Reading, Region, SensorState, Session
from services.errors import AuthError, SessionExpired, UpstreamError
from services.retry import RetryPolicy
from services import vendor_payloads as payloads

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_VERSION = "4.16.0"
USER_AGENT = "LibreLinkUp/4.16.0 (com.abbott.librelinkup)"

LOGIN_PATH = "/llu/auth/login"
LOGOUT_PATH = "/llu/auth/logout"
CONNECTIONS_PATH = "/llu/connections"
GRAPH_PATH = "/llu/connections/{patient_id}/graph"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def base_url_for(region: Region | str) -> str:
    code = Region(str(getattr(region, "value", region)).upper())
    return f"https://api-{code.value.lower()}.libreview.io"


def account_hash(user_id: Any) -> str:
    """One-way hash of the vendor user id, sent instead of the raw id."""
    return hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class VendorLogin:
    """Credentials extracted from a successful vendor login."""

    token: str
    account_hash: str
    region: Region
    client_version: str
    base_url: str


class VendorGateway:
    """Performs login, read-latest and logout against the vendor with bounded retries."""

    def __init__(
        self,
        retry: Optional[RetryPolicy] = None,
        timeout: float = 60.0,
        client_version: str = DEFAULT_CLIENT_VERSION,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.retry = retry or RetryPolicy()
        self.timeout = timeout
        self.client_version = client_version
        self._clock = clock
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def login(
        self,
        email: str,
        password: str,
        region: Region,
        client_version: Optional[str] = None,
    ) -> VendorLogin:
        version = client_version or self.client_version
        base_url = base_url_for(region)
        response = self._send(
            "POST",
            f"{base_url}{LOGIN_PATH}",
            LOGIN_PATH,
            json={"email": email, "password": password},
            headers=self._headers(version),
        )
        if response.status_code in (401, 403):
            raise AuthError("Login rejected by the vendor. Check your email and password.")
        self._raise_for_status(response, LOGIN_PATH)

        body = self._json(response, LOGIN_PATH)
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        token = (data.get("authTicket") or {}).get("token")
        user_id = (data.get("user") or {}).get("id")
        if body.get("status") not in (0, None) and not token:
            raise AuthError("Login rejected by the vendor. Check your email and password.")
        if not token or not user_id:
            raise AuthError("Vendor login did not return an auth token.")

        return VendorLogin(
            token=str(token),
            account_hash=account_hash(user_id),
            region=region,
            client_version=version,
            base_url=base_url,
        )

    def read_latest(self, session: Session) -> Optional[Reading]:
        """Return the latest reading of the first followed connection, or ``None``.

        Falls back to the graph endpoint when the embedded measurement is
        missing or stale, unless the sensor is still warming up.
        """
        now = self._clock()
        headers = self._headers(session.client_version, session)
        response = self._send(
            "GET", f"{session.base_url}{CONNECTIONS_PATH}", CONNECTIONS_PATH, headers=headers
        )
        self._raise_for_session(response, CONNECTIONS_PATH)
        body = self._json(response, CONNECTIONS_PATH)

        connection = payloads.select_connection(body.get("data"))
        if connection is None:
            return None

        measurement = payloads.extract_measurement(connection)
        reading = payloads.parse_measurement(measurement, now)
        trend_arrow = payloads.parse_trend_arrow(measurement)
        sensor = payloads.parse_sensor(connection.get("sensor"), now)

        warming_up = sensor is not None and sensor.state is SensorState.warming_up
        if payloads.is_stale(reading, now) and not warming_up:
            reading = self._read_graph(session, connection, headers, now) or reading

        if reading is not None:
            return reading.model_copy(update={"trend_arrow": trend_arrow, "sensor": sensor})
        if sensor is not None:
            return Reading(value=None, timestamp=now, sensor=sensor)
        return None

    def logout(self, session: Session) -> None:
        """Best-effort vendor-side teardown; failures are only logged."""
        try:
            response = self._send(
                "POST",
                f"{session.base_url}{LOGOUT_PATH}",
                LOGOUT_PATH,
                headers=self._headers(session.client_version, session),
            )
            self._raise_for_status(response, LOGOUT_PATH)
        except Exception as exc:  # noqa: BLE001 - logout never fails the caller
            logger.warning(
                "Vendor logout failed",
                extra={"session_id": session.session_id, "reason": str(exc)},
            )

    def _read_graph(
        self,
        session: Session,
        connection: Dict[str, Any],
        headers: Dict[str, str],
        now: datetime,
    ) -> Optional[Reading]:
        patient_id = connection.get("patientId")
        if not patient_id:
            return None
        path = GRAPH_PATH.format(patient_id=patient_id)
        response = self._send(
            "GET",
            f"{session.base_url}{path}",
            GRAPH_PATH,
            headers=headers,
            params={"_t": int(now.timestamp() * 1000)},
        )
        if response.status_code == 401:
            raise SessionExpired("Vendor session expired.")
        if response.is_error:
            logger.warning(
                "Graph fallback failed",
                extra={"endpoint": GRAPH_PATH, "status_code": response.status_code},
            )
            return None
        body = self._json(response, GRAPH_PATH)
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        return payloads.latest_graph_reading(data.get("graphData"), now)

    def _headers(self, client_version: str, session: Optional[Session] = None) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "product": "llu.android",
            "version": client_version,
            "Cache-Control": "no-cache",
            "User-Agent": USER_AGENT,
        }
        if session is not None:
            headers["Authorization"] = f"Bearer {session.vendor_token}"
            headers["Account-Id"] = session.vendor_account_hash
        return headers

    def _send(self, method: str, url: str, endpoint: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.retry.call(endpoint, lambda: self._http.request(method, url, **kwargs))
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to {endpoint} failed: {exc}") from exc

    def _raise_for_session(self, response: httpx.Response, endpoint: str) -> None:
        if response.status_code == 401:
            raise SessionExpired("Vendor session expired.")
        self._raise_for_status(response, endpoint)

    @staticmethod
    def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
        if response.is_error:
            raise UpstreamError(
                f"Vendor returned HTTP {response.status_code} for {endpoint}.",
                status_code=response.status_code,
            )

    @staticmethod
    def _json(response: httpx.Response, endpoint: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError(f"Malformed payload from {endpoint}.") from exc
        if not isinstance(body, dict):
            raise UpstreamError(f"Unexpected payload shape from {endpoint}.")
        return body
