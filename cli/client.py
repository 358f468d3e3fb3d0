from __future__ import annotations

from typing import Any, Dict, NoReturn, Optional

import httpx

from app.schemas import Reading, Region
from cli.config import CLIConfig
from services.errors import AuthError, GatewayTimeout, SessionExpired, UpstreamError


class ApiClient:
    """HTTP client for the session service, speaking the domain error taxonomy."""

    def __init__(self, config: CLIConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.base_url, timeout=config.request_timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def connect(self, email: str, password: str, region: Region) -> str:
        response = self._request(
            "POST",
            "/session/connect",
            json={"email": email, "password": password, "region": Region(region).value},
        )
        if response.is_error:
            self._raise_for_error(response)
        session_id = response.json().get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise UpstreamError("Unexpected response payload when connecting.")
        return session_id

    def read(self, session_id: Optional[str]) -> Optional[Reading]:
        if not session_id:
            raise SessionExpired("No session to read from.")
        response = self._request("GET", "/session/read", params={"sessionId": session_id})
        if response.status_code == 204:
            return None
        if response.is_error:
            self._raise_for_error(response)
        try:
            return Reading.model_validate(response.json())
        except ValueError as exc:
            raise UpstreamError("Malformed reading payload.") from exc

    def disconnect(self, session_id: str) -> None:
        response = self._request("POST", "/session/disconnect", json={"sessionId": session_id})
        if response.is_error:
            self._raise_for_error(response)

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayTimeout(f"Session service timed out on {url}.") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Request to {url} failed: {exc}") from exc

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> NoReturn:
        detail: str | None = None
        try:
            data: Dict[str, Any] = response.json()
            detail = data.get("error")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = response.text.strip()
        message = detail or f"Request failed with status {response.status_code}."
        if response.status_code == 401:
            raise SessionExpired(message)
        if response.status_code == 403:
            raise AuthError(message)
        if response.status_code == 504:
            raise GatewayTimeout(message)
        raise UpstreamError(str(message), status_code=response.status_code)
