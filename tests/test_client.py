from __future__ import annotations

from typing import Callable, List

import httpx
import pytest

from app.schemas import Region
from cli.client import ApiClient
from cli.config import CLIConfig
from services.errors import AuthError, GatewayTimeout, SessionExpired, UpstreamError


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> ApiClient:
    return ApiClient(CLIConfig(base_url="http://testserver"), transport=httpx.MockTransport(handler))


def test_connect_returns_session_id() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "sessionId": "abc"})

    client = _client(handler)

    assert client.connect("me@example.com", "secret", Region.US) == "abc"
    assert seen[0].url.path == "/session/connect"
    assert b'"region":"US"' in seen[0].content.replace(b" ", b"")


@pytest.mark.parametrize(
    ("status_code", "error"),
    [(401, SessionExpired), (403, AuthError), (504, GatewayTimeout), (502, UpstreamError)],
)
def test_error_statuses_map_to_domain_errors(status_code: int, error: type) -> None:
    client = _client(lambda request: httpx.Response(status_code, json={"detail": "nope"}))

    with pytest.raises(error):
        client.connect("me@example.com", "secret", Region.EU)


def test_connect_without_session_id_is_upstream_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={"success": True}))

    with pytest.raises(UpstreamError):
        client.connect("me@example.com", "secret", Region.EU)


def test_read_no_content_means_no_reading() -> None:
    client = _client(lambda request: httpx.Response(204))

    assert client.read("abc") is None


def test_read_parses_reading() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["sessionId"] == "abc"
        return httpx.Response(
            200, json={"value": 120, "timestamp": "2024-03-10T12:00:00+00:00", "trendArrow": 4}
        )

    reading = _client(handler).read("abc")

    assert reading is not None
    assert reading.value == 120
    assert reading.trend_arrow == 4


def test_read_without_session_is_expired() -> None:
    client = _client(lambda request: httpx.Response(200, json={}))

    with pytest.raises(SessionExpired):
        client.read(None)


def test_transport_timeout_maps_to_gateway_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(GatewayTimeout):
        _client(handler).read("abc")


def test_error_body_message_is_surfaced() -> None:
    client = _client(lambda request: httpx.Response(403, json={"error": "Login rejected by the vendor."}))

    with pytest.raises(AuthError, match="Login rejected by the vendor."):
        client.connect("me@example.com", "wrong", Region.EU)
