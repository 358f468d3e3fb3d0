from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_STATE_PATH = "./tmp/cgm_client.json"
DEFAULT_PROFILE_ID = "default"
DEFAULT_SYNC_INTERVAL = 30.0
DEFAULT_CONNECT_TIMEOUT = 75.0
DEFAULT_REQUEST_TIMEOUT = 70.0
DEFAULT_TARGET_LOW = 70.0
DEFAULT_TARGET_HIGH = 180.0

_BASE_URL_ENV = "CGM_API_BASE_URL"
_STATE_PATH_ENV = "CGM_CLIENT_STATE_PATH"
_PROFILE_ENV = "CGM_PROFILE_ID"
_SYNC_INTERVAL_ENV = "CGM_SYNC_INTERVAL"
_CONNECT_TIMEOUT_ENV = "CGM_CONNECT_TIMEOUT"
_REQUEST_TIMEOUT_ENV = "CGM_REQUEST_TIMEOUT"
_TARGET_LOW_ENV = "CGM_TARGET_LOW"
_TARGET_HIGH_ENV = "CGM_TARGET_HIGH"
_ALERTS_ENV = "CGM_ALERTS_ENABLED"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    state_path: str = DEFAULT_STATE_PATH
    profile_id: str = DEFAULT_PROFILE_ID
    sync_interval: float = DEFAULT_SYNC_INTERVAL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    target_low: float = DEFAULT_TARGET_LOW
    target_high: float = DEFAULT_TARGET_HIGH
    alerts_enabled: bool = True


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in {"1", "true", "yes", "on"}:
        return True
    if candidate in {"0", "false", "no", "off"}:
        return False
    return default


def load_config(
    base_url: Optional[str] = None,
    state_path: Optional[str] = None,
    profile_id: Optional[str] = None,
    sync_interval: Optional[float] = None,
    connect_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    path = state_path or os.getenv(_STATE_PATH_ENV) or DEFAULT_STATE_PATH
    profile = profile_id or os.getenv(_PROFILE_ENV) or DEFAULT_PROFILE_ID
    if sync_interval is None:
        sync_interval = _read_float(os.getenv(_SYNC_INTERVAL_ENV), DEFAULT_SYNC_INTERVAL)
    if connect_timeout is None:
        connect_timeout = _read_float(os.getenv(_CONNECT_TIMEOUT_ENV), DEFAULT_CONNECT_TIMEOUT)
    return CLIConfig(
        base_url=url.rstrip("/"),
        state_path=path,
        profile_id=profile,
        sync_interval=sync_interval,
        connect_timeout=connect_timeout,
        request_timeout=_read_float(os.getenv(_REQUEST_TIMEOUT_ENV), DEFAULT_REQUEST_TIMEOUT),
        target_low=_read_float(os.getenv(_TARGET_LOW_ENV), DEFAULT_TARGET_LOW),
        target_high=_read_float(os.getenv(_TARGET_HIGH_ENV), DEFAULT_TARGET_HIGH),
        alerts_enabled=_read_bool(os.getenv(_ALERTS_ENV), True),
    )
