from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_SESSION_STORE_ENV = "CGM_SESSION_STORE_PATH"
_VENDOR_TIMEOUT_ENV = "CGM_VENDOR_TIMEOUT"
_RETRY_ATTEMPTS_ENV = "CGM_RETRY_ATTEMPTS"
_RETRY_STEP_ENV = "CGM_RETRY_STEP"
_CLIENT_VERSION_ENV = "CGM_CLIENT_VERSION"
_DEFAULT_REGION_ENV = "CGM_DEFAULT_REGION"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    session_store_path: Optional[str]
    vendor_timeout: float
    retry_attempts: int
    retry_step: float
    client_version: str
    default_region: str
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_non_negative_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_upper(name: str, default: str) -> str:
    return _read_str_env(name, default).upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        session_store_path=_read_optional_env(_SESSION_STORE_ENV, "./tmp/sessions.json"),
        vendor_timeout=_read_non_negative_float(_VENDOR_TIMEOUT_ENV, 60.0) or 60.0,
        retry_attempts=_read_positive_int(_RETRY_ATTEMPTS_ENV, 3),
        retry_step=_read_non_negative_float(_RETRY_STEP_ENV, 1.0),
        client_version=_read_str_env(_CLIENT_VERSION_ENV, "4.16.0"),
        default_region=_read_upper(_DEFAULT_REGION_ENV, "EU"),
        log_level=_read_upper(_LOG_LEVEL_ENV, "INFO"),
    )
