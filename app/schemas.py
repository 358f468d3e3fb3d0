"""Pydantic schemas for the HTTP API layer and the vendor-normalized readings."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Region(str, Enum):
    """Vendor regions, each served from its own API host."""

    EU = "EU"
    US = "US"
    AE = "AE"
    JP = "JP"
    AP = "AP"


class SensorState(str, Enum):
    """Sensor lifecycle states derived from the vendor status code."""

    warming_up = "warming_up"
    active = "active"
    expired = "expired"
    ended = "ended"
    error = "error"
    unknown = "unknown"


class SensorInfo(BaseModel):
    """Wear-life and lifecycle of the sensor attached to a reading."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    serial: str = ""
    start_date: datetime
    end_date: datetime
    days_left: int = Field(..., ge=0, le=14)
    state: SensorState
    label: str = Field(..., description="Human readable state, e.g. 'unknown, code=7'.")


class Reading(BaseModel):
    """Latest glucose reading in the canonical shape, independent of vendor aliases."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    value: Optional[float] = Field(default=None, description="Glucose in mg/dL, absent during warm-up.")
    timestamp: datetime
    trend_arrow: Optional[int] = Field(default=None, ge=1, le=5)
    sensor: Optional[SensorInfo] = None


class Session(BaseModel):
    """Server-held proof of a successful vendor login."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    vendor_token: str
    vendor_account_hash: str
    region: Region
    client_version: str
    base_url: str


class ConnectRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    region: Optional[Region] = None
    client_version: Optional[str] = None

    @field_validator("region", mode="before")
    @classmethod
    def _upper_region(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value


class ConnectResponse(BaseModel):
    success: bool = True
    session_id: str = Field(..., serialization_alias="sessionId")


class DisconnectRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class DisconnectResponse(BaseModel):
    success: bool = True
