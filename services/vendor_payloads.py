"""Normalization of vendor response shapes into canonical readings.

The vendor uses several aliases for the same field depending on the endpoint
and app version. Everything alias-aware lives here so the gateway and the
merge logic only ever see :class:`Reading` and :class:`SensorInfo`.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from dateutil import parser as date_parser

from app.schemas import Reading, SensorInfo, SensorState

SENSOR_LIFETIME = timedelta(days=14)
STALE_AFTER = timedelta(minutes=15)

VALUE_KEYS = ("ValueInMgPerDl", "Value", "value")
TIMESTAMP_KEYS = ("FactoryTimestamp", "Timestamp", "MeasurementDate", "timestamp")
TREND_KEYS = ("TrendArrow", "trendArrow")

SENSOR_STATES = {
    1: SensorState.warming_up,
    2: SensorState.active,
    3: SensorState.expired,
    4: SensorState.ended,
    5: SensorState.error,
}


def _first(payload: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def parse_vendor_timestamp(raw: Any) -> Optional[datetime]:
    """Parse ISO-8601 or the vendor's ``M/D/YYYY h:mm:ss AM`` form; naive means UTC."""
    if raw is None:
        return None
    try:
        if isinstance(raw, (int, float)):
            return datetime.fromtimestamp(raw, tz=timezone.utc)
        parsed = date_parser.parse(str(raw))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def select_connection(connections: Any) -> Optional[Mapping[str, Any]]:
    """Pick the first non-pending connection, else the first one listed."""
    if not isinstance(connections, list) or not connections:
        return None
    candidates = [item for item in connections if isinstance(item, Mapping)]
    if not candidates:
        return None
    for item in candidates:
        if item.get("pending") is False:
            return item
    return candidates[0]


def extract_measurement(connection: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    nested = connection.get("connection")
    if isinstance(nested, Mapping) and isinstance(nested.get("glucoseMeasurement"), Mapping):
        return nested["glucoseMeasurement"]
    measurement = connection.get("glucoseMeasurement")
    return measurement if isinstance(measurement, Mapping) else None


def parse_trend_arrow(measurement: Optional[Mapping[str, Any]]) -> Optional[int]:
    if not measurement:
        return None
    raw = _first(measurement, TREND_KEYS)
    try:
        trend = int(raw)
    except (TypeError, ValueError):
        return None
    return trend if 1 <= trend <= 5 else None


def parse_measurement(
    measurement: Optional[Mapping[str, Any]], now: datetime
) -> Optional[Reading]:
    """Build a bare reading (value and timestamp) from a vendor measurement."""
    if not measurement:
        return None
    raw_value = _first(measurement, VALUE_KEYS)
    try:
        value = float(raw_value) if raw_value is not None else None
    except (TypeError, ValueError):
        return None
    timestamp = parse_vendor_timestamp(_first(measurement, TIMESTAMP_KEYS)) or now
    return Reading(value=value, timestamp=timestamp)


def latest_graph_reading(items: Any, now: datetime) -> Optional[Reading]:
    """Return the most recent graph entry by timestamp; entries without one are skipped."""
    if not isinstance(items, Sequence) or isinstance(items, (str, bytes)):
        return None
    readings = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        if parse_vendor_timestamp(_first(item, TIMESTAMP_KEYS)) is None:
            continue
        reading = parse_measurement(item, now)
        if reading is not None:
            readings.append(reading)
    if not readings:
        return None
    return max(readings, key=lambda reading: reading.timestamp)


def sensor_state(code: Any) -> tuple[SensorState, str]:
    try:
        numeric = int(code)
    except (TypeError, ValueError):
        return SensorState.unknown, f"unknown, code={code}"
    state = SENSOR_STATES.get(numeric)
    if state is None:
        return SensorState.unknown, f"unknown, code={numeric}"
    return state, state.value


def days_left(end_date: datetime, now: datetime) -> int:
    remaining = (end_date - now) / timedelta(days=1)
    return min(SENSOR_LIFETIME.days, max(0, math.ceil(remaining)))


def parse_sensor(raw: Any, now: datetime) -> Optional[SensorInfo]:
    """Derive wear-life from the activation epoch (``a``) and map the status code (``pt``)."""
    if not isinstance(raw, Mapping):
        return None
    state, label = sensor_state(raw.get("pt"))
    activation = raw.get("a")
    start_date = end_date = now
    remaining = 0
    if activation:
        try:
            start_date = datetime.fromtimestamp(float(activation), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            start_date = now
        else:
            end_date = start_date + SENSOR_LIFETIME
            remaining = days_left(end_date, now)
    return SensorInfo(
        serial=str(raw.get("sn") or ""),
        start_date=start_date,
        end_date=end_date,
        days_left=remaining,
        state=state,
        label=label,
    )


def is_stale(reading: Optional[Reading], now: datetime) -> bool:
    return reading is None or now - reading.timestamp > STALE_AFTER
