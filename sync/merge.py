"""Idempotent merge of fetched readings into the glucose log."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from app.schemas import Reading
from models.records import BloodSugarEntry, LogEntry, MeasurementType


def sort_entries(entries: Sequence[LogEntry]) -> List[LogEntry]:
    """Order entries newest first."""
    return sorted(entries, key=lambda entry: entry.timestamp, reverse=True)


def has_entry_at(entries: Sequence[LogEntry], profile_id: str, reading: Reading) -> bool:
    return any(
        entry.profile_id == profile_id and entry.timestamp == reading.timestamp
        for entry in entries
    )


def merge_reading(
    entries: Sequence[LogEntry],
    profile_id: str,
    reading: Reading,
    id_factory: Callable[[], str],
) -> tuple[List[LogEntry], Optional[BloodSugarEntry]]:
    """Return the merged entry list and the appended entry, if any.

    Readings without a value, and readings whose timestamp already has an
    entry for ``profile_id``, leave the log unchanged.
    """
    if reading.value is None or has_entry_at(entries, profile_id, reading):
        return list(entries), None

    entry = BloodSugarEntry(
        id=id_factory(),
        profile_id=profile_id,
        timestamp=reading.timestamp,
        value=reading.value,
        measurement_type=MeasurementType.cgm,
        trend_arrow=reading.trend_arrow,
    )
    return sort_entries([*entries, entry]), entry
