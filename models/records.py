"""Log entry kinds shared across the client-side components."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class MeasurementType(str, Enum):
    before_meal = "before_meal"
    after_meal = "after_meal"
    fasting = "fasting"
    bedtime = "bedtime"
    other = "other"
    cgm = "cgm"


class BaseEntry(BaseModel):
    id: str
    profile_id: str
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps from manually added entries are taken as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BloodSugarEntry(BaseEntry):
    kind: Literal["blood_sugar"] = "blood_sugar"
    value: float = Field(..., description="Glucose in mg/dL.")
    measurement_type: MeasurementType
    trend_arrow: Optional[int] = Field(default=None, ge=1, le=5)


class InsulinEntry(BaseEntry):
    kind: Literal["insulin"] = "insulin"
    units: float
    insulin_type: str


class CarbsEntry(BaseEntry):
    kind: Literal["carbs"] = "carbs"
    grams: float
    meal_type: str
    description: Optional[str] = None


class ActivityEntry(BaseEntry):
    kind: Literal["activity"] = "activity"
    duration_minutes: int
    activity_type: str
    intensity: Literal["low", "medium", "high"]


class NoteEntry(BaseEntry):
    kind: Literal["note"] = "note"
    text: str


LogEntry = Annotated[
    Union[BloodSugarEntry, InsulinEntry, CarbsEntry, ActivityEntry, NoteEntry],
    Field(discriminator="kind"),
]

LOG_ENTRIES = TypeAdapter(List[LogEntry])
