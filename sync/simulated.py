"""Local reading generator used when the connection falls back to simulated mode."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from typing import Callable, Optional

from app.schemas import Reading


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SimulatedSource:
    """Produces one plausible reading per minute as a bounded random walk."""

    def __init__(
        self,
        start_value: float = 110.0,
        seed: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._value = start_value
        self._random = random.Random(seed)
        self._clock = clock

    def read(self, session_id: Optional[str]) -> Reading:
        step = self._random.uniform(-6.0, 6.0)
        self._value = min(300.0, max(50.0, self._value + step))
        if step < -4:
            trend = 2
        elif step > 4:
            trend = 4
        else:
            trend = 3
        timestamp = self._clock().replace(second=0, microsecond=0)
        return Reading(value=round(self._value), timestamp=timestamp, trend_arrow=trend)
