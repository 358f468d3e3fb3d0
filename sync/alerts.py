"""High/low glucose alerts raised when a new reading leaves the target range."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from models.records import BloodSugarEntry

logger = logging.getLogger(__name__)


class AlertSink(Protocol):
    def notify(self, severity: str, message: str) -> None:
        ...


class LoggingAlertSink:
    """Default sink: alerts end up in the application log."""

    def notify(self, severity: str, message: str) -> None:
        logger.warning("%s glucose alert: %s", severity.upper(), message)


@dataclass
class ThresholdAlerts:
    sink: AlertSink
    low: float = 70.0
    high: float = 180.0
    enabled: bool = True

    def check(self, entry: BloodSugarEntry) -> Optional[str]:
        """Notify the sink if ``entry`` is out of range and return the severity used."""
        if not self.enabled:
            return None
        if entry.value < self.low:
            severity = "low"
        elif entry.value > self.high:
            severity = "high"
        else:
            return None
        self.sink.notify(
            severity,
            f"Glucose measured at {entry.value:g} mg/dL ({entry.timestamp:%H:%M} UTC). Please check.",
        )
        return severity
