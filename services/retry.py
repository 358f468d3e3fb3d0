"""Bounded retry policy applied to every vendor call."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from services.errors import GatewayTimeout, UpstreamError

logger = logging.getLogger(__name__)


class RetryableStatus(Exception):
    """Internal marker for a 5xx answer that should be attempted again."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


@dataclass
class RetryPolicy:
    """Retry timeouts and 5xx answers, waiting ``step * n`` seconds before attempt ``n``.

    With the defaults the waits are 0s, 1s and 2s. Only the terminal outcome
    leaves :meth:`call`: ``GatewayTimeout`` when the last attempt timed out,
    ``UpstreamError`` when it ended on a server error.
    """

    attempts: int = 3
    step: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def delays(self) -> list[float]:
        return [self.step * attempt for attempt in range(self.attempts)]

    def call(self, endpoint: str, operation: Callable[[], httpx.Response]) -> httpx.Response:
        last_error: Exception | None = None
        for attempt, delay in enumerate(self.delays(), start=1):
            self.sleep(delay)
            try:
                response = operation()
            except httpx.TimeoutException as exc:
                last_error = exc
            else:
                if response.status_code < 500:
                    return response
                last_error = RetryableStatus(response)

            logger.warning(
                "Vendor call failed, %s",
                "giving up" if attempt == self.attempts else "retrying",
                extra={
                    "endpoint": endpoint,
                    "attempt": attempt,
                    "delay_s": delay,
                    "reason": type(last_error).__name__,
                },
            )

        if isinstance(last_error, RetryableStatus):
            status_code = last_error.response.status_code
            raise UpstreamError(
                f"Vendor returned HTTP {status_code} for {endpoint}.",
                status_code=status_code,
            )
        raise GatewayTimeout(f"Vendor did not respond in time for {endpoint}.") from last_error
