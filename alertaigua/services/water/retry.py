"""
Retry Controller

Bounded exponential backoff around the sensor gateway. The loop is
sequential: callers only need the final outcome.

With the defaults (5 attempts, 1000 ms doubling) a fully failed cycle
sleeps 1 + 2 + 4 + 8 = 15 s; there is no sleep after the last attempt.
Raising max_retries grows the worst case geometrically, so keep
initial_backoff * (2^(max_retries-1) - 1) well under a minute.
"""

from typing import Awaitable, Callable

from common.exceptions import RETRYABLE_ERRORS
from common.logging_setup import get_service_logger

from .gateway import SensorGateway, SensorReading

logger = get_service_logger("water.retry")


class RetryController:
    """Fetch with retries; returns None instead of raising when attempts run out"""

    def __init__(
        self,
        gateway: SensorGateway,
        sleep: Callable[[float], Awaitable[None]],
        max_attempts: int = 5,
        initial_backoff_ms: int = 1000,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.initial_backoff_ms = initial_backoff_ms
        self._sleep = sleep

        self._last_attempts = 0

    @property
    def last_attempts(self) -> int:
        """Attempts made by the most recent fetch"""
        return self._last_attempts

    async def fetch(self, signal_ids: list[str]) -> list[SensorReading] | None:
        """
        Fetch readings, retrying transport and shape failures.

        Returns:
            Readings, or None after max_attempts failures

        Raises:
            Any non-retryable exception from the gateway, unchanged
        """
        backoff_ms = self.initial_backoff_ms
        self._last_attempts = 0

        for attempt in range(1, self.max_attempts + 1):
            self._last_attempts = attempt
            try:
                return await self.gateway.fetch(signal_ids)
            except RETRYABLE_ERRORS as e:
                logger.error(
                    f"Fetch attempt {attempt}/{self.max_attempts} failed: {e}",
                    extra={"attempt": attempt, "error_type": type(e).__name__},
                )

                if attempt == self.max_attempts:
                    logger.error("Max fetch retries reached; aborting update")
                    return None

                await self._sleep(backoff_ms / 1000.0)
                backoff_ms *= 2

        return None
