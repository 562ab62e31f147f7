"""Bounded retry with a fixed delay around boolean operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

__all__ = ["RetryPolicy"]


class RetryPolicy:
    """Retries an async boolean operation a fixed number of times.

    Used for mount attempts and for confirming that the archive really went
    away. Every failed attempt is followed by a logged sleep, including the
    last one, so `max_attempts` failures produce `max_attempts` sleep log lines.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        max_attempts: int = 10,
        delay: float = 1.0,
    ) -> None:
        self._logger = logger
        self.max_attempts = max_attempts
        self.delay = delay

    async def retry(self, op: Callable[[], Awaitable[bool]], description: str = "operation") -> bool:
        """Run `op` until it succeeds or the attempts are exhausted.

        Args:
            op: Zero-argument coroutine function returning True on success
            description: What is being attempted, for the log

        Returns:
            True as soon as one attempt succeeds, False after max_attempts consecutive failures
        """
        for attempt in range(1, self.max_attempts + 1):
            if await op():
                return True
            self._logger.info(
                "Sleeping before retry",
                what=description,
                attempt=attempt,
                max_attempts=self.max_attempts,
            )
            await asyncio.sleep(self.delay)

        self._logger.warning("Attempts exhausted", what=description, attempts=self.max_attempts)
        return False
