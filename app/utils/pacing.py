"""
Spacing of consecutive provider calls within one driver run.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class CallPacer:
    """
    Enforces a minimum interval between consecutive external calls.

    One pacer belongs to one run. The first call goes out immediately; every
    later call waits until ``min_interval_seconds`` have elapsed since the
    previous one.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call_at: Optional[float] = None
        self.calls = 0

    async def wait_turn(self) -> None:
        """Block until the next call may go out, then record it."""
        if self._last_call_at is not None:
            remaining = self.min_interval_seconds - (self._monotonic() - self._last_call_at)
            if remaining > 0:
                logger.debug("Pacing external call", delay_seconds=round(remaining, 3))
                await self._sleep(remaining)
        self._last_call_at = self._monotonic()
        self.calls += 1
