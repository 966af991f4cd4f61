"""Request pacing and per-run budget tracking for external calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from time import monotonic
from typing import Protocol

logger = logging.getLogger(__name__)


class Governor(Protocol):
    """Spacing and budget policy shared by the enrichment jobs."""

    requests: int

    async def pace(self) -> None:
        """Suspend until the next external call may start."""
        ...

    def record_cost(self, cost_usd: float) -> None:
        ...

    @property
    def exhausted(self) -> bool:
        ...

    def reset(self) -> None:
        ...


class RateCostGovernor:
    """
    Sleep-since-last-call pacer with optional request and cost caps.

    Jobs call ``pace()`` after every external call. Each ``pace()`` returns no
    earlier than ``min_interval`` seconds after the previous one returned, and
    the first ``pace()`` after ``reset()`` waits a full interval, so the starts
    of consecutive external calls are always at least ``min_interval`` apart.

    Not safe for concurrent callers; one governor belongs to one sequential job.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        max_requests: int | None = None,
        max_cost_usd: float | None = None,
        name: str = "governor",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        """
        Args:
            min_interval: Minimum seconds between consecutive external calls.
            max_requests: Optional cap on paced calls per run.
            max_cost_usd: Optional cap on recorded spend per run.
            name: Label used in log messages.
            sleep: Awaitable sleep, injectable for tests.
            clock: Monotonic clock, injectable for tests.
        """
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self.max_requests = max_requests
        self.max_cost_usd = max_cost_usd
        self.name = name
        self._sleep = sleep
        self._clock = clock
        self._last_return: float | None = None
        self.requests = 0
        self.cost_usd = 0.0

    @classmethod
    def from_millis(cls, interval_ms: int, **kwargs) -> "RateCostGovernor":
        return cls(interval_ms / 1000.0, **kwargs)

    def reset(self) -> None:
        """Start a new run: clear counters and the pacing reference."""
        self._last_return = None
        self.requests = 0
        self.cost_usd = 0.0

    async def pace(self) -> None:
        self.requests += 1
        if self._last_return is None:
            wait = self.min_interval
        else:
            elapsed = self._clock() - self._last_return
            wait = self.min_interval - elapsed
        if wait > 0:
            await self._sleep(wait)
        self._last_return = self._clock()

    def record_cost(self, cost_usd: float) -> None:
        self.cost_usd += cost_usd

    @property
    def exhausted(self) -> bool:
        """True once a configured per-run cap has been reached."""
        if self.max_requests is not None and self.requests >= self.max_requests:
            logger.debug("%s: request cap %d reached", self.name, self.max_requests)
            return True
        if self.max_cost_usd is not None and self.cost_usd >= self.max_cost_usd:
            logger.debug("%s: cost cap $%.4f reached", self.name, self.max_cost_usd)
            return True
        return False
