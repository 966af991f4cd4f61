"""Timer-driven runner for the enrichment jobs."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from core.config import Settings, get_settings
from db.models import utc_now
from services.claude_client import ClaudeSummaryClient
from services.goodreads_client import GoodreadsClient
from services.governor import RateCostGovernor
from services.job_results import RunStats
from services.ratings_job import RatingsEnrichmentJob
from services.record_store import RecordStore
from services.summary_job import AISummaryJob

logger = logging.getLogger(__name__)


class EnrichmentJobName(str, Enum):
    """Jobs the scheduler knows how to run."""

    SUMMARIES = "summaries"
    RATINGS = "ratings"


class RunnableJob(Protocol):
    """A batch job with a single entry point."""

    async def run(self) -> RunStats:
        ...


@dataclass
class JobRunState:
    """Bookkeeping for the latest run of one job."""

    name: EnrichmentJobName
    running: bool = False
    runs: int = 0
    last_started_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_stats: RunStats | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name.value,
            "running": self.running,
            "runs": self.runs,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_stats": self.last_stats.to_dict() if self.last_stats else None,
            "last_error": self.last_error,
        }


@dataclass
class ScheduledJob:
    job: RunnableJob
    interval_s: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class EnrichmentScheduler:
    """
    Runs each enrichment job on its own fixed cadence.

    Jobs never overlap with themselves: a per-job lock serializes scheduled
    and manually triggered runs, and a trigger that arrives while the job is
    running is refused rather than queued. Different jobs run independently.
    """

    def __init__(
        self,
        jobs: dict[EnrichmentJobName, ScheduledJob],
        initial_delay_s: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._jobs = jobs
        self._initial_delay_s = initial_delay_s
        self._sleep = sleep
        self._state = {name: JobRunState(name=name) for name in jobs}
        self._loops: dict[EnrichmentJobName, asyncio.Task[None]] = {}
        self._triggered: set[asyncio.Task[Any]] = set()
        self._shutting_down = False

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def start(self) -> None:
        """Start one timer loop per job."""
        for name, scheduled in self._jobs.items():
            if name in self._loops:
                continue
            self._loops[name] = asyncio.create_task(self._loop(name), name=f"schedule-{name.value}")
            logger.info(
                "Scheduled %s job every %.1fh (first run in %.0fs)",
                name.value,
                scheduled.interval_s / 3600,
                self._initial_delay_s,
            )

    async def _loop(self, name: EnrichmentJobName) -> None:
        await self._sleep(self._initial_delay_s)
        while not self._shutting_down:
            await self.run_now(name)
            await self._sleep(self._jobs[name].interval_s)

    def is_running(self, name: EnrichmentJobName) -> bool:
        return self._jobs[name].lock.locked()

    async def run_now(self, name: EnrichmentJobName) -> RunStats | None:
        """
        Run a job immediately and wait for it.

        Returns:
            The run's stats, or None if the job was already running or failed.
            Failures are logged and kept in the job's state.
        """
        scheduled = self._jobs[name]
        if scheduled.lock.locked():
            logger.warning("%s job already running, skipping this invocation", name.value)
            return None

        async with scheduled.lock:
            state = self._state[name]
            state.running = True
            state.runs += 1
            state.last_started_at = utc_now()
            state.last_error = None
            try:
                stats = await scheduled.job.run()
                state.last_stats = stats
                return stats
            except Exception as e:
                logger.exception("%s job failed", name.value)
                state.last_error = str(e) or e.__class__.__name__
                return None
            finally:
                state.running = False
                state.last_finished_at = utc_now()

    def trigger(self, name: EnrichmentJobName) -> bool:
        """Start an out-of-band run in the background. Returns False if it is already running."""
        if self._shutting_down or self.is_running(name):
            return False
        task = asyncio.create_task(self.run_now(name), name=f"trigger-{name.value}")
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return True

    def status(self) -> dict[EnrichmentJobName, JobRunState]:
        return dict(self._state)

    async def shutdown(self, timeout: float = 30.0) -> None:
        """Cancel timer loops and in-flight runs, then wait for them to finish."""
        if self._shutting_down:
            logger.warning("Shutdown already in progress")
            return
        self._shutting_down = True

        tasks = [*self._loops.values(), *self._triggered]
        for task in tasks:
            if not task.done():
                task.cancel()

        if tasks:
            try:
                await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Timeout waiting for enrichment jobs to stop. %d still running.",
                    sum(1 for t in tasks if not t.done()),
                )

        self._loops.clear()
        self._triggered.clear()
        logger.info("Enrichment scheduler shutdown complete")


def create_summary_job(settings: Settings | None = None, store: RecordStore | None = None) -> AISummaryJob:
    """Wire the AI summary job with its production adapter and pacing."""
    settings = settings or get_settings()
    governor = RateCostGovernor.from_millis(
        settings.ai_request_interval_ms,
        max_cost_usd=settings.ai_max_cost_per_run_usd,
        name="ai-batch",
    )
    return AISummaryJob(
        store=store or RecordStore(),
        generator=ClaudeSummaryClient(settings=settings),
        governor=governor,
        settings=settings,
    )


def create_ratings_job(settings: Settings | None = None, store: RecordStore | None = None) -> RatingsEnrichmentJob:
    """Wire the ratings job with its production adapter and pacing."""
    settings = settings or get_settings()
    governor = RateCostGovernor.from_millis(
        settings.ratings_request_interval_ms,
        max_requests=settings.ratings_max_requests_per_run,
        name="goodreads",
    )
    return RatingsEnrichmentJob(
        store=store or RecordStore(),
        client=GoodreadsClient(settings=settings),
        governor=governor,
        settings=settings,
    )


def create_scheduler(
    summary_job: RunnableJob,
    ratings_job: RunnableJob,
    settings: Settings | None = None,
) -> EnrichmentScheduler:
    settings = settings or get_settings()
    return EnrichmentScheduler(
        jobs={
            EnrichmentJobName.SUMMARIES: ScheduledJob(summary_job, settings.ai_job_interval_hours * 3600),
            EnrichmentJobName.RATINGS: ScheduledJob(ratings_job, settings.ratings_job_interval_hours * 3600),
        },
        initial_delay_s=settings.scheduler_initial_delay_s,
    )
