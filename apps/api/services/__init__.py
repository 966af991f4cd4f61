"""Services module."""

from .claude_client import ClaudeAPIError, ClaudeError, ClaudeSummaryClient
from .goodreads_client import GoodreadsClient, GoodreadsError, GoodreadsRating
from .governor import Governor, RateCostGovernor
from .job_results import Outcome, RunStats, attempt
from .ratings_job import RatingsEnrichmentJob
from .record_store import RecordStore
from .scheduler import EnrichmentJobName, EnrichmentScheduler
from .summary_job import AISummaryJob, BookSummaryReport

__all__ = [
    # AI adapter
    "ClaudeSummaryClient",
    "ClaudeError",
    "ClaudeAPIError",
    # Ratings adapter
    "GoodreadsClient",
    "GoodreadsError",
    "GoodreadsRating",
    # Pacing
    "Governor",
    "RateCostGovernor",
    # Results
    "Outcome",
    "RunStats",
    "attempt",
    # Store
    "RecordStore",
    # Jobs
    "AISummaryJob",
    "BookSummaryReport",
    "RatingsEnrichmentJob",
    # Scheduler
    "EnrichmentJobName",
    "EnrichmentScheduler",
]
