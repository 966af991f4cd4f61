"""Admin endpoints for the enrichment jobs."""

from datetime import datetime
from functools import lru_cache
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from db.models import SummaryResult, SummaryStats, SummaryType
from services.job_results import RunStats
from services.ratings_job import RatingsEnrichmentJob
from services.scheduler import (
    EnrichmentJobName,
    EnrichmentScheduler,
    create_ratings_job,
    create_scheduler,
    create_summary_job,
)
from services.summary_job import AISummaryJob, BookSummaryReport

router = APIRouter()


@lru_cache
def get_summary_job() -> AISummaryJob:
    return create_summary_job()


@lru_cache
def get_ratings_job() -> RatingsEnrichmentJob:
    return create_ratings_job()


@lru_cache
def get_scheduler() -> EnrichmentScheduler:
    return create_scheduler(get_summary_job(), get_ratings_job())


class TriggerResponse(BaseModel):
    """Response for a manual job trigger."""

    job: EnrichmentJobName
    status: Literal["started", "already_running"]
    message: str


class RunStatsResponse(BaseModel):
    succeeded: int
    failed: int
    skipped: int
    total_cost_usd: float
    requests: int


class JobRunResponse(BaseModel):
    """Latest run bookkeeping for one job."""

    name: EnrichmentJobName
    running: bool
    runs: int
    last_started_at: datetime | None
    last_finished_at: datetime | None
    last_stats: RunStatsResponse | None
    last_error: str | None


class GenerateSummariesRequest(BaseModel):
    """Request body for generating summaries for one book."""

    types: list[SummaryType] | None = None


class RatingRefreshResponse(BaseModel):
    book_id: int
    refreshed: bool


def _trigger(scheduler: EnrichmentScheduler, name: EnrichmentJobName) -> TriggerResponse:
    if scheduler.trigger(name):
        return TriggerResponse(job=name, status="started", message=f"{name.value} job started")
    return TriggerResponse(job=name, status="already_running", message=f"{name.value} job is already running")


def _stats_response(stats: RunStats | None) -> RunStatsResponse | None:
    return RunStatsResponse(**stats.to_dict()) if stats else None


@router.get("/summaries/stats", response_model=SummaryStats)
async def summary_stats(job: AISummaryJob = Depends(get_summary_job)) -> SummaryStats:
    """All-time summary totals."""
    return await job.get_summary_stats()


@router.post("/summaries/run", response_model=TriggerResponse, status_code=202)
async def run_summary_job(scheduler: EnrichmentScheduler = Depends(get_scheduler)) -> TriggerResponse:
    """Start an AI summary batch in the background."""
    return _trigger(scheduler, EnrichmentJobName.SUMMARIES)


@router.post("/ratings/run", response_model=TriggerResponse, status_code=202)
async def run_ratings_job(scheduler: EnrichmentScheduler = Depends(get_scheduler)) -> TriggerResponse:
    """Start a Goodreads ratings batch in the background."""
    return _trigger(scheduler, EnrichmentJobName.RATINGS)


@router.get("/runs", response_model=list[JobRunResponse])
async def list_runs(scheduler: EnrichmentScheduler = Depends(get_scheduler)) -> list[JobRunResponse]:
    """Latest run state for each enrichment job."""
    return [
        JobRunResponse(
            name=state.name,
            running=state.running,
            runs=state.runs,
            last_started_at=state.last_started_at,
            last_finished_at=state.last_finished_at,
            last_stats=_stats_response(state.last_stats),
            last_error=state.last_error,
        )
        for state in scheduler.status().values()
    ]


@router.post("/books/{book_id}/summaries", response_model=BookSummaryReport)
async def generate_book_summaries(
    book_id: int,
    request: GenerateSummariesRequest | None = None,
    job: AISummaryJob = Depends(get_summary_job),
) -> BookSummaryReport:
    """Generate the missing summary types for one book."""
    types = request.types if request else None
    return await job.generate_summaries_for_book(book_id, types)


@router.post("/books/{book_id}/summaries/{summary_type}/regenerate", response_model=SummaryResult)
async def regenerate_book_summary(
    book_id: int,
    summary_type: SummaryType,
    job: AISummaryJob = Depends(get_summary_job),
) -> SummaryResult:
    """Replace one summary type for a book with a fresh generation."""
    if await job.store.get_book(book_id) is None:
        raise HTTPException(status_code=404, detail=f"Book {book_id} not found")

    result = await job.regenerate_summary(book_id, summary_type)
    if result is None:
        raise HTTPException(status_code=502, detail=f"Could not regenerate {summary_type.value} for book {book_id}")
    return result


@router.post("/books/{book_id}/rating/refresh", response_model=RatingRefreshResponse)
async def refresh_book_rating(
    book_id: int,
    job: RatingsEnrichmentJob = Depends(get_ratings_job),
) -> RatingRefreshResponse:
    """Re-fetch the Goodreads rating for one book."""
    refreshed = await job.refresh_rating_for_book(book_id)
    return RatingRefreshResponse(book_id=book_id, refreshed=refreshed)
