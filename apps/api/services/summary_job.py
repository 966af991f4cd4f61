"""
AI summary generation job.

Generates summaries for ebooks that don't have them yet, one row per
(book, summary type). Runs on a daily cadence with a small batch to keep
API spend bounded; a run interrupted half-way is completed by the next one
because every type is checked for an existing row before generating.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Protocol

from pydantic import BaseModel, Field

from core.config import Settings, get_settings
from db.models import AIBookSummary, BookType, Ebook, SummaryResult, SummaryStats, SummaryType, utc_now
from services.governor import Governor, RateCostGovernor
from services.job_results import RunStats, attempt
from services.record_store import RecordStore

logger = logging.getLogger(__name__)


class SummaryGenerator(Protocol):
    """Anything that turns book metadata into one summary."""

    async def generate(
        self,
        title: str,
        description: str | None,
        extracted_content: str | None,
        summary_type: SummaryType,
    ) -> SummaryResult | None:
        ...

    async def aclose(self) -> None:
        ...


class BookSummaryReport(BaseModel):
    """Outcome of generating missing summaries for one book."""

    success: bool
    generated: list[SummaryType] = Field(default_factory=list)
    cost: float = 0.0


class AISummaryJob:
    """Batch and per-book entry points for AI summaries."""

    def __init__(
        self,
        store: RecordStore,
        generator: SummaryGenerator,
        governor: Governor,
        settings: Settings | None = None,
        book_governor: Governor | None = None,
    ) -> None:
        """
        Args:
            store: Record store for books and summary rows.
            generator: AI adapter.
            governor: Pacing and budget for batch runs.
            settings: Job settings; defaults to the cached application settings.
            book_governor: Pacing for the per-book entry point.
        """
        self.store = store
        self.generator = generator
        self.governor = governor
        self.settings = settings or get_settings()
        self.book_governor = book_governor or RateCostGovernor.from_millis(
            self.settings.ai_book_request_interval_ms, name="ai-book"
        )
        self.summary_types: tuple[SummaryType, ...] = tuple(SummaryType)

    def _build_row(self, book_id: int, summary_type: SummaryType, result: SummaryResult) -> AIBookSummary:
        generated_at = utc_now()
        return AIBookSummary(
            book_type=BookType.EBOOK,
            book_id=book_id,
            summary_type=summary_type,
            content=result.content,
            model_used=result.model_used,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            generation_cost_usd=Decimal(f"{result.cost_usd:.6f}"),
            generated_at=generated_at,
            expires_at=generated_at + timedelta(days=self.settings.summary_retention_days),
        )

    async def run(self) -> RunStats:
        """Generate summaries for the next batch of books that have none."""
        stats = RunStats()
        logger.debug("Starting AI summary generation...")

        if not self.settings.ai_configured:
            logger.warning("ANTHROPIC_API_KEY not configured, skipping AI summary generation")
            return stats

        self.governor.reset()
        await self.store.purge_expired_summaries()
        books = await self.store.select_summary_candidates(self.settings.ai_batch_size)

        if not books:
            logger.info("No books need AI summaries")
            return stats

        logger.info("Found %d books needing AI summaries", len(books))

        for book in books:
            if not (book.title or "").strip():
                logger.debug("Skipping book %s: no title", book.id)
                stats.skipped += 1
                continue

            if self.governor.exhausted:
                logger.info("AI budget exhausted, skipping book %s", book.id)
                stats.skipped += 1
                continue

            outcome = await attempt(self._summarize_book, book, stats)
            if outcome.ok:
                stats.succeeded += 1
            else:
                logger.error("Failed to generate summaries for book %s: %s", book.id, outcome.error)
                stats.failed += 1

        stats.requests = self.governor.requests
        logger.info(
            "AI summary generation complete: %d books processed, %d failed, %d skipped, total cost: $%.4f",
            stats.succeeded,
            stats.failed,
            stats.skipped,
            stats.total_cost_usd,
        )
        return stats

    async def _summarize_book(self, book: Ebook, stats: RunStats) -> None:
        """Fill in every missing summary type for one book; a failed type never stops the rest."""
        logger.debug("Generating AI summaries for: %s", book.title)

        for summary_type in self.summary_types:
            if await self.store.summary_exists(book.id, summary_type):
                continue
            if self.governor.exhausted:
                logger.info("AI budget exhausted mid-book %s, remaining types left for a later run", book.id)
                return

            outcome = await attempt(
                self.generator.generate, book.title, book.description, None, summary_type
            )
            await self.governor.pace()

            if not outcome.ok:
                logger.error(
                    "Failed to generate %s for book %s: %s", summary_type.value, book.id, outcome.error
                )
                continue
            result = outcome.value
            if result is None:
                logger.debug("No %s content for book %s", summary_type.value, book.id)
                continue

            saved = await attempt(self.store.insert_summary, self._build_row(book.id, summary_type, result))
            if not saved.ok:
                logger.error("Failed to store %s for book %s: %s", summary_type.value, book.id, saved.error)
                continue

            stats.total_cost_usd += result.cost_usd
            self.governor.record_cost(result.cost_usd)
            logger.debug("Generated %s for: %s", summary_type.value, book.title)

    async def generate_summaries_for_book(
        self,
        book_id: int,
        types: list[SummaryType] | None = None,
    ) -> BookSummaryReport:
        """
        Generate the missing summary types for one book.

        Args:
            book_id: The ebook to summarize.
            types: Summary types to generate; None means all, an empty list means none.

        Returns:
            BookSummaryReport; ``success`` is False for an unknown or untitled
            book, a missing API key, or an error part-way through.
        """
        report = BookSummaryReport(success=False)

        if not self.settings.ai_configured:
            logger.warning("ANTHROPIC_API_KEY not configured, cannot generate summaries for book %s", book_id)
            return report

        try:
            book = await self.store.get_book(book_id)
            if book is None or not (book.title or "").strip():
                return report

            self.book_governor.reset()
            for summary_type in self.summary_types if types is None else types:
                if await self.store.summary_exists(book_id, summary_type):
                    logger.debug("Summary %s already exists for book %s", summary_type.value, book_id)
                    continue

                try:
                    result = await self.generator.generate(book.title, book.description, None, summary_type)
                finally:
                    await self.book_governor.pace()

                if result is not None:
                    await self.store.insert_summary(self._build_row(book_id, summary_type, result))
                    report.generated.append(summary_type)
                    report.cost += result.cost_usd
        except Exception as e:
            logger.error("Failed to generate summaries for book %s: %s", book_id, e)
            return report

        report.success = True
        return report

    async def regenerate_summary(self, book_id: int, summary_type: SummaryType) -> SummaryResult | None:
        """
        Replace one summary type for a book with a fresh generation.

        The existing row is only dropped once a new one is ready; delete and
        insert happen in one transaction.
        """
        try:
            book = await self.store.get_book(book_id)
            if book is None or not (book.title or "").strip():
                return None

            result = await self.generator.generate(book.title, book.description, None, summary_type)
            if result is None:
                return None

            await self.store.replace_summary(self._build_row(book_id, summary_type, result))
            return result
        except Exception as e:
            logger.error("Failed to regenerate %s summary for book %s: %s", summary_type.value, book_id, e)
            return None

    async def get_summary_stats(self) -> SummaryStats:
        return await self.store.aggregate_summary_stats()

    async def aclose(self) -> None:
        await self.generator.aclose()
