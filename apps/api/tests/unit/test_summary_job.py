"""Unit tests for the AI summary job."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.config import Settings
from db.models import AIBookSummary, SummaryResult, SummaryType
from services.claude_client import ClaudeAPIError
from services.governor import RateCostGovernor
from services.record_store import RecordStore
from services.summary_job import AISummaryJob


def make_job(
    store: RecordStore,
    generator: MagicMock,
    settings: Settings,
    governor: RateCostGovernor | None = None,
) -> AISummaryJob:
    return AISummaryJob(
        store=store,
        generator=generator,
        governor=governor or RateCostGovernor(0),
        settings=settings,
        book_governor=RateCostGovernor(0),
    )


class TestRun:
    """Tests for the batch entry point."""

    @pytest.mark.asyncio
    async def test_generates_every_type_for_a_new_book(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        book = await add_book(title="Dune", description="Desert planet.")

        stats = await summary_job.run()

        assert stats.succeeded == 1
        assert stats.failed == 0
        assert stats.requests == len(SummaryType)
        assert stats.total_cost_usd == pytest.approx(0.0016 * len(SummaryType))
        called_types = [call.args[3] for call in mock_generator.generate.await_args_list]
        assert called_types == list(SummaryType)
        mock_generator.generate.assert_any_await("Dune", "Desert planet.", None, SummaryType.OVERVIEW)
        for summary_type in SummaryType:
            assert await store.summary_exists(book.id, summary_type)

    @pytest.mark.asyncio
    async def test_missing_api_key_is_a_noop(
        self, store: RecordStore, add_book, mock_generator: MagicMock, test_settings: Settings
    ) -> None:
        await add_book()
        settings = test_settings.model_copy(update={"anthropic_api_key": "  "})
        job = make_job(store, mock_generator, settings)

        stats = await job.run()

        assert stats.processed == 0
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_run_does_no_work(
        self, summary_job: AISummaryJob, add_book, mock_generator: MagicMock
    ) -> None:
        """Test that a finished book is neither selected nor regenerated."""
        await add_book()
        await summary_job.run()
        mock_generator.generate.reset_mock()

        stats = await summary_job.run()

        assert stats.processed == 0
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resumes_partially_enriched_book(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        """Test that existing types are skipped and only missing ones are generated."""
        book = await add_book()
        await store.insert_summary(
            AIBookSummary(book_id=book.id, summary_type=SummaryType.KEY_POINTS, content="existing")
        )

        stats = await summary_job.run()

        assert stats.succeeded == 1
        called_types = [call.args[3] for call in mock_generator.generate.await_args_list]
        assert SummaryType.KEY_POINTS not in called_types
        assert len(called_types) == len(SummaryType) - 1
        kept = await store.get_summary(book.id, SummaryType.KEY_POINTS)
        assert kept.content == "existing"

    @pytest.mark.asyncio
    async def test_null_generations_count_as_succeeded_with_no_rows(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        """Test a book whose every generation comes back empty."""
        book = await add_book(title="Foo", isbn="123", description=None)
        mock_generator.generate.return_value = None

        stats = await summary_job.run()

        assert stats.succeeded == 1
        assert stats.total_cost_usd == 0
        assert mock_generator.generate.await_count == len(SummaryType)
        for summary_type in SummaryType:
            assert await store.summary_exists(book.id, summary_type) is False

    @pytest.mark.asyncio
    async def test_blank_title_is_skipped(
        self, summary_job: AISummaryJob, add_book, mock_generator: MagicMock
    ) -> None:
        await add_book(title="   ")

        stats = await summary_job.run()

        assert stats.skipped == 1
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_type_does_not_stop_the_others(
        self,
        summary_job: AISummaryJob,
        store: RecordStore,
        add_book,
        mock_generator: MagicMock,
        summary_result: SummaryResult,
    ) -> None:
        book = await add_book()
        mock_generator.generate.side_effect = [
            ClaudeAPIError(529, "Overloaded"),
            summary_result,
            summary_result,
            summary_result,
        ]

        stats = await summary_job.run()

        assert stats.succeeded == 1
        assert stats.requests == len(SummaryType)
        assert await store.summary_exists(book.id, SummaryType.OVERVIEW) is False
        assert await store.summary_exists(book.id, SummaryType.READING_GUIDE) is True

    @pytest.mark.asyncio
    async def test_adapter_errors_on_some_books_leave_the_rest_enriched(
        self,
        summary_job: AISummaryJob,
        store: RecordStore,
        add_book,
        mock_generator: MagicMock,
        summary_result: SummaryResult,
    ) -> None:
        books = [await add_book(title=f"Book {i}") for i in range(1, 11)]

        async def generate(title, description, extracted_content, summary_type):
            if title in ("Book 2", "Book 5"):
                raise ClaudeAPIError(500, "boom")
            return summary_result

        mock_generator.generate.side_effect = generate

        stats = await summary_job.run()

        assert stats.processed == 10
        for book in books:
            exists = await store.summary_exists(book.id, SummaryType.OVERVIEW)
            assert exists is (book.title not in ("Book 2", "Book 5"))

    @pytest.mark.asyncio
    async def test_store_failure_counts_book_as_failed(
        self, store: RecordStore, add_book, mock_generator: MagicMock, test_settings: Settings
    ) -> None:
        """Test that an error outside the per-type loop fails that book only."""
        books = [await add_book(title=f"Book {i}") for i in range(1, 11)]
        broken = {books[1].id, books[4].id}
        real_exists = store.summary_exists

        async def summary_exists(book_id, summary_type, *args, **kwargs):
            if book_id in broken:
                raise RuntimeError("database hiccup")
            return await real_exists(book_id, summary_type, *args, **kwargs)

        store.summary_exists = summary_exists
        job = make_job(store, mock_generator, test_settings)

        stats = await job.run()

        assert stats.failed == 2
        assert stats.succeeded == 8

    @pytest.mark.asyncio
    async def test_batch_size_bounds_candidates(
        self, store: RecordStore, add_book, mock_generator: MagicMock, test_settings: Settings
    ) -> None:
        for i in range(25):
            await add_book(title=f"Book {i}")
        settings = test_settings.model_copy(update={"ai_batch_size": 10})
        job = make_job(store, mock_generator, settings)

        stats = await job.run()

        assert stats.processed == 10
        assert mock_generator.generate.await_count == 10 * len(SummaryType)

    @pytest.mark.asyncio
    async def test_cost_cap_skips_remaining_work(
        self, store: RecordStore, add_book, mock_generator: MagicMock, test_settings: Settings
    ) -> None:
        for i in range(3):
            await add_book(title=f"Book {i}")
        governor = RateCostGovernor(0, max_cost_usd=0.003)
        job = make_job(store, mock_generator, test_settings, governor)

        stats = await job.run()

        # Two generations at $0.0016 cross the cap mid-way through the first book
        assert mock_generator.generate.await_count == 2
        assert stats.succeeded == 1
        assert stats.skipped == 2

    @pytest.mark.asyncio
    async def test_paces_after_every_adapter_call(
        self, summary_job: AISummaryJob, add_book, mock_generator: MagicMock
    ) -> None:
        await add_book()
        mock_generator.generate.side_effect = RuntimeError("always fails")
        summary_job.governor = MagicMock(exhausted=False, requests=0)
        summary_job.governor.pace = AsyncMock()

        await summary_job.run()

        assert summary_job.governor.pace.await_count == len(SummaryType)

    @pytest.mark.asyncio
    async def test_purges_expired_summaries_first(
        self, summary_job: AISummaryJob, store: RecordStore, add_book
    ) -> None:
        """Test that an expired overview makes its book a candidate again."""
        book = await add_book()
        await summary_job.run()
        row = await store.get_summary(book.id, SummaryType.OVERVIEW)
        await store.delete_summary(book.id, SummaryType.OVERVIEW)
        await store.insert_summary(
            AIBookSummary(
                book_id=book.id,
                summary_type=SummaryType.OVERVIEW,
                content=row.content,
                generated_at=row.generated_at - timedelta(days=91),
                expires_at=row.generated_at - timedelta(days=1),
            )
        )

        stats = await summary_job.run()

        assert stats.succeeded == 1
        fresh = await store.get_summary(book.id, SummaryType.OVERVIEW)
        assert fresh.expires_at > row.generated_at


class TestStoredRows:
    @pytest.mark.asyncio
    async def test_retention_is_exactly_ninety_days(
        self, summary_job: AISummaryJob, store: RecordStore, add_book
    ) -> None:
        book = await add_book()

        await summary_job.run()

        row = await store.get_summary(book.id, SummaryType.OVERVIEW)
        assert row.expires_at - row.generated_at == timedelta(days=90)

    @pytest.mark.asyncio
    async def test_usage_and_cost_are_stored(self, summary_job: AISummaryJob, store: RecordStore, add_book) -> None:
        book = await add_book()

        await summary_job.run()

        row = await store.get_summary(book.id, SummaryType.TOPICS)
        assert row.model_used == "claude-test"
        assert row.input_tokens == 1000
        assert row.output_tokens == 200
        assert row.generation_cost_usd == Decimal("0.001600")


class TestPerBookEntryPoints:
    """Tests for generate_summaries_for_book and regenerate_summary."""

    @pytest.mark.asyncio
    async def test_generate_for_book_only_missing_types(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        book = await add_book()
        await store.insert_summary(AIBookSummary(book_id=book.id, summary_type=SummaryType.OVERVIEW, content="x"))

        report = await summary_job.generate_summaries_for_book(
            book.id, [SummaryType.OVERVIEW, SummaryType.TOPICS]
        )

        assert report.success is True
        assert report.generated == [SummaryType.TOPICS]
        assert report.cost == pytest.approx(0.0016)
        assert mock_generator.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_generate_for_book_defaults_to_all_types(self, summary_job: AISummaryJob, add_book) -> None:
        book = await add_book()

        report = await summary_job.generate_summaries_for_book(book.id)

        assert report.generated == list(SummaryType)

    @pytest.mark.asyncio
    async def test_generate_for_book_with_empty_types_does_nothing(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        book = await add_book()

        report = await summary_job.generate_summaries_for_book(book.id, [])

        assert report.success is True
        assert report.generated == []
        mock_generator.generate.assert_not_awaited()
        assert not await store.summary_exists(book.id, SummaryType.OVERVIEW)

    @pytest.mark.asyncio
    async def test_generate_for_unknown_book(self, summary_job: AISummaryJob, mock_generator: MagicMock) -> None:
        report = await summary_job.generate_summaries_for_book(404)

        assert report.success is False
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generate_for_book_error_keeps_partial_report(
        self, summary_job: AISummaryJob, add_book, mock_generator: MagicMock, summary_result: SummaryResult
    ) -> None:
        book = await add_book()
        mock_generator.generate.side_effect = [summary_result, ClaudeAPIError(500, "boom")]

        report = await summary_job.generate_summaries_for_book(book.id)

        assert report.success is False
        assert report.generated == [SummaryType.OVERVIEW]

    @pytest.mark.asyncio
    async def test_generate_for_book_without_api_key(
        self, store: RecordStore, add_book, mock_generator: MagicMock, test_settings: Settings
    ) -> None:
        book = await add_book()
        job = make_job(store, mock_generator, test_settings.model_copy(update={"anthropic_api_key": None}))

        report = await job.generate_summaries_for_book(book.id)

        assert report.success is False
        mock_generator.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_regenerate_replaces_existing_row(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        book = await add_book()
        await store.insert_summary(AIBookSummary(book_id=book.id, summary_type=SummaryType.OVERVIEW, content="old"))
        mock_generator.generate.return_value = SummaryResult(content="new", model_used="m", cost_usd=0.01)

        result = await summary_job.regenerate_summary(book.id, SummaryType.OVERVIEW)

        assert result is not None
        assert result.content == "new"
        stored = await store.get_summary(book.id, SummaryType.OVERVIEW)
        assert stored.content == "new"
        assert await store.book_ids_with_summary(SummaryType.OVERVIEW) == [book.id]

    @pytest.mark.asyncio
    async def test_regenerate_missing_type_creates_it(
        self, summary_job: AISummaryJob, store: RecordStore, add_book
    ) -> None:
        book = await add_book()

        result = await summary_job.regenerate_summary(book.id, SummaryType.READING_GUIDE)

        assert result is not None
        assert await store.summary_exists(book.id, SummaryType.READING_GUIDE) is True

    @pytest.mark.asyncio
    async def test_failed_regeneration_keeps_old_row(
        self, summary_job: AISummaryJob, store: RecordStore, add_book, mock_generator: MagicMock
    ) -> None:
        book = await add_book()
        await store.insert_summary(AIBookSummary(book_id=book.id, summary_type=SummaryType.OVERVIEW, content="old"))
        mock_generator.generate.side_effect = ClaudeAPIError(500, "boom")

        result = await summary_job.regenerate_summary(book.id, SummaryType.OVERVIEW)

        assert result is None
        stored = await store.get_summary(book.id, SummaryType.OVERVIEW)
        assert stored.content == "old"

    @pytest.mark.asyncio
    async def test_repeated_generate_and_regenerate_keep_one_row_per_type(
        self, summary_job: AISummaryJob, store: RecordStore, add_book
    ) -> None:
        book = await add_book()

        await summary_job.generate_summaries_for_book(book.id)
        await summary_job.regenerate_summary(book.id, SummaryType.TOPICS)
        await summary_job.generate_summaries_for_book(book.id)
        await summary_job.regenerate_summary(book.id, SummaryType.TOPICS)
        await summary_job.run()

        stats = await summary_job.get_summary_stats()
        assert stats.total_summaries == len(SummaryType)
        assert stats.books_with_summaries == 1

    @pytest.mark.asyncio
    async def test_regenerate_unknown_book(self, summary_job: AISummaryJob) -> None:
        assert await summary_job.regenerate_summary(404, SummaryType.OVERVIEW) is None

    @pytest.mark.asyncio
    async def test_aclose_closes_generator(self, summary_job: AISummaryJob, mock_generator: MagicMock) -> None:
        await summary_job.aclose()
        mock_generator.aclose.assert_awaited_once()
