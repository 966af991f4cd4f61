"""Typed reads and writes over ebooks and their enrichment rows."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    AIBookSummary,
    BookType,
    Ebook,
    RatingSource,
    RatingUpdate,
    SummaryStats,
    SummaryType,
    utc_now,
)
from db.session import async_session_maker

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Record store used by the enrichment jobs.

    Each call runs in its own short session, so a failure on one record never
    leaves a half-open transaction behind for the next one.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] | None = None) -> None:
        self._session_factory = session_factory or async_session_maker

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------

    async def get_book(self, book_id: int) -> Ebook | None:
        async with self._session_factory() as session:
            return await session.get(Ebook, book_id)

    async def count_books(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Ebook))
            return int(result.scalar_one() or 0)

    async def add_book(self, book: Ebook) -> Ebook:
        """Insert a book. Used by seeding scripts and tests; ingestion owns books otherwise."""
        async with self._session_factory() as session:
            session.add(book)
            await session.commit()
            await session.refresh(book)
            return book

    async def select_summary_candidates(
        self,
        limit: int,
        book_type: BookType = BookType.EBOOK,
    ) -> list[Ebook]:
        """Ebooks with no summary of the primary type, oldest id first."""
        summarized = select(AIBookSummary.book_id).where(
            AIBookSummary.book_type == book_type.value,
            AIBookSummary.summary_type == SummaryType.primary().value,
        )
        stmt = (
            select(Ebook)
            .where(Ebook.id.not_in(summarized))
            .order_by(Ebook.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def select_rating_candidates(
        self,
        limit: int,
        *,
        retry_before: datetime | None = None,
        max_attempts: int | None = None,
    ) -> list[Ebook]:
        """
        Ebooks that were never matched to a Goodreads rating.

        A record qualifies when it has no rating and was never marked
        ``none``. A record marked ``none`` qualifies again once it is past
        the retry cooldown and under the attempt cap, as long as it still has
        no rating or no Goodreads id. Records with an ISBN come first.

        Args:
            limit: Maximum rows to return.
            retry_before: ``none`` records checked at or after this time are left out.
            max_attempts: ``none`` records with this many attempts are left out.
        """
        source = Ebook.external_rating_source
        never_tried = and_(
            Ebook.external_rating.is_(None),
            or_(source.is_(None), source != RatingSource.NONE.value),
        )
        retry_conditions = [
            source == RatingSource.NONE.value,
            or_(Ebook.external_rating.is_(None), Ebook.goodreads_id.is_(None)),
        ]
        if retry_before is not None:
            retry_conditions.append(
                or_(
                    Ebook.external_rating_checked_at.is_(None),
                    Ebook.external_rating_checked_at < retry_before,
                )
            )
        if max_attempts is not None:
            retry_conditions.append(Ebook.external_rating_attempts < max_attempts)

        missing_isbn = or_(Ebook.isbn.is_(None), Ebook.isbn == "")
        stmt = (
            select(Ebook)
            .where(or_(never_tried, and_(*retry_conditions)))
            .order_by(missing_isbn, Ebook.id)
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_rating_fields(self, book_id: int, fields: RatingUpdate) -> bool:
        """Write only the rating fields set on ``fields``. Returns False if no row matched."""
        values = fields.model_dump(exclude_unset=True)
        if not values:
            return False
        if isinstance(values.get("external_rating_source"), RatingSource):
            values["external_rating_source"] = values["external_rating_source"].value
        async with self._session_factory() as session:
            result = await session.execute(
                update(Ebook).where(Ebook.id == book_id).values(**values)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def summary_exists(
        self,
        book_id: int,
        summary_type: SummaryType,
        book_type: BookType = BookType.EBOOK,
    ) -> bool:
        stmt = (
            select(AIBookSummary.id)
            .where(
                AIBookSummary.book_type == book_type.value,
                AIBookSummary.book_id == book_id,
                AIBookSummary.summary_type == summary_type.value,
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.first() is not None

    async def get_summary(
        self,
        book_id: int,
        summary_type: SummaryType,
        book_type: BookType = BookType.EBOOK,
    ) -> AIBookSummary | None:
        stmt = select(AIBookSummary).where(
            AIBookSummary.book_type == book_type.value,
            AIBookSummary.book_id == book_id,
            AIBookSummary.summary_type == summary_type.value,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def book_ids_with_summary(
        self,
        summary_type: SummaryType,
        book_type: BookType = BookType.EBOOK,
    ) -> list[int]:
        stmt = select(AIBookSummary.book_id).where(
            AIBookSummary.book_type == book_type.value,
            AIBookSummary.summary_type == summary_type.value,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [row[0] for row in result.all()]

    async def insert_summary(self, summary: AIBookSummary) -> AIBookSummary:
        async with self._session_factory() as session:
            session.add(summary)
            await session.commit()
            await session.refresh(summary)
            return summary

    async def delete_summary(
        self,
        book_id: int,
        summary_type: SummaryType,
        book_type: BookType = BookType.EBOOK,
    ) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AIBookSummary).where(
                    AIBookSummary.book_type == book_type.value,
                    AIBookSummary.book_id == book_id,
                    AIBookSummary.summary_type == summary_type.value,
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def replace_summary(self, summary: AIBookSummary) -> AIBookSummary:
        """Delete any row for the same (book, type) and insert ``summary`` in one transaction."""
        async with self._session_factory() as session:
            try:
                await session.execute(
                    delete(AIBookSummary).where(
                        AIBookSummary.book_type == BookType(summary.book_type).value,
                        AIBookSummary.book_id == summary.book_id,
                        AIBookSummary.summary_type == SummaryType(summary.summary_type).value,
                    )
                )
                session.add(summary)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            await session.refresh(summary)
            return summary

    async def purge_expired_summaries(self, now: datetime | None = None) -> int:
        """Delete summaries past their retention horizon."""
        cutoff = now or utc_now()
        async with self._session_factory() as session:
            result = await session.execute(
                delete(AIBookSummary).where(
                    AIBookSummary.expires_at.is_not(None),
                    AIBookSummary.expires_at <= cutoff,
                )
            )
            await session.commit()
            purged = result.rowcount or 0
        if purged:
            logger.info("Purged %d expired AI summaries", purged)
        return purged

    async def aggregate_summary_stats(self, book_type: BookType = BookType.EBOOK) -> SummaryStats:
        """All-time totals over stored summaries."""
        async with self._session_factory() as session:
            total_books = (
                await session.execute(select(func.count()).select_from(Ebook))
            ).scalar_one()
            books_with_summaries = (
                await session.execute(
                    select(func.count(func.distinct(AIBookSummary.book_id))).where(
                        AIBookSummary.book_type == book_type.value
                    )
                )
            ).scalar_one()
            count, cost = (
                await session.execute(
                    select(
                        func.count(AIBookSummary.id),
                        func.coalesce(func.sum(AIBookSummary.generation_cost_usd), 0),
                    )
                )
            ).one()

        return SummaryStats(
            total_books=int(total_books or 0),
            books_with_summaries=int(books_with_summaries or 0),
            total_summaries=int(count or 0),
            total_cost=float(cost or 0),
        )
