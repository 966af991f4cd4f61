"""
Goodreads rating enrichment job.

Fetches ratings for ebooks that don't have external ratings yet, using ISBN
lookup first and title+author search as a fallback. Requests are spaced out
to be a considerate client of a site with no formal API.
"""

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Protocol

from core.config import Settings, get_settings
from db.models import Ebook, RatingSource, RatingUpdate, utc_now
from services.goodreads_client import GoodreadsRating
from services.governor import Governor
from services.job_results import RunStats, attempt
from services.record_store import RecordStore
from services.title_matcher import clean_isbn

logger = logging.getLogger(__name__)

RATING_PRECISION = Decimal("0.01")


class RatingLookup(Protocol):
    """Ratings adapter capability used by the job."""

    async def search_by_isbn(self, isbn: str) -> GoodreadsRating | None:
        ...

    async def search_by_title(self, title: str, author: str | None = None) -> GoodreadsRating | None:
        ...

    async def fetch_by_id(self, goodreads_id: str) -> GoodreadsRating | None:
        ...

    async def aclose(self) -> None:
        ...


class BookRatingResult(str, Enum):
    """What happened to one candidate in a ratings run."""

    ENRICHED = "enriched"
    NO_MATCH = "no_match"
    SKIPPED = "skipped"


class _RequestCapReached(Exception):
    """The run's request cap was hit before every lookup strategy was tried."""


def quantize_rating(rating: float) -> Decimal:
    return Decimal(str(rating)).quantize(RATING_PRECISION, rounding=ROUND_HALF_UP)


class RatingsEnrichmentJob:
    """Batch and per-book entry points for Goodreads ratings."""

    def __init__(
        self,
        store: RecordStore,
        client: RatingLookup,
        governor: Governor,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.governor = governor
        self.settings = settings or get_settings()

    async def run(self) -> RunStats:
        """Enrich the next batch of books without a Goodreads rating."""
        stats = RunStats()
        logger.debug("Starting Goodreads rating enrichment...")

        self.governor.reset()
        retry_before = utc_now() - timedelta(days=self.settings.ratings_retry_cooldown_days)
        pool = await self.store.select_rating_candidates(
            self.settings.ratings_pool_size,
            retry_before=retry_before,
            max_attempts=self.settings.ratings_max_attempts,
        )

        if not pool:
            logger.info("No books need Goodreads rating enrichment")
            return stats

        logger.info("Found %d books needing Goodreads ratings", len(pool))

        for book in pool[: self.settings.ratings_batch_size]:
            outcome = await attempt(self._enrich_book, book)
            if not outcome.ok:
                logger.error("Failed to enrich Goodreads rating for book %s: %s", book.id, outcome.error)
                stats.failed += 1
            elif outcome.value is BookRatingResult.ENRICHED:
                stats.succeeded += 1
            elif outcome.value is BookRatingResult.NO_MATCH:
                stats.failed += 1
            else:
                stats.skipped += 1

        stats.requests = self.governor.requests
        logger.info(
            "Goodreads rating enrichment complete: %d enriched, %d failed, %d skipped",
            stats.succeeded,
            stats.failed,
            stats.skipped,
        )
        return stats

    async def _enrich_book(self, book: Ebook) -> BookRatingResult:
        if book.goodreads_id and book.external_rating_source == RatingSource.GOODREADS:
            return BookRatingResult.SKIPPED
        if self.governor.exhausted:
            logger.info("Goodreads request budget exhausted, skipping book %s", book.id)
            return BookRatingResult.SKIPPED

        logger.debug("Enriching Goodreads rating for: %s", book.title)
        try:
            rating = await self._lookup(book, paced=True)
        except _RequestCapReached:
            # Search incomplete, so the book is not marked none
            logger.info("Goodreads request budget exhausted mid-lookup, skipping book %s", book.id)
            return BookRatingResult.SKIPPED

        if rating is not None and rating.rating > 0:
            await self._save_rating(book.id, rating)
            logger.debug(
                "Updated Goodreads rating for: %s - %s/5 (%d ratings)",
                book.title,
                rating.rating,
                rating.ratings_count,
            )
            return BookRatingResult.ENRICHED

        # Park the book so it isn't searched again every run
        await self.store.update_rating_fields(
            book.id,
            RatingUpdate(
                external_rating_source=RatingSource.NONE,
                external_rating_attempts=(book.external_rating_attempts or 0) + 1,
                external_rating_checked_at=utc_now(),
            ),
        )
        logger.debug("No Goodreads rating found for: %s", book.title)
        return BookRatingResult.NO_MATCH

    async def _lookup(self, book: Ebook, paced: bool, use_known_id: bool = False) -> GoodreadsRating | None:
        """
        Run the lookup strategies in order until one returns a rating.

        1. Known Goodreads id (only when ``use_known_id``)
        2. ISBN search, skipped for malformed ISBNs
        3. Title (+ author) search

        Raises:
            _RequestCapReached: ``paced`` and the cap was hit before step 3.
        """
        rating: GoodreadsRating | None = None

        if use_known_id and book.goodreads_id:
            rating = await self._paced(self.client.fetch_by_id(book.goodreads_id), paced)

        isbn = clean_isbn(book.isbn)
        if rating is None and isbn:
            rating = await self._paced(self.client.search_by_isbn(isbn), paced)

        if rating is None and (book.title or "").strip():
            if paced and self.governor.exhausted:
                raise _RequestCapReached
            rating = await self._paced(self.client.search_by_title(book.title, book.author or None), paced)

        return rating

    async def _paced(self, call, paced: bool) -> GoodreadsRating | None:
        try:
            return await call
        finally:
            if paced:
                await self.governor.pace()

    async def _save_rating(self, book_id: int, rating: GoodreadsRating) -> None:
        await self.store.update_rating_fields(
            book_id,
            RatingUpdate(
                goodreads_id=rating.goodreads_id,
                external_rating=quantize_rating(rating.rating),
                external_ratings_count=rating.ratings_count,
                external_rating_source=RatingSource.GOODREADS,
                external_rating_checked_at=utc_now(),
            ),
        )

    async def refresh_rating_for_book(self, book_id: int) -> bool:
        """
        Re-fetch the Goodreads rating for one book (admin/manual refresh).

        Uses the stored Goodreads id first when there is one, then ISBN, then
        title. Returns True if a rating was stored.
        """
        try:
            book = await self.store.get_book(book_id)
            if book is None:
                logger.error("Book not found: %s", book_id)
                return False

            rating = await self._lookup(book, paced=False, use_known_id=True)
            if rating is not None and rating.rating > 0:
                await self._save_rating(book_id, rating)
                logger.info("Refreshed Goodreads rating for: %s - %s/5", book.title, rating.rating)
                return True

            logger.info("No Goodreads rating found for: %s", book.title)
            return False
        except Exception as e:
            logger.error("Failed to refresh Goodreads rating for book %s: %s", book_id, e)
            return False

    async def aclose(self) -> None:
        await self.client.aclose()
