"""Database models using SQLModel."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class BookType(str, Enum):
    """Kind of catalog item a summary row belongs to."""

    EBOOK = "ebook"
    MAGAZINE = "magazine"


class SummaryType(str, Enum):
    """
    AI-generated artifact kinds.

    Declaration order is generation order. OVERVIEW is the primary type: its
    presence marks a book as already picked up by the summary job.
    """

    OVERVIEW = "overview"
    KEY_POINTS = "key_points"
    TOPICS = "topics"
    READING_GUIDE = "reading_guide"

    @classmethod
    def primary(cls) -> "SummaryType":
        return cls.OVERVIEW


class RatingSource(str, Enum):
    """Where a book's external rating came from."""

    GOODREADS = "goodreads"
    NONE = "none"  # Looked up, nothing usable found


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EbookBase(SQLModel):
    """Base ebook model with catalog fields."""

    title: str = Field(index=True, description="Book title")
    author: str | None = Field(default=None, index=True, description="Author display name")
    description: str | None = Field(default=None, description="Publisher or catalog description")
    isbn: str | None = Field(default=None, index=True, description="ISBN-10 or ISBN-13")
    language: str | None = Field(default=None, description="Content language")


class Ebook(EbookBase, table=True):
    """Ebook database table model."""

    __tablename__ = "ebooks"

    id: int | None = Field(default=None, primary_key=True)
    goodreads_id: str | None = Field(default=None, description="Goodreads book id")
    external_rating: Decimal | None = Field(default=None, max_digits=3, decimal_places=2)
    external_ratings_count: int | None = Field(default=None)
    external_rating_source: RatingSource | None = Field(default=None, sa_type=sa.String(32))
    # No-match bookkeeping for the ratings job
    external_rating_attempts: int = Field(default=0)
    external_rating_checked_at: datetime | None = Field(default=None, sa_type=sa.DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=sa.DateTime(timezone=True))


class RatingUpdate(SQLModel):
    """Rating fields the ratings job is allowed to write."""

    goodreads_id: str | None = None
    external_rating: Decimal | None = None
    external_ratings_count: int | None = None
    external_rating_source: RatingSource | None = None
    external_rating_attempts: int | None = None
    external_rating_checked_at: datetime | None = None


class AIBookSummary(SQLModel, table=True):
    """One generated summary for one (book, summary type) pair."""

    __tablename__ = "ai_book_summaries"
    __table_args__ = (
        sa.UniqueConstraint("book_type", "book_id", "summary_type", name="uq_ai_book_summaries_book_type"),
    )

    id: int | None = Field(default=None, primary_key=True)
    book_type: BookType = Field(default=BookType.EBOOK, sa_type=sa.String(16), index=True)
    book_id: int = Field(index=True)
    summary_type: SummaryType = Field(sa_type=sa.String(32), index=True)
    content: str = Field(sa_type=sa.Text)
    model_used: str | None = Field(default=None)
    input_tokens: int | None = Field(default=None)
    output_tokens: int | None = Field(default=None)
    generation_cost_usd: Decimal | None = Field(default=None, max_digits=10, decimal_places=6)
    generated_at: datetime = Field(default_factory=utc_now, sa_type=sa.DateTime(timezone=True))
    expires_at: datetime | None = Field(default=None, index=True, sa_type=sa.DateTime(timezone=True))


class SummaryResult(SQLModel):
    """What the AI adapter returns for one successful generation."""

    content: str
    model_used: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


class SummaryStats(SQLModel):
    """All-time aggregate over stored summaries."""

    total_books: int = 0
    books_with_summaries: int = 0
    total_summaries: int = 0
    total_cost: float = 0.0
