"""Database module."""

from .models import (
    AIBookSummary,
    BookType,
    Ebook,
    RatingSource,
    RatingUpdate,
    SummaryResult,
    SummaryStats,
    SummaryType,
)
from .session import create_db_and_tables, dispose_engine, get_session

__all__ = [
    "AIBookSummary",
    "BookType",
    "Ebook",
    "RatingSource",
    "RatingUpdate",
    "SummaryResult",
    "SummaryStats",
    "SummaryType",
    "create_db_and_tables",
    "dispose_engine",
    "get_session",
]
