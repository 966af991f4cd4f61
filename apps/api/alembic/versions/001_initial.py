"""Initial database schema with ebooks and AI summary tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-09-14

This migration creates the initial database schema for the Library Enrichment API:
- ebooks: Catalog records plus their external rating fields
- ai_book_summaries: One generated summary per (book type, book, summary type)
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create initial database schema."""
    # ===========================================
    # Ebooks table
    # ===========================================
    op.create_table(
        "ebooks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("author", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("isbn", sa.String(), nullable=True),
        sa.Column("language", sa.String(), nullable=True),
        sa.Column("goodreads_id", sa.String(), nullable=True),
        sa.Column("external_rating", sa.Numeric(3, 2), nullable=True),
        sa.Column("external_ratings_count", sa.Integer(), nullable=True),
        sa.Column("external_rating_source", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_index("ix_ebooks_title", "ebooks", ["title"])
    op.create_index("ix_ebooks_author", "ebooks", ["author"])
    op.create_index("ix_ebooks_isbn", "ebooks", ["isbn"])

    # ===========================================
    # AI summaries table
    # ===========================================
    op.create_table(
        "ai_book_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("book_type", sa.String(16), nullable=False, server_default="ebook"),
        sa.Column("book_id", sa.Integer(), nullable=False),
        sa.Column("summary_type", sa.String(32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model_used", sa.String(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("generation_cost_usd", sa.Numeric(10, 6), nullable=True),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("book_type", "book_id", "summary_type", name="uq_ai_book_summaries_book_type"),
    )

    op.create_index("ix_ai_book_summaries_book_type", "ai_book_summaries", ["book_type"])
    op.create_index("ix_ai_book_summaries_book_id", "ai_book_summaries", ["book_id"])
    op.create_index("ix_ai_book_summaries_summary_type", "ai_book_summaries", ["summary_type"])
    op.create_index("ix_ai_book_summaries_expires_at", "ai_book_summaries", ["expires_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("ai_book_summaries")
    op.drop_table("ebooks")
