"""Add rating retry tracking fields

Revision ID: a3c9e1f0b7d2
Revises: 001_initial
Create Date: 2026-10-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3c9e1f0b7d2'
down_revision: Union[str, None] = '001_initial'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'ebooks',
        sa.Column('external_rating_attempts', sa.Integer(), nullable=False, server_default='0'),
    )
    op.add_column('ebooks', sa.Column('external_rating_checked_at', sa.DateTime(timezone=True), nullable=True))

    # Books already parked as 'none' count as one attempt, checked now
    op.execute(
        sa.text("""
            UPDATE ebooks
            SET external_rating_attempts = 1,
                external_rating_checked_at = CURRENT_TIMESTAMP
            WHERE external_rating_source = 'none'
        """)
    )


def downgrade() -> None:
    op.drop_column('ebooks', 'external_rating_checked_at')
    op.drop_column('ebooks', 'external_rating_attempts')
