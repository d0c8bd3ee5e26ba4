"""Add result_checked_at and evaluation_data columns.

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-18

- fixtures.result_checked_at: last time final scores were requested, so
  result ingestion rotates through candidates instead of re-reading the
  oldest ones every tick
- slips.evaluation_data: per-pick grading detail written with the score
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0003'
down_revision = '0002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        'fixtures',
        sa.Column(
            'result_checked_at', sa.DateTime(timezone=True), nullable=True,
            comment='Last final score request for this fixture'
        )
    )

    op.add_column(
        'slips',
        sa.Column(
            'evaluation_data', postgresql.JSONB(), nullable=True,
            comment='Per-pick grading: predicted, actual, is_correct, reason'
        )
    )


def downgrade() -> None:
    op.drop_column('slips', 'evaluation_data')
    op.drop_column('fixtures', 'result_checked_at')
