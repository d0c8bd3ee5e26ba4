"""Add job lock and job run tables.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-17

- job_locks: one row per held named job lock (expired rows count as absent)
- job_runs: execution history used for dependency and health checks
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'job_locks',
        sa.Column('job_name', sa.String(100), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('holder_id', sa.String(200), nullable=False),
        sa.PrimaryKeyConstraint('job_name'),
    )

    op.create_table(
        'job_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('execution_id', sa.String(64), nullable=False),
        sa.Column('job_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('holder_id', sa.String(200), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result', postgresql.JSONB(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('execution_id'),
    )
    op.create_index('idx_job_runs_job_started', 'job_runs', ['job_name', 'started_at'])
    op.create_index('idx_job_runs_status', 'job_runs', ['status'])


def downgrade() -> None:
    op.drop_table('job_runs')
    op.drop_table('job_locks')
