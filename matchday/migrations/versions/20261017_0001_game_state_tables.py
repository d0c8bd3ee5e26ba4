"""Fixtures, results, cycles and slips.

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # Fixtures
    # ==========================================================================
    op.create_table(
        'fixtures',
        sa.Column('id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('home_team', sa.String(200), nullable=False),
        sa.Column('away_team', sa.String(200), nullable=False),
        sa.Column('league_name', sa.String(200), nullable=True),
        sa.Column('scheduled_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='NS'),
        sa.Column('status_checked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('result_info', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_fixtures_scheduled_status', 'fixtures', ['scheduled_start', 'status'])

    # ==========================================================================
    # FixtureResult - raw scores and derived outcomes
    # ==========================================================================
    op.create_table(
        'fixture_results',
        sa.Column('fixture_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('home_score', sa.Integer(), nullable=True),
        sa.Column('away_score', sa.Integer(), nullable=True),
        sa.Column('ht_home_score', sa.Integer(), nullable=True),
        sa.Column('ht_away_score', sa.Integer(), nullable=True),
        sa.Column('result_1x2', sa.String(1), nullable=True),
        sa.Column('result_ou15', sa.String(5), nullable=True),
        sa.Column('result_ou25', sa.String(5), nullable=True),
        sa.Column('result_ou35', sa.String(5), nullable=True),
        sa.Column('result_btts', sa.String(3), nullable=True),
        sa.Column('result_ht', sa.String(1), nullable=True),
        sa.Column('full_score', sa.String(10), nullable=True),
        sa.Column('ht_score', sa.String(10), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fetched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('fixture_id'),
        sa.ForeignKeyConstraint(['fixture_id'], ['fixtures.id']),
        sa.CheckConstraint(
            '(home_score IS NULL) = (away_score IS NULL)',
            name='ck_fixture_results_score_pair',
        ),
    )

    # ==========================================================================
    # Cycles
    # ==========================================================================
    op.create_table(
        'cycles',
        sa.Column('cycle_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('entities', postgresql.JSONB(), nullable=False),
        sa.Column('cycle_start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cycle_end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_tx_hash', sa.String(100), nullable=True),
        sa.Column('ready_for_resolution', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('resolution_prepared_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution_payload', postgresql.JSONB(), nullable=True),
        sa.Column('evaluation_completed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('evaluation_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('cycle_id'),
    )
    op.create_index('idx_cycles_pending', 'cycles', ['is_resolved', 'cycle_end_time'])

    # ==========================================================================
    # Slips
    # ==========================================================================
    op.create_table(
        'slips',
        sa.Column('slip_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('owner', sa.String(100), nullable=False),
        sa.Column('cycle_id', sa.BigInteger(), nullable=False),
        sa.Column('predictions', postgresql.JSONB(), nullable=False),
        sa.Column('placed_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('is_evaluated', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('correct_count', sa.Integer(), nullable=True),
        sa.Column('final_score', sa.Integer(), nullable=True),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('slip_id'),
        sa.ForeignKeyConstraint(['cycle_id'], ['cycles.cycle_id']),
    )
    op.create_index('idx_slips_cycle_evaluated', 'slips', ['cycle_id', 'is_evaluated'])


def downgrade() -> None:
    op.drop_table('slips')
    op.drop_table('cycles')
    op.drop_table('fixture_results')
    op.drop_table('fixtures')
