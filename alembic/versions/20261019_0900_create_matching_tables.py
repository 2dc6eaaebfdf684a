"""create_matching_tables

Revision ID: 20261019_0900_create_matching
Revises:
Create Date: 2026-10-19 09:00:00

Adds: children, families, preferences, match_results, batch_run_state
Purpose: Placement matching records, persisted result sets and batch run state
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision = '20261019_0900_create_matching'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """
    Create matching tables.

    Tables:
    - children: pivots for family matching, candidates for preference matching
    - families: licensed foster families (candidates for child matching)
    - preferences: a family's stated placement preferences (pivots)
    - match_results: scored pairings, one current result set per pivot
    - batch_run_state: single row per batch engine
    """
    op.create_table(
        'children',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Needs Placement'),
        sa.Column('age', sa.Integer(), nullable=True),
        sa.Column('gender', sa.String(length=20), nullable=True),
        sa.Column('jurisdiction', sa.String(length=100), nullable=True),
        sa.Column('preferred_jurisdiction', sa.String(length=100), nullable=True),
        sa.Column('special_needs_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sibling_group_size', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_children_id', 'children', ['id'])
    op.create_index('ix_children_status', 'children', ['status'])

    op.create_table(
        'families',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('license_status', sa.String(length=50), nullable=True),
        sa.Column('background_check_status', sa.String(length=50), nullable=True),
        sa.Column('training_status', sa.String(length=50), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('special_needs_level_supported', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('jurisdiction', sa.String(length=100), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('state', sa.String(length=50), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_families_id', 'families', ['id'])
    op.create_index('ix_families_license_status', 'families', ['license_status'])

    op.create_table(
        'preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Active'),
        sa.Column('age_min', sa.Integer(), nullable=True),
        sa.Column('age_max', sa.Integer(), nullable=True),
        sa.Column('preferred_gender', sa.String(length=20), nullable=True),
        sa.Column('gender_flexible', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('jurisdiction', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['family_id'], ['families.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_preferences_id', 'preferences', ['id'])
    op.create_index('ix_preferences_family_id', 'preferences', ['family_id'])
    op.create_index('ix_preferences_status', 'preferences', ['status'])

    op.create_table(
        'match_results',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('result_set_id', sa.String(length=36), nullable=False),
        sa.Column('is_current', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('pivot_type', sa.String(length=20), nullable=False),
        sa.Column('pivot_id', sa.Integer(), nullable=False),
        sa.Column('candidate_id', sa.Integer(), nullable=False),
        sa.Column('child_id', sa.Integer(), nullable=False),
        sa.Column('family_id', sa.Integer(), nullable=False),
        sa.Column('preference_id', sa.Integer(), nullable=True),
        sa.Column('overall_score', sa.Float(), nullable=False),
        sa.Column('distance_miles', sa.Float(), nullable=True),
        sa.Column('detailed_scores', JSON_TYPE, nullable=True),
        sa.Column('match_reasons', JSON_TYPE, nullable=True),
        sa.Column('flags', JSON_TYPE, nullable=True),
        sa.Column('is_eligible', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='Pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('not_suitable_reason', sa.Text(), nullable=True),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('calculated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_match_results_id', 'match_results', ['id'])
    op.create_index('ix_match_results_result_set_id', 'match_results', ['result_set_id'])
    op.create_index('ix_match_results_child_id', 'match_results', ['child_id'])
    op.create_index('ix_match_results_family_id', 'match_results', ['family_id'])
    op.create_index('idx_match_results_pivot_current', 'match_results', ['pivot_type', 'pivot_id', 'is_current'])

    op.create_table(
        'batch_run_state',
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='idle'),
        sa.Column('run_id', sa.String(length=36), nullable=True),
        sa.Column('status_label', sa.String(length=255), nullable=True),
        sa.Column('processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failures', JSON_TYPE, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('name'),
    )


def downgrade() -> None:
    """Drop matching tables."""
    op.drop_table('batch_run_state')

    op.drop_index('idx_match_results_pivot_current', table_name='match_results')
    op.drop_index('ix_match_results_family_id', table_name='match_results')
    op.drop_index('ix_match_results_child_id', table_name='match_results')
    op.drop_index('ix_match_results_result_set_id', table_name='match_results')
    op.drop_index('ix_match_results_id', table_name='match_results')
    op.drop_table('match_results')

    op.drop_index('ix_preferences_status', table_name='preferences')
    op.drop_index('ix_preferences_family_id', table_name='preferences')
    op.drop_index('ix_preferences_id', table_name='preferences')
    op.drop_table('preferences')

    op.drop_index('ix_families_license_status', table_name='families')
    op.drop_index('ix_families_id', table_name='families')
    op.drop_table('families')

    op.drop_index('ix_children_status', table_name='children')
    op.drop_index('ix_children_id', table_name='children')
    op.drop_table('children')
