"""add_pivot_result_locks

Revision ID: 20261019_1400_pivot_locks
Revises: 20261019_0900_create_matching
Create Date: 2026-10-19 14:00:00

Adds: pivot_result_locks
Purpose: Serialize result set replacement per pivot (batch vs on-demand writers)
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_1400_pivot_locks'
down_revision = '20261019_0900_create_matching'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the per-pivot lock table (rows are created lazily by writers)."""
    op.create_table(
        'pivot_result_locks',
        sa.Column('pivot_type', sa.String(length=20), nullable=False),
        sa.Column('pivot_id', sa.Integer(), nullable=False),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('pivot_type', 'pivot_id')
    )


def downgrade() -> None:
    """Drop the per-pivot lock table."""
    op.drop_table('pivot_result_locks')
