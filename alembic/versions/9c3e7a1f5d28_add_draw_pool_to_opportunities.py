"""add_draw_pool_to_opportunities

Revision ID: 9c3e7a1f5d28
Revises: 5b1f0c2d9a47
Create Date: 2026-10-19 16:40:02.518934

Stores the bidder ids a draw ran over, in submission order, so the stored
seed replays the same draw even after later bids arrive.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '9c3e7a1f5d28'
down_revision: Union[str, Sequence[str], None] = '5b1f0c2d9a47'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add draw_pool column to opportunities table."""
    op.add_column(
        'opportunities',
        sa.Column('draw_pool', sa.JSON(), nullable=True)
    )


def downgrade() -> None:
    """Remove draw_pool column from opportunities table."""
    op.drop_column('opportunities', 'draw_pool')
