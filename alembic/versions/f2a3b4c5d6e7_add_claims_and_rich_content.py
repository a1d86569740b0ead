"""add channel claims and rich notification content

Revision ID: f2a3b4c5d6e7
Revises: e1f2a3b4c5d6
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = 'f2a3b4c5d6e7'
down_revision: Union[str, Sequence[str], None] = 'e1f2a3b4c5d6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'notification_channels',
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True)
    )
    op.add_column('notifications', sa.Column('content', sa.JSON(), nullable=True))
    op.add_column('notifications', sa.Column('personalization', sa.JSON(), nullable=True))


def downgrade() -> None:
    op.drop_column('notifications', 'personalization')
    op.drop_column('notifications', 'content')
    op.drop_column('notification_channels', 'claimed_at')
