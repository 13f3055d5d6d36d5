"""Create events table

Revision ID: a3a38d9091b1
Revises:
Create Date: 2025-10-19 18:05:12.417260

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3a38d9091b1'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        'events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.Column('properties', sa.JSON(), nullable=False),
        sa.Column('prompt_text', sa.Text(), nullable=True),
        sa.Column('ai_response', sa.Text(), nullable=True),
    )
    op.create_index('ix_events_timestamp', 'events', ['timestamp'])
    op.create_index('idx_events_user_timestamp', 'events', ['user_id', 'timestamp'])
    op.create_index('idx_events_type_timestamp', 'events', ['event_type', 'timestamp'])


def downgrade():
    op.drop_index('idx_events_type_timestamp', 'events')
    op.drop_index('idx_events_user_timestamp', 'events')
    op.drop_index('ix_events_timestamp', 'events')
    op.drop_table('events')
