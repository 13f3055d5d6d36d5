"""Add relationship fields

Revision ID: 8a527c529db1
Revises: a3a38d9091b1
Create Date: 2025-10-19 19:42:33.921788

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.orm import Session

from trust_analytics.services.migration import backfill_relationship_fields


# revision identifiers, used by Alembic.
revision: str = '8a527c529db1'
down_revision: Union[str, Sequence[str], None] = 'a3a38d9091b1'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    with op.batch_alter_table('events') as batch_op:
        batch_op.add_column(sa.Column('journey_id', sa.String(255), nullable=True))
        batch_op.add_column(sa.Column('conversation_id', sa.String(255), nullable=True))
        batch_op.add_column(sa.Column('turn_sequence', sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column('turn_id', sa.String(255), nullable=True))

    op.create_index('idx_events_journey', 'events', ['journey_id', 'timestamp'], if_not_exists=True)
    op.create_index(
        'idx_events_conversation', 'events', ['conversation_id', 'turn_sequence', 'timestamp'], if_not_exists=True
    )
    op.create_index('idx_events_turn', 'events', ['turn_id', 'timestamp'], if_not_exists=True)

    # Existing rows carry their relationships only in the property bag
    # Joins the migration transaction; commit here does not end it
    with Session(bind=op.get_bind()) as session:
        backfill_relationship_fields(session)
        session.commit()


def downgrade():
    op.drop_index('idx_events_turn', 'events')
    op.drop_index('idx_events_conversation', 'events')
    op.drop_index('idx_events_journey', 'events')

    with op.batch_alter_table('events') as batch_op:
        batch_op.drop_column('turn_id')
        batch_op.drop_column('turn_sequence')
        batch_op.drop_column('conversation_id')
        batch_op.drop_column('journey_id')
