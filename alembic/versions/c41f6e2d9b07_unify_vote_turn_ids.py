"""Unify vote turn ids

Rewrites legacy promptId / prompt_id / turnId vote properties to turn_id.

Revision ID: c41f6e2d9b07
Revises: 8a527c529db1
Create Date: 2025-10-24 10:17:48.502913

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.orm import Session

from trust_analytics.services.migration import unify_vote_turn_ids


# revision identifiers, used by Alembic.
revision: str = 'c41f6e2d9b07'
down_revision: Union[str, Sequence[str], None] = '8a527c529db1'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    # Joins the migration transaction; commit here does not end it
    with Session(bind=op.get_bind()) as session:
        unify_vote_turn_ids(session)
        session.commit()


def downgrade():
    # The original key names are not recorded; turn_id stays readable by every client
    pass
