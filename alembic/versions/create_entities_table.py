"""Create entities table

Revision ID: create_entities_table
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'create_entities_table'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """One row per record of any collection, body stored as JSON."""
    op.create_table(
        'entities',
        sa.Column('collection_path', sa.String(255), primary_key=True),
        sa.Column('doc_id', sa.String(255), primary_key=True),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_entities_collection_path', 'entities', ['collection_path'])


def downgrade() -> None:
    op.drop_index('ix_entities_collection_path', table_name='entities')
    op.drop_table('entities')
