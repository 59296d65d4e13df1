"""
Alembic migration: Create the key-value document table.

Orders, refunds, vouchers, notifications, carts, catalog read models and the
maintenance flag are all stored as JSON documents in this table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create kv_store with a prefix-friendly index on key."""
    op.create_table(
        'kv_store',
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('value', postgresql.JSONB(), nullable=False),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint('key', name='pk_kv_store'),
    )

    # text_pattern_ops lets LIKE 'prefix%' use the index
    op.create_index(
        'ix_kv_store_key_pattern',
        'kv_store',
        [sa.text('key text_pattern_ops')],
    )
    op.create_index('ix_kv_store_updated_at', 'kv_store', ['updated_at'])


def downgrade() -> None:
    """Drop kv_store and its indexes."""
    op.drop_index('ix_kv_store_updated_at', table_name='kv_store')
    op.drop_index('ix_kv_store_key_pattern', table_name='kv_store')
    op.drop_table('kv_store')
