"""Sync engine tables - idempotency records, upstream inventory, sync activity

Revision ID: 001_sync_engine_tables
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_sync_engine_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=512), nullable=False),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_idempotency_records_id', 'idempotency_records', ['id'], unique=False)
    op.create_index('ix_idempotency_records_key', 'idempotency_records', ['key'], unique=True)
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'], unique=False)

    op.create_table(
        'upstream_inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.String(), nullable=False),
        sa.Column('variant_id', sa.String(), nullable=False),
        sa.Column('inventory_item_id', sa.String(), nullable=True),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'variant_id', name='uq_upstream_inventory_store_variant'),
    )
    op.create_index('ix_upstream_inventory_items_id', 'upstream_inventory_items', ['id'], unique=False)
    op.create_index('ix_upstream_inventory_items_store_id', 'upstream_inventory_items', ['store_id'], unique=False)
    op.create_index('ix_upstream_inventory_items_variant_id', 'upstream_inventory_items', ['variant_id'], unique=False)
    op.create_index(
        'ix_upstream_inventory_items_inventory_item_id', 'upstream_inventory_items', ['inventory_item_id'], unique=False
    )

    op.create_table(
        'sync_activity',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('store_id', sa.String(length=255), nullable=False),
        sa.Column('connection_id', sa.String(length=255), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=True),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_activity_action', 'sync_activity', ['action'], unique=False)
    op.create_index('ix_sync_activity_store_id', 'sync_activity', ['store_id'], unique=False)
    op.create_index('ix_sync_activity_connection_id', 'sync_activity', ['connection_id'], unique=False)
    op.create_index('ix_sync_activity_created_at', 'sync_activity', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_activity_created_at', table_name='sync_activity')
    op.drop_index('ix_sync_activity_connection_id', table_name='sync_activity')
    op.drop_index('ix_sync_activity_store_id', table_name='sync_activity')
    op.drop_index('ix_sync_activity_action', table_name='sync_activity')
    op.drop_table('sync_activity')

    op.drop_index('ix_upstream_inventory_items_inventory_item_id', table_name='upstream_inventory_items')
    op.drop_index('ix_upstream_inventory_items_variant_id', table_name='upstream_inventory_items')
    op.drop_index('ix_upstream_inventory_items_store_id', table_name='upstream_inventory_items')
    op.drop_index('ix_upstream_inventory_items_id', table_name='upstream_inventory_items')
    op.drop_table('upstream_inventory_items')

    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_index('ix_idempotency_records_key', table_name='idempotency_records')
    op.drop_index('ix_idempotency_records_id', table_name='idempotency_records')
    op.drop_table('idempotency_records')
