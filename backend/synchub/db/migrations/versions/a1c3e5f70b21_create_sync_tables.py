"""create product mapping, sync event and sync job tables

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = 'a1c3e5f70b21'
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    op.create_table(
        'product_mappings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('store_product_id', sa.String(length=64), nullable=False),
        sa.Column('warehouse_snapshot', JSON_TYPE, nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint("status IN ('pending','success','error')", name=op.f('ck_product_mappings_status')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_product_mappings')),
        sa.UniqueConstraint('store_product_id', name=op.f('uq_product_mappings_store_product_id')),
    )

    op.create_table(
        'sync_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('mapping_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('details', JSON_TYPE, nullable=True),
        sa.Column('actor', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ['mapping_id'], ['product_mappings.id'],
            name=op.f('fk_sync_events_mapping_id_product_mappings'),
            ondelete='SET NULL',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_sync_events')),
    )
    op.create_index('ix_sync_events_mapping_action_created', 'sync_events', ['mapping_id', 'action', 'created_at'])
    op.create_index('ix_sync_events_action_created', 'sync_events', ['action', 'created_at'])

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('store_product_id', sa.String(length=64), nullable=False),
        sa.Column('warehouse_product_id', sa.String(length=64), nullable=False),
        sa.Column('location_id', sa.String(length=64), nullable=True),
        sa.Column('state', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('available_at', sa.DateTime(), nullable=False),
        sa.Column('leased_until', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('result', JSON_TYPE, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_sync_jobs')),
    )
    op.create_index('ix_sync_jobs_state_available', 'sync_jobs', ['state', 'available_at'])
    op.create_index('ix_sync_jobs_batch_id', 'sync_jobs', ['batch_id'])


def downgrade() -> None:
    op.drop_index('ix_sync_jobs_batch_id', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_state_available', table_name='sync_jobs')
    op.drop_table('sync_jobs')
    op.drop_index('ix_sync_events_action_created', table_name='sync_events')
    op.drop_index('ix_sync_events_mapping_action_created', table_name='sync_events')
    op.drop_table('sync_events')
    op.drop_table('product_mappings')
