"""Initial catalog sync schema

Revision ID: 5c2e8a71d4b0
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5c2e8a71d4b0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    ts = sa.DateTime(timezone=True)

    # Create catalog_items table
    op.create_table('catalog_items',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('store_id', sa.String(length=255), nullable=False),
    sa.Column('item_id', sa.String(length=255), nullable=False),
    sa.Column('title', sa.String(length=500), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('handle', sa.String(length=500), nullable=False),
    sa.Column('category', sa.String(length=255), nullable=True),
    sa.Column('vendor', sa.String(length=255), nullable=True),
    sa.Column('tags', sa.JSON(), nullable=False),
    sa.Column('variants', sa.JSON(), nullable=False),
    sa.Column('source_created_at', ts, nullable=True),
    sa.Column('source_updated_at', ts, nullable=True),
    sa.Column('local_created_at', ts, nullable=False),
    sa.Column('local_updated_at', ts, nullable=False),
    sa.Column('deleted_at', ts, nullable=True),
    sa.Column('last_action', sa.String(length=16), nullable=False),
    sa.Column('first_seen_at', ts, nullable=False),
    sa.Column('last_modified_at', ts, nullable=False),
    sa.Column('sync_cursor', sa.String(length=64), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('store_id', 'item_id', name='uq_catalog_items_store_item')
    )
    op.create_index('ix_catalog_items_store_deleted', 'catalog_items', ['store_id', 'deleted_at'], unique=False)
    op.create_index('ix_catalog_items_category', 'catalog_items', ['category'], unique=False)
    op.create_index('ix_catalog_items_vendor', 'catalog_items', ['vendor'], unique=False)
    op.create_index('ix_catalog_items_source_updated', 'catalog_items', ['source_updated_at'], unique=False)

    # Create sync_states table
    counters = [
        'total_syncs', 'total_processed', 'total_created', 'total_updated',
        'total_deleted', 'total_failed',
    ]
    run_counters = [
        'run_total_to_process', 'run_discovered', 'run_duplicates', 'run_processed',
        'run_created', 'run_updated', 'run_deleted', 'run_failed',
    ]
    batch_counters = ['batches_total', 'batches_completed', 'batches_failed', 'batches_pending']
    op.create_table('sync_states',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('store_id', sa.String(length=255), nullable=False),
    sa.Column('sync_type', sa.String(length=50), nullable=False),
    *[sa.Column(name, sa.Integer(), server_default='0', nullable=False) for name in counters],
    sa.Column('last_synced_at', ts, nullable=True),
    sa.Column('last_sync_duration_ms', sa.Integer(), server_default='0', nullable=False),
    sa.Column('last_sync_error', sa.Text(), nullable=True),
    sa.Column('is_in_progress', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('run_id', sa.String(length=64), nullable=True),
    sa.Column('run_status', sa.String(length=16), nullable=True),
    sa.Column('run_mode', sa.String(length=16), nullable=True),
    sa.Column('run_filters', sa.JSON(), nullable=True),
    sa.Column('run_started_at', ts, nullable=True),
    sa.Column('run_completed_at', ts, nullable=True),
    *[sa.Column(name, sa.Integer(), server_default='0', nullable=False) for name in run_counters],
    sa.Column('run_enumeration_complete', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('run_reconcile', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('run_cancel_requested', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('run_purge_after_days', sa.Integer(), nullable=True),
    *[sa.Column(name, sa.Integer(), server_default='0', nullable=False) for name in batch_counters],
    sa.Column('created_at', ts, server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', ts, server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('store_id', 'sync_type', name='uq_sync_states_store_type')
    )
    op.create_index('ix_sync_states_run_id', 'sync_states', ['run_id'], unique=False)

    # Create sync_runs table
    op.create_table('sync_runs',
    sa.Column('run_id', sa.String(length=64), nullable=False),
    sa.Column('store_id', sa.String(length=255), nullable=False),
    sa.Column('sync_type', sa.String(length=50), nullable=False),
    sa.Column('mode', sa.String(length=16), nullable=False),
    sa.Column('dispatch_mode', sa.String(length=16), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('task_id', sa.String(length=255), nullable=True),
    sa.Column('started_at', ts, nullable=False),
    sa.Column('completed_at', ts, nullable=True),
    sa.Column('total_to_process', sa.Integer(), server_default='0', nullable=False),
    sa.Column('processed', sa.Integer(), server_default='0', nullable=False),
    sa.Column('created', sa.Integer(), server_default='0', nullable=False),
    sa.Column('updated', sa.Integer(), server_default='0', nullable=False),
    sa.Column('deleted', sa.Integer(), server_default='0', nullable=False),
    sa.Column('failed', sa.Integer(), server_default='0', nullable=False),
    sa.Column('error', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('run_id')
    )
    op.create_index('ix_sync_runs_store_started', 'sync_runs', ['store_id', 'started_at'], unique=False)

    # Create sync_batches table
    op.create_table('sync_batches',
    sa.Column('run_id', sa.String(length=64), nullable=False),
    sa.Column('batch_id', sa.String(length=64), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('item_count', sa.Integer(), server_default='0', nullable=False),
    sa.Column('task_id', sa.String(length=255), nullable=True),
    sa.Column('error', sa.Text(), nullable=True),
    sa.Column('created_at', ts, nullable=False),
    sa.PrimaryKeyConstraint('run_id', 'batch_id')
    )

    # Create sync_run_errors table
    op.create_table('sync_run_errors',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('run_id', sa.String(length=64), nullable=False),
    sa.Column('item_id', sa.String(length=255), nullable=True),
    sa.Column('batch_id', sa.String(length=64), nullable=True),
    sa.Column('error', sa.Text(), nullable=False),
    sa.Column('created_at', ts, nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_run_errors_run_id'), 'sync_run_errors', ['run_id'], unique=False)

    # Create sync_snapshot_ids table
    op.create_table('sync_snapshot_ids',
    sa.Column('run_id', sa.String(length=64), nullable=False),
    sa.Column('item_id', sa.String(length=255), nullable=False),
    sa.PrimaryKeyConstraint('run_id', 'item_id')
    )

    # Create sync_checkpoints table
    op.create_table('sync_checkpoints',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('job_id', sa.String(length=64), nullable=False),
    sa.Column('last_processed_id', sa.String(length=255), nullable=False),
    sa.Column('stage', sa.String(length=50), nullable=False),
    sa.Column('created_at', ts, nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_checkpoints_job_created', 'sync_checkpoints', ['job_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_checkpoints_job_created', table_name='sync_checkpoints')
    op.drop_table('sync_checkpoints')
    op.drop_table('sync_snapshot_ids')
    op.drop_index(op.f('ix_sync_run_errors_run_id'), table_name='sync_run_errors')
    op.drop_table('sync_run_errors')
    op.drop_table('sync_batches')
    op.drop_index('ix_sync_runs_store_started', table_name='sync_runs')
    op.drop_table('sync_runs')
    op.drop_index('ix_sync_states_run_id', table_name='sync_states')
    op.drop_table('sync_states')
    op.drop_index('ix_catalog_items_source_updated', table_name='catalog_items')
    op.drop_index('ix_catalog_items_vendor', table_name='catalog_items')
    op.drop_index('ix_catalog_items_category', table_name='catalog_items')
    op.drop_index('ix_catalog_items_store_deleted', table_name='catalog_items')
    op.drop_table('catalog_items')
