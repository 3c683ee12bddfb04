"""Add sync jobs and per-item batch credits

Revision ID: 8f31b6c2a9e4
Revises: 5c2e8a71d4b0
Create Date: 2026-10-19 12:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8f31b6c2a9e4'
down_revision: Union[str, None] = '5c2e8a71d4b0'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    ts = sa.DateTime(timezone=True)

    # Create sync_batch_items table
    op.create_table('sync_batch_items',
    sa.Column('run_id', sa.String(length=64), nullable=False),
    sa.Column('batch_id', sa.String(length=64), nullable=False),
    sa.Column('item_id', sa.String(length=255), nullable=False),
    sa.Column('outcome', sa.String(length=16), nullable=False),
    sa.Column('error', sa.Text(), nullable=True),
    sa.PrimaryKeyConstraint('run_id', 'batch_id', 'item_id')
    )

    # Create sync_jobs table
    op.create_table('sync_jobs',
    sa.Column('job_id', sa.String(length=64), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('source_type', sa.String(length=50), nullable=False),
    sa.Column('destination_type', sa.String(length=50), nullable=False),
    sa.Column('store_id', sa.String(length=255), nullable=False),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('options', sa.JSON(), nullable=False),
    sa.Column('enabled', sa.Boolean(), server_default=sa.true(), nullable=False),
    sa.Column('schedule_frequency', sa.String(length=16), server_default='manual', nullable=False),
    sa.Column('last_scheduled_at', ts, nullable=True),
    sa.Column('created_by', sa.String(length=255), nullable=True),
    sa.Column('created_at', ts, nullable=False),
    sa.Column('updated_at', ts, nullable=False),
    sa.PrimaryKeyConstraint('job_id')
    )
    op.create_index('ix_sync_jobs_enabled_frequency', 'sync_jobs', ['enabled', 'schedule_frequency'], unique=False)
    op.create_index('ix_sync_jobs_store', 'sync_jobs', ['store_id'], unique=False)

    # Link runs to the job that started them
    op.add_column('sync_runs', sa.Column('job_id', sa.String(length=64), nullable=True))
    op.create_index('ix_sync_runs_job_started', 'sync_runs', ['job_id', 'started_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_sync_runs_job_started', table_name='sync_runs')
    op.drop_column('sync_runs', 'job_id')
    op.drop_index('ix_sync_jobs_store', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_enabled_frequency', table_name='sync_jobs')
    op.drop_table('sync_jobs')
    op.drop_table('sync_batch_items')
