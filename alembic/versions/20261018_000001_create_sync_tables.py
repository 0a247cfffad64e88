"""Create sync queue, run log, worker heartbeat and directory tables

Revision ID: sync_tables_001
Revises:
Create Date: 2026-10-18 00:00:01.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql


revision: str = 'sync_tables_001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json():
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all sync engine tables (idempotent)"""
    conn = op.get_bind()
    existing = set(inspect(conn).get_table_names())

    if 'sync_queue' not in existing:
        op.create_table(
            'sync_queue',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('type', sa.String(32), nullable=False),
            sa.Column('options', _json(), nullable=True),
            sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
            sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
            sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('result', _json(), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_sync_queue_type', 'sync_queue', ['type'])
        op.create_index('ix_sync_queue_status', 'sync_queue', ['status'])
        op.create_index('idx_sync_queue_claim', 'sync_queue', ['status', 'priority', 'created_at'])
        print("✅ Created sync_queue")

    if 'sync_logs' not in existing:
        op.create_table(
            'sync_logs',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('job_id', sa.String(36), nullable=True),
            sa.Column('sync_type', sa.String(32), nullable=False),
            sa.Column('status', sa.String(32), nullable=False),
            sa.Column('attempt', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('duration_ms', sa.Integer(), nullable=True),
            sa.Column('result', _json(), nullable=True),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index('ix_sync_logs_job_id', 'sync_logs', ['job_id'])
        op.create_index('ix_sync_logs_sync_type', 'sync_logs', ['sync_type'])
        op.create_index('ix_sync_logs_status', 'sync_logs', ['status'])
        op.create_index('ix_sync_logs_started_at', 'sync_logs', ['started_at'])
        print("✅ Created sync_logs")

    if 'background_workers' not in existing:
        op.create_table(
            'background_workers',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('worker_name', sa.String(64), nullable=False, unique=True),
            sa.Column('interval_seconds', sa.Integer(), nullable=True),
            sa.Column('last_started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_finished_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_status', sa.String(32), nullable=True),
            sa.Column('last_error_message', sa.Text(), nullable=True),
            sa.Column('runs_ok_in_row', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('runs_error_in_row', sa.Integer(), nullable=False, server_default='0'),
            *_timestamps(),
        )
        print("✅ Created background_workers")

    if 'courts' not in existing:
        op.create_table(
            'courts',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('courtlistener_id', sa.String(64), nullable=True, unique=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('full_name', sa.String(500), nullable=True),
            sa.Column('jurisdiction', sa.String(16), nullable=True),
            sa.Column('court_type', sa.String(64), nullable=True),
            sa.Column('website', sa.String(500), nullable=True),
            sa.Column('in_use', sa.Boolean(), nullable=True),
            sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_courts_courtlistener_id', 'courts', ['courtlistener_id'])
        op.create_index('ix_courts_jurisdiction', 'courts', ['jurisdiction'])
        print("✅ Created courts")

    if 'judges' not in existing:
        op.create_table(
            'judges',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('courtlistener_id', sa.String(64), nullable=True),
            sa.Column('name', sa.String(255), nullable=False),
            sa.Column('court_id', sa.String(36), sa.ForeignKey('courts.id'), nullable=True),
            sa.Column('court_name', sa.String(255), nullable=True),
            sa.Column('jurisdiction', sa.String(16), nullable=True),
            sa.Column('appointed_date', sa.Date(), nullable=True),
            sa.Column('education', sa.Text(), nullable=True),
            sa.Column('bio', sa.Text(), nullable=True),
            sa.Column('courtlistener_data', _json(), nullable=True),
            sa.Column('total_cases', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('decisions_synced_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_judges_courtlistener_id', 'judges', ['courtlistener_id'])
        op.create_index('ix_judges_jurisdiction', 'judges', ['jurisdiction'])
        print("✅ Created judges")

    if 'cases' not in existing:
        op.create_table(
            'cases',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('judge_id', sa.String(36), sa.ForeignKey('judges.id'), nullable=True),
            sa.Column('case_name', sa.String(500), nullable=False),
            sa.Column('case_number', sa.String(100), nullable=True),
            sa.Column('case_type', sa.String(64), nullable=True),
            sa.Column('status', sa.String(32), nullable=True),
            sa.Column('outcome', sa.String(128), nullable=True),
            sa.Column('jurisdiction', sa.String(16), nullable=True),
            sa.Column('filing_date', sa.Date(), nullable=True),
            sa.Column('decision_date', sa.Date(), nullable=True),
            sa.Column('summary', sa.Text(), nullable=True),
            sa.Column('source_url', sa.String(500), nullable=True),
            sa.Column('courtlistener_id', sa.String(64), nullable=True, unique=True),
            sa.Column('docket_hash', sa.String(40), nullable=True),
            *_timestamps(),
        )
        op.create_index('ix_cases_judge_id', 'cases', ['judge_id'])
        op.create_index('ix_cases_decision_date', 'cases', ['decision_date'])
        op.create_index('ix_cases_courtlistener_id', 'cases', ['courtlistener_id'])
        op.create_index('ix_cases_docket_hash', 'cases', ['docket_hash'])
        print("✅ Created cases")


def downgrade() -> None:
    for table in ('cases', 'judges', 'courts', 'background_workers', 'sync_logs', 'sync_queue'):
        op.drop_table(table)
