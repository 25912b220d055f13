"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Credit accounts
    op.create_table('credit_accounts',
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('balance', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_credit_accounts_balance_non_negative'),
        sa.PrimaryKeyConstraint('user_id')
    )

    # Credit reservations
    op.create_table('credit_reservations',
        sa.Column('id', postgresql.UUID(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('job_id', postgresql.UUID(), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('HELD', 'SETTLED', 'RELEASED', name='reservationstatus'), nullable=False),
        sa.Column('settled_amount', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_reservations_user_id'), 'credit_reservations', ['user_id'], unique=False)
    op.create_index(op.f('ix_credit_reservations_job_id'), 'credit_reservations', ['job_id'], unique=False)
    op.create_index(op.f('ix_credit_reservations_status'), 'credit_reservations', ['status'], unique=False)

    # Credit ledger entries (append-only)
    op.create_table('credit_ledger_entries',
        sa.Column('id', postgresql.UUID(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.Enum('GRANT', 'DEBIT', 'RESERVE', 'REFUND', 'SETTLE', name='ledgerentrykind'), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('job_id', postgresql.UUID(), nullable=True),
        sa.Column('reservation_id', postgresql.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_credit_ledger_entries_user_id'), 'credit_ledger_entries', ['user_id'], unique=False)
    op.create_index(op.f('ix_credit_ledger_entries_job_id'), 'credit_ledger_entries', ['job_id'], unique=False)
    op.create_index(op.f('ix_credit_ledger_entries_reservation_id'), 'credit_ledger_entries', ['reservation_id'], unique=False)
    op.create_index(op.f('ix_credit_ledger_entries_created_at'), 'credit_ledger_entries', ['created_at'], unique=False)

    # Generation jobs
    op.create_table('generation_jobs',
        sa.Column('id', postgresql.UUID(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('tier', sa.String(length=50), nullable=False),
        sa.Column('job_type', sa.Enum('GENERATION', 'VARIATION', 'UPSCALE', 'BATCH', name='jobtype'), nullable=False),
        sa.Column('status', sa.Enum('QUEUED', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED', name='jobstatus'), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_credits', sa.Integer(), nullable=False),
        sa.Column('actual_credits', sa.Integer(), nullable=True),
        sa.Column('reservation_id', postgresql.UUID(), nullable=False),
        sa.Column('provider_job_id', sa.String(length=255), nullable=True),
        sa.Column('error_category', sa.Enum(
            'VALIDATION', 'AUTHORIZATION', 'CONFIGURATION', 'NETWORK', 'TIMEOUT',
            'EXTERNAL_SERVICE', 'RATE_LIMIT', 'INTERNAL', name='errorcategory'
        ), nullable=True),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('queued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['reservation_id'], ['credit_reservations.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_generation_jobs_user_id'), 'generation_jobs', ['user_id'], unique=False)
    op.create_index(op.f('ix_generation_jobs_status'), 'generation_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_generation_jobs_priority'), 'generation_jobs', ['priority'], unique=False)
    op.create_index(op.f('ix_generation_jobs_next_retry_at'), 'generation_jobs', ['next_retry_at'], unique=False)
    op.create_index(op.f('ix_generation_jobs_queued_at'), 'generation_jobs', ['queued_at'], unique=False)
    op.create_index(op.f('ix_generation_jobs_provider_job_id'), 'generation_jobs', ['provider_job_id'], unique=True)
    op.create_index(
        'ix_generation_jobs_dispatch_order', 'generation_jobs',
        ['status', 'priority', 'queued_at'], unique=False
    )

    # Artifacts
    op.create_table('artifacts',
        sa.Column('id', postgresql.UUID(), nullable=False),
        sa.Column('job_id', postgresql.UUID(), nullable=False),
        sa.Column('output_index', sa.Integer(), nullable=False),
        sa.Column('source_url', sa.String(), nullable=False),
        sa.Column('storage_path', sa.String(), nullable=False),
        sa.Column('storage_url', sa.String(), nullable=True),
        sa.Column('storage_provider', sa.String(), nullable=False),
        sa.Column('bucket_name', sa.String(), nullable=True),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('file_size_bytes', sa.Integer(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['job_id'], ['generation_jobs.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_artifacts_job_id'), 'artifacts', ['job_id'], unique=False)
    op.create_index(op.f('ix_artifacts_storage_path'), 'artifacts', ['storage_path'], unique=False)

    # Processed webhook deliveries
    op.create_table('webhook_events',
        sa.Column('id', postgresql.UUID(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('provider_job_id', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('job_id', postgresql.UUID(), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_webhook_events_idempotency_key'), 'webhook_events', ['idempotency_key'], unique=True)
    op.create_index(op.f('ix_webhook_events_provider_job_id'), 'webhook_events', ['provider_job_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_webhook_events_provider_job_id'), table_name='webhook_events')
    op.drop_index(op.f('ix_webhook_events_idempotency_key'), table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_index(op.f('ix_artifacts_storage_path'), table_name='artifacts')
    op.drop_index(op.f('ix_artifacts_job_id'), table_name='artifacts')
    op.drop_table('artifacts')
    op.drop_index('ix_generation_jobs_dispatch_order', table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_provider_job_id'), table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_queued_at'), table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_next_retry_at'), table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_priority'), table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_status'), table_name='generation_jobs')
    op.drop_index(op.f('ix_generation_jobs_user_id'), table_name='generation_jobs')
    op.drop_table('generation_jobs')
    op.drop_table('credit_ledger_entries')
    op.drop_table('credit_reservations')
    op.drop_table('credit_accounts')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS errorcategory')
    op.execute('DROP TYPE IF EXISTS jobstatus')
    op.execute('DROP TYPE IF EXISTS jobtype')
    op.execute('DROP TYPE IF EXISTS ledgerentrykind')
    op.execute('DROP TYPE IF EXISTS reservationstatus')
