"""add generation tables

Revision ID: 202501010900
Revises: None (initial migration)
Create Date: 2025-01-01 09:00:00.000000

This migration creates the core tables for:
- Users (mirrors Supabase auth with the subscription tier)
- Usage Records (per-user, per-day generation counters)
- Generation Jobs (provider-side generation requests)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic
revision = '202501010900'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # Users table - mirrors Supabase auth users with the subscription tier
    # =========================================================================
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('plan', sa.String(length=20), server_default='free', nullable=False),
        sa.Column('plan_expires_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            'created_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='users_email_key'),
    )

    # =========================================================================
    # Usage records - one row per user per UTC day
    # =========================================================================
    op.create_table(
        'usage_records',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('video_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('audio_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column(
            'created_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('user_id', 'day'),
        sa.CheckConstraint('video_count >= 0', name='usage_records_video_count_non_negative'),
        sa.CheckConstraint('audio_count >= 0', name='usage_records_audio_count_non_negative'),
    )

    # =========================================================================
    # Generation jobs
    # =========================================================================
    op.create_table(
        'generation_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.String(length=10), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('model_used', sa.String(length=100), nullable=False),
        sa.Column('duration_seconds', sa.Float(), nullable=False),
        sa.Column('resolution_or_format', sa.String(length=32), nullable=False),
        sa.Column('provider_job_id', sa.String(length=255), nullable=False),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column(
            'created_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column(
            'updated_at',
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('queued', 'ready', 'failed')",
            name='generation_jobs_status_check',
        ),
        sa.CheckConstraint(
            "kind IN ('video', 'audio')",
            name='generation_jobs_kind_check',
        ),
        sa.CheckConstraint(
            "(status = 'ready') = (media_url IS NOT NULL)",
            name='generation_jobs_media_url_ready_check',
        ),
    )
    op.create_index(
        'generation_jobs_user_created_at_idx',
        'generation_jobs',
        ['user_id', sa.text('created_at DESC')],
    )
    op.create_index(
        'generation_jobs_status_created_at_idx',
        'generation_jobs',
        ['status', sa.text('created_at DESC')],
    )


def downgrade() -> None:
    # Remove generation jobs
    op.drop_index('generation_jobs_status_created_at_idx', table_name='generation_jobs')
    op.drop_index('generation_jobs_user_created_at_idx', table_name='generation_jobs')
    op.drop_table('generation_jobs')

    # Remove usage records
    op.drop_table('usage_records')

    # Remove users
    op.drop_table('users')
