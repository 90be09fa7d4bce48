"""create quota and sync tables

Revision ID: 3b7e2d91c0a4
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e2d91c0a4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _sync_bookkeeping_columns() -> list[sa.Column]:
    return [
        sa.Column("youtube_channel_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_full_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    """Create catalog, quota audit and sync job tables."""
    op.create_table(
        "bands",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("school_name", sa.String(length=255), nullable=False),
        *_sync_bookkeeping_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_bands_last_synced_at"), "bands", ["last_synced_at"], unique=False)

    op.create_table(
        "creators",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_sync_bookkeeping_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_creators_last_synced_at"), "creators", ["last_synced_at"], unique=False)

    op.create_table(
        "videos",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("youtube_id", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("thumbnail_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("view_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("like_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("channel_id", sa.String(length=64), nullable=True),
        sa.Column("channel_title", sa.String(length=255), nullable=True),
        sa.Column("band_id", sa.String(length=36), nullable=True),
        sa.Column("creator_id", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["band_id"], ["bands.id"]),
        sa.ForeignKeyConstraint(["creator_id"], ["creators.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_videos_youtube_id"), "videos", ["youtube_id"], unique=True)
    op.create_index(op.f("ix_videos_band_id"), "videos", ["band_id"], unique=False)
    op.create_index(op.f("ix_videos_creator_id"), "videos", ["creator_id"], unique=False)

    op.create_table(
        "quota_usage_logs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("operation", sa.String(length=50), nullable=False),
        sa.Column("cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("entity_id", sa.String(length=36), nullable=True),
        sa.Column("entity_name", sa.String(length=255), nullable=True),
        sa.Column("sync_job_id", sa.String(length=36), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("cache_hit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_quota_usage_logs_operation"), "quota_usage_logs", ["operation"], unique=False)
    op.create_index(op.f("ix_quota_usage_logs_timestamp"), "quota_usage_logs", ["timestamp"], unique=False)
    op.create_index(op.f("ix_quota_usage_logs_entity_id"), "quota_usage_logs", ["entity_id"], unique=False)
    op.create_index(op.f("ix_quota_usage_logs_sync_job_id"), "quota_usage_logs", ["sync_job_id"], unique=False)

    op.create_table(
        "quota_daily_summaries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_usage", sa.Integer(), nullable=False),
        sa.Column("quota_limit", sa.Integer(), nullable=False),
        sa.Column("percentage_used", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_quota_daily_summaries_date"), "quota_daily_summaries", ["date"], unique=True)

    op.create_table(
        "quota_alerts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("level", sa.String(length=20), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("current_usage", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(length=255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_quota_alerts_timestamp"), "quota_alerts", ["timestamp"], unique=False)

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=20), nullable=False),
        sa.Column("entity_name", sa.String(length=255), nullable=True),
        sa.Column("job_type", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("published_after", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_before", sa.DateTime(timezone=True), nullable=True),
        sa.Column("max_videos", sa.Integer(), nullable=True),
        sa.Column("videos_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("videos_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("videos_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("estimated_quota_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("actual_quota_cost", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("quota_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("quota_approval_reason", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_sync_jobs_entity_id"), "sync_jobs", ["entity_id"], unique=False)
    op.create_index(op.f("ix_sync_jobs_created_at"), "sync_jobs", ["created_at"], unique=False)


def downgrade() -> None:
    """Drop catalog, quota audit and sync job tables."""
    op.drop_index(op.f("ix_sync_jobs_created_at"), table_name="sync_jobs")
    op.drop_index(op.f("ix_sync_jobs_entity_id"), table_name="sync_jobs")
    op.drop_table("sync_jobs")
    op.drop_index(op.f("ix_quota_alerts_timestamp"), table_name="quota_alerts")
    op.drop_table("quota_alerts")
    op.drop_index(op.f("ix_quota_daily_summaries_date"), table_name="quota_daily_summaries")
    op.drop_table("quota_daily_summaries")
    op.drop_index(op.f("ix_quota_usage_logs_sync_job_id"), table_name="quota_usage_logs")
    op.drop_index(op.f("ix_quota_usage_logs_entity_id"), table_name="quota_usage_logs")
    op.drop_index(op.f("ix_quota_usage_logs_timestamp"), table_name="quota_usage_logs")
    op.drop_index(op.f("ix_quota_usage_logs_operation"), table_name="quota_usage_logs")
    op.drop_table("quota_usage_logs")
    op.drop_index(op.f("ix_videos_creator_id"), table_name="videos")
    op.drop_index(op.f("ix_videos_band_id"), table_name="videos")
    op.drop_index(op.f("ix_videos_youtube_id"), table_name="videos")
    op.drop_table("videos")
    op.drop_index(op.f("ix_creators_last_synced_at"), table_name="creators")
    op.drop_table("creators")
    op.drop_index(op.f("ix_bands_last_synced_at"), table_name="bands")
    op.drop_table("bands")
