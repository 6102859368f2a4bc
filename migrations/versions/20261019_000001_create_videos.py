from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    video_status_enum = sa.Enum("ingested", "processing", "converting", "ready", "error", name="videostatus")

    op.create_table(
        "videos",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("original_filename", sa.String(length=512), nullable=True),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("source_ref", sa.String(length=2048), nullable=False),
        sa.Column("thumbnail_ref", sa.String(length=2048), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("codec", sa.String(length=64), nullable=True),
        sa.Column("status", video_status_enum, nullable=False, server_default="ingested"),
        sa.Column("output_profile", sa.String(length=128), nullable=True),
        sa.Column("job_id", sa.String(length=128), nullable=True, unique=True),
        sa.Column("output_files", sa.JSON(), nullable=True),
        sa.Column("progress_percent", sa.Float(), nullable=True),
        sa.Column("error_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_videos_status", "videos", ["status"])


def downgrade() -> None:
    op.drop_index("ix_videos_status", table_name="videos")
    op.drop_table("videos")
    sa.Enum(name="videostatus").drop(op.get_bind(), checkfirst=True)
