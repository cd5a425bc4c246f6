"""create_ai_job_tables

Revision ID: 4b2e7d1a9c03
Revises:
Create Date: 2026-10-19 09:12:41.208713

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4b2e7d1a9c03"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_TYPES = (
    "GENERATE_CATALOG_IMAGE",
    "INFER_ITEM",
    "EXTRACT_LABEL",
    "GENERATE_OUTFIT",
    "GENERATE_OUTFIT_VISUALIZATION",
)
JOB_STATUSES = ("QUEUED", "PROCESSING", "COMPLETED", "FAILED")
QUEUE_STATES = ("WAITING", "DELAYED", "ACTIVE", "COMPLETED", "FAILED")


def upgrade() -> None:
    """Create wardrobe lookup tables, AI job records, queue and leases."""
    # Wardrobe entities read by the AI job subsystem
    op.create_table(
        "items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=50), nullable=False),
        sa.Column("color_palette", sa.JSON(), nullable=True),
        sa.Column("attributes", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_items_state", "items", ["state"])

    op.create_table(
        "item_images",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=50), nullable=False),
        sa.Column("file_path", sa.String(length=1000), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_item_images_item_id", "item_images", ["item_id"])

    op.create_table(
        "outfits",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("weather", sa.String(length=200), nullable=True),
        sa.Column("vibe", sa.String(length=100), nullable=True),
        sa.Column("occasion", sa.String(length=200), nullable=True),
        sa.Column("explanation", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "outfit_items",
        sa.Column("outfit_id", sa.Uuid(), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=True),
        sa.ForeignKeyConstraint(["item_id"], ["items.id"]),
        sa.ForeignKeyConstraint(["outfit_id"], ["outfits.id"]),
        sa.PrimaryKeyConstraint("outfit_id", "item_id"),
    )

    # AI job records (no foreign keys: history outlives referenced entities)
    op.create_table(
        "ai_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.Enum(*JOB_TYPES, name="jobtype"), nullable=False),
        sa.Column("status", sa.Enum(*JOB_STATUSES, name="jobstatus"), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=True),
        sa.Column("outfit_id", sa.Uuid(), nullable=True),
        sa.Column("input_refs", sa.JSON(), nullable=True),
        sa.Column("model_name", sa.String(length=255), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error", sa.JSON(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_jobs_type", "ai_jobs", ["type"])
    op.create_index("ix_ai_jobs_status", "ai_jobs", ["status"])
    op.create_index("ix_ai_jobs_item_id", "ai_jobs", ["item_id"])
    op.create_index("ix_ai_jobs_outfit_id", "ai_jobs", ["outfit_id"])
    op.create_index("ix_ai_jobs_created_at", "ai_jobs", ["created_at"])

    # Durable job queue, one row per job id
    op.create_table(
        "ai_job_queue",
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(length=50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("state", sa.Enum(*QUEUE_STATES, name="queuestate"), nullable=False),
        sa.Column("attempts_made", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("stalled_after", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("failed_reason", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_ai_job_queue_state", "ai_job_queue", ["state"])
    op.create_index("ix_ai_job_queue_available_at", "ai_job_queue", ["available_at"])
    op.create_index("ix_ai_job_queue_finished_at", "ai_job_queue", ["finished_at"])

    # Per-job processing leases shared by all worker processes
    op.create_table(
        "ai_job_leases",
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("owner", sa.String(length=255), nullable=False),
        sa.Column("acquired_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_ai_job_leases_expires_at", "ai_job_leases", ["expires_at"])


def downgrade() -> None:
    """Drop all AI job and wardrobe lookup tables."""
    op.drop_index("ix_ai_job_leases_expires_at", table_name="ai_job_leases")
    op.drop_table("ai_job_leases")

    op.drop_index("ix_ai_job_queue_finished_at", table_name="ai_job_queue")
    op.drop_index("ix_ai_job_queue_available_at", table_name="ai_job_queue")
    op.drop_index("ix_ai_job_queue_state", table_name="ai_job_queue")
    op.drop_table("ai_job_queue")

    op.drop_index("ix_ai_jobs_created_at", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_outfit_id", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_item_id", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_status", table_name="ai_jobs")
    op.drop_index("ix_ai_jobs_type", table_name="ai_jobs")
    op.drop_table("ai_jobs")

    op.drop_table("outfit_items")
    op.drop_table("outfits")
    op.drop_index("ix_item_images_item_id", table_name="item_images")
    op.drop_table("item_images")
    op.drop_index("ix_items_state", table_name="items")
    op.drop_table("items")

    sa.Enum(name="queuestate").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="jobstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="jobtype").drop(op.get_bind(), checkfirst=True)
