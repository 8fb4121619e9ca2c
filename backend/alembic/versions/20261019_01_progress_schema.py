"""Progress store schema: user aggregates, lesson documents, completions and audit."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_01_progress_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "user_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("total_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sessions_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lessons_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_completed_lesson", sa.String(length=160), nullable=True),
        sa.Column("last_active_day", sa.String(length=10), nullable=True),
        sa.Column("activity_log", sa.JSON(), nullable=False),
        sa.Column("contribution_data", sa.JSON(), nullable=False),
        sa.Column("weekly_progress", sa.JSON(), nullable=False),
        sa.Column("archived_progress", sa.JSON(), nullable=False),
        sa.Column("last_week_reset", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_user_progress_user_id", "user_progress", ["user_id"], unique=True)

    op.create_table(
        "lesson_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("chapter_id", sa.String(length=64), nullable=False),
        sa.Column("lesson_id", sa.String(length=64), nullable=False),
        sa.Column("unlocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("minutes_spent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages", sa.JSON(), nullable=False),
        sa.Column("last_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "chapter_id", "lesson_id", name="uq_lesson_progress_lesson"),
    )
    op.create_index("ix_lesson_progress_chapter", "lesson_progress", ["user_id", "chapter_id"])

    op.create_table(
        "completion_operations",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("operation_id", sa.String(length=128), nullable=False),
        sa.Column("lesson_key", sa.String(length=160), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.UniqueConstraint("user_id", "operation_id", name="uq_completion_operation"),
    )

    op.create_table(
        "progress_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_progress_audit_events_user", "progress_audit_events", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_progress_audit_events_user", table_name="progress_audit_events")
    op.drop_table("progress_audit_events")
    op.drop_table("completion_operations")
    op.drop_index("ix_lesson_progress_chapter", table_name="lesson_progress")
    op.drop_table("lesson_progress")
    op.drop_index("ix_user_progress_user_id", table_name="user_progress")
    op.drop_table("user_progress")
