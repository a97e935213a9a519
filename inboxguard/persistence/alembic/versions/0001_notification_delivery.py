"""create notification, retry queue, and delivery metric tables

Revision ID: 0001_notification_delivery
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_notification_delivery"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # In-app notification records read by the inbox UI.
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=150), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("related_id", sa.String(length=128), nullable=True),
        sa.Column("sender_id", sa.String(length=128), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    # Durable retry queue for notifications that failed immediate delivery.
    op.create_table(
        "notification_retry_queue",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=150), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("related_id", sa.String(length=128), nullable=True),
        sa.Column("sender_id", sa.String(length=128), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("notification_id", sa.String(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_letter_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_retry_queue_user_id", "notification_retry_queue", ["user_id"])
    op.create_index("ix_notification_retry_queue_status", "notification_retry_queue", ["status"])
    # Serves both the due-entry scan and the stale-pending count.
    op.create_index(
        "ix_notification_retry_queue_status_next_attempt",
        "notification_retry_queue",
        ["status", "next_attempt_at"],
    )

    # Append-only delivery counters summed by the health evaluator.
    op.create_table(
        "notification_delivery_metrics",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delivered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("queued", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("retried", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dead_letter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("extra_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_delivery_metrics_event", "notification_delivery_metrics", ["event"])
    op.create_index(
        "ix_notification_delivery_metrics_created_at",
        "notification_delivery_metrics",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_notification_delivery_metrics_created_at", table_name="notification_delivery_metrics")
    op.drop_index("ix_notification_delivery_metrics_event", table_name="notification_delivery_metrics")
    op.drop_table("notification_delivery_metrics")

    op.drop_index("ix_notification_retry_queue_status_next_attempt", table_name="notification_retry_queue")
    op.drop_index("ix_notification_retry_queue_status", table_name="notification_retry_queue")
    op.drop_index("ix_notification_retry_queue_user_id", table_name="notification_retry_queue")
    op.drop_table("notification_retry_queue")

    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
