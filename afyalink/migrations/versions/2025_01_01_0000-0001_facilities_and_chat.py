"""Health facility directory and counseling chat tables.

Revision ID: 0001
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "health_facilities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("address", sa.String(200), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("services", postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'[]'::jsonb"),
                  comment="Ordered list of offered services"),
        sa.Column("operating_hours", postgresql.JSONB(), nullable=False,
                  server_default=sa.text("'{}'::jsonb"),
                  comment="Day name -> hours string"),
        sa.Column("is_emergency", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_24_hours", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("review_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true",
                  comment="False = soft-deleted"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.CheckConstraint("rating >= 0 AND rating <= 5", name="ck_health_facilities_rating"),
        sa.CheckConstraint("review_count >= 0", name="ck_health_facilities_review_count"),
    )
    op.create_index("ix_health_facilities_lat_lng", "health_facilities",
                    ["latitude", "longitude"])
    op.create_index("ix_health_facilities_active_type", "health_facilities",
                    ["is_active", "type"])

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("session_id", sa.String(64), nullable=False, unique=True,
                  comment="Public, unguessable identifier"),
        sa.Column("user_id", sa.String(64), nullable=True, comment="Null for anonymous users"),
        sa.Column("counselor_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="waiting"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("topic", sa.String(100), nullable=True),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_rating", sa.Integer(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("message_seq", sa.Integer(), nullable=False, server_default="0",
                  comment="Last assigned message sequence number"),
        sa.Column("bot_reply_count", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("status IN ('waiting', 'active', 'ended', 'cancelled')",
                           name="ck_chat_sessions_status"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')",
                           name="ck_chat_sessions_priority"),
        sa.CheckConstraint("user_rating IS NULL OR (user_rating >= 1 AND user_rating <= 5)",
                           name="ck_chat_sessions_user_rating"),
    )
    op.create_index("ix_chat_sessions_status_started", "chat_sessions",
                    ["status", "started_at"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("session_pk", sa.Integer(), sa.ForeignKey("chat_sessions.id"),
                  nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False, comment="Per-session ordering key"),
        sa.Column("sender_id", sa.String(64), nullable=True),
        sa.Column("sender_type", sa.String(16), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("now()")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("session_pk", "seq", name="uq_chat_messages_session_seq"),
        sa.CheckConstraint("sender_type IN ('user', 'counselor', 'system')",
                           name="ck_chat_messages_sender_type"),
    )
    op.create_index("ix_chat_messages_session_pk", "chat_messages", ["session_pk"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_session_pk", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_chat_sessions_status_started", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_index("ix_health_facilities_active_type", table_name="health_facilities")
    op.drop_index("ix_health_facilities_lat_lng", table_name="health_facilities")
    op.drop_table("health_facilities")
