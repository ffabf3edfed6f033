"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates all tables for Parley:
- chats
- messages
- sync_statuses
- user_platforms
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Chats table
    op.create_table(
        "chats",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(128), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("connection_id", sa.String(128), nullable=False),
        sa.Column("platform_name", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("participants", sa.JSON, nullable=False),
        sa.Column("last_message", sa.Text, nullable=True),
        sa.Column("last_message_time", sa.String(32), nullable=True),
        sa.Column("import_new", sa.Boolean, nullable=False, default=False),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "customer_id", "external_id", "connection_id", name="uq_chat_external"
        ),
    )
    op.create_index("idx_chat_customer", "chats", ["customer_id"])

    # Messages table
    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(128), nullable=False),
        sa.Column("local_id", sa.String(128), nullable=False),
        sa.Column("chat_external_id", sa.String(255), nullable=False),
        sa.Column("connection_id", sa.String(128), nullable=False),
        sa.Column("platform_name", sa.String(64), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("sender", sa.String(255), nullable=False),
        sa.Column("owner_name", sa.String(255), nullable=True),
        sa.Column("timestamp", sa.String(32), nullable=False),
        sa.Column("message_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("external_message_id", sa.String(255), nullable=True),
        sa.Column("flow_run_id", sa.String(128), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "customer_id", "connection_id", "local_id", name="uq_msg_local"
        ),
        sa.UniqueConstraint(
            "customer_id",
            "connection_id",
            "external_message_id",
            name="uq_msg_external",
        ),
    )
    op.create_index("idx_msg_chat", "messages", ["customer_id", "chat_external_id"])
    op.create_index("idx_msg_flow_run", "messages", ["flow_run_id"])
    op.create_index("idx_msg_status", "messages", ["customer_id", "status"])

    # Sync statuses table
    op.create_table(
        "sync_statuses",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("sync_id", sa.String(64), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(128), nullable=False),
        # Set only while pending/running: one active sync per customer
        sa.Column("active_customer_id", sa.String(128), nullable=True, unique=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("is_syncing", sa.Boolean, nullable=False, default=False),
        sa.Column("start_time", sa.DateTime, nullable=True),
        sa.Column("last_sync_time", sa.DateTime, nullable=True),
        sa.Column("total_messages", sa.Integer, nullable=False, default=0),
        sa.Column("total_chats", sa.Integer, nullable=False, default=0),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index(
        "idx_sync_customer_created", "sync_statuses", ["customer_id", "created_at"]
    )

    # User platforms table
    op.create_table(
        "user_platforms",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(128), nullable=False),
        sa.Column("platform_id", sa.String(128), nullable=False),
        sa.Column("platform_name", sa.String(64), nullable=True),
        sa.Column("connection_id", sa.String(128), nullable=True),
        sa.Column("external_user_id", sa.String(255), nullable=True),
        sa.Column("external_user_name", sa.String(255), nullable=True),
        sa.Column("external_user_email", sa.String(255), nullable=True),
        sa.Column("import_new", sa.Boolean, nullable=False, default=True),
        sa.Column("last_synced", sa.DateTime, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("customer_id", "platform_id", name="uq_user_platform"),
    )


def downgrade() -> None:
    op.drop_table("user_platforms")
    op.drop_index("idx_sync_customer_created", table_name="sync_statuses")
    op.drop_table("sync_statuses")
    op.drop_index("idx_msg_status", table_name="messages")
    op.drop_index("idx_msg_flow_run", table_name="messages")
    op.drop_index("idx_msg_chat", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_chat_customer", table_name="chats")
    op.drop_table("chats")
