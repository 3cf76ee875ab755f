from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("minecraft_username", sa.String(length=32)),
        sa.Column("minecraft_uuid", sa.String(length=36)),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("discord_message_id", sa.String(length=32), nullable=True),
        sa.Column("author_name", sa.String(length=255), nullable=False),
        sa.Column("author_avatar", sa.String(length=512)),
        sa.Column("content", sa.Text()),
        sa.Column("embeds", sa.Text()),
        sa.Column("attachments", sa.Text()),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("discord_message_id"),
    )
    op.create_index("ix_chat_messages_timestamp", "chat_messages", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_timestamp", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
