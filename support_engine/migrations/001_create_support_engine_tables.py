"""Create chat session, transcript and helpdesk mirror tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_support_engine_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSONB = postgresql.JSONB()


def upgrade() -> None:
    """Create the tables owned by the support engine."""

    op.create_table(
        "chat_sessions",
        sa.Column(
            "id",
            _UUID,
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("session_token", sa.String(length=128), nullable=False),
        sa.Column(
            "organization_id",
            _UUID,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "customer_id",
            _UUID,
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("context", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "status IN ('active', 'escalated', 'resolved')",
            name="ck_chat_sessions_status",
        ),
    )
    op.create_index(
        "ix_chat_sessions_token_unique", "chat_sessions", ["session_token"], unique=True
    )
    op.create_index(
        "ix_chat_sessions_org_status", "chat_sessions", ["organization_id", "status"]
    )

    op.create_table(
        "chat_messages",
        sa.Column(
            "id",
            _UUID,
            primary_key=True,
            nullable=False,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "session_id",
            _UUID,
            sa.ForeignKey("chat_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", _JSONB, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "role IN ('customer', 'assistant', 'human_agent', 'system')",
            name="ck_chat_messages_role",
        ),
    )
    op.create_index(
        "ix_chat_messages_session_seq", "chat_messages", ["session_id", "seq"], unique=True
    )

    op.create_table(
        "helpdesk_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("external_account_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "organization_id",
            _UUID,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=True),
    )
    op.create_index(
        "ix_helpdesk_accounts_external_unique",
        "helpdesk_accounts",
        ["external_account_id"],
        unique=True,
    )

    op.create_table(
        "helpdesk_contacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id",
            _UUID,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_contact_id", sa.BigInteger(), nullable=False),
        sa.Column(
            "customer_id",
            _UUID,
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "cached_attributes",
            _JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_helpdesk_contacts_org_contact_unique",
        "helpdesk_contacts",
        ["organization_id", "external_contact_id"],
        unique=True,
    )

    op.create_table(
        "external_conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "organization_id",
            _UUID,
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_conversation_id", sa.BigInteger(), nullable=False),
        sa.Column("external_contact_id", sa.BigInteger(), nullable=True),
        sa.Column("external_account_id", sa.BigInteger(), nullable=True),
        sa.Column("inbox_id", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=True),
        sa.Column("assignee_id", sa.BigInteger(), nullable=True),
        sa.Column("assignee_name", sa.String(length=255), nullable=True),
        sa.Column("chat_session_token", sa.String(length=128), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("first_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_response_seconds", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_seconds", sa.Integer(), nullable=True),
        sa.Column(
            "raw_payload",
            _JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index(
        "ix_external_conversations_org_external_unique",
        "external_conversations",
        ["organization_id", "external_conversation_id"],
        unique=True,
    )


def downgrade() -> None:
    """Drop the support engine tables."""

    op.drop_index(
        "ix_external_conversations_org_external_unique",
        table_name="external_conversations",
    )
    op.drop_table("external_conversations")

    op.drop_index("ix_helpdesk_contacts_org_contact_unique", table_name="helpdesk_contacts")
    op.drop_table("helpdesk_contacts")

    op.drop_index("ix_helpdesk_accounts_external_unique", table_name="helpdesk_accounts")
    op.drop_table("helpdesk_accounts")

    op.drop_index("ix_chat_messages_session_seq", table_name="chat_messages")
    op.drop_table("chat_messages")

    op.drop_index("ix_chat_sessions_org_status", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_token_unique", table_name="chat_sessions")
    op.drop_table("chat_sessions")
