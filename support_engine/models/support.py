"""Tables owned by the support engine.

``chat_sessions`` / ``chat_messages`` hold the widget conversations,
``external_conversations`` mirrors helpdesk conversations and the
``helpdesk_*`` tables map external identifiers onto local ones.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base
from .commerce import JsonDocument, _utcnow

_UUID = UUID(as_uuid=True)


class ChatSession(Base):
    """One widget conversation, identified by the client-supplied token.

    Attributes:
        session_token: Opaque client token; the unique index makes
            get-or-create an atomic conditional insert.
        status: ``active``, ``escalated`` or ``resolved``.
        context: Serialized ``SessionContext`` (escalation/resolution data).
    """

    __tablename__ = "chat_sessions"
    __table_args__ = (
        Index("ix_chat_sessions_token_unique", "session_token", unique=True),
        Index("ix_chat_sessions_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    session_token: Mapped[str] = mapped_column(String(length=128), nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        _UUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        _UUID, ForeignKey("customers.id", ondelete="SET NULL")
    )
    status: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="active", server_default=text("'active'")
    )
    context: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class ChatMessage(Base):
    """Append-only transcript entry; ``seq`` orders messages per session."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_session_seq", "session_id", "seq", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        _UUID,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        _UUID, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(length=16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JsonDocument)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class HelpdeskAccount(Base):
    """Maps an external helpdesk account id onto an organization."""

    __tablename__ = "helpdesk_accounts"
    __table_args__ = (
        Index("ix_helpdesk_accounts_external_unique", "external_account_id", unique=True),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_account_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        _UUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str | None] = mapped_column(String(length=255))


class HelpdeskContact(Base):
    """Maps an external contact onto a customer and caches derived attributes."""

    __tablename__ = "helpdesk_contacts"
    __table_args__ = (
        Index(
            "ix_helpdesk_contacts_org_contact_unique",
            "organization_id",
            "external_contact_id",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        _UUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    external_contact_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        _UUID, ForeignKey("customers.id", ondelete="SET NULL")
    )
    cached_attributes: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument, nullable=False, default=dict
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class ExternalConversation(Base):
    """Local mirror of a helpdesk conversation; remote state is authoritative."""

    __tablename__ = "external_conversations"
    __table_args__ = (
        Index(
            "ix_external_conversations_org_external_unique",
            "organization_id",
            "external_conversation_id",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        _UUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    external_conversation_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    external_contact_id: Mapped[int | None] = mapped_column(BigInteger)
    external_account_id: Mapped[int | None] = mapped_column(BigInteger)
    inbox_id: Mapped[int | None] = mapped_column(BigInteger)
    status: Mapped[str | None] = mapped_column(String(length=32))
    assignee_id: Mapped[int | None] = mapped_column(BigInteger)
    assignee_name: Mapped[str | None] = mapped_column(String(length=255))
    chat_session_token: Mapped[str | None] = mapped_column(String(length=128))
    started_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_response_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    first_response_seconds: Mapped[int | None] = mapped_column(Integer)
    resolved_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))
    resolution_seconds: Mapped[int | None] = mapped_column(Integer)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
