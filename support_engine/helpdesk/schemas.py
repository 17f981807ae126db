"""Pydantic models for helpdesk webhook payloads and the conversation mirror."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WebhookEventType(str, Enum):
    CONVERSATION_CREATED = "conversation_created"
    MESSAGE_CREATED = "message_created"
    CONVERSATION_RESOLVED = "conversation_resolved"
    CONVERSATION_STATUS_CHANGED = "conversation_status_changed"
    ASSIGNEE_CHANGED = "assignee_changed"


class AccountRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: str | None = None


class WebhookEnvelope(BaseModel):
    """Outer shape shared by every helpdesk webhook delivery."""

    model_config = ConfigDict(extra="allow")

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    account: AccountRef


class ParticipantRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | None = None
    name: str | None = None
    type: str | None = None


class ConversationMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    sender: ParticipantRef | None = None
    assignee: ParticipantRef | None = None


class ConversationPayload(BaseModel):
    """``data`` of conversation-level events."""

    model_config = ConfigDict(extra="allow")

    id: int
    account_id: int | None = None
    inbox_id: int | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    meta: ConversationMeta = Field(default_factory=ConversationMeta)
    assignee: ParticipantRef | None = None
    custom_attributes: dict[str, Any] = Field(default_factory=dict)
    messages_count: int | None = None

    @property
    def contact_id(self) -> int | None:
        return self.meta.sender.id if self.meta.sender else None

    @property
    def current_assignee(self) -> ParticipantRef | None:
        return self.assignee or self.meta.assignee


class MessageConversationRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    messages_count: int | None = None
    inbox_id: int | None = None
    contact_id: int | None = None


class MessagePayload(BaseModel):
    """``data`` of ``message_created`` events."""

    model_config = ConfigDict(extra="allow")

    id: int | None = None
    content: str | None = None
    message_type: str | None = None
    private: bool = False
    created_at: datetime | None = None
    sender: ParticipantRef | None = None
    conversation: MessageConversationRef

    @property
    def is_agent_reply(self) -> bool:
        return (
            self.message_type == "outgoing"
            and not self.private
            and self.sender is not None
            and (self.sender.type or "").lower() in {"agent", "user"}
        )

    @property
    def is_customer_message(self) -> bool:
        return self.message_type == "incoming"


class ConversationMirror(BaseModel):
    """Local copy of a helpdesk conversation."""

    organization_id: UUID
    external_conversation_id: int
    external_contact_id: int | None = None
    external_account_id: int | None = None
    inbox_id: int | None = None
    status: str | None = None
    assignee_id: int | None = None
    assignee_name: str | None = None
    chat_session_token: str | None = None
    started_at: datetime | None = None
    last_activity_at: datetime | None = None
    message_count: int = 0
    first_response_at: datetime | None = None
    first_response_seconds: int | None = None
    resolved_at: datetime | None = None
    resolution_seconds: int | None = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None


class ContactMapping(BaseModel):
    organization_id: UUID
    external_contact_id: int
    customer_id: UUID | None = None
    cached_attributes: dict[str, Any] = Field(default_factory=dict)


class SupportHistory(BaseModel):
    previous_conversations: int = 0
    escalation_history: bool = False
    last_contact_at: datetime | None = None


class WebhookResult(BaseModel):
    success: bool = True
    event: str
    message: str = "Webhook processed successfully"
    ignored: bool = False
