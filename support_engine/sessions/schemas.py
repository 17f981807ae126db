"""Pydantic schemas for chat sessions and their transcripts."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    ASSISTANT = "assistant"
    HUMAN_AGENT = "human_agent"
    SYSTEM = "system"


class SessionContext(BaseModel):
    """Engine-managed state stored alongside a session."""

    escalation_reason: str | None = None
    escalated_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution_note: str | None = None
    last_model_tier: str | None = None
    turn_count: int = 0


class MessageMetadata(BaseModel):
    """What produced an assistant message."""

    model_tier: str | None = None
    model: str | None = None
    confidence: float | None = None
    tool: str | None = None
    tool_status: str | None = None
    escalation_reason: str | None = None


class ChatSession(BaseModel):
    id: UUID
    session_token: str
    organization_id: UUID
    customer_id: UUID | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    context: SessionContext = Field(default_factory=SessionContext)
    created_at: datetime
    updated_at: datetime


class ConversationMessage(BaseModel):
    id: UUID
    session_id: UUID
    seq: int
    role: MessageRole
    content: str
    metadata: MessageMetadata | None = None
    created_at: datetime
