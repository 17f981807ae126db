"""Session lifecycle: creation, transcript writes and status transitions."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager as ContextManager, contextmanager, nullcontext
from typing import Literal
from uuid import UUID

from ..core.clock import Clock, utcnow
from ..core.db import transaction
from ..core.errors import ConfigurationError, SessionNotFoundError
from . import schemas
from .repository import PostgresSessionRepository, SessionRepository

logger = logging.getLogger(__name__)

Actor = Literal["engine", "human"]

_STATUS_RANK = {
    schemas.SessionStatus.ACTIVE: 0,
    schemas.SessionStatus.ESCALATED: 1,
    schemas.SessionStatus.RESOLVED: 2,
}


class SessionStore:
    """Owns chat sessions and their append-only transcripts."""

    def __init__(self, repository: SessionRepository, *, clock: Clock = utcnow) -> None:
        self._repository = repository
        self._clock = clock

    def get_or_create_session(
        self,
        session_token: str,
        organization_id: UUID,
        customer_id: UUID | None = None,
    ) -> schemas.ChatSession:
        """Return the session for ``session_token``, creating it on first contact."""
        if not session_token:
            raise ValueError("session_token is required")
        session = self._repository.get_or_create(session_token, organization_id, customer_id)
        if session.organization_id != organization_id:
            raise ConfigurationError(
                "Session token is already bound to a different organization"
            )
        return session

    def get_session(self, session_id: UUID) -> schemas.ChatSession:
        session = self._repository.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Chat session {session_id} not found")
        return session

    def get_session_by_token(self, session_token: str) -> schemas.ChatSession | None:
        return self._repository.get_by_token(session_token)

    def append_message(
        self,
        session_id: UUID,
        role: schemas.MessageRole,
        content: str,
        metadata: schemas.MessageMetadata | None = None,
    ) -> schemas.ConversationMessage:
        """Append a transcript entry; entries are never edited afterwards."""
        return self._repository.append_message(
            session_id, role, content, metadata, self._clock()
        )

    def recent_messages(
        self, session_id: UUID, limit: int = 10
    ) -> list[schemas.ConversationMessage]:
        """Return the last ``limit`` messages in creation order."""
        return self._repository.list_messages(session_id, limit=limit)

    def update_status(
        self,
        session_id: UUID,
        status: schemas.SessionStatus,
        reason: str | None = None,
        *,
        actor: Actor = "engine",
    ) -> schemas.ChatSession:
        """Move a session forward in its lifecycle.

        ``active -> escalated`` is the only transition the engine may make.
        ``resolved`` is reserved for a human actor and may follow either
        ``active`` or ``escalated``. Any other request leaves the session
        untouched and returns its current state.
        """
        session = self.get_session(session_id)
        if status == schemas.SessionStatus.RESOLVED:
            if actor != "human":
                logger.warning(
                    "Ignoring resolve request from %s for session %s", actor, session_id
                )
                return session
            allowed_from = [schemas.SessionStatus.ACTIVE, schemas.SessionStatus.ESCALATED]
        else:
            allowed_from = [
                current for current, rank in _STATUS_RANK.items() if rank < _STATUS_RANK[status]
            ]
        if session.status not in allowed_from:
            logger.debug(
                "Status transition %s -> %s skipped for session %s",
                session.status.value,
                status.value,
                session_id,
            )
            return session

        now = self._clock()
        context = session.context.model_copy()
        if status == schemas.SessionStatus.ESCALATED:
            context.escalation_reason = reason
            context.escalated_at = now
        elif status == schemas.SessionStatus.RESOLVED:
            context.resolved_at = now
            context.resolution_note = reason
        updated = self._repository.transition_status(
            session_id, status, allowed_from, context, now
        )
        if updated is None:
            # Lost a race with another writer; report whatever won.
            return self.get_session(session_id)
        logger.info(
            "Session %s moved to %s (actor=%s, reason=%s)",
            session_id,
            status.value,
            actor,
            reason,
        )
        return updated

    def record_turn(self, session_id: UUID, model_tier: str | None) -> schemas.ChatSession:
        """Bump the turn counter and remember the model tier used."""
        updated = self._repository.record_turn(session_id, model_tier, self._clock())
        if updated is None:
            raise SessionNotFoundError(f"Chat session {session_id} not found")
        return updated


SessionScope = Callable[[], ContextManager[SessionStore]]


@contextmanager
def postgres_session_scope(
    database_url: str | None = None, *, clock: Clock = utcnow
) -> Iterator[SessionStore]:
    """Yield a store whose writes commit together or not at all."""

    with transaction(database_url) as conn:
        yield SessionStore(PostgresSessionRepository(conn), clock=clock)


def shared_session_scope(store: SessionStore) -> SessionScope:
    """Scope factory that always hands out the same store (in-memory wiring)."""

    return lambda: nullcontext(store)
