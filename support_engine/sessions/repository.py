"""Repositories for chat session persistence."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.clock import utcnow
from ..core.errors import SessionNotFoundError
from . import schemas


class SessionRepository(Protocol):
    """Persistence abstraction used by :class:`~.service.SessionStore`."""

    def get_or_create(
        self,
        session_token: str,
        organization_id: UUID,
        customer_id: Optional[UUID] = None,
    ) -> schemas.ChatSession: ...

    def get(self, session_id: UUID) -> Optional[schemas.ChatSession]: ...

    def get_by_token(self, session_token: str) -> Optional[schemas.ChatSession]: ...

    def append_message(
        self,
        session_id: UUID,
        role: schemas.MessageRole,
        content: str,
        metadata: Optional[schemas.MessageMetadata],
        created_at: datetime,
    ) -> schemas.ConversationMessage: ...

    def list_messages(
        self, session_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.ConversationMessage]: ...

    def transition_status(
        self,
        session_id: UUID,
        status: schemas.SessionStatus,
        allowed_from: Iterable[schemas.SessionStatus],
        context: schemas.SessionContext,
        updated_at: datetime,
    ) -> Optional[schemas.ChatSession]: ...

    def record_turn(
        self, session_id: UUID, model_tier: Optional[str], updated_at: datetime
    ) -> Optional[schemas.ChatSession]: ...


class PostgresSessionRepository:
    """PostgreSQL implementation of :class:`SessionRepository`.

    Callers own the transaction; a whole turn runs on one connection and is
    committed (or rolled back) by the entry point.
    """

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_or_create(
        self,
        session_token: str,
        organization_id: UUID,
        customer_id: Optional[UUID] = None,
    ) -> schemas.ChatSession:
        # The unique token index turns concurrent first contacts into one row;
        # losers fall through to the select and see the winner.
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO chat_sessions (session_token, organization_id, customer_id, status, context)
                VALUES (%s, %s, %s, 'active', %s)
                ON CONFLICT (session_token) DO NOTHING
                RETURNING *
                """,
                (
                    session_token,
                    organization_id,
                    customer_id,
                    Jsonb(schemas.SessionContext().model_dump(mode="json")),
                ),
            )
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "SELECT * FROM chat_sessions WHERE session_token = %s",
                    (session_token,),
                )
                row = cur.fetchone()
        if row is None:
            raise RuntimeError(f"Failed to create chat session for token {session_token!r}")
        return self._hydrate_session(row)

    def get(self, session_id: UUID) -> Optional[schemas.ChatSession]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM chat_sessions WHERE id = %s", (session_id,))
            row = cur.fetchone()
        return self._hydrate_session(row) if row else None

    def get_by_token(self, session_token: str) -> Optional[schemas.ChatSession]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM chat_sessions WHERE session_token = %s",
                (session_token,),
            )
            row = cur.fetchone()
        return self._hydrate_session(row) if row else None

    def append_message(
        self,
        session_id: UUID,
        role: schemas.MessageRole,
        content: str,
        metadata: Optional[schemas.MessageMetadata],
        created_at: datetime,
    ) -> schemas.ConversationMessage:
        with self._cursor() as cur:
            # Row lock serializes writers for this session so ``seq`` is gap-free.
            cur.execute(
                "SELECT id FROM chat_sessions WHERE id = %s FOR UPDATE",
                (session_id,),
            )
            if cur.fetchone() is None:
                raise SessionNotFoundError(f"Chat session {session_id} not found")
            cur.execute(
                """
                INSERT INTO chat_messages (session_id, seq, role, content, metadata, created_at)
                VALUES (
                    %s,
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM chat_messages WHERE session_id = %s),
                    %s, %s, %s, %s
                )
                RETURNING *
                """,
                (
                    session_id,
                    session_id,
                    role.value,
                    content,
                    Jsonb(metadata.model_dump(mode="json")) if metadata else None,
                    created_at,
                ),
            )
            row = cur.fetchone()
            cur.execute(
                "UPDATE chat_sessions SET updated_at = %s WHERE id = %s",
                (created_at, session_id),
            )
        return schemas.ConversationMessage(**row)

    def list_messages(
        self, session_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.ConversationMessage]:
        with self._cursor() as cur:
            if limit is None:
                cur.execute(
                    "SELECT * FROM chat_messages WHERE session_id = %s ORDER BY seq ASC",
                    (session_id,),
                )
            else:
                cur.execute(
                    """
                    SELECT * FROM (
                        SELECT * FROM chat_messages
                        WHERE session_id = %s
                        ORDER BY seq DESC
                        LIMIT %s
                    ) AS recent
                    ORDER BY seq ASC
                    """,
                    (session_id, limit),
                )
            rows = cur.fetchall()
        return [schemas.ConversationMessage(**row) for row in rows]

    def transition_status(
        self,
        session_id: UUID,
        status: schemas.SessionStatus,
        allowed_from: Iterable[schemas.SessionStatus],
        context: schemas.SessionContext,
        updated_at: datetime,
    ) -> Optional[schemas.ChatSession]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE chat_sessions
                SET status = %s, context = %s, updated_at = %s
                WHERE id = %s AND status = ANY(%s)
                RETURNING *
                """,
                (
                    status.value,
                    Jsonb(context.model_dump(mode="json")),
                    updated_at,
                    session_id,
                    [item.value for item in allowed_from],
                ),
            )
            row = cur.fetchone()
        return self._hydrate_session(row) if row else None

    def record_turn(
        self, session_id: UUID, model_tier: Optional[str], updated_at: datetime
    ) -> Optional[schemas.ChatSession]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE chat_sessions
                SET context = COALESCE(context, '{}'::jsonb) || jsonb_build_object(
                        'turn_count', COALESCE((context->>'turn_count')::int, 0) + 1,
                        'last_model_tier', %s::text
                    ),
                    updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (model_tier, updated_at, session_id),
            )
            row = cur.fetchone()
        return self._hydrate_session(row) if row else None

    # Helpers ------------------------------------------------------------------
    def _hydrate_session(self, row: Dict[str, Any]) -> schemas.ChatSession:
        data = dict(row)
        data["context"] = data.get("context") or {}
        return schemas.ChatSession(**data)


class InMemorySessionRepository:
    """Thread-safe in-memory repository used by tests and local development."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[UUID, schemas.ChatSession] = {}
        self._by_token: Dict[str, UUID] = {}
        self._messages: Dict[UUID, List[schemas.ConversationMessage]] = {}
        self._session_locks: Dict[UUID, threading.Lock] = {}

    def get_or_create(
        self,
        session_token: str,
        organization_id: UUID,
        customer_id: Optional[UUID] = None,
    ) -> schemas.ChatSession:
        with self._lock:
            existing = self._by_token.get(session_token)
            if existing is not None:
                return self._sessions[existing].model_copy(deep=True)
            now = utcnow()
            session = schemas.ChatSession(
                id=uuid4(),
                session_token=session_token,
                organization_id=organization_id,
                customer_id=customer_id,
                created_at=now,
                updated_at=now,
            )
            self._sessions[session.id] = session
            self._by_token[session_token] = session.id
            self._messages[session.id] = []
            self._session_locks[session.id] = threading.Lock()
            return session.model_copy(deep=True)

    def get(self, session_id: UUID) -> Optional[schemas.ChatSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    def get_by_token(self, session_token: str) -> Optional[schemas.ChatSession]:
        session_id = self._by_token.get(session_token)
        return self.get(session_id) if session_id else None

    def append_message(
        self,
        session_id: UUID,
        role: schemas.MessageRole,
        content: str,
        metadata: Optional[schemas.MessageMetadata],
        created_at: datetime,
    ) -> schemas.ConversationMessage:
        lock = self._session_locks.get(session_id)
        if lock is None:
            raise SessionNotFoundError(f"Chat session {session_id} not found")
        with lock:
            transcript = self._messages[session_id]
            message = schemas.ConversationMessage(
                id=uuid4(),
                session_id=session_id,
                seq=len(transcript) + 1,
                role=role,
                content=content,
                metadata=metadata,
                created_at=created_at,
            )
            transcript.append(message)
            self._sessions[session_id].updated_at = created_at
        return message

    def list_messages(
        self, session_id: UUID, limit: Optional[int] = None
    ) -> List[schemas.ConversationMessage]:
        transcript = list(self._messages.get(session_id, []))
        if limit is not None:
            transcript = transcript[-limit:] if limit > 0 else []
        return transcript

    def transition_status(
        self,
        session_id: UUID,
        status: schemas.SessionStatus,
        allowed_from: Iterable[schemas.SessionStatus],
        context: schemas.SessionContext,
        updated_at: datetime,
    ) -> Optional[schemas.ChatSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status not in set(allowed_from):
                return None
            session.status = status
            session.context = context
            session.updated_at = updated_at
            return session.model_copy(deep=True)

    def record_turn(
        self, session_id: UUID, model_tier: Optional[str], updated_at: datetime
    ) -> Optional[schemas.ChatSession]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.context.turn_count += 1
            session.context.last_model_tier = model_tier
            session.updated_at = updated_at
            return session.model_copy(deep=True)
