"""Persistence for helpdesk mappings and the conversation mirror."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.clock import utcnow
from ..core.db import transaction
from . import schemas

_MIRROR_COLUMNS = (
    "external_contact_id",
    "external_account_id",
    "inbox_id",
    "status",
    "assignee_id",
    "assignee_name",
    "chat_session_token",
    "started_at",
    "last_activity_at",
    "message_count",
    "first_response_at",
    "first_response_seconds",
    "resolved_at",
    "resolution_seconds",
    "raw_payload",
    "updated_at",
)


class HelpdeskRepository(Protocol):
    def get_account_organization(self, external_account_id: int) -> Optional[UUID]: ...

    def get_contact(
        self, organization_id: UUID, external_contact_id: int
    ) -> Optional[schemas.ContactMapping]: ...

    def update_contact_attributes(
        self, organization_id: UUID, external_contact_id: int, attributes: Dict[str, Any]
    ) -> None: ...

    def mirror_for_update(
        self, organization_id: UUID, external_conversation_id: int
    ) -> AbstractContextManager[schemas.ConversationMirror]: ...

    def get_mirror(
        self, organization_id: UUID, external_conversation_id: int
    ) -> Optional[schemas.ConversationMirror]: ...

    def contact_history(
        self, organization_id: UUID, external_contact_id: int
    ) -> schemas.SupportHistory: ...


HelpdeskUnitOfWork = Callable[[], AbstractContextManager[HelpdeskRepository]]


class PostgresHelpdeskRepository:
    """PostgreSQL implementation; the caller owns the transaction."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_account_organization(self, external_account_id: int) -> Optional[UUID]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT organization_id FROM helpdesk_accounts WHERE external_account_id = %s",
                (external_account_id,),
            )
            row = cur.fetchone()
        return row["organization_id"] if row else None

    def get_contact(
        self, organization_id: UUID, external_contact_id: int
    ) -> Optional[schemas.ContactMapping]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT organization_id, external_contact_id, customer_id, cached_attributes
                FROM helpdesk_contacts
                WHERE organization_id = %s AND external_contact_id = %s
                """,
                (organization_id, external_contact_id),
            )
            row = cur.fetchone()
        if not row:
            return None
        data = dict(row)
        data["cached_attributes"] = data.get("cached_attributes") or {}
        return schemas.ContactMapping(**data)

    def update_contact_attributes(
        self, organization_id: UUID, external_contact_id: int, attributes: Dict[str, Any]
    ) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE helpdesk_contacts
                SET cached_attributes = cached_attributes || %s, updated_at = now()
                WHERE organization_id = %s AND external_contact_id = %s
                """,
                (Jsonb(attributes), organization_id, external_contact_id),
            )

    @contextmanager
    def mirror_for_update(
        self, organization_id: UUID, external_conversation_id: int
    ) -> Iterator[schemas.ConversationMirror]:
        with self._cursor() as cur:
            # Materialize the row first so concurrent deliveries for the same
            # conversation all block on the same lock.
            cur.execute(
                """
                INSERT INTO external_conversations (organization_id, external_conversation_id)
                VALUES (%s, %s)
                ON CONFLICT (organization_id, external_conversation_id) DO NOTHING
                """,
                (organization_id, external_conversation_id),
            )
            cur.execute(
                """
                SELECT * FROM external_conversations
                WHERE organization_id = %s AND external_conversation_id = %s
                FOR UPDATE
                """,
                (organization_id, external_conversation_id),
            )
            row = cur.fetchone()
        mirror = self._hydrate(row)
        yield mirror
        mirror.updated_at = utcnow()
        assignments = ", ".join(f"{column} = %s" for column in _MIRROR_COLUMNS)
        values = [
            Jsonb(mirror.raw_payload) if column == "raw_payload" else getattr(mirror, column)
            for column in _MIRROR_COLUMNS
        ]
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE external_conversations SET {assignments}
                WHERE organization_id = %s AND external_conversation_id = %s
                """,
                (*values, organization_id, external_conversation_id),
            )

    def get_mirror(
        self, organization_id: UUID, external_conversation_id: int
    ) -> Optional[schemas.ConversationMirror]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM external_conversations
                WHERE organization_id = %s AND external_conversation_id = %s
                """,
                (organization_id, external_conversation_id),
            )
            row = cur.fetchone()
        return self._hydrate(row) if row else None

    def contact_history(
        self, organization_id: UUID, external_contact_id: int
    ) -> schemas.SupportHistory:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT COUNT(*) AS previous_conversations,
                       COALESCE(bool_or(assignee_id IS NOT NULL), false) AS escalation_history,
                       MAX(COALESCE(last_activity_at, started_at)) AS last_contact_at
                FROM external_conversations
                WHERE organization_id = %s AND external_contact_id = %s
                """,
                (organization_id, external_contact_id),
            )
            row = cur.fetchone()
        return schemas.SupportHistory(**(row or {}))

    def _hydrate(self, row: Dict[str, Any]) -> schemas.ConversationMirror:
        data = {key: value for key, value in row.items() if key != "id"}
        data["raw_payload"] = data.get("raw_payload") or {}
        data["message_count"] = data.get("message_count") or 0
        return schemas.ConversationMirror(**data)


@contextmanager
def postgres_unit_of_work(database_url: str | None = None) -> Iterator[HelpdeskRepository]:
    """Open a transaction and yield a repository bound to it."""

    with transaction(database_url) as conn:
        yield PostgresHelpdeskRepository(conn)


class InMemoryHelpdeskRepository:
    """Dictionary-backed repository with per-conversation locks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.accounts: Dict[int, UUID] = {}
        self.contacts: Dict[tuple[UUID, int], schemas.ContactMapping] = {}
        self.mirrors: Dict[tuple[UUID, int], schemas.ConversationMirror] = {}
        self._mirror_locks: Dict[tuple[UUID, int], threading.Lock] = {}

    def map_account(self, external_account_id: int, organization_id: UUID) -> None:
        self.accounts[external_account_id] = organization_id

    def map_contact(self, mapping: schemas.ContactMapping) -> None:
        self.contacts[(mapping.organization_id, mapping.external_contact_id)] = mapping

    def get_account_organization(self, external_account_id: int) -> Optional[UUID]:
        return self.accounts.get(external_account_id)

    def get_contact(
        self, organization_id: UUID, external_contact_id: int
    ) -> Optional[schemas.ContactMapping]:
        mapping = self.contacts.get((organization_id, external_contact_id))
        return mapping.model_copy(deep=True) if mapping else None

    def update_contact_attributes(
        self, organization_id: UUID, external_contact_id: int, attributes: Dict[str, Any]
    ) -> None:
        with self._lock:
            mapping = self.contacts.get((organization_id, external_contact_id))
            if mapping is not None:
                mapping.cached_attributes = {**mapping.cached_attributes, **attributes}

    @contextmanager
    def mirror_for_update(
        self, organization_id: UUID, external_conversation_id: int
    ) -> Iterator[schemas.ConversationMirror]:
        key = (organization_id, external_conversation_id)
        with self._lock:
            lock = self._mirror_locks.setdefault(key, threading.Lock())
        with lock:
            existing = self.mirrors.get(key)
            mirror = (
                existing.model_copy(deep=True)
                if existing
                else schemas.ConversationMirror(
                    organization_id=organization_id,
                    external_conversation_id=external_conversation_id,
                )
            )
            yield mirror
            mirror.updated_at = utcnow()
            with self._lock:
                self.mirrors[key] = mirror

    def get_mirror(
        self, organization_id: UUID, external_conversation_id: int
    ) -> Optional[schemas.ConversationMirror]:
        mirror = self.mirrors.get((organization_id, external_conversation_id))
        return mirror.model_copy(deep=True) if mirror else None

    def contact_history(
        self, organization_id: UUID, external_contact_id: int
    ) -> schemas.SupportHistory:
        with self._lock:
            snapshot = list(self.mirrors.items())
        mirrors = [
            mirror
            for (org, _), mirror in snapshot
            if org == organization_id and mirror.external_contact_id == external_contact_id
        ]
        activity = [
            mirror.last_activity_at or mirror.started_at
            for mirror in mirrors
            if mirror.last_activity_at or mirror.started_at
        ]
        return schemas.SupportHistory(
            previous_conversations=len(mirrors),
            escalation_history=any(mirror.assignee_id is not None for mirror in mirrors),
            last_contact_at=max(activity) if activity else None,
        )

    @contextmanager
    def unit_of_work(self) -> Iterator[HelpdeskRepository]:
        yield self
