"""Chat session persistence: get-or-create by token and ordered transcripts."""

from . import schemas
from .repository import InMemorySessionRepository, PostgresSessionRepository
from .service import SessionScope, SessionStore, postgres_session_scope, shared_session_scope

__all__ = [
    "InMemorySessionRepository",
    "PostgresSessionRepository",
    "SessionScope",
    "SessionStore",
    "postgres_session_scope",
    "schemas",
    "shared_session_scope",
]
