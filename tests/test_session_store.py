import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import ORG_ID
from support_engine.core.errors import ConfigurationError, SessionNotFoundError
from support_engine.sessions.repository import InMemorySessionRepository
from support_engine.sessions.schemas import MessageMetadata, MessageRole, SessionStatus
from support_engine.sessions.service import SessionStore


def test_get_or_create_is_idempotent_under_concurrency():
    store = SessionStore(InMemorySessionRepository())

    with ThreadPoolExecutor(max_workers=8) as pool:
        sessions = list(
            pool.map(lambda _: store.get_or_create_session("tok-1", ORG_ID), range(32))
        )

    assert len({session.id for session in sessions}) == 1
    assert sessions[0].status == SessionStatus.ACTIVE


def test_get_or_create_rejects_empty_token_and_foreign_organization(session_store):
    with pytest.raises(ValueError):
        session_store.get_or_create_session("", ORG_ID)

    session_store.get_or_create_session("tok-2", ORG_ID)
    with pytest.raises(ConfigurationError):
        session_store.get_or_create_session("tok-2", uuid.uuid4())


def test_transcript_is_ordered_and_bounded(session_store):
    session = session_store.get_or_create_session("tok-3", ORG_ID)
    for index in range(12):
        role = MessageRole.CUSTOMER if index % 2 == 0 else MessageRole.ASSISTANT
        session_store.append_message(session.id, role, f"message {index}")

    recent = session_store.recent_messages(session.id, limit=10)

    assert [m.content for m in recent] == [f"message {i}" for i in range(2, 12)]
    assert [m.seq for m in recent] == list(range(3, 13))


def test_concurrent_appends_get_unique_sequence_numbers(session_store):
    session = session_store.get_or_create_session("tok-4", ORG_ID)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(
            pool.map(
                lambda i: session_store.append_message(
                    session.id, MessageRole.CUSTOMER, f"m{i}"
                ),
                range(50),
            )
        )

    seqs = [m.seq for m in session_store.recent_messages(session.id, limit=100)]
    assert seqs == list(range(1, 51))


def test_append_to_unknown_session_raises(session_store):
    with pytest.raises(SessionNotFoundError):
        session_store.append_message(uuid.uuid4(), MessageRole.CUSTOMER, "hello")


def test_assistant_metadata_is_stored(session_store):
    session = session_store.get_or_create_session("tok-5", ORG_ID)
    message = session_store.append_message(
        session.id,
        MessageRole.ASSISTANT,
        "Hi!",
        MessageMetadata(model_tier="fast", confidence=0.7, tool="order_lookup"),
    )

    stored = session_store.recent_messages(session.id)[-1]
    assert stored.id == message.id
    assert stored.metadata.tool == "order_lookup"
    assert stored.metadata.confidence == 0.7


def test_escalation_is_monotonic(session_store):
    session = session_store.get_or_create_session("tok-6", ORG_ID)

    escalated = session_store.update_status(session.id, SessionStatus.ESCALATED, "frustration")
    assert escalated.status == SessionStatus.ESCALATED
    assert escalated.context.escalation_reason == "frustration"
    assert escalated.context.escalated_at is not None

    again = session_store.update_status(session.id, SessionStatus.ACTIVE)
    assert again.status == SessionStatus.ESCALATED

    second = session_store.update_status(session.id, SessionStatus.ESCALATED, "urgency")
    assert second.context.escalation_reason == "frustration"


def test_only_a_human_can_resolve(session_store):
    session = session_store.get_or_create_session("tok-7", ORG_ID)

    untouched = session_store.update_status(session.id, SessionStatus.RESOLVED)
    assert untouched.status == SessionStatus.ACTIVE

    resolved = session_store.update_status(
        session.id, SessionStatus.RESOLVED, "done", actor="human"
    )
    assert resolved.status == SessionStatus.RESOLVED
    assert resolved.context.resolution_note == "done"

    reopened = session_store.update_status(session.id, SessionStatus.ESCALATED, "urgency")
    assert reopened.status == SessionStatus.RESOLVED


def test_record_turn_keeps_status(session_store):
    session = session_store.get_or_create_session("tok-8", ORG_ID)
    session_store.update_status(session.id, SessionStatus.ESCALATED, "urgency")

    updated = session_store.record_turn(session.id, "capable")
    updated = session_store.record_turn(session.id, "fast")

    assert updated.status == SessionStatus.ESCALATED
    assert updated.context.turn_count == 2
    assert updated.context.last_model_tier == "fast"


def test_concurrent_turns_count_every_increment(session_store):
    session = session_store.get_or_create_session("tok-9", ORG_ID)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: session_store.record_turn(session.id, "fast"), range(40)))

    assert session_store.get_session(session.id).context.turn_count == 40


def test_record_turn_for_unknown_session_raises(session_store):
    with pytest.raises(SessionNotFoundError):
        session_store.record_turn(uuid.uuid4(), "fast")
