from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

pytest.importorskip("sqlalchemy")
from sqlalchemy import inspect, select  # type: ignore  # noqa: E402
from sqlalchemy.exc import IntegrityError  # type: ignore  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # type: ignore  # noqa: E402

from support_engine.models import (  # noqa: E402
    Base,
    ChatMessage,
    ChatSession,
    ExternalConversation,
    HelpdeskContact,
    Order,
    Organization,
)
from support_engine.models.engine import create_schema, get_engine  # noqa: E402


@pytest.fixture
def engine():
    return get_engine("sqlite+pysqlite:///:memory:", future=True)


@pytest.fixture
def session(engine):
    create_schema(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    with factory() as session:
        yield session
        session.rollback()
    Base.metadata.drop_all(engine)


@pytest.fixture
def organization(session: Session) -> Organization:
    org = Organization(id=uuid.uuid4(), name="Lumen Living")
    session.add(org)
    session.flush()
    return org


def test_schema_contains_engine_tables(engine) -> None:
    create_schema(engine)

    tables = set(inspect(engine).get_table_names())

    assert {
        "chat_sessions",
        "chat_messages",
        "external_conversations",
        "helpdesk_accounts",
        "helpdesk_contacts",
        "organizations",
        "orders",
        "store_settings",
    } <= tables


def test_get_engine_requires_url(monkeypatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        get_engine()


def test_session_and_transcript_defaults(session: Session, organization) -> None:
    chat = ChatSession(session_token="widget-1", organization_id=organization.id)
    session.add(chat)
    session.flush()
    session.add(ChatMessage(session_id=chat.id, seq=1, role="customer", content="hi"))
    session.flush()

    assert chat.status == "active"
    assert chat.context == {}
    stored = session.scalars(select(ChatMessage).where(ChatMessage.session_id == chat.id)).one()
    assert stored.seq == 1
    assert stored.metadata_ is None


def test_session_token_is_unique(session: Session, organization) -> None:
    session.add(ChatSession(session_token="dup", organization_id=organization.id))
    session.flush()
    session.add(ChatSession(session_token="dup", organization_id=organization.id))

    with pytest.raises(IntegrityError):
        session.flush()


def test_message_seq_is_unique_per_session(session: Session, organization) -> None:
    chat = ChatSession(session_token="seq", organization_id=organization.id)
    session.add(chat)
    session.flush()
    session.add(ChatMessage(session_id=chat.id, seq=1, role="customer", content="a"))
    session.add(ChatMessage(session_id=chat.id, seq=1, role="assistant", content="b"))

    with pytest.raises(IntegrityError):
        session.flush()


def test_mirror_is_unique_per_organization(session: Session, organization) -> None:
    other = Organization(id=uuid.uuid4(), name="Other")
    session.add(other)
    session.flush()
    session.add(ExternalConversation(organization_id=organization.id, external_conversation_id=5))
    session.add(ExternalConversation(organization_id=other.id, external_conversation_id=5))
    session.flush()

    session.add(ExternalConversation(organization_id=organization.id, external_conversation_id=5))
    with pytest.raises(IntegrityError):
        session.flush()


def test_json_columns_round_trip(session: Session, organization) -> None:
    contact = HelpdeskContact(
        organization_id=organization.id,
        external_contact_id=42,
        cached_attributes={"customer_tier": "Gold", "order_count": 12},
    )
    order = Order(
        id=uuid.uuid4(),
        organization_id=organization.id,
        order_number="1001",
        total_amount=Decimal("149.90"),
    )
    session.add_all([contact, order])
    session.flush()
    session.expire_all()

    assert session.get(HelpdeskContact, contact.id).cached_attributes["customer_tier"] == "Gold"
    assert session.get(Order, order.id).status == "pending"
