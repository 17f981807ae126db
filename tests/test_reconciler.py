from datetime import datetime, timedelta, timezone

import pytest

from conftest import CUSTOMER_ID, ORG_ID
from support_engine.context import schemas as ctx
from support_engine.core.errors import AccountNotMappedError, InvalidPayloadError
from support_engine.helpdesk.reconciler import WebhookReconciler
from support_engine.helpdesk.schemas import ContactMapping, WebhookEnvelope
from support_engine.sessions.schemas import SessionStatus

START = datetime(2024, 5, 20, 9, 0, tzinfo=timezone.utc)


class RecordingAutomation:
    def __init__(self):
        self.calls = []

    def assign_conversation(self, organization_id, conversation_id, *, assignee_id=None, team_id=None):
        self.calls.append(("assign", conversation_id, assignee_id, team_id))

    def notify_managers(self, organization_id, conversation_id, recipients, *, reason):
        self.calls.append(("notify", conversation_id, [r.email for r in recipients]))

    def trigger_follow_up(self, organization_id, conversation_id, topic):
        self.calls.append(("follow_up", conversation_id, topic))

    def schedule_satisfaction_survey(self, organization_id, conversation_id):
        self.calls.append(("survey", conversation_id))

    def kinds(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def automation():
    return RecordingAutomation()


@pytest.fixture
def reconciler(helpdesk, commerce, session_store, automation, settings):
    helpdesk.map_contact(
        ContactMapping(organization_id=ORG_ID, external_contact_id=42, customer_id=CUSTOMER_ID)
    )
    return WebhookReconciler(
        helpdesk,
        commerce=commerce,
        unit_of_work=helpdesk.unit_of_work,
        sessions=session_store,
        automation=automation,
        settings=settings,
        clock=lambda: START + timedelta(days=1),
    )


def _envelope(event, data, account_id=7):
    return WebhookEnvelope(event=event, data=data, account={"id": account_id, "name": "Lumen"})


def _conversation(conversation_id=100, **overrides):
    data = {
        "id": conversation_id,
        "account_id": 7,
        "inbox_id": 3,
        "status": "open",
        "created_at": START.isoformat(),
        "meta": {"sender": {"id": 42, "type": "contact"}},
        "custom_attributes": {"chat_session_token": "widget-1"},
        "messages_count": 1,
    }
    data.update(overrides)
    return data


def _message(minutes, *, message_type="outgoing", sender_type="user", content="Hi!", count=2):
    return {
        "id": 1000 + minutes,
        "content": content,
        "message_type": message_type,
        "private": False,
        "created_at": (START + timedelta(minutes=minutes)).isoformat(),
        "sender": {"id": 5, "type": sender_type},
        "conversation": {"id": 100, "messages_count": count, "inbox_id": 3},
    }


def _comparable(mirror):
    return mirror.model_dump(exclude={"updated_at", "raw_payload"})


def test_conversation_created_builds_mirror(reconciler, helpdesk):
    result = reconciler.handle(_envelope("conversation_created", _conversation()))

    assert result.success and result.event == "conversation_created"
    mirror = helpdesk.get_mirror(ORG_ID, 100)
    assert mirror.started_at == START
    assert mirror.external_contact_id == 42
    assert mirror.status == "open"
    assert mirror.chat_session_token == "widget-1"


def test_replaying_events_is_idempotent(reconciler, helpdesk):
    events = [
        _envelope("conversation_created", _conversation()),
        _envelope("message_created", _message(5)),
        _envelope("message_created", _message(12, count=3)),
    ]
    for envelope in events:
        reconciler.handle(envelope)
    first = _comparable(helpdesk.get_mirror(ORG_ID, 100))

    for envelope in events:
        reconciler.handle(envelope)

    assert _comparable(helpdesk.get_mirror(ORG_ID, 100)) == first
    assert first["first_response_seconds"] == 300
    assert first["message_count"] == 3


def test_message_before_created_converges(reconciler, helpdesk, commerce, automation, settings):
    reconciler.handle(_envelope("message_created", _message(5)))
    reconciler.handle(_envelope("conversation_created", _conversation()))
    out_of_order = _comparable(helpdesk.get_mirror(ORG_ID, 100))

    other = type(helpdesk)()
    other.map_account(7, ORG_ID)
    in_order = WebhookReconciler(
        other,
        commerce=commerce,
        unit_of_work=other.unit_of_work,
        automation=automation,
        settings=settings,
    )
    in_order.handle(_envelope("conversation_created", _conversation()))
    in_order.handle(_envelope("message_created", _message(5)))

    assert out_of_order == _comparable(other.get_mirror(ORG_ID, 100))
    assert out_of_order["first_response_seconds"] == 300


def test_first_response_is_earliest_agent_reply(reconciler, helpdesk):
    reconciler.handle(_envelope("conversation_created", _conversation()))
    reconciler.handle(_envelope("message_created", _message(20)))
    reconciler.handle(_envelope("message_created", _message(8)))
    reconciler.handle(_envelope("message_created", _message(30)))
    reconciler.handle(
        _envelope("message_created", _message(1, message_type="incoming", sender_type="contact"))
    )

    mirror = helpdesk.get_mirror(ORG_ID, 100)
    assert mirror.first_response_seconds == 480
    assert mirror.last_activity_at == START + timedelta(minutes=30)


def test_private_notes_do_not_count_as_first_response(reconciler, helpdesk):
    reconciler.handle(_envelope("conversation_created", _conversation()))
    note = _message(3)
    note["private"] = True
    reconciler.handle(_envelope("message_created", note))

    assert helpdesk.get_mirror(ORG_ID, 100).first_response_at is None


def test_resolved_replay_keeps_resolution_time(reconciler, helpdesk, session_store):
    session = session_store.get_or_create_session("widget-1", ORG_ID)
    reconciler.handle(_envelope("conversation_created", _conversation()))
    resolved_at = START + timedelta(hours=2)
    payload = _conversation(
        status="resolved",
        updated_at=resolved_at.isoformat(),
        assignee={"id": 9, "name": "Eva"},
    )

    reconciler.handle(_envelope("conversation_resolved", payload))
    later = dict(payload, updated_at=(resolved_at + timedelta(hours=5)).isoformat())
    reconciler.handle(_envelope("conversation_resolved", later))

    mirror = helpdesk.get_mirror(ORG_ID, 100)
    assert mirror.status == "resolved"
    assert mirror.resolved_at == resolved_at
    assert mirror.resolution_seconds == 7200
    assert mirror.assignee_name == "Eva"
    resolved = session_store.get_session(session.id)
    assert resolved.status == SessionStatus.RESOLVED
    assert "100" in resolved.context.resolution_note


def test_status_and_assignee_changes_are_last_value_wins(reconciler, helpdesk):
    reconciler.handle(_envelope("conversation_created", _conversation()))
    reconciler.handle(_envelope("conversation_status_changed", _conversation(status="pending")))
    reconciler.handle(
        _envelope("assignee_changed", _conversation(assignee={"id": 11, "name": "Noor"}))
    )
    reconciler.handle(_envelope("assignee_changed", _conversation(assignee=None)))

    mirror = helpdesk.get_mirror(ORG_ID, 100)
    assert mirror.status == "pending"
    assert mirror.assignee_id is None


def test_created_enriches_contact_and_assigns(reconciler, helpdesk, commerce, automation):
    commerce.set_store_setting(
        ORG_ID,
        "customer_service",
        {
            "auto_assignment": {
                "enabled": True,
                "rules": [
                    {"customer_tier": "Platinum", "assignee_id": 1},
                    {"customer_tier": "Bronze", "team_id": 4},
                ],
                "default_assignee_id": 2,
            }
        },
    )

    reconciler.handle(_envelope("conversation_created", _conversation()))

    attributes = helpdesk.get_contact(ORG_ID, 42).cached_attributes
    assert attributes["customer_tier"] == "Bronze"
    assert attributes["order_count"] == 2
    assert attributes["total_spent"] == pytest.approx(238.9)
    assert ("assign", 100, None, 4) in automation.calls
    assert "notify" not in automation.kinds()


def test_high_priority_contact_notifies_managers(reconciler, commerce, automation):
    commerce.add_staff(ORG_ID, ctx.StaffContact(email="boss@lumen.example", role="owner"))
    commerce.add_staff(ORG_ID, ctx.StaffContact(email="temp@lumen.example", role="support"))
    for index in range(20):
        commerce.add_order(
            ORG_ID,
            ctx.OrderSummary(
                id=f"00000000-0000-0000-0000-{index:012d}",
                order_number=f"2{index:03d}",
                status="delivered",
                total_amount=300,
                customer_id=CUSTOMER_ID,
                created_at=START - timedelta(days=index + 1),
            ),
        )

    reconciler.handle(_envelope("conversation_created", _conversation()))

    assert ("notify", 100, ["boss@lumen.example"]) in automation.calls


def test_customer_messages_trigger_follow_ups(reconciler, automation):
    reconciler.handle(_envelope("conversation_created", _conversation()))
    reconciler.handle(
        _envelope(
            "message_created",
            _message(
                2,
                message_type="incoming",
                sender_type="contact",
                content="I want to return my order",
            ),
        )
    )

    follow_ups = [call[2] for call in automation.calls if call[0] == "follow_up"]
    assert follow_ups == ["order", "return"]


def test_resolved_schedules_survey(reconciler, automation):
    reconciler.handle(_envelope("conversation_resolved", _conversation(status="resolved")))

    assert ("survey", 100) in automation.calls


def test_side_effect_failures_do_not_break_the_event(reconciler, automation, monkeypatch):
    def boom(*_args, **_kwargs):
        raise RuntimeError("helpdesk API down")

    monkeypatch.setattr(automation, "schedule_satisfaction_survey", boom)

    result = reconciler.handle(_envelope("conversation_resolved", _conversation()))

    assert result.success


def test_unmapped_account_is_rejected(reconciler):
    with pytest.raises(AccountNotMappedError):
        reconciler.handle(_envelope("conversation_created", _conversation(), account_id=999))


def test_unknown_event_is_ignored(reconciler, helpdesk):
    result = reconciler.handle(_envelope("contact_updated", {"id": 42}))

    assert result.ignored
    assert helpdesk.mirrors == {}


def test_malformed_payload_is_rejected(reconciler):
    with pytest.raises(InvalidPayloadError):
        reconciler.handle(_envelope("message_created", {"content": "no conversation"}))


def test_dispatcher_receives_side_effects(reconciler, automation):
    queued = []

    reconciler.handle(
        _envelope("conversation_created", _conversation()),
        dispatch=lambda fn, *args: queued.append((fn, args)),
    )

    assert len(queued) == 3
    assert automation.calls == []
    for fn, args in queued:
        fn(*args)
