"""Reconcile helpdesk webhook events into the local conversation mirror."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ValidationError

from ..config import EngineSettings, get_settings
from ..context.loyalty import loyalty_tier, support_priority
from ..context.repository import CommerceRepository
from ..context.schemas import LoyaltyTier, SupportPriority
from ..core.clock import Clock, as_utc, utcnow
from ..core.errors import AccountNotMappedError, InvalidPayloadError
from ..core.keywords import keyword_pattern, matches
from ..sessions.schemas import SessionStatus
from ..sessions.service import SessionStore
from . import schemas
from .automation import (
    Dispatcher,
    HelpdeskAutomation,
    LoggingHelpdeskAutomation,
    guarded,
    run_immediately,
)
from .repository import HelpdeskRepository, HelpdeskUnitOfWork

logger = logging.getLogger(__name__)

MANAGER_ROLES = ("owner", "admin", "manager")
SESSION_TOKEN_ATTRIBUTES = ("chat_session_token", "session_token")


def _earliest(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if candidate is None:
        return current
    candidate = as_utc(candidate)
    if current is None:
        return candidate
    return min(as_utc(current), candidate)


def _latest(current: datetime | None, candidate: datetime | None) -> datetime | None:
    if candidate is None:
        return current
    candidate = as_utc(candidate)
    if current is None:
        return candidate
    return max(as_utc(current), candidate)


def _seconds_between(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    delta = (as_utc(end) - as_utc(start)).total_seconds()
    return int(delta) if delta >= 0 else None


def _recompute_metrics(mirror: schemas.ConversationMirror) -> None:
    mirror.first_response_seconds = _seconds_between(mirror.started_at, mirror.first_response_at)
    mirror.resolution_seconds = _seconds_between(mirror.started_at, mirror.resolved_at)


def _session_token(attributes: dict[str, Any]) -> str | None:
    for key in SESSION_TOKEN_ATTRIBUTES:
        value = attributes.get(key)
        if value:
            return str(value)
    return None


class WebhookReconciler:
    """Apply helpdesk events to the mirror and schedule follow-on work.

    Every handler is safe to replay and tolerant of reordering: timestamps
    merge as earliest start, latest activity and set-once resolution, counts
    merge as a maximum, and derived durations are recomputed from the stored
    timestamps on every write.
    """

    def __init__(
        self,
        repository: HelpdeskRepository,
        *,
        commerce: CommerceRepository,
        unit_of_work: HelpdeskUnitOfWork,
        sessions: SessionStore | None = None,
        automation: HelpdeskAutomation | None = None,
        settings: EngineSettings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._commerce = commerce
        self._unit_of_work = unit_of_work
        self._sessions = sessions
        self._automation = automation or LoggingHelpdeskAutomation()
        self._settings = settings or get_settings()
        self._clock = clock
        vocabulary = self._settings.vocabulary
        self._follow_up_topics = {
            "order": keyword_pattern(vocabulary.order_topics),
            "return": keyword_pattern(vocabulary.return_topics),
        }
        self._handlers: dict[
            schemas.WebhookEventType,
            Callable[[UUID, schemas.WebhookEnvelope, Dispatcher], None],
        ] = {
            schemas.WebhookEventType.CONVERSATION_CREATED: self._conversation_created,
            schemas.WebhookEventType.MESSAGE_CREATED: self._message_created,
            schemas.WebhookEventType.CONVERSATION_RESOLVED: self._conversation_resolved,
            schemas.WebhookEventType.CONVERSATION_STATUS_CHANGED: self._status_changed,
            schemas.WebhookEventType.ASSIGNEE_CHANGED: self._assignee_changed,
        }

    def handle(
        self,
        envelope: schemas.WebhookEnvelope,
        dispatch: Dispatcher = run_immediately,
    ) -> schemas.WebhookResult:
        organization_id = self._repository.get_account_organization(envelope.account.id)
        if organization_id is None:
            raise AccountNotMappedError(
                f"No organization mapped to helpdesk account {envelope.account.id}"
            )
        try:
            event = schemas.WebhookEventType(envelope.event)
        except ValueError:
            logger.info("Ignoring unhandled helpdesk event %r", envelope.event)
            return schemas.WebhookResult(
                event=envelope.event, message="Event ignored", ignored=True
            )
        logger.info(
            "Processing helpdesk event %s for account %s", event.value, envelope.account.id
        )
        self._handlers[event](organization_id, envelope, dispatch)
        return schemas.WebhookResult(event=envelope.event)

    # Event handlers ----------------------------------------------------------
    def _conversation_created(
        self, organization_id: UUID, envelope: schemas.WebhookEnvelope, dispatch: Dispatcher
    ) -> None:
        payload = self._parse(schemas.ConversationPayload, envelope)
        with self._repository.mirror_for_update(organization_id, payload.id) as mirror:
            mirror.started_at = _earliest(mirror.started_at, payload.created_at)
            mirror.last_activity_at = _latest(mirror.last_activity_at, payload.created_at)
            mirror.external_contact_id = payload.contact_id or mirror.external_contact_id
            mirror.external_account_id = payload.account_id or envelope.account.id
            mirror.inbox_id = payload.inbox_id or mirror.inbox_id
            if mirror.status is None:
                mirror.status = payload.status
            mirror.message_count = max(mirror.message_count, payload.messages_count or 0)
            mirror.chat_session_token = mirror.chat_session_token or _session_token(
                payload.custom_attributes
            )
            mirror.raw_payload = envelope.data
            _recompute_metrics(mirror)
            contact_id = mirror.external_contact_id

        if contact_id is not None:
            dispatch(guarded("contact_enrichment", self.enrich_contact), organization_id, contact_id)
        dispatch(
            guarded("auto_assignment", self.apply_auto_assignment),
            organization_id,
            payload.id,
            contact_id,
        )
        if contact_id is not None:
            dispatch(
                guarded("manager_notification", self.notify_if_high_priority),
                organization_id,
                payload.id,
                contact_id,
            )

    def _message_created(
        self, organization_id: UUID, envelope: schemas.WebhookEnvelope, dispatch: Dispatcher
    ) -> None:
        payload = self._parse(schemas.MessagePayload, envelope)
        conversation = payload.conversation
        with self._repository.mirror_for_update(organization_id, conversation.id) as mirror:
            mirror.last_activity_at = _latest(mirror.last_activity_at, payload.created_at)
            mirror.message_count = max(mirror.message_count, conversation.messages_count or 0)
            mirror.inbox_id = mirror.inbox_id or conversation.inbox_id
            mirror.external_contact_id = mirror.external_contact_id or conversation.contact_id
            mirror.external_account_id = mirror.external_account_id or envelope.account.id
            if payload.is_agent_reply:
                mirror.first_response_at = _earliest(mirror.first_response_at, payload.created_at)
            mirror.raw_payload = envelope.data
            _recompute_metrics(mirror)

        if payload.is_customer_message and payload.content:
            for topic in self.follow_up_topics(payload.content):
                dispatch(
                    guarded("follow_up", self._automation.trigger_follow_up),
                    organization_id,
                    conversation.id,
                    topic,
                )

    def _conversation_resolved(
        self, organization_id: UUID, envelope: schemas.WebhookEnvelope, dispatch: Dispatcher
    ) -> None:
        payload = self._parse(schemas.ConversationPayload, envelope)
        resolved_at = payload.updated_at or self._clock()
        with self._repository.mirror_for_update(organization_id, payload.id) as mirror:
            mirror.status = "resolved"
            if mirror.resolved_at is None:
                mirror.resolved_at = as_utc(resolved_at)
            assignee = payload.current_assignee
            if assignee is not None and assignee.id is not None:
                mirror.assignee_id = assignee.id
                mirror.assignee_name = assignee.name
            mirror.external_contact_id = mirror.external_contact_id or payload.contact_id
            mirror.last_activity_at = _latest(mirror.last_activity_at, payload.updated_at)
            mirror.chat_session_token = mirror.chat_session_token or _session_token(
                payload.custom_attributes
            )
            mirror.raw_payload = envelope.data
            _recompute_metrics(mirror)
            session_token = mirror.chat_session_token

        if session_token and self._sessions is not None:
            self._resolve_linked_session(session_token, payload.id)
        dispatch(
            guarded("satisfaction_survey", self._automation.schedule_satisfaction_survey),
            organization_id,
            payload.id,
        )

    def _status_changed(
        self, organization_id: UUID, envelope: schemas.WebhookEnvelope, dispatch: Dispatcher
    ) -> None:
        payload = self._parse(schemas.ConversationPayload, envelope)
        with self._repository.mirror_for_update(organization_id, payload.id) as mirror:
            if payload.status:
                mirror.status = payload.status
            if payload.status == "resolved" and mirror.resolved_at is None:
                mirror.resolved_at = as_utc(payload.updated_at or self._clock())
            mirror.last_activity_at = _latest(mirror.last_activity_at, payload.updated_at)
            mirror.raw_payload = envelope.data
            _recompute_metrics(mirror)

    def _assignee_changed(
        self, organization_id: UUID, envelope: schemas.WebhookEnvelope, dispatch: Dispatcher
    ) -> None:
        payload = self._parse(schemas.ConversationPayload, envelope)
        assignee = payload.current_assignee
        with self._repository.mirror_for_update(organization_id, payload.id) as mirror:
            mirror.assignee_id = assignee.id if assignee else None
            mirror.assignee_name = assignee.name if assignee else None
            mirror.last_activity_at = _latest(mirror.last_activity_at, payload.updated_at)
            mirror.raw_payload = envelope.data
            _recompute_metrics(mirror)

    # Side effects ------------------------------------------------------------
    def enrich_contact(self, organization_id: UUID, external_contact_id: int) -> None:
        """Recompute the contact's tier and spend into its cached attributes."""

        with self._unit_of_work() as repository:
            mapping = repository.get_contact(organization_id, external_contact_id)
            if mapping is None or mapping.customer_id is None:
                logger.info(
                    "No customer mapping for helpdesk contact %s; skipping enrichment",
                    external_contact_id,
                )
                return
            stats = self._commerce.get_customer_stats(organization_id, mapping.customer_id)
            tier = loyalty_tier(stats, self._settings.loyalty)
            repository.update_contact_attributes(
                organization_id,
                external_contact_id,
                {
                    "customer_tier": tier.value,
                    "support_priority": support_priority(tier).value,
                    "total_spent": round(stats.lifetime_spend, 2),
                    "order_count": stats.order_count,
                    "last_order_at": (
                        stats.last_order_at.isoformat() if stats.last_order_at else None
                    ),
                },
            )
        logger.info("Enriched helpdesk contact %s with tier %s", external_contact_id, tier.value)

    def apply_auto_assignment(
        self, organization_id: UUID, conversation_id: int, external_contact_id: int | None
    ) -> None:
        """Assign the conversation using the store's ``customer_service`` rules.

        Rules live under ``auto_assignment`` as ``{"enabled": bool, "rules":
        [{"customer_tier": ..., "assignee_id": ..., "team_id": ...}],
        "default_assignee_id": ..., "default_team_id": ...}``; the first rule
        whose tier matches (or that names no tier) wins.
        """

        settings = self._commerce.get_store_setting(organization_id, "customer_service") or {}
        config = settings.get("auto_assignment") or {}
        if not config or not config.get("enabled", True):
            logger.debug("Auto-assignment disabled for organization %s", organization_id)
            return
        tier = None
        if external_contact_id is not None:
            with self._unit_of_work() as repository:
                mapping = repository.get_contact(organization_id, external_contact_id)
            if mapping is not None:
                tier = mapping.cached_attributes.get("customer_tier")

        assignee_id = config.get("default_assignee_id")
        team_id = config.get("default_team_id")
        for rule in config.get("rules") or []:
            wanted = rule.get("customer_tier")
            if wanted is None or (tier is not None and str(wanted).lower() == str(tier).lower()):
                assignee_id = rule.get("assignee_id")
                team_id = rule.get("team_id")
                break
        if assignee_id is None and team_id is None:
            logger.debug("No auto-assignment rule matched conversation %s", conversation_id)
            return
        self._automation.assign_conversation(
            organization_id, conversation_id, assignee_id=assignee_id, team_id=team_id
        )

    def notify_if_high_priority(
        self, organization_id: UUID, conversation_id: int, external_contact_id: int
    ) -> None:
        with self._unit_of_work() as repository:
            mapping = repository.get_contact(organization_id, external_contact_id)
        if mapping is None or not self.is_high_priority(mapping.cached_attributes):
            return
        managers = self._commerce.list_staff(organization_id, MANAGER_ROLES)
        if not managers:
            logger.info("High priority conversation %s but no managers to notify", conversation_id)
            return
        self._automation.notify_managers(
            organization_id,
            conversation_id,
            managers,
            reason="High priority customer opened a conversation",
        )

    @staticmethod
    def is_high_priority(attributes: dict[str, Any]) -> bool:
        return (
            attributes.get("customer_tier") == LoyaltyTier.PLATINUM.value
            or attributes.get("support_priority") == SupportPriority.HIGH.value
        )

    def follow_up_topics(self, content: str) -> list[str]:
        return [
            topic
            for topic, pattern in self._follow_up_topics.items()
            if matches(pattern, content)
        ]

    # Helpers -----------------------------------------------------------------
    def _resolve_linked_session(self, session_token: str, conversation_id: int) -> None:
        session = self._sessions.get_session_by_token(session_token)
        if session is None:
            logger.info(
                "Helpdesk conversation %s links unknown chat session token", conversation_id
            )
            return
        self._sessions.update_status(
            session.id,
            SessionStatus.RESOLVED,
            f"Resolved in helpdesk conversation {conversation_id}",
            actor="human",
        )

    @staticmethod
    def _parse(model: type[BaseModel], envelope: schemas.WebhookEnvelope) -> Any:
        try:
            return model.model_validate(envelope.data)
        except ValidationError as exc:
            raise InvalidPayloadError(
                f"Malformed {envelope.event} payload: {exc.error_count()} validation error(s)"
            ) from exc
