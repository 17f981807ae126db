"""Turn handling: session, context, dialogue, escalation, transcript."""

from __future__ import annotations

import logging
from uuid import UUID

from pydantic import BaseModel, Field

from ..config import EngineSettings
from ..context.aggregator import ContextAggregator
from ..escalation.confidence import ConfidenceScorer, TurnSignals
from ..escalation.rules import EscalationDecision, EscalationEvaluator
from ..sessions.schemas import MessageMetadata, MessageRole, SessionStatus
from ..sessions.service import SessionScope
from .orchestrator import DialogueOrchestrator, DialogueOutcome

logger = logging.getLogger(__name__)


class TurnRequest(BaseModel):
    session_token: str = Field(min_length=1)
    message: str = Field(min_length=1)
    organization_id: UUID
    customer_id: UUID | None = None


class TurnResponse(BaseModel):
    response: str
    should_escalate: bool
    session_id: UUID
    escalation_reason: str | None = None
    confidence: float | None = None
    model_tier: str | None = None


class TurnEngine:
    """Run one conversational turn end to end.

    Reads happen first; the customer message, the assistant reply and any
    status change are written together only once the reply is final, so a
    failed turn leaves the transcript untouched.
    """

    def __init__(
        self,
        sessions: SessionScope,
        aggregator: ContextAggregator,
        orchestrator: DialogueOrchestrator,
        *,
        settings: EngineSettings,
        scorer: ConfidenceScorer | None = None,
        evaluator: EscalationEvaluator | None = None,
    ) -> None:
        self._sessions = sessions
        self._aggregator = aggregator
        self._orchestrator = orchestrator
        self._settings = settings
        self._scorer = scorer or ConfidenceScorer(settings.weights)
        self._evaluator = evaluator or EscalationEvaluator(settings)

    def handle_turn(self, request: TurnRequest) -> TurnResponse:
        with self._sessions() as store:
            session = store.get_or_create_session(
                request.session_token, request.organization_id, request.customer_id
            )
            transcript = store.recent_messages(session.id, self._settings.transcript_turns)

        bundle = self._aggregator.build(session, request.organization_id, request.customer_id)
        outcome = self._orchestrator.run(
            request.message,
            bundle,
            transcript,
            organization_id=request.organization_id,
        )
        signals = TurnSignals(
            message=request.message,
            reply=outcome.reply,
            bundle=bundle,
            tool=outcome.tool,
            prior_messages=len(transcript),
        )
        self._scorer.score(signals)
        decision = self._evaluator.evaluate(signals)

        with self._sessions() as store:
            store.append_message(session.id, MessageRole.CUSTOMER, request.message)
            store.append_message(
                session.id,
                MessageRole.ASSISTANT,
                outcome.reply,
                self._metadata(outcome, decision),
            )
            if decision.should_escalate:
                store.update_status(session.id, SessionStatus.ESCALATED, decision.reason)
            store.record_turn(session.id, outcome.model_tier.value)

        logger.info(
            "Turn for session %s finished (tier=%s, confidence=%s, escalate=%s, reason=%s)",
            session.id,
            outcome.model_tier.value,
            decision.confidence,
            decision.should_escalate,
            decision.reason,
        )
        return TurnResponse(
            response=outcome.reply,
            should_escalate=decision.should_escalate,
            session_id=session.id,
            escalation_reason=decision.reason,
            confidence=decision.confidence,
            model_tier=outcome.model_tier.value,
        )

    @staticmethod
    def _metadata(outcome: DialogueOutcome, decision: EscalationDecision) -> MessageMetadata:
        tool = outcome.tool
        return MessageMetadata(
            model_tier=outcome.model_tier.value,
            model=outcome.model,
            confidence=decision.confidence,
            tool=tool.name if tool else None,
            tool_status=tool.result.status.value if tool else None,
            escalation_reason=decision.reason,
        )
