"""Ordered escalation rules; the first rule that fires decides the reason."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from ..config import EngineSettings, Vocabulary
from ..core.keywords import keyword_pattern, matches
from .confidence import TurnSignals

logger = logging.getLogger(__name__)


@dataclass
class EscalationDecision:
    should_escalate: bool
    reason: str | None = None
    confidence: float | None = None


class EscalationRule(Protocol):
    name: str

    def __call__(self, signals: TurnSignals) -> str | None:
        """Return an escalation reason, or ``None`` when the rule does not fire."""


class ToolRequestedRule:
    """The assistant (or an unknown tool) asked for a human."""

    name = "agent_requested"

    def __call__(self, signals: TurnSignals) -> str | None:
        if signals.tool is None or signals.tool.result.escalation_reason is None:
            return None
        if signals.tool.result.escalation_reason == "unknown_tool":
            return "unknown_tool"
        return "agent_requested"


class LowConfidenceRule:
    name = "low_confidence"

    def __init__(self, threshold: float) -> None:
        self.threshold = threshold

    def __call__(self, signals: TurnSignals) -> str | None:
        if signals.confidence is not None and signals.confidence < self.threshold:
            return "low_confidence"
        return None


class KeywordRule:
    """Fires when the customer message contains any of ``words``.

    Looks at the message only; the confidence score is irrelevant.
    """

    def __init__(self, name: str, words: Iterable[str]) -> None:
        self.name = name
        self._pattern = keyword_pattern(words)

    def __call__(self, signals: TurnSignals) -> str | None:
        return self.name if matches(self._pattern, signals.message) else None


def default_rules(threshold: float, vocabulary: Vocabulary) -> list[EscalationRule]:
    return [
        ToolRequestedRule(),
        LowConfidenceRule(threshold),
        KeywordRule("human_requested", vocabulary.human_request),
        KeywordRule("frustration", vocabulary.frustration),
        KeywordRule("unresolved_issue", vocabulary.unresolved_issue),
        KeywordRule("repeat_contact", vocabulary.repeat_contact),
        KeywordRule("urgency", vocabulary.urgency),
    ]


class EscalationEvaluator:
    def __init__(
        self,
        settings: EngineSettings,
        rules: Sequence[EscalationRule] | None = None,
    ) -> None:
        self._rules = list(
            rules
            if rules is not None
            else default_rules(settings.escalation_threshold, settings.vocabulary)
        )

    @property
    def rules(self) -> list[EscalationRule]:
        return list(self._rules)

    def evaluate(self, signals: TurnSignals) -> EscalationDecision:
        for rule in self._rules:
            reason = rule(signals)
            if reason:
                logger.info("Escalation rule %s fired", rule.name)
                return EscalationDecision(True, reason, signals.confidence)
        return EscalationDecision(False, None, signals.confidence)
