"""Heuristic confidence score for an assistant reply."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..config import ConfidenceWeights
from ..context.schemas import CustomerContextBundle, LoyaltyTier
from ..core.keywords import significant_tokens
from ..tools.schemas import ToolInvocation

logger = logging.getLogger(__name__)

COMMERCE_TOOLS = frozenset({"order_lookup", "product_search", "check_shipping_status"})
_ELEVATED_TIERS = frozenset({LoyaltyTier.GOLD, LoyaltyTier.PLATINUM})


@dataclass
class TurnSignals:
    """Observations about a finished turn used to score and escalate it."""

    message: str
    reply: str
    bundle: CustomerContextBundle
    tool: ToolInvocation | None = None
    prior_messages: int = 0
    confidence: float | None = None
    contributions: dict[str, float] = field(default_factory=dict)


class ConfidenceScorer:
    """Additive score: a base value plus one weight per observed signal."""

    def __init__(self, weights: ConfidenceWeights) -> None:
        self._weights = weights

    def score(self, signals: TurnSignals) -> float:
        w = self._weights
        bundle = signals.bundle
        contributions: dict[str, float] = {}

        customer = bundle.customer
        if customer is not None and customer.order_count > 0:
            contributions["known_customer"] = w.known_customer
        if customer is not None and customer.tier in _ELEVATED_TIERS:
            contributions["elevated_tier"] = w.elevated_tier
        if self._knowledge_match(signals.reply, bundle):
            contributions["knowledge_match"] = w.knowledge_match
        if len(signals.reply.strip()) > w.detailed_reply_chars:
            contributions["detailed_reply"] = w.detailed_reply
        if signals.tool is not None and signals.tool.result.succeeded:
            if signals.tool.name in COMMERCE_TOOLS:
                contributions["commerce_tool_success"] = w.commerce_tool_success
            else:
                contributions["tool_success"] = w.tool_success
        if signals.prior_messages >= 2:
            contributions["multi_turn"] = w.multi_turn

        total = w.base + sum(contributions.values())
        value = round(min(1.0, max(0.0, total)), 4)
        signals.confidence = value
        signals.contributions = contributions
        logger.debug("Confidence %.2f from %s", value, contributions)
        return value

    @staticmethod
    def _knowledge_match(reply: str, bundle: CustomerContextBundle) -> bool:
        words = significant_tokens(reply)
        if not words:
            return False
        for entry in bundle.knowledge_base:
            vocabulary = significant_tokens(entry.question) | significant_tokens(entry.answer)
            overlap = words & vocabulary
            if len(overlap) >= 2 or (entry.category and entry.category.lower() in words):
                return True
        return False
