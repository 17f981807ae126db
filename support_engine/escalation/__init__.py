"""Confidence scoring and escalation decisions for finished turns."""

from .confidence import COMMERCE_TOOLS, ConfidenceScorer, TurnSignals
from .rules import (
    EscalationDecision,
    EscalationEvaluator,
    EscalationRule,
    KeywordRule,
    LowConfidenceRule,
    ToolRequestedRule,
    default_rules,
)

__all__ = [
    "COMMERCE_TOOLS",
    "ConfidenceScorer",
    "EscalationDecision",
    "EscalationEvaluator",
    "EscalationRule",
    "KeywordRule",
    "LowConfidenceRule",
    "ToolRequestedRule",
    "TurnSignals",
    "default_rules",
]
