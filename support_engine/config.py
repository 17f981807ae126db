"""Runtime configuration for the support conversation engine.

Settings are read from environment variables once and cached. Tests that
change the environment call :func:`reset_settings_cache` afterwards.

The model-tier heuristic, confidence weights, loyalty thresholds and keyword
vocabularies are tunable values rather than fixed behaviour; each can be
overridden through the environment variables read in :func:`get_settings`.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_words(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(word.strip().lower() for word in raw.split(",") if word.strip())


@dataclasses.dataclass(frozen=True)
class LoyaltyThresholds:
    """Lifetime spend / order count boundaries for each loyalty tier.

    A customer reaches a tier when *either* bound is met.
    """

    platinum_spend: float = 5000.0
    platinum_orders: int = 20
    gold_spend: float = 2500.0
    gold_orders: int = 10
    silver_spend: float = 1000.0
    silver_orders: int = 5


@dataclasses.dataclass(frozen=True)
class ConfidenceWeights:
    """Additive weights used by :class:`~support_engine.escalation.confidence.ConfidenceScorer`."""

    base: float = 0.4
    known_customer: float = 0.15
    elevated_tier: float = 0.1
    knowledge_match: float = 0.1
    detailed_reply: float = 0.1
    tool_success: float = 0.15
    commerce_tool_success: float = 0.2
    multi_turn: float = 0.05
    detailed_reply_chars: int = 50
    max_signal_weight: float = 0.25

    def __post_init__(self) -> None:
        if not 0.0 <= self.base <= 1.0:
            raise ValueError("base confidence must be within [0, 1]")
        for name in self.signal_names():
            value = getattr(self, name)
            if value < 0 or value > self.max_signal_weight:
                raise ValueError(
                    f"confidence weight {name}={value} outside [0, {self.max_signal_weight}]"
                )

    @staticmethod
    def signal_names() -> tuple[str, ...]:
        return (
            "known_customer",
            "elevated_tier",
            "knowledge_match",
            "detailed_reply",
            "tool_success",
            "commerce_tool_success",
            "multi_turn",
        )


@dataclasses.dataclass(frozen=True)
class Vocabulary:
    """Keyword lists matched case-insensitively against customer messages."""

    human_request: tuple[str, ...] = (
        "manager",
        "human",
        "real person",
        "speak to someone",
        "talk to someone",
        "agent",
        "supervisor",
    )
    frustration: tuple[str, ...] = (
        "angry",
        "furious",
        "frustrated",
        "terrible",
        "awful",
        "horrible",
        "complaint",
        "complain",
        "unacceptable",
        "ridiculous",
    )
    unresolved_issue: tuple[str, ...] = (
        "not working",
        "doesn't work",
        "broken",
        "damaged",
        "never received",
        "never arrived",
        "missing",
        "wrong item",
        "refund",
    )
    repeat_contact: tuple[str, ...] = (
        "still",
        "already said",
        "already told",
        "third time",
        "second time",
    )
    urgency: tuple[str, ...] = (
        "urgent",
        "emergency",
        "asap",
        "immediately",
        "right now",
    )
    order_topics: tuple[str, ...] = ("order", "bestelling", "shipping", "delivery", "tracking")
    return_topics: tuple[str, ...] = ("return", "refund", "retour", "exchange")


@dataclasses.dataclass(frozen=True)
class EngineSettings:
    """Runtime configuration for turns, tools and the webhook reconciler."""

    llm_provider: str = "openai"
    fast_model: str = "gpt-4o-mini"
    capable_model: str = "gpt-4o"
    llm_timeout_seconds: float = 8.0
    llm_max_retries: int = 1
    # Tool calls allowed per turn. With 1 the tool result is folded into the
    # reply without a second model round trip.
    max_tool_calls: int = 1
    transcript_turns: int = 10
    recent_order_limit: int = 10
    knowledge_base_limit: int = 20
    catalog_excerpt_limit: int = 20
    product_search_limit: int = 5
    context_workers: int = 4
    escalation_threshold: float = 0.5
    complexity_length_threshold: int = 280
    reply_language: str | None = None
    chat_max_message_length: int = 5000
    discount_cart_threshold: float = 500.0
    helpdesk_webhook_secret: str | None = None
    helpdesk_signature_header: str = "X-Helpdesk-Hmac-Sha256"
    fallback_response: str = (
        "I'm sorry, I'm having trouble right now. Please try again or "
        "contact our support team."
    )
    loyalty: LoyaltyThresholds = dataclasses.field(default_factory=LoyaltyThresholds)
    weights: ConfidenceWeights = dataclasses.field(default_factory=ConfidenceWeights)
    vocabulary: Vocabulary = dataclasses.field(default_factory=Vocabulary)

    def __post_init__(self) -> None:
        if self.max_tool_calls < 0:
            raise ValueError("max_tool_calls must be zero or positive")
        if not 0.0 <= self.escalation_threshold <= 1.0:
            raise ValueError("escalation_threshold must be within [0, 1]")


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Load settings from the environment with development defaults."""

    defaults = EngineSettings()
    vocabulary = Vocabulary(
        human_request=_env_words("VOCAB_HUMAN_REQUEST", defaults.vocabulary.human_request),
        frustration=_env_words("VOCAB_FRUSTRATION", defaults.vocabulary.frustration),
        unresolved_issue=_env_words("VOCAB_UNRESOLVED", defaults.vocabulary.unresolved_issue),
        repeat_contact=_env_words("VOCAB_REPEAT_CONTACT", defaults.vocabulary.repeat_contact),
        urgency=_env_words("VOCAB_URGENCY", defaults.vocabulary.urgency),
        order_topics=_env_words("VOCAB_ORDER_TOPICS", defaults.vocabulary.order_topics),
        return_topics=_env_words("VOCAB_RETURN_TOPICS", defaults.vocabulary.return_topics),
    )
    loyalty = LoyaltyThresholds(
        platinum_spend=_env_float("LOYALTY_PLATINUM_SPEND", defaults.loyalty.platinum_spend),
        platinum_orders=_env_int("LOYALTY_PLATINUM_ORDERS", defaults.loyalty.platinum_orders),
        gold_spend=_env_float("LOYALTY_GOLD_SPEND", defaults.loyalty.gold_spend),
        gold_orders=_env_int("LOYALTY_GOLD_ORDERS", defaults.loyalty.gold_orders),
        silver_spend=_env_float("LOYALTY_SILVER_SPEND", defaults.loyalty.silver_spend),
        silver_orders=_env_int("LOYALTY_SILVER_ORDERS", defaults.loyalty.silver_orders),
    )
    weights = ConfidenceWeights(
        base=_env_float("CONFIDENCE_BASE", defaults.weights.base),
        known_customer=_env_float("CONFIDENCE_KNOWN_CUSTOMER", defaults.weights.known_customer),
        elevated_tier=_env_float("CONFIDENCE_ELEVATED_TIER", defaults.weights.elevated_tier),
        knowledge_match=_env_float("CONFIDENCE_KNOWLEDGE_MATCH", defaults.weights.knowledge_match),
        detailed_reply=_env_float("CONFIDENCE_DETAILED_REPLY", defaults.weights.detailed_reply),
        tool_success=_env_float("CONFIDENCE_TOOL_SUCCESS", defaults.weights.tool_success),
        commerce_tool_success=_env_float(
            "CONFIDENCE_COMMERCE_TOOL_SUCCESS", defaults.weights.commerce_tool_success
        ),
        multi_turn=_env_float("CONFIDENCE_MULTI_TURN", defaults.weights.multi_turn),
    )
    return EngineSettings(
        llm_provider=os.getenv("LLM_PROVIDER", defaults.llm_provider),
        fast_model=os.getenv("LLM_FAST_MODEL", defaults.fast_model),
        capable_model=os.getenv("LLM_CAPABLE_MODEL", defaults.capable_model),
        llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", defaults.llm_timeout_seconds),
        llm_max_retries=_env_int("LLM_MAX_RETRIES", defaults.llm_max_retries),
        max_tool_calls=_env_int("MAX_TOOL_CALLS", defaults.max_tool_calls),
        transcript_turns=_env_int("TRANSCRIPT_TURNS", defaults.transcript_turns),
        recent_order_limit=_env_int("RECENT_ORDER_LIMIT", defaults.recent_order_limit),
        knowledge_base_limit=_env_int("KNOWLEDGE_BASE_LIMIT", defaults.knowledge_base_limit),
        catalog_excerpt_limit=_env_int("CATALOG_EXCERPT_LIMIT", defaults.catalog_excerpt_limit),
        product_search_limit=_env_int("PRODUCT_SEARCH_LIMIT", defaults.product_search_limit),
        context_workers=_env_int("CONTEXT_WORKERS", defaults.context_workers),
        escalation_threshold=_env_float("ESCALATION_THRESHOLD", defaults.escalation_threshold),
        complexity_length_threshold=_env_int(
            "COMPLEXITY_LENGTH_THRESHOLD", defaults.complexity_length_threshold
        ),
        reply_language=os.getenv("REPLY_LANGUAGE") or None,
        chat_max_message_length=_env_int(
            "CHAT_MAX_MESSAGE_LENGTH", defaults.chat_max_message_length
        ),
        discount_cart_threshold=_env_float(
            "DISCOUNT_CART_THRESHOLD", defaults.discount_cart_threshold
        ),
        helpdesk_webhook_secret=os.getenv("HELPDESK_WEBHOOK_SECRET") or None,
        helpdesk_signature_header=os.getenv(
            "HELPDESK_SIGNATURE_HEADER", defaults.helpdesk_signature_header
        ),
        fallback_response=os.getenv("FALLBACK_RESPONSE", defaults.fallback_response),
        loyalty=loyalty,
        weights=weights,
        vocabulary=vocabulary,
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()
