"""Pick the model tier for a turn from cheap message heuristics."""

from __future__ import annotations

import logging
from enum import Enum

from ..config import EngineSettings
from ..context.schemas import CustomerContextBundle
from ..core.keywords import keyword_pattern, matches

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    FAST = "fast"
    CAPABLE = "capable"


class ComplexityClassifier:
    """Route complaints, long or multi-part questions and order questions
    from known customers to the capable model; everything else to the fast one.
    """

    def __init__(self, settings: EngineSettings) -> None:
        vocabulary = settings.vocabulary
        self._length_threshold = settings.complexity_length_threshold
        self._complaint = keyword_pattern(
            vocabulary.frustration + vocabulary.urgency + vocabulary.unresolved_issue
        )
        self._order_topic = keyword_pattern(vocabulary.order_topics + vocabulary.return_topics)

    def classify(self, message: str, bundle: CustomerContextBundle) -> ModelTier:
        reason = self._reason(message, bundle)
        if reason is None:
            return ModelTier.FAST
        logger.debug("Using capable model tier: %s", reason)
        return ModelTier.CAPABLE

    def _reason(self, message: str, bundle: CustomerContextBundle) -> str | None:
        if matches(self._complaint, message):
            return "complaint vocabulary"
        if len(message) > self._length_threshold:
            return "long message"
        if message.count("?") >= 2:
            return "multiple questions"
        if bundle.recent_orders and matches(self._order_topic, message):
            return "order question with history"
        return None
