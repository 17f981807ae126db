"""Keyword matching shared by the classifiers and rules."""

from __future__ import annotations

import re
from collections.abc import Iterable

_WORD = re.compile(r"[a-z0-9]+")


def keyword_pattern(words: Iterable[str]) -> re.Pattern[str] | None:
    """Compile ``words`` into one case-insensitive pattern.

    Matches are anchored at a word start only, so ``refund`` also matches
    ``refunded``. Returns ``None`` for an empty vocabulary.
    """

    escaped = [re.escape(word) for word in words if word]
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + ")", re.IGNORECASE)


def matches(pattern: re.Pattern[str] | None, text: str) -> bool:
    return bool(pattern and pattern.search(text or ""))


def significant_tokens(text: str, min_length: int = 4) -> set[str]:
    return {token for token in _WORD.findall((text or "").lower()) if len(token) >= min_length}
