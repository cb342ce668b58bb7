"""Keyword classifiers: language, intent and confirmation detection."""

from __future__ import annotations

import re

from src.analysis.lexicons import (
    BASE_INTENTS,
    CONFIRMATION_PATTERNS,
    ENGLISH_FUNCTION_WORDS,
    FRENCH_DIACRITICS,
    FRENCH_FUNCTION_WORDS,
    HIGH_CONFIDENCE_SCORE,
    INTENT_TABLE,
    MEDIUM_CONFIDENCE_SCORE,
)
from src.models.schemas import ConfidenceLevel, Intent, IntentResult, Language

_WORDS = re.compile(r"[^\W\d_]+")


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)")


_INTENT_PATTERNS: dict[str, tuple[int, tuple[tuple[str, re.Pattern[str]], ...]]] = {
    intent: (weight, tuple((kw, _keyword_pattern(kw)) for kw in keywords))
    for intent, (weight, keywords) in INTENT_TABLE.items()
}


# ---------------------------------------------------------------------------
# Language
# ---------------------------------------------------------------------------

def detect_language(text: str, accent_ratio: float = 0.02) -> Language:
    """Guess French or English from function words and accented letters.

    Each known function word scores one point for its language and each
    French accented letter adds half a point to French.  On a tie the
    share of accented letters decides.
    """
    if not text or not text.strip():
        return Language.UNKNOWN

    lower = text.lower()
    words = _WORDS.findall(lower)
    accents = len(FRENCH_DIACRITICS.findall(lower))

    french = sum(1 for w in words if w in FRENCH_FUNCTION_WORDS) + 0.5 * accents
    english = sum(1 for w in words if w in ENGLISH_FUNCTION_WORDS)

    if french > english:
        return Language.FRENCH
    if english > french:
        return Language.ENGLISH
    return Language.FRENCH if accents / len(lower) > accent_ratio else Language.ENGLISH


# ---------------------------------------------------------------------------
# Intent
# ---------------------------------------------------------------------------

def _confidence(score: int) -> ConfidenceLevel:
    if score > HIGH_CONFIDENCE_SCORE:
        return ConfidenceLevel.HIGH
    if score > MEDIUM_CONFIDENCE_SCORE:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _score(lower: str, intents: tuple[str, ...] | None) -> IntentResult:
    scores: dict[str, int] = {}
    matched: dict[str, list[str]] = {}
    for intent, (weight, patterns) in _INTENT_PATTERNS.items():
        if intents is not None and intent not in intents:
            continue
        for keyword, pattern in patterns:
            if pattern.search(lower):
                scores[intent] = scores.get(intent, 0) + weight
                matched.setdefault(intent, []).append(keyword)

    if not scores:
        return IntentResult(primary=Intent.GENERAL, confidence=ConfidenceLevel.LOW)

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    top_intent, top_score = ranked[0]
    if len(ranked) > 1 and ranked[1][1] == top_score:
        # Equal evidence for two intents is no evidence for either.
        return IntentResult(
            primary=Intent.GENERAL,
            confidence=ConfidenceLevel.LOW,
            scores=scores,
        )

    return IntentResult(
        primary=Intent(top_intent),
        secondary=Intent(ranked[1][0]) if len(ranked) > 1 else None,
        confidence=_confidence(top_score),
        scores=scores,
        matched_keywords=matched[top_intent],
    )


def detect_intent(text: str) -> IntentResult:
    """Score *text* against the full weighted keyword table."""
    return _score(text.lower(), None)


def detect_base_intent(text: str) -> IntentResult:
    """Score *text* against the greeting and human-request intents only."""
    return _score(text.lower(), BASE_INTENTS)


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------

def is_confirmation(text: str) -> bool:
    """Return ``True`` when *text* opens with an agreement phrase ("oui", "ok", ...)."""
    stripped = text.strip().lower()
    return any(pattern.search(stripped) for pattern in CONFIRMATION_PATTERNS)
