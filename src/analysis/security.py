"""Prompt-injection and insult detection over obfuscation-resistant text.

Customers (and people probing the bot) disguise words with accents, digits
standing in for letters, or punctuation between letters.  Everything here
runs on :func:`normalize_for_security` output, which folds all of that
away before matching.
"""

from __future__ import annotations

import re
import unicodedata

from src.analysis.lexicons import INJECTION_PATTERNS, INSULT_WORDS, LEET_MAP

_LEET_TABLE = str.maketrans(LEET_MAP)
_NON_LETTERS = re.compile(r"[^a-z]+")

# Spaced-out variants ("c o n", "i d i o t") of insults of three letters or more.
_SPACED_INSULTS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(r"(?:^|\s)" + r"\s*".join(re.escape(ch) for ch in word) + r"(?:\s|$)")
    for word in INSULT_WORDS
    if len(word) >= 3
)
_INSULT_SET = frozenset(INSULT_WORDS)


def normalize_for_security(text: str) -> str:
    """Fold *text* to lowercase ASCII letters separated by single spaces.

    Steps: NFKC compatibility fold, leetspeak digits to letters, strip
    diacritics, lowercase, replace every non-letter run with one space.
    """
    if not text:
        return ""
    folded = unicodedata.normalize("NFKC", text).translate(_LEET_TABLE)
    decomposed = unicodedata.normalize("NFD", folded)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_LETTERS.sub(" ", stripped.lower()).strip()


def detect_prompt_injection(text: str) -> bool:
    """Return ``True`` when *text* tries to override the assistant's instructions."""
    normalized = normalize_for_security(text)
    if not normalized:
        return False
    return any(pattern.search(normalized) for pattern in INJECTION_PATTERNS)


def detect_insult(text: str) -> bool:
    """Return ``True`` when *text* contains an insult, plain or spaced out."""
    normalized = normalize_for_security(text)
    if not normalized:
        return False
    if _INSULT_SET.intersection(normalized.split()):
        return True
    return any(pattern.search(normalized) for pattern in _SPACED_INSULTS)
