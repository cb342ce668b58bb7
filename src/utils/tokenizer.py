"""Cheap token estimation for prompt budgeting.

Providers that do not report usage get an estimate from here, and the
conversation memory window uses it to fit a token budget.  The heuristic
is character based: roughly four characters per token for prose, three
when the text is dense with code punctuation.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Mapping

_CODE_CHARS = re.compile(r"[{};()\[\]]")
_CODE_RATIO = 0.1
_MESSAGE_OVERHEAD = 4  # role + formatting tokens per chat message


def estimate_tokens(text: str | None) -> int:
    """Return an approximate token count for *text* (0 for empty input)."""
    if not text or not isinstance(text, str):
        return 0
    length = len(text)
    code_ratio = len(_CODE_CHARS.findall(text)) / length
    if code_ratio > _CODE_RATIO:
        return math.ceil(length / 3)
    return math.ceil(length / 4)


def estimate_conversation_tokens(messages: Iterable[Mapping[str, str]]) -> int:
    """Estimate tokens for a list of ``{"role", "content"}`` messages."""
    total = 0
    for message in messages:
        total += estimate_tokens(message.get("content")) + _MESSAGE_OVERHEAD
    return total


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Cut *text* proportionally so its estimate fits within *max_tokens*."""
    tokens = estimate_tokens(text)
    if tokens <= max_tokens:
        return text
    target = math.floor(len(text) * (max_tokens / tokens) * 0.95)
    return text[:target] + "..."
