"""Token-budgeted conversation window.

Selects the slice of prior turns that is sent to a provider.  The first
turn is kept because it usually carries durable context (what the customer
came for); the rest of the budget goes to the most recent turns.  All
functions are pure over their inputs apart from calling the token
estimator.
"""

from __future__ import annotations

from typing import Callable, Sequence

from src.models.schemas import ChatRole, ChatTurn
from src.utils.tokenizer import estimate_tokens

TokenEstimator = Callable[[str], int]

_RECENT_AFTER_COMPRESSION = 10


def select_window(
    history: Sequence[ChatTurn],
    max_messages: int,
    max_tokens: int | None = None,
    keep_first: bool = True,
    estimator: TokenEstimator = estimate_tokens,
) -> list[ChatTurn]:
    """Return at most *max_messages* turns fitting within *max_tokens*.

    A history already within *max_messages* is returned unchanged.
    Otherwise the first turn (when *keep_first*) and the most recent
    ``max_messages - 1`` turns are kept, then turns are dropped from the
    oldest end of the recent slice until the token budget fits.  The first
    and the last turn always survive the token trim.
    """
    turns = list(history)
    if max_messages <= 0 or not turns:
        return []
    if len(turns) <= max_messages:
        return turns

    if keep_first:
        recent_count = max_messages - 1
        selected = [turns[0]] + (turns[-recent_count:] if recent_count > 0 else [])
    else:
        selected = turns[-max_messages:]

    if max_tokens is not None:
        selected = _trim_to_budget(selected, max_tokens, keep_first, estimator)
    return selected


def _trim_to_budget(
    turns: list[ChatTurn],
    max_tokens: int,
    keep_first: bool,
    estimator: TokenEstimator,
) -> list[ChatTurn]:
    counts = [estimator(turn.content) for turn in turns]
    if sum(counts) <= max_tokens or len(turns) <= 2:
        return turns

    head: list[ChatTurn] = [turns[0]] if keep_first else []
    used = counts[0] if keep_first else 0
    first_recent = 1 if keep_first else 0

    # Walk backwards from the newest turn; the newest one is always kept.
    tail: list[ChatTurn] = [turns[-1]]
    used += counts[-1]
    for index in range(len(turns) - 2, first_recent - 1, -1):
        if used + counts[index] > max_tokens:
            break
        tail.append(turns[index])
        used += counts[index]
    tail.reverse()
    return head + tail


def compress_history(history: Sequence[ChatTurn], threshold: int = 20) -> list[ChatTurn]:
    """Collapse everything but the last 10 turns into a summary placeholder.

    Only kicks in above *threshold* turns.  The placeholder carries a count,
    not a real summary.
    """
    turns = list(history)
    if len(turns) <= threshold:
        return turns
    recent = turns[-_RECENT_AFTER_COMPRESSION:]
    older = turns[:-_RECENT_AFTER_COMPRESSION]
    summary = ChatTurn(
        role=ChatRole.SYSTEM,
        content=(
            f"[Résumé des {len(older)} messages précédents: la conversation a "
            "commencé et plusieurs échanges ont eu lieu.]"
        ),
        is_summary=True,
    )
    return [summary, *recent]


def smart_window(
    history: Sequence[ChatTurn],
    max_messages: int = 10,
    max_tokens: int | None = 2000,
    compression_threshold: int | None = None,
    estimator: TokenEstimator = estimate_tokens,
) -> list[ChatTurn]:
    """Optionally compress, then select the first-plus-recent window."""
    turns = list(history)
    if compression_threshold is not None and len(turns) > compression_threshold:
        turns = compress_history(turns, compression_threshold)
    return select_window(
        turns,
        max_messages=max_messages,
        max_tokens=max_tokens,
        keep_first=True,
        estimator=estimator,
    )


def conversation_stats(
    history: Sequence[ChatTurn], estimator: TokenEstimator = estimate_tokens
) -> dict[str, int]:
    """Return message counts per role and token totals for *history*."""
    total_tokens = 0
    user_messages = 0
    assistant_messages = 0
    for turn in history:
        total_tokens += estimator(turn.content)
        if turn.role == ChatRole.USER:
            user_messages += 1
        elif turn.role == ChatRole.ASSISTANT:
            assistant_messages += 1
    count = len(history)
    return {
        "message_count": count,
        "total_tokens": total_tokens,
        "user_messages": user_messages,
        "assistant_messages": assistant_messages,
        "avg_tokens_per_message": round(total_tokens / count) if count else 0,
    }
