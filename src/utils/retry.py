"""Back-off helpers for provider calls.

Two strategies are used by the provider layer:

* ``retry`` -- a decorator that re-invokes an async callable with
  exponential back-off (plus jitter) on transient transport errors.
* ``linear_delay`` -- the short incremental wait used between
  interchangeable gateway models after a rate-limit signal.

Usage::

    from src.utils.retry import retry

    @retry(max_attempts=2, base_delay=0.5, exceptions=(ConnectionError,))
    async def flaky_request():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import random
from typing import Any, Awaitable, Callable, ParamSpec, TypeVar

import structlog

P = ParamSpec("P")
T = TypeVar("T")

log = structlog.stdlib.get_logger(__name__)


def _compute_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Return the back-off duration for the given *attempt* (0-indexed).

    Formula: ``min(base_delay * 2^attempt + jitter, max_delay)``
    where *jitter* is uniform in ``[0, base_delay]``.
    """
    exp = base_delay * (2 ** attempt)
    jitter = random.uniform(0, base_delay)
    return min(exp + jitter, max_delay)


def linear_delay(attempt: int, step: float) -> float:
    """Return ``step * (attempt + 1)``: 1s, 2s, 3s... for ``step=1.0``."""
    return step * (attempt + 1)


def retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator factory that retries an async function on failure.

    Parameters
    ----------
    max_attempts:
        Total number of attempts (including the first call).  Must be >= 1.
    base_delay:
        Initial delay in seconds before the first retry.
    max_delay:
        Upper cap on the computed delay.
    exceptions:
        Exception types eligible for a retry.  Anything else propagates
        immediately.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError("retry() only decorates async functions")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as exc:
                    if attempt + 1 == max_attempts:
                        log.error(
                            "retry.exhausted",
                            func=func.__qualname__,
                            attempt=attempt + 1,
                            max_attempts=max_attempts,
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                        raise
                    delay = _compute_delay(attempt, base_delay, max_delay)
                    log.warning(
                        "retry.attempt",
                        func=func.__qualname__,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        delay=round(delay, 2),
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(delay)
            raise AssertionError("unreachable")  # pragma: no cover

        return wrapper

    return decorator


async def sleep_linear(attempt: int, step: float, **log_fields: Any) -> None:
    """Sleep for ``linear_delay(attempt, step)`` seconds, logging the wait."""
    delay = linear_delay(attempt, step)
    log.info("retry.linear_wait", delay=round(delay, 2), **log_fields)
    await asyncio.sleep(delay)
