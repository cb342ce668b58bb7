"""Circuit breaker for remote calls.

Wraps any awaitable-producing callable and stops calling a dependency that
keeps failing.  State machine::

    CLOSED --(failure_threshold failures)--> OPEN
    OPEN --(reset_timeout elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(half_open_requests successes)--> CLOSED
    HALF_OPEN --(any failure)--> OPEN

Every call also races a timeout.  A timeout counts as a failure and raises
``CallTimeoutError``, which callers can tell apart from the immediate
``CircuitOpenError`` rejection.  The timed-out coroutine is cancelled, not
merely abandoned.

State is mutated without locking; all transitions happen on the event loop
thread between suspension points.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, TypeVar

from src.models.schemas import CircuitBreakerState, CircuitState
from src.utils.logger import get_logger

T = TypeVar("T")

log = get_logger(__name__, component="circuit_breaker")


class CircuitOpenError(Exception):
    """Raised without calling the dependency while the circuit is open."""

    def __init__(self, name: str, state: CircuitState) -> None:
        super().__init__(f"Circuit '{name}' is {state.value}")
        self.name = name
        self.state = state


class CallTimeoutError(TimeoutError):
    """Raised when the wrapped call does not settle within the timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(f"Call through circuit '{name}' timed out after {timeout:g}s")
        self.name = name
        self.timeout = timeout


class CircuitBreaker:
    """Failure-isolation wrapper around a single remote dependency.

    Parameters
    ----------
    name:
        Label used in logs and errors (typically the provider name).
    failure_threshold:
        Consecutive failures in CLOSED that trip the circuit.
    reset_timeout:
        Seconds to wait in OPEN before admitting trial calls.
    half_open_requests:
        Trial calls admitted in HALF_OPEN; that many successes close it.
    timeout:
        Seconds each call may take before it is cancelled and counted as
        a failure.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_requests: int = 1,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1 or half_open_requests < 1:
            raise ValueError("failure_threshold and half_open_requests must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_requests = half_open_requests
        self.timeout = timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._half_open_trials = 0
        self._half_open_successes = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        """True while calls would be rejected without reaching the dependency."""
        return self._state == CircuitState.OPEN and not self._reset_due()

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
            half_open_trial_count=self._half_open_trials,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def call(
        self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Invoke ``fn(*args, **kwargs)`` under breaker protection.

        Raises
        ------
        CircuitOpenError
            The circuit is open (or HALF_OPEN with all trial slots taken);
            *fn* was not called.
        CallTimeoutError
            *fn* did not complete within ``timeout`` seconds.
        Exception
            Whatever *fn* raised, after it has been counted as a failure.
        asyncio.CancelledError
            The caller was cancelled; a HALF_OPEN trial slot is released.
        """
        if self._state == CircuitState.OPEN and self._reset_due():
            self._transition(CircuitState.HALF_OPEN)

        if self._state == CircuitState.OPEN:
            raise CircuitOpenError(self.name, self._state)

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_trials >= self.half_open_requests:
                raise CircuitOpenError(self.name, self._state)
            self._half_open_trials += 1

        try:
            result = await asyncio.wait_for(fn(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            self._on_failure()
            raise CallTimeoutError(self.name, self.timeout) from exc
        except asyncio.CancelledError:
            self._on_cancel()
            raise
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def reset(self) -> None:
        """Force the breaker back to a pristine CLOSED state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None
        self._half_open_trials = 0
        self._half_open_successes = 0
        log.info("breaker.reset", breaker=self.name)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _reset_due(self) -> bool:
        if self._last_failure_time is None:
            return False
        return self._clock() - self._last_failure_time >= self.reset_timeout

    def _on_success(self) -> None:
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._half_open_successes += 1
            if self._half_open_successes >= self.half_open_requests:
                self._transition(CircuitState.CLOSED)

    def _on_cancel(self) -> None:
        # A cancelled trial frees its slot without counting as an outcome.
        if self._state == CircuitState.HALF_OPEN and self._half_open_trials > 0:
            self._half_open_trials -= 1
        log.info("breaker.call_cancelled", breaker=self.name, state=self._state.value)

    def _on_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._half_open_trials = 0
        self._half_open_successes = 0
        if target == CircuitState.CLOSED:
            self._failure_count = 0
        log.info(
            "breaker.transition",
            breaker=self.name,
            from_state=previous.value,
            to_state=target.value,
            failures=self._failure_count,
        )
