"""Exception taxonomy for the reply pipeline.

Only ``InvalidInputError`` ever reaches callers of the orchestrator; the
others are raised and recovered internally to drive failover, salvage
parsing, and the free fallback path.
"""

from __future__ import annotations

from src.models.schemas import ProviderKind


class InvalidInputError(ValueError):
    """Structurally invalid arguments passed to a public entry point."""


class ProviderError(Exception):
    """A provider call failed; the orchestrator moves to the next provider."""

    def __init__(self, provider: ProviderKind, message: str) -> None:
        super().__init__(f"[{provider.value}] {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within its breaker timeout."""


class ProviderCircuitOpenError(ProviderError):
    """The provider's breaker rejected the call without contacting it."""


class ProviderNotConfiguredError(ProviderError):
    """No client (API key) is available for the provider."""


class RateLimitedError(ProviderError):
    """Every interchangeable gateway model answered with HTTP 429."""


class ParseError(ValueError):
    """A provider reply could not be read as a structured reply."""


class InsufficientCreditsError(Exception):
    """The tenant cannot pay for the selected model."""

    def __init__(self, tenant_id: str, cost: float) -> None:
        super().__init__(f"Tenant '{tenant_id}' lacks {cost:g} credit(s)")
        self.tenant_id = tenant_id
        self.cost = cost
