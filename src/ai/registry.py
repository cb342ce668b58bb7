"""Process-wide registry of provider clients and their circuit breakers.

Built once at startup (``ProviderRegistry.from_settings``) and handed to
the orchestrator.  A provider is *configured* when it has a client.
"""

from __future__ import annotations

import time
from typing import Callable

from config.settings import Settings
from src.ai.client import AnthropicClient, GatewayClient, OpenAIClient, ProviderClient
from src.ai.errors import ProviderNotConfiguredError
from src.models.schemas import CircuitBreakerState, ProviderKind
from src.utils.circuit_breaker import CircuitBreaker
from src.utils.logger import get_logger

log = get_logger(__name__, component="registry")

_BREAKER_KINDS = (ProviderKind.FLAGSHIP, ProviderKind.SECONDARY, ProviderKind.GATEWAY)


class ProviderRegistry:
    """Owns one client (when configured) and one breaker per provider class.

    Parameters
    ----------
    clients:
        Configured clients keyed by provider class.
    breakers:
        Breakers keyed by provider class; missing ones are created with
        defaults.
    """

    def __init__(
        self,
        clients: dict[ProviderKind, ProviderClient],
        breakers: dict[ProviderKind, CircuitBreaker] | None = None,
    ) -> None:
        self._clients = dict(clients)
        self._breakers = dict(breakers or {})
        for kind in _BREAKER_KINDS:
            self._breakers.setdefault(kind, CircuitBreaker(kind.value))

    @classmethod
    def from_settings(
        cls, settings: Settings, clock: Callable[[], float] = time.monotonic
    ) -> "ProviderRegistry":
        clients: dict[ProviderKind, ProviderClient] = {}
        if settings.anthropic_api_key:
            clients[ProviderKind.FLAGSHIP] = AnthropicClient(
                api_key=settings.anthropic_api_key,
                default_model=settings.flagship_model,
            )
        if settings.openai_api_key:
            clients[ProviderKind.SECONDARY] = OpenAIClient(
                api_key=settings.openai_api_key,
                default_model=settings.secondary_model,
            )
        if settings.gateway_api_key:
            clients[ProviderKind.GATEWAY] = GatewayClient(
                api_key=settings.gateway_api_key,
                base_url=settings.gateway_base_url,
                default_model=settings.gateway_model,
                fallback_models=settings.gateway_fallback_models,
                backoff_step=settings.gateway_backoff_step,
            )

        breakers = {
            kind: CircuitBreaker(
                name=kind.value,
                failure_threshold=settings.breaker_failure_threshold,
                reset_timeout=settings.breaker_reset_timeout,
                half_open_requests=settings.breaker_half_open_requests,
                timeout=settings.breaker_timeout,
                clock=clock,
            )
            for kind in _BREAKER_KINDS
        }
        log.info("registry.built", configured=[k.value for k in clients])
        return cls(clients, breakers)

    @property
    def configured(self) -> list[ProviderKind]:
        return [kind for kind in _BREAKER_KINDS if kind in self._clients]

    def is_configured(self, kind: ProviderKind) -> bool:
        return kind in self._clients

    def client(self, kind: ProviderKind) -> ProviderClient:
        try:
            return self._clients[kind]
        except KeyError:
            raise ProviderNotConfiguredError(kind, "no API key configured") from None

    def breaker(self, kind: ProviderKind) -> CircuitBreaker:
        return self._breakers[kind]

    def breaker_states(self) -> dict[str, CircuitBreakerState]:
        return {kind.value: self._breakers[kind].snapshot() for kind in _BREAKER_KINDS}
