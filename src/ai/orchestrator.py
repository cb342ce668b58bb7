"""Reply generation across providers with credit gating and failover.

``AIOrchestrator.generate`` is the single entry point.  For one inbound
message it:

1. picks a provider class from the agent's model (see ``src.ai.routing``);
2. checks the tenant can pay for that model, else answers from the free
   static fallback with a ``credit_warning``;
3. assembles the system prompt and a budgeted history window;
4. calls the provider through its circuit breaker, parses and moderates
   the reply;
5. on a provider failure, tries the other configured providers in a fixed
   order, skipping those whose breaker is open;
6. deducts credits once after a success.

Nothing provider-side escapes: the caller always gets an
:class:`OrchestratedResponse`.  Only malformed arguments raise
:class:`InvalidInputError`.
"""

from __future__ import annotations

from typing import Any, Sequence

from pydantic import ValidationError

from config.settings import Settings
from src.ai.errors import (
    InsufficientCreditsError,
    InvalidInputError,
    ProviderCircuitOpenError,
    ProviderError,
    ProviderTimeoutError,
)
from src.ai.fallback import fallback_reply
from src.ai.parsing import clean_reasoning_text, parse_structured_reply, validate_output
from src.ai.prompts import SystemPromptBuilder
from src.ai.registry import ProviderRegistry
from src.ai.routing import (
    CREDIT_ACTION,
    credit_cost,
    failover_candidates,
    resolve_model,
    select_provider,
)
from src.models.accessors import CreditAccessor
from src.models.schemas import (
    AgentConfig,
    AnalysisResult,
    ChatRole,
    ChatTurn,
    Completion,
    InboundMessage,
    KnowledgeItem,
    OrchestratedResponse,
    ProviderKind,
)
from src.utils.circuit_breaker import CallTimeoutError, CircuitOpenError
from src.utils.logger import get_logger, preview
from src.utils.memory import smart_window
from src.utils.tokenizer import estimate_conversation_tokens, estimate_tokens

log = get_logger(__name__, component="orchestrator")

CREDIT_WARNING = "Crédits insuffisants - réponse de secours utilisée"
DEFAULT_AGENT_MAX_TOKENS = 500

_ROLES = {role.value for role in ChatRole}


class AIOrchestrator:
    """Turn an inbound message into a moderated reply.

    Parameters
    ----------
    registry:
        Provider clients and their breakers.
    prompts:
        System prompt builder.
    credits:
        Credit accessor.  ``None`` disables gating and deduction.
    settings:
        History budgets, output limits and moderation thresholds.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        prompts: SystemPromptBuilder,
        credits: CreditAccessor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.prompts = prompts
        self.credits = credits
        self.settings = settings or Settings()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        agent: AgentConfig | dict[str, Any] | None,
        history: list[ChatTurn] | list[dict[str, Any]],
        message: InboundMessage | str,
        knowledge: Sequence[KnowledgeItem] | None = None,
        analysis: AnalysisResult | None = None,
    ) -> OrchestratedResponse:
        """Generate a reply for *message*.

        Raises
        ------
        InvalidInputError
            *agent* is missing or *history* is not a list.
        """
        agent = self._validate_agent(agent)
        turns = self._validate_history(history)
        if isinstance(message, InboundMessage):
            text, tenant_id = message.text, message.tenant_id
        else:
            text, tenant_id = str(message or ""), agent.tenant_id

        prompt, prompt_hash = self.prompts.build(agent, knowledge, analysis)

        configured = self.registry.configured
        chosen = select_provider(agent.model, configured)
        if chosen == ProviderKind.FALLBACK:
            log.warning("orchestrator.no_provider_configured", agent_id=agent.id)
            return fallback_reply(agent, text, prompt_version=prompt_hash)

        chosen_model = resolve_model(
            chosen, agent.model, self.registry.client(chosen).default_model
        )
        log.info(
            "orchestrator.provider_selected",
            agent_id=agent.id,
            provider=chosen.value,
            model=chosen_model,
        )

        try:
            await self._check_credits(tenant_id, chosen_model)
        except InsufficientCreditsError as exc:
            log.warning(
                "orchestrator.credits_insufficient",
                tenant_id=exc.tenant_id,
                cost=exc.cost,
            )
            return fallback_reply(
                agent, text, credit_warning=CREDIT_WARNING, prompt_version=prompt_hash
            )

        for kind in [chosen, *failover_candidates(chosen, configured)]:
            if kind != chosen:
                if self.registry.breaker(kind).is_open:
                    log.info("orchestrator.failover_skipped", provider=kind.value, reason="circuit_open")
                    continue
                log.info("orchestrator.failover", provider=kind.value)
            try:
                response = await self._generate_with(kind, agent, turns, text, prompt)
            except ProviderCircuitOpenError as exc:
                log.warning("orchestrator.circuit_open", provider=kind.value, error=str(exc))
                continue
            except ProviderTimeoutError as exc:
                log.warning("orchestrator.provider_timeout", provider=kind.value, error=str(exc))
                continue
            except ProviderError as exc:
                log.warning("orchestrator.provider_failed", provider=kind.value, error=str(exc))
                continue

            response.prompt_version = prompt_hash
            await self._deduct(tenant_id, agent, response)
            log.info(
                "orchestrator.generated",
                agent_id=agent.id,
                provider=response.provider.value,
                model=response.model,
                tokens=response.tokens_used,
                need_human=response.need_human,
                reply=preview(response.content),
            )
            return response

        log.error("orchestrator.all_providers_failed", agent_id=agent.id)
        return fallback_reply(agent, text, prompt_version=prompt_hash)

    # ------------------------------------------------------------------
    # Input validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_agent(agent: Any) -> AgentConfig:
        if agent is None:
            raise InvalidInputError("agent configuration is required")
        if isinstance(agent, AgentConfig):
            return agent
        if isinstance(agent, dict):
            try:
                return AgentConfig.model_validate(agent)
            except ValidationError as exc:
                raise InvalidInputError(f"invalid agent configuration: {exc}") from exc
        raise InvalidInputError(f"agent must be an AgentConfig, got {type(agent).__name__}")

    @staticmethod
    def _validate_history(history: Any) -> list[ChatTurn]:
        if not isinstance(history, list):
            raise InvalidInputError(f"history must be a list, got {type(history).__name__}")
        turns: list[ChatTurn] = []
        for turn in history:
            if isinstance(turn, ChatTurn):
                turns.append(turn)
            elif isinstance(turn, dict) and "content" in turn:
                role = turn.get("role", ChatRole.USER.value)
                turns.append(
                    ChatTurn(
                        role=role if role in _ROLES else ChatRole.ASSISTANT,
                        content=str(turn["content"]),
                    )
                )
            else:
                raise InvalidInputError("history entries must be chat turns")
        return turns

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    async def _check_credits(self, tenant_id: str | None, model: str) -> None:
        """Raise :class:`InsufficientCreditsError` when the tenant cannot pay."""
        if self.credits is None:
            return
        if tenant_id is None:
            log.warning("orchestrator.credit_gate_skipped", reason="no tenant")
            return
        cost = credit_cost(model)
        try:
            has_balance = await self.credits.has_balance(tenant_id, CREDIT_ACTION, cost)
        except Exception as exc:
            # An unverifiable balance is treated as insufficient.
            log.exception("orchestrator.credit_check_failed", tenant_id=tenant_id)
            raise InsufficientCreditsError(tenant_id, cost) from exc
        if not has_balance:
            raise InsufficientCreditsError(tenant_id, cost)

    async def _deduct(
        self, tenant_id: str | None, agent: AgentConfig, response: OrchestratedResponse
    ) -> None:
        """Charge one successful reply; failures are logged, never retried."""
        if self.credits is None or tenant_id is None:
            return
        cost = credit_cost(response.model)
        try:
            deduction = await self.credits.deduct(
                tenant_id,
                CREDIT_ACTION,
                cost,
                metadata={
                    "agent_id": agent.id,
                    "tokens": response.tokens_used,
                    "provider": response.provider.value,
                    "model": response.model,
                },
            )
        except Exception:
            log.exception("orchestrator.deduction_failed", tenant_id=tenant_id, cost=cost)
            return
        if not deduction.ok:
            log.warning(
                "orchestrator.deduction_failed",
                tenant_id=tenant_id,
                cost=cost,
                error=deduction.error,
            )
            return
        response.credits_deducted = deduction.cost
        response.credits_remaining = deduction.remaining

    # ------------------------------------------------------------------
    # Provider call
    # ------------------------------------------------------------------

    def _history_budget(self, kind: ProviderKind) -> tuple[int, int]:
        s = self.settings
        if kind == ProviderKind.FLAGSHIP:
            return s.flagship_history_messages, s.flagship_history_tokens
        if kind == ProviderKind.SECONDARY:
            return s.secondary_history_messages, s.secondary_history_tokens
        return s.gateway_history_messages, s.gateway_history_tokens

    def _build_messages(
        self, kind: ProviderKind, turns: list[ChatTurn], text: str
    ) -> list[dict[str, str]]:
        max_messages, max_tokens = self._history_budget(kind)
        window = smart_window(
            turns,
            max_messages=max_messages,
            max_tokens=max_tokens,
            compression_threshold=self.settings.history_compression_threshold,
        )
        # System summaries are sent as user turns.
        messages = [
            {
                "role": "assistant" if turn.role == ChatRole.ASSISTANT else "user",
                "content": turn.content,
            }
            for turn in window
        ]
        messages.append({"role": "user", "content": self.prompts.current_message(text)})
        return messages

    async def _call(
        self,
        kind: ProviderKind,
        system: str,
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        """Call the provider through its breaker, translating failures."""
        client = self.registry.client(kind)
        breaker = self.registry.breaker(kind)
        try:
            return await breaker.call(
                client.complete,
                system,
                messages,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except CircuitOpenError as exc:
            raise ProviderCircuitOpenError(kind, str(exc)) from exc
        except CallTimeoutError as exc:
            raise ProviderTimeoutError(kind, str(exc)) from exc
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(kind, f"{type(exc).__name__}: {exc}") from exc

    async def _generate_with(
        self,
        kind: ProviderKind,
        agent: AgentConfig,
        turns: list[ChatTurn],
        text: str,
        prompt: str,
    ) -> OrchestratedResponse:
        client = self.registry.client(kind)
        model = resolve_model(kind, agent.model, client.default_model)
        system = f"{prompt}\n\n{self.prompts.structured_instruction()}"
        messages = self._build_messages(kind, turns, text)
        max_tokens = max(
            agent.max_tokens or DEFAULT_AGENT_MAX_TOKENS, self.settings.min_output_tokens
        )
        temperature = (
            agent.temperature if agent.temperature is not None else self.settings.default_temperature
        )

        completion = await self._call(kind, system, messages, model, max_tokens, temperature)

        reply = parse_structured_reply(completion.text)
        if reply is None and kind == ProviderKind.GATEWAY:
            reply = parse_structured_reply(clean_reasoning_text(completion.text))
        content, need_human = validate_output(
            reply,
            max_length=self.settings.max_response_length,
            min_confidence=self.settings.min_confidence,
        )

        tokens = completion.tokens_used
        if tokens is None:
            tokens = (
                estimate_tokens(system)
                + estimate_conversation_tokens(messages)
                + estimate_tokens(completion.text)
            )

        return OrchestratedResponse(
            content=content,
            need_human=need_human,
            tokens_used=tokens,
            provider=kind,
            model=completion.model,
        )
