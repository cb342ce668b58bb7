"""Chat-completion clients for the three provider classes.

Each client turns ``(system, messages, model)`` into a :class:`Completion`
holding raw text and, when the provider reports it, total token usage.

* ``AnthropicClient`` -- flagship hosted model via ``anthropic.AsyncAnthropic``.
* ``OpenAIClient`` -- secondary hosted model via ``openai.AsyncOpenAI``.
* ``GatewayClient`` -- an OpenAI-compatible multi-model gateway (OpenRouter
  style).  On HTTP 429 it moves to the next interchangeable model after a
  short linear wait.

Transient transport errors are retried here; everything else propagates
to the orchestrator, which counts it against the provider's breaker.
"""

from __future__ import annotations

from typing import Any, Sequence

import anthropic
import openai

from src.ai.errors import RateLimitedError
from src.models.schemas import Completion, ProviderKind
from src.utils.logger import get_logger, preview
from src.utils.retry import retry, sleep_linear

log = get_logger(__name__, component="ai_client")

ChatMessage = dict[str, str]


class ProviderClient:
    """Common surface of every provider client.

    Parameters
    ----------
    default_model:
        Model used when the caller passes none.
    """

    kind: ProviderKind

    def __init__(self, default_model: str) -> None:
        self.default_model = default_model

    async def complete(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> Completion:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Flagship (Anthropic)
# ---------------------------------------------------------------------------

def _alternate_roles(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    """Merge consecutive same-role turns and drop leading assistant turns."""
    merged: list[dict[str, Any]] = []
    for message in messages:
        role = "assistant" if message["role"] == "assistant" else "user"
        if not merged and role == "assistant":
            continue
        if merged and merged[-1]["role"] == role:
            merged[-1]["content"] += "\n\n" + message["content"]
        else:
            merged.append({"role": role, "content": message["content"]})
    return merged


class AnthropicClient(ProviderClient):
    """Async wrapper around the Anthropic Messages API."""

    kind = ProviderKind.FLAGSHIP

    def __init__(self, api_key: str, default_model: str = "claude-sonnet-4-5-20250929") -> None:
        super().__init__(default_model)
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        log.info("ai_client.init", provider=self.kind.value, model=default_model)

    @retry(
        max_attempts=2,
        base_delay=1.0,
        max_delay=5.0,
        exceptions=(anthropic.APIConnectionError, anthropic.InternalServerError),
    )
    async def complete(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> Completion:
        model = model or self.default_model
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system,
            messages=_alternate_roles(messages),
        )

        text_parts: list[str] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
        text = "\n".join(text_parts)

        tokens = response.usage.input_tokens + response.usage.output_tokens
        log.info(
            "ai_client.completed",
            provider=self.kind.value,
            model=model,
            tokens=tokens,
            reply=preview(text),
        )
        return Completion(text=text, model=model, tokens_used=tokens)


# ---------------------------------------------------------------------------
# Secondary (OpenAI) and gateway (OpenAI-compatible)
# ---------------------------------------------------------------------------

class OpenAIClient(ProviderClient):
    """Async wrapper around an OpenAI-compatible Chat Completions API.

    Parameters
    ----------
    api_key:
        API key for the endpoint.
    default_model:
        Model used when the caller passes none.
    base_url:
        Alternate endpoint; ``None`` targets OpenAI itself.
    """

    kind = ProviderKind.SECONDARY

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        base_url: str | None = None,
    ) -> None:
        super().__init__(default_model)
        self._client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url)
        log.info(
            "ai_client.init",
            provider=self.kind.value,
            model=default_model,
            base_url=base_url,
        )

    @retry(
        max_attempts=2,
        base_delay=1.0,
        max_delay=5.0,
        exceptions=(openai.APIConnectionError, openai.InternalServerError),
    )
    async def _create(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Completion:
        payload = [{"role": "system", "content": system}]
        payload.extend({"role": m["role"], "content": m["content"]} for m in messages)
        completion = await self._client.chat.completions.create(
            model=model,
            messages=payload,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        text = ""
        if completion.choices:
            text = completion.choices[0].message.content or ""
        tokens = completion.usage.total_tokens if completion.usage else None
        log.info(
            "ai_client.completed",
            provider=self.kind.value,
            model=model,
            tokens=tokens,
            reply=preview(text),
        )
        return Completion(text=text, model=model, tokens_used=tokens)

    async def complete(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> Completion:
        return await self._create(
            system, messages, model or self.default_model, max_tokens, temperature
        )


class GatewayClient(OpenAIClient):
    """Multi-model gateway client with rate-limit rotation.

    Parameters
    ----------
    fallback_models:
        Interchangeable models tried, in order, after the requested one
        answers HTTP 429.
    backoff_step:
        Seconds added to the wait before each successive model.
    """

    kind = ProviderKind.GATEWAY

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        fallback_models: Sequence[str] = (),
        backoff_step: float = 1.0,
    ) -> None:
        super().__init__(api_key, default_model=default_model, base_url=base_url)
        self.fallback_models = list(fallback_models)
        self.backoff_step = backoff_step

    def models_to_try(self, model: str | None) -> list[str]:
        primary = model or self.default_model
        return [primary, *(m for m in self.fallback_models if m != primary)]

    async def complete(
        self,
        system: str,
        messages: Sequence[ChatMessage],
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.7,
    ) -> Completion:
        """Try each model in turn, moving on only when rate-limited.

        Raises
        ------
        RateLimitedError
            Every model answered HTTP 429.
        """
        candidates = self.models_to_try(model)
        for attempt, candidate in enumerate(candidates):
            try:
                return await self._create(system, messages, candidate, max_tokens, temperature)
            except openai.RateLimitError:
                log.warning(
                    "ai_client.rate_limited",
                    provider=self.kind.value,
                    model=candidate,
                    attempt=attempt + 1,
                    remaining=len(candidates) - attempt - 1,
                )
                if attempt + 1 == len(candidates):
                    break
                await sleep_linear(attempt, self.backoff_step, model=candidates[attempt + 1])
        raise RateLimitedError(self.kind, f"all {len(candidates)} gateway models rate-limited")
