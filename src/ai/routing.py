"""Provider routing, model aliases and per-model credit costs.

Model names are first classified into a :class:`ModelFamily`; a small
decision table then lists, per family, the provider classes to prefer in
order.  The first configured one wins.
"""

from __future__ import annotations

from enum import Enum
from typing import Collection

from src.models.schemas import ProviderKind

# ---------------------------------------------------------------------------
# Model families and the routing table
# ---------------------------------------------------------------------------

FLAGSHIP_PREFIX = "claude"
SECONDARY_PREFIXES = ("gpt", "o1", "o3", "o4")


class ModelFamily(str, Enum):
    GATEWAY_PATH = "gateway_path"
    FLAGSHIP = "flagship"
    SECONDARY = "secondary"
    UNSPECIFIED = "unspecified"


ROUTING_TABLE: dict[ModelFamily, tuple[ProviderKind, ...]] = {
    ModelFamily.GATEWAY_PATH: (ProviderKind.GATEWAY, ProviderKind.FLAGSHIP, ProviderKind.SECONDARY),
    ModelFamily.FLAGSHIP: (ProviderKind.FLAGSHIP, ProviderKind.GATEWAY, ProviderKind.SECONDARY),
    ModelFamily.SECONDARY: (ProviderKind.SECONDARY, ProviderKind.GATEWAY, ProviderKind.FLAGSHIP),
    ModelFamily.UNSPECIFIED: (ProviderKind.FLAGSHIP, ProviderKind.SECONDARY, ProviderKind.GATEWAY),
}

# Providers tried after the chosen one fails.
FAILOVER_ORDER: tuple[ProviderKind, ...] = (
    ProviderKind.FLAGSHIP,
    ProviderKind.SECONDARY,
    ProviderKind.GATEWAY,
)


def classify_model(model: str | None) -> ModelFamily:
    """Return the family a requested model name belongs to."""
    if not model:
        return ModelFamily.UNSPECIFIED
    name = model.strip().lower()
    if "/" in name or ":" in name:
        return ModelFamily.GATEWAY_PATH
    if name.startswith(FLAGSHIP_PREFIX):
        return ModelFamily.FLAGSHIP
    if name.startswith(SECONDARY_PREFIXES):
        return ModelFamily.SECONDARY
    return ModelFamily.UNSPECIFIED


def select_provider(model: str | None, configured: Collection[ProviderKind]) -> ProviderKind:
    """Pick the provider class for *model* among the *configured* ones.

    Returns ``ProviderKind.FALLBACK`` when nothing is configured.
    """
    if set(configured) == {ProviderKind.GATEWAY}:
        return ProviderKind.GATEWAY
    for kind in ROUTING_TABLE[classify_model(model)]:
        if kind in configured:
            return kind
    return ProviderKind.FALLBACK


def failover_candidates(chosen: ProviderKind, configured: Collection[ProviderKind]) -> list[ProviderKind]:
    """Configured providers to try, in order, after *chosen* failed."""
    return [kind for kind in FAILOVER_ORDER if kind != chosen and kind in configured]


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------

MODEL_ALIASES: dict[ProviderKind, dict[str, str]] = {
    ProviderKind.FLAGSHIP: {
        "claude": "claude-sonnet-4-5-20250929",
        "claude-sonnet": "claude-sonnet-4-5-20250929",
        "claude-sonnet-4": "claude-sonnet-4-20250514",
        "claude-haiku": "claude-haiku-3-5-20241022",
    },
    ProviderKind.SECONDARY: {
        "gpt-4o": "gpt-4o",
        "gpt-4o-mini": "gpt-4o-mini",
        "gpt-4-turbo": "gpt-4-turbo",
    },
    ProviderKind.GATEWAY: {
        "gemini-2.5-flash": "google/gemini-2.5-flash",
        "gemini-1.5-flash": "google/gemini-2.0-flash-exp:free",
        "gemini-1.5-pro": "google/gemini-2.0-flash-exp:free",
        "gpt-4o": "openai/gpt-4o",
        "gpt-4o-mini": "openai/gpt-4o-mini",
        "claude-sonnet": "anthropic/claude-3.5-sonnet",
    },
}

_NATIVE_FAMILY: dict[ProviderKind, ModelFamily] = {
    ProviderKind.FLAGSHIP: ModelFamily.FLAGSHIP,
    ProviderKind.SECONDARY: ModelFamily.SECONDARY,
    ProviderKind.GATEWAY: ModelFamily.GATEWAY_PATH,
}


def resolve_model(kind: ProviderKind, requested: str | None, default: str) -> str:
    """Translate *requested* into a model id *kind* understands.

    Aliases are looked up first; a name already native to the provider is
    passed through; anything else falls back to *default* (this happens
    after failover to a provider of another family).
    """
    if not requested:
        return default
    alias = MODEL_ALIASES.get(kind, {}).get(requested.strip().lower())
    if alias:
        return alias
    if classify_model(requested) == _NATIVE_FAMILY.get(kind):
        return requested.strip()
    return default


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

CREDIT_ACTION = "ai_message"
DEFAULT_CREDIT_COST = 1.0

CREDIT_COSTS: dict[str, float] = {
    "gpt-4o-mini": 2.0,
    "gpt-4o": 5.0,
    "gpt-4-turbo": 8.0,
    "claude-haiku-3-5-20241022": 2.0,
    "claude-sonnet-4-20250514": 5.0,
    "claude-sonnet-4-5-20250929": 5.0,
}


def credit_cost(model: str | None) -> float:
    """Credits charged for one reply produced by *model*.

    Free gateway models (``:free`` suffix) cost nothing; unknown models
    cost :data:`DEFAULT_CREDIT_COST`.
    """
    if not model:
        return DEFAULT_CREDIT_COST
    name = model.strip().lower()
    if name.endswith(":free"):
        return 0.0
    if "/" in name:
        name = name.rsplit("/", 1)[1]
    return CREDIT_COSTS.get(name, DEFAULT_CREDIT_COST)
