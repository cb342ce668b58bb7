"""Static keyword replies used when no provider can answer.

Costs nothing and never touches the network.  Keywords are matched as
whole words, in table order; the first hit wins.
"""

from __future__ import annotations

import re

from src.models.schemas import AgentConfig, OrchestratedResponse, ProviderKind

_DEFAULT_NAME = "votre assistant"

# Placeholder ``{name}`` is the agent's display name.
KEYWORD_REPLIES: tuple[tuple[str, str], ...] = (
    ("bonjour", "Bonjour ! 👋 Je suis {name}. Comment puis-je vous aider aujourd'hui ?"),
    ("salut", "Salut ! 😊 Comment puis-je vous aider ?"),
    ("hello", "Hello! 👋 How can I help you today?"),
    ("hi", "Hi there! 👋 How can I help you?"),
    ("hey", "Hey ! 👋 Comment ça va ?"),
    ("coucou", "Coucou ! 😊 Que puis-je faire pour vous ?"),
    ("merci", "Je vous en prie ! 😊 N'hésitez pas si vous avez d'autres questions."),
    ("thanks", "You're welcome! 😊 Feel free to ask if you need anything else."),
    ("thank you", "You're welcome! 😊"),
    ("aide", "Je suis là pour vous aider ! 🙌 Posez-moi vos questions."),
    ("help", "I'm here to help! 🙌 What do you need?"),
    ("prix", "Pour connaître nos tarifs, je vous invite à consulter notre site web ou à nous contacter directement. 💰"),
    ("tarif", "Pour les tarifs, veuillez nous contacter ou visiter notre site. 💰"),
    ("horaire", "Nos horaires sont disponibles sur notre site web. Notre assistant est disponible 24/7 ! ⏰"),
    ("contact", "Vous pouvez nous contacter directement ici ! 📱"),
    ("adresse", "Pour notre adresse, veuillez consulter notre site web ou nous contacter. 📍"),
    ("bye", "Au revoir ! 👋 À bientôt !"),
    ("au revoir", "Au revoir ! 👋 N'hésitez pas à revenir si vous avez des questions."),
    ("bonne journée", "Merci, bonne journée à vous aussi ! ☀️"),
    ("oui", "Parfait ! 👍 Comment puis-je vous aider ?"),
    ("non", "D'accord. Y a-t-il autre chose que je puisse faire pour vous ?"),
    ("ok", "Super ! 👍"),
)

DEFAULT_REPLY = (
    "Merci pour votre message ! 😊 Je suis {name}. Notre équipe vous répondra "
    "très bientôt. En attendant, n'hésitez pas à me poser d'autres questions !"
)

_KEYWORD_PATTERNS = tuple(
    (re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)"), reply)
    for keyword, reply in KEYWORD_REPLIES
)


def fallback_text(agent_name: str | None, message: str) -> str:
    """Return the canned reply for *message*."""
    name = agent_name or _DEFAULT_NAME
    lowered = (message or "").lower().strip()
    for pattern, reply in _KEYWORD_PATTERNS:
        if pattern.search(lowered):
            return reply.format(name=name)
    return DEFAULT_REPLY.format(name=name)


def fallback_reply(
    agent: AgentConfig,
    message: str,
    credit_warning: str | None = None,
    prompt_version: str | None = None,
) -> OrchestratedResponse:
    """Build the free fallback response; ``tokens_used`` is always 0."""
    return OrchestratedResponse(
        content=fallback_text(agent.name, message),
        need_human=False,
        tokens_used=0,
        provider=ProviderKind.FALLBACK,
        model=None,
        prompt_version=prompt_version,
        credit_warning=credit_warning,
    )
