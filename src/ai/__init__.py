"""AI layer -- provider clients, routing, prompt assembly and reply orchestration."""

from src.ai.errors import InvalidInputError
from src.ai.orchestrator import AIOrchestrator
from src.ai.prompts import PromptManager, SystemPromptBuilder
from src.ai.registry import ProviderRegistry

__all__ = [
    "AIOrchestrator",
    "InvalidInputError",
    "PromptManager",
    "ProviderRegistry",
    "SystemPromptBuilder",
]
