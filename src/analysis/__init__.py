"""Rule-based message pre-analysis: security, intent, products, delivery."""

from src.analysis.analyzer import MessageAnalyzer
from src.analysis.security import detect_insult, detect_prompt_injection, normalize_for_security

__all__ = [
    "MessageAnalyzer",
    "detect_insult",
    "detect_prompt_injection",
    "normalize_for_security",
]
