"""YAML-backed prompt text and system prompt assembly.

``PromptManager`` reads the fixed prompt text from ``config/prompts.yaml``
(top-level ``prompts`` key; each entry is a text block or a label mapping).
``SystemPromptBuilder`` assembles the three-block system prompt sent to
every provider::

    [SYSTEM GLOBAL]      tenant prompt (or default) + non-overridable rules
    [BUSINESS TENANT]    real-time analysis context + knowledge snippets
    [POLICY]             legal / safety constraints and handoff guidance

Usage::

    from src.ai.prompts import PromptManager, SystemPromptBuilder

    builder = SystemPromptBuilder(PromptManager())
    prompt, prompt_hash = builder.build(agent, knowledge, analysis)
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Any, Sequence

import yaml

from src.models.schemas import AgentConfig, AnalysisResult, KnowledgeItem, Language
from src.utils.logger import get_logger, preview

log = get_logger(__name__, component="prompts")

# Resolve paths relative to the project root so imports work from any cwd.
_PROJECT_ROOT = Path(__file__).resolve().parents[2]

_HTML_ENTITIES = {
    "&quot;": '"',
    "&#039;": "'",
    "&#39;": "'",
    "&lt;": "<",
    "&gt;": ">",
}

_DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"ignore\s+(all\s+)?(previous|above|prior)\s+instructions?",
        r"disregard\s+(all\s+)?(previous|above|prior)\s+instructions?",
        r"forget\s+(all\s+)?(previous|above|prior)\s+instructions?",
        r"new\s+instructions?:",
        r"system\s*:\s*you\s+are\s+now",
        r"\[INST\]",
        r"\[/INST\]",
        r"<\|im_start\|>",
        r"<\|im_end\|>",
    )
)


class PromptManager:
    """Load prompt text from a YAML file and render it with kwargs.

    Parameters
    ----------
    prompts_path:
        Path to the YAML file.  Relative paths are resolved against the
        project root.
    """

    def __init__(self, prompts_path: str = "config/prompts.yaml") -> None:
        path = Path(prompts_path)
        if not path.is_absolute():
            path = _PROJECT_ROOT / path
        self._path = path
        self._templates: dict[str, Any] = self._load(path)
        log.info(
            "prompts.loaded",
            path=str(path),
            template_count=len(self._templates),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        """Read and parse the YAML file, returning the ``prompts`` mapping."""
        if not path.is_file():
            raise FileNotFoundError(f"Prompts file not found: {path}")
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
        if not isinstance(data, dict) or "prompts" not in data:
            raise ValueError(
                f"Prompts file must contain a top-level 'prompts' key: {path}"
            )
        return data["prompts"]

    def _get_template(self, template_name: str) -> Any:
        """Return the raw entry, raising on missing names."""
        if template_name not in self._templates:
            available = ", ".join(sorted(self._templates))
            raise KeyError(
                f"Unknown prompt template '{template_name}'. "
                f"Available templates: {available}"
            )
        return self._templates[template_name]

    @staticmethod
    def _render(template: str, kwargs: dict[str, Any]) -> str:
        """Substitute ``{placeholders}`` in *template* with *kwargs*.

        Missing placeholders are left as-is rather than raising.
        """

        class _DefaultDict(dict):  # type: ignore[type-arg]
            """dict subclass that returns the key wrapped in braces for misses."""

            def __missing__(self, key: str) -> str:
                return "{" + key + "}"

        return template.format_map(_DefaultDict(**kwargs))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, template_name: str, **kwargs: Any) -> str:
        """Return the text block *template_name*, stripped.

        Placeholders are only substituted when *kwargs* are given, so blocks
        containing literal braces can be fetched untouched.

        Raises
        ------
        KeyError
            If *template_name* does not exist.
        TypeError
            If the entry is a label mapping rather than a text block.
        """
        template = self._get_template(template_name)
        if not isinstance(template, str):
            raise TypeError(f"Template '{template_name}' is not a text block")
        if kwargs:
            template = self._render(template, kwargs)
        return template.strip()

    def labels(self, template_name: str) -> dict[str, str]:
        """Return the label mapping *template_name*.

        Raises
        ------
        KeyError
            If *template_name* does not exist.
        TypeError
            If the entry is a text block rather than a mapping.
        """
        template = self._get_template(template_name)
        if not isinstance(template, dict):
            raise TypeError(f"Template '{template_name}' is not a label mapping")
        return {str(k): str(v) for k, v in template.items()}


# ---------------------------------------------------------------------------
# Tenant prompt sanitisation
# ---------------------------------------------------------------------------

def decode_html_entities(text: str | None) -> str:
    """Undo the HTML escaping applied to tenant prompts by web forms."""
    if not text:
        return ""
    for entity, char in _HTML_ENTITIES.items():
        text = text.replace(entity, char)
    # Last so "&amp;lt;" decodes to "&lt;", not "<".
    return text.replace("&amp;", "&")


def sanitize_tenant_prompt(text: str, max_length: int = 10000) -> tuple[str, list[str]]:
    """Trim and cap a tenant prompt and scan it for injection phrasings.

    Returns the sanitised text and a list of warnings.  Matches are
    reported, never removed.
    """
    warnings: list[str] = []
    sanitized = text.strip()
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length]
        warnings.append(f"System prompt truncated to {max_length} characters")
    for pattern in _DANGEROUS_PATTERNS:
        if pattern.search(sanitized):
            warnings.append(f"Potentially dangerous pattern detected: {pattern.pattern}")
    return sanitized, warnings


def _amount(value: float) -> str:
    """Render a price without a spurious ``.0``."""
    return str(int(value)) if float(value).is_integer() else str(value)


# ---------------------------------------------------------------------------
# System prompt builder
# ---------------------------------------------------------------------------

class SystemPromptBuilder:
    """Assemble the three-block system prompt and its short hash.

    Parameters
    ----------
    prompts:
        Source of all fixed prompt text.
    max_prompt_length:
        Cap applied to tenant-authored prompts.
    knowledge_snippet_max:
        Cap applied to each knowledge-base snippet.
    """

    def __init__(
        self,
        prompts: PromptManager,
        max_prompt_length: int = 10000,
        knowledge_snippet_max: int = 2000,
    ) -> None:
        self.prompts = prompts
        self.max_prompt_length = max_prompt_length
        self.knowledge_snippet_max = knowledge_snippet_max

    def build(
        self,
        agent: AgentConfig,
        knowledge: Sequence[KnowledgeItem] | None = None,
        analysis: AnalysisResult | None = None,
    ) -> tuple[str, str]:
        """Return ``(prompt, prompt_hash)`` for one generation call.

        ``prompt_hash`` is the first 16 hex digits of the prompt's SHA-256.
        """
        system_global = self._system_global(agent)
        business = self._business_block(knowledge or [], analysis)
        policy = self.prompts.get("policy")

        prompt = (
            f"[SYSTEM GLOBAL]\n{system_global}\n\n"
            f"[BUSINESS TENANT]\n{business}\n\n\n{policy}"
        )
        prompt_hash = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]
        return prompt, prompt_hash

    def structured_instruction(self) -> str:
        return self.prompts.get("structured_instruction")

    def current_message(self, text: str) -> str:
        return self.prompts.get("current_message", text=text)

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def _system_global(self, agent: AgentConfig) -> str:
        custom = agent.system_prompt
        if custom and custom.strip():
            text, warnings = sanitize_tenant_prompt(
                decode_html_entities(custom), self.max_prompt_length
            )
            if warnings:
                log.warning(
                    "prompts.tenant_prompt_flagged",
                    agent_id=agent.id,
                    warnings=warnings,
                    prompt=preview(text),
                )
        else:
            text = (
                self.prompts.get("default_prompt")
                + "\n\n"
                + self.prompts.get("default_instructions")
            )

        rules = [
            self.prompts.get("rule_presentation"),
            self.prompts.get("rule_context"),
            self.prompts.get("rule_phrasing"),
        ]
        return "\n\n".join([text, *rules])

    def _business_block(
        self, knowledge: Sequence[KnowledgeItem], analysis: AnalysisResult | None
    ) -> str:
        sections: list[str] = []
        if analysis is not None:
            sections.append(self.render_analysis_context(analysis))

        if knowledge:
            lines = [self.prompts.get("knowledge_header")]
            for item in knowledge:
                content = item.content
                if len(content) > self.knowledge_snippet_max:
                    content = content[: self.knowledge_snippet_max] + "..."
                lines.append(f"### {item.title}\n{content}\n")
            catalogue_title = self.prompts.get("catalogue_title")
            if any(item.title == catalogue_title for item in knowledge):
                lines.append(self.prompts.get("rule_catalogue"))
                lines.append(self.prompts.get("rule_images"))
            sections.append("\n".join(lines))

        return "\n\n".join(sections)

    def render_analysis_context(self, analysis: AnalysisResult) -> str:
        """Render an :class:`AnalysisResult` as the real-time context block."""
        p = self.prompts
        parts = [p.get("analysis_header")]

        if analysis.language != Language.UNKNOWN:
            languages = p.labels("language_labels")
            language = languages.get(analysis.language.value, analysis.language.value)
            parts.append("\n" + p.get("language_line", language=language))

        intents = p.labels("intent_labels")
        primary = analysis.intent.primary.value
        parts.append(f"Intention: {intents.get(primary, primary)}")

        products = analysis.products
        if products.matched:
            statuses = p.labels("stock_labels")
            parts.append("\nProduits mentionnés:")
            for match in products.matched:
                parts.append(
                    p.get(
                        "product_line",
                        name=match.name,
                        price=_amount(match.price),
                        status=statuses.get(match.stock_status.value, match.stock_status.value),
                        stock=match.stock,
                        quantity=match.requested_quantity,
                    )
                )

        if products.stock_issues:
            parts.append("\n⚠️ ALERTES STOCK:")
            parts.extend(f"- {issue.message}" for issue in products.stock_issues)
            parts.append("→ INFORME le client de ces problèmes de stock!")

        history = analysis.customer_history
        if history is not None:
            if history.is_repeat_customer:
                parts.append(
                    f"\n👤 Client fidèle ({history.validated_orders} commande(s), "
                    f"{_amount(history.total_spent)} FCFA dépensés)"
                )
            elif history.is_new_customer:
                parts.append("\n👤 Nouveau client")

        delivery = analysis.delivery_info
        if delivery.has_delivery_info:
            parts.append("\n📍 Infos livraison détectées:")
            if delivery.city:
                parts.append(f"- Ville: {delivery.city}")
            if delivery.neighborhood:
                parts.append(f"- Quartier: {delivery.neighborhood}")
            if delivery.phone:
                parts.append(f"- Tél: {delivery.phone}")

        if analysis.is_likely_order:
            field_labels = p.labels("delivery_field_labels")
            missing = [field_labels[name] for name in delivery.missing_fields()]
            if missing:
                parts.append(f"\n📝 POUR FINALISER LA COMMANDE, demande: {', '.join(missing)}")
            else:
                parts.append("\n✅ Toutes les infos de livraison sont collectées!")

        if analysis.needs_human.needed:
            parts.append("\n🚨 RECOMMANDATION: Propose de transférer à un humain")
            parts.append(f"Raison: {', '.join(analysis.needs_human.reasons)}")

        return "\n".join(parts)
