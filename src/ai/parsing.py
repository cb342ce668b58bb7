"""Recover a :class:`StructuredReply` from raw model text, then moderate it.

Models are asked for a bare JSON object but routinely wrap it in prose or
code fences, or stop mid-string.  ``parse_structured_reply`` tries, in
order:

1. the whole trimmed text as JSON;
2. a greedy ``{ ... "response" ... }`` block;
3. the first complete object inside a leading code fence;
4. the first complete object anywhere, by brace matching;
5. salvage of the ``"response"`` string value from truncated JSON
   (always forces ``need_human``).

``validate_output`` applies the fixed moderation policy regardless of the
path that produced the reply.
"""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from src.ai.errors import ParseError
from src.models.schemas import StructuredReply
from src.utils.logger import get_logger, preview

log = get_logger(__name__, component="parsing")

FALLBACK_CONTENT = "Merci pour votre message. Un conseiller vous répondra si nécessaire."

FORBIDDEN_PHRASES: tuple[str, ...] = (
    "garanti",
    "garantie absolue",
    "promesse de délai",
    "je garantis",
    "100% garanti",
)

MIN_CONFIDENCE = 0.6

_RESPONSE_BLOCK = re.compile(r'\{[\s\S]*"response"[\s\S]*\}')
_CODE_FENCE = re.compile(r"^```(?:json)?\s*\n?([\s\S]*)")
_RESPONSE_VALUE = re.compile(r'"response"\s*:\s*"((?:[^"\\]|\\.)*)"?')


# ---------------------------------------------------------------------------
# Extraction helpers
# ---------------------------------------------------------------------------

def extract_json_object(text: str) -> str | None:
    """Return the first complete top-level ``{...}`` at the start of *text*.

    Braces inside single- or double-quoted strings are ignored and
    backslash escapes are honoured.  Returns ``None`` when *text* does not
    start with ``{`` or the object never closes.
    """
    if not text or text[0] != "{":
        return None
    depth = 0
    in_string = False
    escape = False
    quote = ""
    for index, char in enumerate(text):
        if escape:
            escape = False
            continue
        if in_string:
            if char == "\\":
                escape = True
            elif char == quote:
                in_string = False
            continue
        if char in ('"', "'"):
            in_string = True
            quote = char
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[: index + 1]
    return None


def _parse_candidate(candidate: str) -> StructuredReply:
    """Parse and validate one candidate string.

    Raises
    ------
    ParseError
        The candidate is not JSON or does not satisfy the reply schema.
    """
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ParseError("reply must be a JSON object")
    try:
        return StructuredReply.model_validate(data)
    except ValidationError as exc:
        raise ParseError(f"invalid reply schema: {exc.error_count()} error(s)") from exc


def _candidates(trimmed: str):
    """Yield ``(strategy, candidate)`` pairs in the order they are tried."""
    yield "direct", trimmed

    block = _RESPONSE_BLOCK.search(trimmed)
    if block:
        yield "response_block", block.group(0)

    fence = _CODE_FENCE.match(trimmed)
    if fence:
        content = fence.group(1).split("```")[0].strip()
        brace = content.find("{")
        if brace != -1:
            extracted = extract_json_object(content[brace:])
            if extracted:
                yield "code_fence", extracted

    brace = trimmed.find("{")
    if brace != -1:
        extracted = extract_json_object(trimmed[brace:])
        if extracted:
            yield "brace_match", extracted


def _unescape(value: str) -> str:
    try:
        return json.loads(f'"{value}"', strict=False)
    except json.JSONDecodeError:
        return value.replace('\\"', '"')


def parse_structured_reply(raw: str | None) -> StructuredReply | None:
    """Recover a structured reply from *raw*, or ``None`` when nothing works."""
    if not raw or not isinstance(raw, str):
        log.warning("parsing.empty_reply")
        return None

    trimmed = raw.strip()
    for strategy, candidate in _candidates(trimmed):
        try:
            reply = _parse_candidate(candidate)
        except ParseError as exc:
            log.debug("parsing.strategy_failed", strategy=strategy, error=str(exc))
            continue
        if strategy != "direct":
            log.info("parsing.extracted", strategy=strategy)
        return reply

    salvaged = _RESPONSE_VALUE.search(trimmed)
    if salvaged:
        text = _unescape(salvaged.group(1)).strip()
        if text:
            log.info("parsing.salvaged", reply=preview(text))
            return StructuredReply(response=text, need_human=True)

    log.error("parsing.failed", reply=preview(trimmed, 200))
    return None


# ---------------------------------------------------------------------------
# Reasoning cleanup
# ---------------------------------------------------------------------------

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)

_ANSWER_START = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(Bonjour|Salut|Hello|Hi|Hey|Bienvenue|Bonsoir|Coucou|Cher|Chère)",
        r"^(Merci|Thank|Thanks|Je vous|Je te|Avec plaisir|Bien sûr|Certainement|Absolument)",
        r"^(Nos|Notre|Votre|Vos|Le|La|Les|Un|Une|Pour|Voici|Concernant)",
        r"^[👋😊🙌💬✨🎯📋]",
    )
)

_THINKING_START = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(Okay|Ok|Alright|Right|Well|So|Now|First|Let me|I need|I should|I'll|I will|I can|I have|I want)",
        r"^(The user|This user|They|He|She|Looking|Considering|Given|Since|Based|According)",
        r"^(That should|This should|That covers|This covers|That's|This is|It's|Here's what)",
        r"^(Hmm|Hm|Um|Uh|Let's|Got it|Sure|Yeah|Yes|No problem)",
        r"^(My response|My answer|I think|I believe|I understand|I see|I notice)",
        r"^(Friendly|Professional|Clear|Concise|Brief|Short|Simple)",
        r"^(Step|Point|Note|Remember|Keep|Make sure|Don't forget)",
    )
)

_THINKING_WORDS = re.compile(
    r"(should|would|could|need to|have to|going to|want to|the user|their|they)", re.IGNORECASE
)

_THINKING_PHRASES: tuple[str, ...] = (
    "okay,", "alright,", "let me ", "i need to ", "i should ",
    "the user ", "i'll ", "i will ", "that should ", "this should ",
    "that covers", "friendly,", "professional,", "my response",
    "here's what", "looking at", "considering", "based on",
    "step 1", "first,", "now,", "so,", "well,",
)

_STILL_THINKING = re.compile(r"^(Okay|Alright|That|This|So|Now|First|Let)", re.IGNORECASE)
_FIRST_GREETING = re.compile(
    r"(Bonjour|Salut|Hello|Hi|Merci|Nos |Notre |Votre |Pour |Voici |👋|😊)[\s\S]*", re.IGNORECASE
)


def _answer_start(lines: list[str]) -> int:
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped:
            continue
        if any(p.search(stripped) for p in _ANSWER_START):
            return index
        if not any(p.search(stripped) for p in _THINKING_START):
            if not _THINKING_WORDS.search(stripped):
                return index
    return -1


def clean_reasoning_text(text: str | None) -> str | None:
    """Strip exposed chain-of-thought from a reasoning model's reply.

    Removes ``<think>`` blocks, skips leading lines that read like thinking,
    and drops paragraphs containing typical thinking phrases.  Returns the
    original text when cleaning would leave nothing.
    """
    if not text:
        return text

    cleaned = _THINK_BLOCK.sub("", text).strip()

    lines = cleaned.split("\n")
    start = _answer_start(lines)
    if start > 0:
        cleaned = "\n".join(lines[start:]).strip()

    kept = [
        paragraph
        for paragraph in cleaned.split("\n\n")
        if not any(phrase in paragraph.strip().lower() for phrase in _THINKING_PHRASES)
    ]
    if kept:
        cleaned = "\n\n".join(kept).strip()

    if _STILL_THINKING.match(cleaned):
        greeting = _FIRST_GREETING.search(cleaned)
        if greeting:
            cleaned = greeting.group(0).strip()

    if cleaned != text:
        log.info("parsing.reasoning_cleaned", original_len=len(text), cleaned_len=len(cleaned))
    return cleaned or text


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------

def validate_output(
    reply: StructuredReply | None,
    max_length: int = 4096,
    min_confidence: float = MIN_CONFIDENCE,
) -> tuple[str, bool]:
    """Apply the moderation policy and return ``(content, need_human)``.

    * no reply: fallback text, handoff;
    * text longer than *max_length*: cut to ``max_length - 1`` chars + ``…``;
    * empty text: fallback text;
    * a forbidden phrase or ``confidence < min_confidence``: handoff.
    """
    if reply is None:
        return FALLBACK_CONTENT, True

    content = reply.response.strip()
    need_human = reply.need_human

    if len(content) > max_length:
        content = content[: max_length - 1] + "…"
    if not content:
        content = FALLBACK_CONTENT

    lowered = content.lower()
    for phrase in FORBIDDEN_PHRASES:
        if phrase in lowered:
            log.info("parsing.forbidden_phrase", phrase=phrase)
            need_human = True
            break

    if reply.confidence is not None and reply.confidence < min_confidence:
        log.info("parsing.low_confidence", confidence=reply.confidence)
        need_human = True

    return content, need_human
