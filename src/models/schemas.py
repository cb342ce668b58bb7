"""Pydantic models and enums for the comptoir domain.

These schemas are the single source of truth for data shapes used across
the pipeline -- inbound messages, the analyzer's result, the structured
reply contract imposed on language models, and the orchestrator's output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    field_validator,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Intent(str, Enum):
    """Classified purpose of an inbound message."""

    ORDER = "order"
    INQUIRY = "inquiry"
    COMPLAINT = "complaint"
    RETURN = "return"
    GREETING = "greeting"
    DELIVERY_INFO = "delivery_info"
    HUMAN_REQUEST = "human_request"
    MODIFICATION = "modification"
    CANCELLATION = "cancellation"
    GENERAL = "general"
    UNKNOWN = "unknown"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StockStatus(str, Enum):
    """Availability of a matched product at analysis time."""

    AVAILABLE = "available"
    LOW = "low"
    INSUFFICIENT = "insufficient"
    OUT_OF_STOCK = "out_of_stock"


class StockIssueKind(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    INSUFFICIENT_STOCK = "insufficient_stock"
    LOW_STOCK = "low_stock"


class MatchSource(str, Enum):
    MESSAGE = "message"
    CONTEXT = "context"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Engagement(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Language(str, Enum):
    FRENCH = "fr"
    ENGLISH = "en"
    UNKNOWN = "unknown"


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class ProviderKind(str, Enum):
    """Supported provider classes, plus the static fallback."""

    FLAGSHIP = "flagship"
    SECONDARY = "secondary"
    GATEWAY = "gateway"
    FALLBACK = "fallback"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


def _utcnow() -> datetime:
    """Return the current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

class InboundMessage(BaseModel):
    """A customer message as received from a channel connector."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    conversation_id: str | None = None
    sender_ref: str | None = None
    text: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Product(BaseModel):
    """Active catalog item as returned by the catalog accessor."""

    id: str
    name: str
    sku: str | None = None
    price: float = 0.0
    stock: int = 0
    category: str | None = None
    description: str | None = None


class ChatTurn(BaseModel):
    """One prior message of the conversation."""

    role: ChatRole
    content: str
    is_summary: bool = False


class KnowledgeItem(BaseModel):
    """A knowledge-base snippet injected into the business context block."""

    title: str
    content: str


class AgentConfig(BaseModel):
    """Tenant-configured assistant settings."""

    id: str | None = None
    tenant_id: str | None = None
    name: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class OrderSummary(BaseModel):
    id: str
    status: str
    total_amount: float = 0.0


class CustomerSummary(BaseModel):
    """Raw order/message aggregates from the conversation history accessor."""

    orders: list[OrderSummary] = Field(default_factory=list)
    message_count: int = 0
    user_message_count: int = 0


# ---------------------------------------------------------------------------
# Analysis result
# ---------------------------------------------------------------------------

class IntentResult(BaseModel):
    primary: Intent = Intent.UNKNOWN
    secondary: Intent | None = None
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    scores: dict[str, int] = Field(default_factory=dict)
    matched_keywords: list[str] = Field(default_factory=list)


class ProductMatch(BaseModel):
    """A catalog product resolved from the message (point-in-time stock)."""

    id: str
    name: str
    sku: str | None = None
    price: float
    stock: int
    category: str | None = None
    requested_quantity: int
    stock_status: StockStatus
    matched_from: MatchSource = MatchSource.MESSAGE


class StockIssue(BaseModel):
    product: str
    issue: StockIssueKind
    message: str
    available: int | None = None
    requested: int | None = None


class ProductAnalysis(BaseModel):
    matched: list[ProductMatch] = Field(default_factory=list)
    stock_issues: list[StockIssue] = Field(default_factory=list)
    total_requested: int = 0
    has_stock_problems: bool = False
    total_products: int = 0
    used_context: bool = False
    error: bool = False


class CustomerHistory(BaseModel):
    total_orders: int = 0
    validated_orders: int = 0
    pending_orders: int = 0
    total_spent: float = 0.0
    is_new_customer: bool = True
    is_repeat_customer: bool = False
    message_count: int = 0
    engagement: Engagement = Engagement.LOW


class DeliveryInfo(BaseModel):
    has_delivery_info: bool = False
    city: str | None = None
    neighborhood: str | None = None
    phone: str | None = None

    def missing_fields(self) -> list[str]:
        """Return the delivery fields still to be collected."""
        missing = []
        if not self.city:
            missing.append("city")
        if not self.neighborhood:
            missing.append("neighborhood")
        if not self.phone:
            missing.append("phone")
        return missing


class QuantityMention(BaseModel):
    value: int
    type: Literal["numeric", "word"]
    raw: str


class HandoffDecision(BaseModel):
    needed: bool = False
    reasons: list[str] = Field(default_factory=list)


class ConfirmationInfo(BaseModel):
    is_confirmation: bool = False
    has_confirmation_product: bool = False
    used_context: bool = False


class BaseAnalysisResult(BaseModel):
    """Field-reduced result of the catalog-free analysis variant."""

    intent: IntentResult = Field(default_factory=IntentResult)
    needs_human: HandoffDecision = Field(default_factory=HandoffDecision)
    ignore: bool = False
    escalate: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    language: Language = Language.UNKNOWN
    intent_hint: str = Intent.UNKNOWN.value
    timestamp: datetime = Field(default_factory=_utcnow)


class AnalysisResult(BaseAnalysisResult):
    """Full pre-analysis of one inbound message."""

    products: ProductAnalysis = Field(default_factory=ProductAnalysis)
    customer_history: CustomerHistory | None = None
    delivery_info: DeliveryInfo = Field(default_factory=DeliveryInfo)
    quantities: list[QuantityMention] = Field(default_factory=list)
    is_likely_order: bool = False
    confirmation: ConfirmationInfo = Field(default_factory=ConfirmationInfo)


# ---------------------------------------------------------------------------
# Language-model contract and orchestrator output
# ---------------------------------------------------------------------------

class StructuredReply(BaseModel):
    """The only JSON shape a provider reply may take."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    response: StrictStr = Field(min_length=1)
    need_human: StrictBool = Field(
        default=False,
        validation_alias=AliasChoices("need_human", "needHuman", "need_confirmation"),
    )
    confidence: float | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("confidence must be a number")
        if not 0.0 <= float(value) <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        return float(value)


class Completion(BaseModel):
    """Raw provider output before structured parsing."""

    text: str
    model: str
    tokens_used: int | None = None


class OrchestratedResponse(BaseModel):
    """Reply handed back to the caller; either a full success or a fallback."""

    content: str
    need_human: bool = False
    tokens_used: int = 0
    provider: ProviderKind = ProviderKind.FALLBACK
    model: str | None = None
    credits_deducted: float | None = None
    credits_remaining: float | None = None
    prompt_version: str | None = None
    credit_warning: str | None = None


class CreditDeduction(BaseModel):
    ok: bool
    cost: float = 0.0
    remaining: float | None = None
    error: str | None = None


class CircuitBreakerState(BaseModel):
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float | None = None
    half_open_trial_count: int = 0
