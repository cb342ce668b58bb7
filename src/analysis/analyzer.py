"""Rule-based pre-analysis of inbound customer messages.

``MessageAnalyzer`` runs before any language model is involved.  It flags
abuse, classifies intent, resolves the products a customer talks about
against the live catalog, pulls out delivery details and quantities, and
recommends a human handoff when the bot should not handle the message
alone.  Its result feeds the business-context block of the reply prompt
and the caller's routing decisions.

``analyze`` never raises: collaborator failures degrade to empty product
or history sections and are logged.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

from config.settings import Settings
from src.analysis.catalog import CatalogIndex, ProductPatterns, extract_quantities
from src.analysis.classify import (
    detect_base_intent,
    detect_intent,
    detect_language,
    is_confirmation,
)
from src.analysis.delivery import extract_delivery_info
from src.analysis.security import detect_insult, detect_prompt_injection
from src.models.accessors import CatalogAccessor, ConversationHistoryAccessor
from src.models.schemas import (
    AnalysisResult,
    BaseAnalysisResult,
    ConfidenceLevel,
    ConfirmationInfo,
    CustomerHistory,
    Engagement,
    HandoffDecision,
    InboundMessage,
    Intent,
    IntentResult,
    MatchSource,
    Product,
    ProductAnalysis,
    ProductMatch,
    RiskLevel,
    StockIssue,
    StockIssueKind,
    StockStatus,
)
from src.utils.cache import TTLCache
from src.utils.logger import get_logger, preview

log = get_logger(__name__, component="analyzer")

INSULT_HINT = "insult"

REASON_HUMAN_REQUEST = "Demande explicite de parler à un humain"
REASON_COMPLAINT = "Réclamation ou plainte détectée"
REASON_OUT_OF_STOCK = "Produit en rupture de stock"
REASON_INSUFFICIENT = "Stock insuffisant pour la quantité demandée"
REASON_INSULT = "Insulte ou langage offensant détecté"


class MessageAnalyzer:
    """Analyze inbound messages against a tenant's catalog and history.

    Parameters
    ----------
    catalog:
        Catalog accessor.  When it supports invalidation listeners the
        analyzer subscribes so catalog edits drop the cached index.
    history:
        Conversation history accessor, used for the confirmation context
        fallback and the customer-history aggregate.
    settings:
        Thresholds and cache sizes; defaults to ``Settings()``.
    clock:
        Monotonic time source for the catalog cache.
    now:
        Wall-clock source stamping results for raw-text input; an
        ``InboundMessage`` keeps its own timestamp.
    """

    def __init__(
        self,
        catalog: CatalogAccessor | None = None,
        history: ConversationHistoryAccessor | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._now = now
        self._catalog = catalog
        self._history = history
        self._settings = settings or Settings()
        self._indexes: TTLCache[str, CatalogIndex] = TTLCache(
            self._settings.catalog_cache_ttl_seconds, clock=clock
        )
        self._patterns = ProductPatterns(
            min_quantity=self._settings.min_quantity,
            max_quantity=self._settings.max_quantity,
            cache_size=self._settings.quantity_pattern_cache_max,
        )
        if catalog is not None and hasattr(catalog, "add_invalidation_listener"):
            catalog.add_invalidation_listener(self.invalidate_catalog)

    @property
    def patterns(self) -> ProductPatterns:
        return self._patterns

    def invalidate_catalog(self, tenant_id: str) -> None:
        """Drop the cached catalog index for *tenant_id*."""
        self._indexes.invalidate(tenant_id)
        log.debug("analyzer.catalog_invalidated", tenant_id=tenant_id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def analyze(
        self,
        message: InboundMessage | str,
        tenant_id: str | None = None,
        conversation_id: str | None = None,
    ) -> AnalysisResult:
        """Run the full pipeline on one inbound message.

        Parameters
        ----------
        message:
            An ``InboundMessage`` or the raw text.  With raw text,
            *tenant_id* (and optionally *conversation_id*) must be given.
        tenant_id, conversation_id:
            Override or supply the identifiers carried by the message.

        Returns
        -------
        AnalysisResult
            Short or non-text input yields ``ignore=True`` with intent
            ``unknown``.
        """
        text, tenant_id, conversation_id, timestamp = self._unpack(
            message, tenant_id, conversation_id
        )
        text = self._prepare(text)
        if text is None:
            return AnalysisResult(ignore=True, timestamp=timestamp)

        injection = detect_prompt_injection(text)
        insult = detect_insult(text)
        language = detect_language(text, self._settings.language_accent_ratio)
        intent = detect_intent(text)
        confirming = is_confirmation(text)

        products = await self.analyze_products(
            text, tenant_id, conversation_id, use_context=confirming
        )
        has_confirmation_product = confirming and bool(products.matched)
        if has_confirmation_product and intent.primary in (Intent.GENERAL, Intent.GREETING):
            intent = intent.model_copy(
                update={"primary": Intent.ORDER, "confidence": ConfidenceLevel.HIGH}
            )

        customer_history = await self.get_customer_history(tenant_id, conversation_id)
        needs_human = self.check_needs_human(intent, products, insult=insult)

        result = AnalysisResult(
            intent=intent,
            products=products,
            customer_history=customer_history,
            delivery_info=extract_delivery_info(text),
            quantities=extract_quantities(
                text, self._settings.min_quantity, self._settings.max_quantity
            ),
            is_likely_order=intent.primary == Intent.ORDER and bool(products.matched),
            confirmation=ConfirmationInfo(
                is_confirmation=confirming,
                has_confirmation_product=has_confirmation_product,
                used_context=products.used_context,
            ),
            needs_human=needs_human,
            escalate=injection or insult,
            risk_level=_risk_level(injection, insult),
            language=language,
            intent_hint=INSULT_HINT if insult else intent.primary.value,
            timestamp=timestamp,
        )
        log.info(
            "analyzer.analyzed",
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            intent=result.intent_hint,
            risk_level=result.risk_level.value,
            escalate=result.escalate,
            matched_products=len(products.matched),
            needs_human=needs_human.needed,
            text=preview(text),
        )
        return result

    def analyze_base(
        self,
        message: InboundMessage | str,
        tenant_id: str | None = None,
        conversation_id: str | None = None,
    ) -> BaseAnalysisResult:
        """Catalog-free variant: security, language and a minimal intent set."""
        text, tenant_id, conversation_id, timestamp = self._unpack(
            message, tenant_id, conversation_id
        )
        text = self._prepare(text)
        if text is None:
            return BaseAnalysisResult(ignore=True, timestamp=timestamp)

        injection = detect_prompt_injection(text)
        insult = detect_insult(text)
        intent = detect_base_intent(text)
        needs_human = HandoffDecision()
        if insult:
            needs_human = HandoffDecision(needed=True, reasons=[REASON_INSULT])

        result = BaseAnalysisResult(
            intent=intent,
            needs_human=needs_human,
            escalate=injection or insult,
            risk_level=_risk_level(injection, insult),
            language=detect_language(text, self._settings.language_accent_ratio),
            intent_hint=INSULT_HINT if insult else intent.primary.value,
            timestamp=timestamp,
        )
        log.info(
            "analyzer.analyzed_base",
            tenant_id=tenant_id,
            conversation_id=conversation_id,
            intent=result.intent_hint,
            risk_level=result.risk_level.value,
            escalate=result.escalate,
        )
        return result

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    def _unpack(
        self,
        message: InboundMessage | str,
        tenant_id: str | None,
        conversation_id: str | None,
    ) -> tuple[object, str | None, str | None, datetime]:
        if isinstance(message, InboundMessage):
            return (
                message.text,
                tenant_id or message.tenant_id,
                conversation_id or message.conversation_id,
                message.timestamp,
            )
        return message, tenant_id, conversation_id, self._now()

    def _prepare(self, text: object) -> str | None:
        """Return the capped text, or ``None`` when it should be ignored."""
        if not isinstance(text, str):
            log.error("analyzer.invalid_input", input_type=type(text).__name__)
            return None
        limit = self._settings.max_message_length
        if len(text) > limit:
            log.warning("analyzer.truncated", length=len(text), limit=limit)
            text = text[:limit]
        if len(text.strip()) < self._settings.min_message_length:
            return None
        return text

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def _get_index(self, tenant_id: str) -> CatalogIndex | None:
        cached = self._indexes.get(tenant_id)
        if cached is not None:
            return cached
        if self._catalog is None:
            return None
        try:
            products = await self._catalog.list_active_products(tenant_id)
        except Exception:
            log.exception("analyzer.catalog_read_failed", tenant_id=tenant_id)
            return None
        index = CatalogIndex(list(products), self._settings.min_token_length)
        self._indexes.set(tenant_id, index)
        log.debug("analyzer.catalog_indexed", tenant_id=tenant_id, products=len(index))
        return index

    async def _context_text(self, conversation_id: str | None) -> str | None:
        if self._history is None or not conversation_id:
            return None
        try:
            turns = await self._history.recent_turns(
                conversation_id, self._settings.context_turns
            )
        except Exception:
            log.exception("analyzer.context_read_failed", conversation_id=conversation_id)
            return None
        return " ".join(turns) if turns else None

    async def analyze_products(
        self,
        text: str,
        tenant_id: str | None,
        conversation_id: str | None = None,
        use_context: bool = False,
    ) -> ProductAnalysis:
        """Resolve products in *text*, falling back to recent turns when asked.

        The context fallback only runs when *use_context* is set (the
        message is a confirmation) and nothing matched in *text* itself.
        """
        if not tenant_id:
            return ProductAnalysis()
        index = await self._get_index(tenant_id)
        if index is None:
            return ProductAnalysis(error=True)

        matches: list[ProductMatch] = []
        issues: list[StockIssue] = []
        self._collect(index, text, MatchSource.MESSAGE, matches, issues)

        if not matches and use_context:
            context = await self._context_text(conversation_id)
            if context:
                self._collect(index, context, MatchSource.CONTEXT, matches, issues)

        return ProductAnalysis(
            matched=matches,
            stock_issues=issues,
            total_requested=sum(m.requested_quantity for m in matches),
            has_stock_problems=any(
                i.issue in (StockIssueKind.OUT_OF_STOCK, StockIssueKind.INSUFFICIENT_STOCK)
                for i in issues
            ),
            total_products=len(index),
            used_context=any(m.matched_from == MatchSource.CONTEXT for m in matches),
        )

    def _collect(
        self,
        index: CatalogIndex,
        text: str,
        source: MatchSource,
        matches: list[ProductMatch],
        issues: list[StockIssue],
    ) -> None:
        seen = {m.id for m in matches}
        for product in index.match(text, is_negated=self._patterns.is_negated):
            if product.id in seen:
                continue
            seen.add(product.id)
            quantity = self._patterns.quantity_for(text, product.name)
            matches.append(self._to_match(product, quantity, source))
            issue = self.stock_issue(product, quantity)
            if issue is not None:
                issues.append(issue)

    def _to_match(self, product: Product, quantity: int, source: MatchSource) -> ProductMatch:
        return ProductMatch(
            id=product.id,
            name=product.name,
            sku=product.sku,
            price=product.price,
            stock=product.stock,
            category=product.category,
            requested_quantity=quantity,
            stock_status=self.stock_status(product.stock, quantity),
            matched_from=source,
        )

    def stock_status(self, stock: int, requested: int) -> StockStatus:
        if stock <= 0:
            return StockStatus.OUT_OF_STOCK
        if stock < requested:
            return StockStatus.INSUFFICIENT
        if stock <= self._settings.low_stock_threshold:
            return StockStatus.LOW
        return StockStatus.AVAILABLE

    def stock_issue(self, product: Product, requested: int) -> StockIssue | None:
        """Describe the stock problem for *product*, if any, in customer-facing French."""
        if product.stock <= 0:
            return StockIssue(
                product=product.name,
                issue=StockIssueKind.OUT_OF_STOCK,
                message=f"{product.name} est en rupture de stock",
            )
        if product.stock < requested:
            return StockIssue(
                product=product.name,
                issue=StockIssueKind.INSUFFICIENT_STOCK,
                available=product.stock,
                requested=requested,
                message=(
                    f"Stock insuffisant pour {product.name}: {product.stock} "
                    f"disponible(s), {requested} demandé(s)"
                ),
            )
        if product.stock <= self._settings.low_stock_threshold:
            return StockIssue(
                product=product.name,
                issue=StockIssueKind.LOW_STOCK,
                available=product.stock,
                message=f"Stock limité pour {product.name}: {product.stock} restant(s)",
            )
        return None

    # ------------------------------------------------------------------
    # Customer history and handoff
    # ------------------------------------------------------------------

    async def get_customer_history(
        self, tenant_id: str | None, conversation_id: str | None
    ) -> CustomerHistory | None:
        """Aggregate recent orders and message counts; ``None`` without a conversation."""
        if self._history is None or not conversation_id or not tenant_id:
            return None
        try:
            summary = await self._history.customer_order_summary(tenant_id, conversation_id)
        except Exception:
            log.exception(
                "analyzer.history_read_failed",
                tenant_id=tenant_id,
                conversation_id=conversation_id,
            )
            return None

        validated = [o for o in summary.orders if o.status == "validated"]
        pending = [o for o in summary.orders if o.status == "pending"]

        if summary.message_count > self._settings.high_engagement_threshold:
            engagement = Engagement.HIGH
        elif summary.message_count > self._settings.medium_engagement_threshold:
            engagement = Engagement.MEDIUM
        else:
            engagement = Engagement.LOW

        return CustomerHistory(
            total_orders=len(summary.orders),
            validated_orders=len(validated),
            pending_orders=len(pending),
            total_spent=sum(o.total_amount for o in validated),
            is_new_customer=not summary.orders,
            is_repeat_customer=bool(validated),
            message_count=summary.message_count,
            engagement=engagement,
        )

    @staticmethod
    def check_needs_human(
        intent: IntentResult, products: ProductAnalysis, insult: bool = False
    ) -> HandoffDecision:
        reasons: list[str] = []
        kinds = {issue.issue for issue in products.stock_issues}
        if intent.primary == Intent.HUMAN_REQUEST:
            reasons.append(REASON_HUMAN_REQUEST)
        if intent.primary == Intent.COMPLAINT:
            reasons.append(REASON_COMPLAINT)
        if intent.primary == Intent.ORDER and StockIssueKind.OUT_OF_STOCK in kinds:
            reasons.append(REASON_OUT_OF_STOCK)
        if StockIssueKind.INSUFFICIENT_STOCK in kinds:
            reasons.append(REASON_INSUFFICIENT)
        if insult:
            reasons.append(REASON_INSULT)
        return HandoffDecision(needed=bool(reasons), reasons=reasons)


def _risk_level(injection: bool, insult: bool) -> RiskLevel:
    if injection:
        return RiskLevel.HIGH
    if insult:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW

