"""SQLite-backed implementations of the collaborator accessors.

These give the analyzer and the orchestrator something real to read from
(and the CLI something to run against) without a hosting application.
Every class takes a connected :class:`~src.models.database.Database`.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

from src.models.accessors import InvalidationListener
from src.models.database import Database
from src.models.schemas import (
    ChatRole,
    ChatTurn,
    CreditDeduction,
    CustomerSummary,
    OrderSummary,
    Product,
)
from src.utils.logger import get_logger

log = get_logger(__name__, component="store")

_RECENT_ORDERS = 5


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class SqliteCatalog:
    """Tenant product catalog.

    Write methods notify invalidation listeners so caches built on top of
    :meth:`list_active_products` never serve a stale catalog past an edit.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._listeners: list[InvalidationListener] = []

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        self._listeners.append(listener)

    def invalidate(self, tenant_id: str) -> None:
        for listener in self._listeners:
            listener(tenant_id)

    async def list_active_products(self, tenant_id: str) -> list[Product]:
        rows = await self._db.fetch_all(
            "SELECT id, name, sku, price, stock, category, description "
            "FROM products WHERE tenant_id = ? AND is_active = 1 ORDER BY name",
            (tenant_id,),
        )
        return [Product(**row) for row in rows]

    async def upsert_product(self, tenant_id: str, product: Product) -> None:
        await self._db.execute(
            "INSERT INTO products (id, tenant_id, name, sku, price, stock, category, description) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name, sku = excluded.sku, "
            "price = excluded.price, stock = excluded.stock, category = excluded.category, "
            "description = excluded.description, is_active = 1, "
            "updated_at = CURRENT_TIMESTAMP",
            (
                product.id,
                tenant_id,
                product.name,
                product.sku,
                product.price,
                product.stock,
                product.category,
                product.description,
            ),
        )
        log.info("catalog.product_saved", tenant_id=tenant_id, product_id=product.id)
        self.invalidate(tenant_id)

    async def deactivate_product(self, tenant_id: str, product_id: str) -> None:
        await self._db.execute(
            "UPDATE products SET is_active = 0, updated_at = CURRENT_TIMESTAMP "
            "WHERE tenant_id = ? AND id = ?",
            (tenant_id, product_id),
        )
        log.info("catalog.product_deactivated", tenant_id=tenant_id, product_id=product_id)
        self.invalidate(tenant_id)


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------

class SqliteConversationHistory:
    """Message log and per-conversation order aggregates."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def append(
        self, tenant_id: str, conversation_id: str, role: ChatRole, content: str
    ) -> None:
        await self._db.execute(
            "INSERT INTO messages (tenant_id, conversation_id, role, content) "
            "VALUES (?, ?, ?, ?)",
            (tenant_id, conversation_id, role.value, content),
        )

    async def turns(self, conversation_id: str, limit: int = 50) -> list[ChatTurn]:
        """Return up to *limit* most recent turns as chat history, oldest first."""
        rows = await self._db.fetch_all(
            "SELECT role, content FROM messages WHERE conversation_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (conversation_id, limit),
        )
        return [ChatTurn(role=ChatRole(row["role"]), content=row["content"]) for row in reversed(rows)]

    async def recent_turns(self, conversation_id: str, limit: int) -> list[str]:
        rows = await self._db.fetch_all(
            "SELECT content FROM messages WHERE conversation_id = ? "
            "ORDER BY id DESC LIMIT ?",
            (conversation_id, limit),
        )
        return [row["content"] for row in reversed(rows)]

    async def customer_order_summary(
        self, tenant_id: str, conversation_id: str
    ) -> CustomerSummary:
        orders = await self._db.fetch_all(
            "SELECT id, status, total_amount FROM orders "
            "WHERE tenant_id = ? AND conversation_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (tenant_id, conversation_id, _RECENT_ORDERS),
        )
        counts = await self._db.fetch_one(
            "SELECT COUNT(*) AS total, "
            "COALESCE(SUM(CASE WHEN role = 'user' THEN 1 ELSE 0 END), 0) AS from_user "
            "FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        )
        return CustomerSummary(
            orders=[OrderSummary(**row) for row in orders],
            message_count=counts["total"] if counts else 0,
            user_message_count=counts["from_user"] if counts else 0,
        )

    async def record_order(
        self,
        tenant_id: str,
        conversation_id: str | None,
        total_amount: float,
        status: str = "pending",
    ) -> str:
        order_id = uuid.uuid4().hex
        await self._db.execute(
            "INSERT INTO orders (id, tenant_id, conversation_id, status, total_amount) "
            "VALUES (?, ?, ?, ?, ?)",
            (order_id, tenant_id, conversation_id, status, total_amount),
        )
        return order_id


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

class SqliteCreditLedger:
    """Per-tenant credit balance with an append-only usage log.

    Tenants flagged ``unlimited`` always have balance and are never debited.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def _tenant(self, tenant_id: str) -> dict[str, Any] | None:
        return await self._db.fetch_one(
            "SELECT credits, unlimited FROM tenants WHERE id = ?", (tenant_id,)
        )

    async def balance(self, tenant_id: str) -> float | None:
        tenant = await self._tenant(tenant_id)
        return None if tenant is None else float(tenant["credits"])

    async def has_balance(self, tenant_id: str, action: str, cost: float = 1.0) -> bool:
        tenant = await self._tenant(tenant_id)
        if tenant is None:
            return False
        if tenant["unlimited"]:
            return True
        return float(tenant["credits"]) >= cost

    async def deduct(
        self,
        tenant_id: str,
        action: str,
        cost: float,
        metadata: dict[str, Any] | None = None,
    ) -> CreditDeduction:
        """Debit *cost* credits in one conditional UPDATE; never goes negative."""
        tenant = await self._tenant(tenant_id)
        if tenant is None:
            return CreditDeduction(ok=False, error="unknown tenant")

        if not tenant["unlimited"] and cost > 0:
            cursor = await self._db.execute(
                "UPDATE tenants SET credits = credits - ? WHERE id = ? AND credits >= ?",
                (cost, tenant_id, cost),
            )
            if cursor.rowcount == 0:
                log.warning("credits.insufficient", tenant_id=tenant_id, action=action, cost=cost)
                return CreditDeduction(
                    ok=False,
                    cost=cost,
                    remaining=await self.balance(tenant_id),
                    error="insufficient credits",
                )

        await self._db.execute(
            "INSERT INTO credit_usage (tenant_id, action, cost, metadata) VALUES (?, ?, ?, ?)",
            (tenant_id, action, cost, json.dumps(metadata or {}, ensure_ascii=False)),
        )
        remaining = await self.balance(tenant_id)
        log.info(
            "credits.deducted",
            tenant_id=tenant_id,
            action=action,
            cost=cost,
            remaining=remaining,
        )
        return CreditDeduction(ok=True, cost=cost, remaining=remaining)

    async def grant(self, tenant_id: str, amount: float) -> None:
        await self._db.execute(
            "UPDATE tenants SET credits = credits + ? WHERE id = ?", (amount, tenant_id)
        )

    async def ensure_tenant(
        self, tenant_id: str, name: str, credits: float = 0.0, unlimited: bool = False
    ) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO tenants (id, name, credits, unlimited) VALUES (?, ?, ?, ?)",
            (tenant_id, name, credits, int(unlimited)),
        )
