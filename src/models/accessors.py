"""Collaborator interfaces consumed by the analyzer and the orchestrator.

The core never talks to storage directly.  Hosts pass objects satisfying
these protocols; ``src.models.store`` ships SQLite-backed implementations.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from src.models.schemas import CreditDeduction, CustomerSummary, Product

InvalidationListener = Callable[[str], None]


@runtime_checkable
class CatalogAccessor(Protocol):
    async def list_active_products(self, tenant_id: str) -> list[Product]:
        """Return the tenant's active products with current stock."""
        ...

    def invalidate(self, tenant_id: str) -> None:
        """Signal that the tenant's catalog changed; notifies listeners."""
        ...

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        ...


@runtime_checkable
class ConversationHistoryAccessor(Protocol):
    async def recent_turns(self, conversation_id: str, limit: int) -> list[str]:
        """Return the text of the *limit* most recent turns, oldest first."""
        ...

    async def customer_order_summary(
        self, tenant_id: str, conversation_id: str
    ) -> CustomerSummary:
        ...


@runtime_checkable
class CreditAccessor(Protocol):
    async def has_balance(self, tenant_id: str, action: str, cost: float = 1.0) -> bool:
        ...

    async def deduct(
        self, tenant_id: str, action: str, cost: float, metadata: dict[str, Any] | None = None
    ) -> CreditDeduction:
        ...
