"""Shared pytest fixtures for the comptoir test suite.

Provides reusable fixtures for the in-memory database, application settings,
a controllable clock and a seeded catalog.  Every fixture is designed to run
without network access or external services.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import AsyncGenerator

import pytest

# ---------------------------------------------------------------------------
# Ensure the project root is on sys.path so that ``import src.*`` resolves
# correctly regardless of how pytest is invoked.
# ---------------------------------------------------------------------------
_PROJECT_ROOT = str(Path(__file__).resolve().parents[1])
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from src.models.database import Database
from src.models.schemas import Product
from src.models.store import SqliteCatalog, SqliteConversationHistory, SqliteCreditLedger

TENANT = "tenant-1"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Database fixtures (in-memory, migrated)
# ---------------------------------------------------------------------------

@pytest.fixture
async def db() -> AsyncGenerator[Database, None]:
    """Yield a connected, migrated in-memory Database and close it after use."""
    database = Database(db_path=":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
async def catalog(db: Database) -> SqliteCatalog:
    """Return a catalog seeded with a small restaurant menu for ``TENANT``."""
    ledger = SqliteCreditLedger(db)
    await ledger.ensure_tenant(TENANT, "Chez Awa", credits=100.0)
    store = SqliteCatalog(db)
    for product in (
        Product(id="p-poulet", name="Poulet rôti", price=5000, stock=2, category="plats"),
        Product(id="p-attieke", name="Attiéké poisson", price=3000, stock=20, category="plats"),
        Product(id="p-jus", name="Jus de bissap", sku="BIS-01", price=1000, stock=4),
        Product(id="p-alloco", name="Alloco", price=1500, stock=0),
    ):
        await store.upsert_product(TENANT, product)
    return store


@pytest.fixture
def history(db: Database) -> SqliteConversationHistory:
    return SqliteConversationHistory(db)


@pytest.fixture
def ledger(db: Database) -> SqliteCreditLedger:
    return SqliteCreditLedger(db)


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch):
    """Return a Settings instance backed by test-only environment variables.

    Uses monkeypatch so the real environment is never modified.
    """
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key-not-real")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key-not-real")
    monkeypatch.setenv("GATEWAY_API_KEY", "sk-or-test-key-not-real")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("DB_PATH", ":memory:")

    from config.settings import Settings

    return Settings(_env_file=None)
