"""Test configuration and reusable fixtures for the creditgate test suite.

Ledger fixtures run on the in-memory store; SQL store tests get a fresh
SQLite file database per test with the schema created from the models.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

# Set up test environment variables before any imports
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")
os.environ.setdefault("ENVIRONMENT", "dev")

from creditgate.credits.events import BalanceEvents  # noqa: E402
from creditgate.credits.gateway import ConsumptionGateway  # noqa: E402
from creditgate.credits.grants import GrantManager  # noqa: E402
from creditgate.credits.ledger import CreditLedger  # noqa: E402
from creditgate.credits.log import TransactionLog  # noqa: E402
from creditgate.credits.pricing import PricingCatalog  # noqa: E402
from creditgate.credits.store import InMemoryLedgerStore  # noqa: E402
from creditgate.credits.types import EntryMeta, TransactionType  # noqa: E402

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from creditgate.db import DatabaseManager, SqlLedgerStore


ACCOUNT_ID = "acct-test"


# =============================================================================
# LEDGER FIXTURES - In-memory store
# =============================================================================


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def events() -> BalanceEvents:
    return BalanceEvents()


@pytest.fixture
def ledger(store: InMemoryLedgerStore, events: BalanceEvents) -> CreditLedger:
    return CreditLedger(store, events)


@pytest.fixture
def catalog() -> PricingCatalog:
    return PricingCatalog()


@pytest.fixture
def gateway(ledger: CreditLedger, catalog: PricingCatalog) -> ConsumptionGateway:
    return ConsumptionGateway(
        ledger,
        catalog,
        low_balance_threshold=20,
        critical_balance_threshold=10,
    )


@pytest.fixture
def grants(ledger: CreditLedger) -> GrantManager:
    return GrantManager(ledger, confirmation_timeout=0.2)


@pytest.fixture
def log(store: InMemoryLedgerStore) -> TransactionLog:
    return TransactionLog(store, page_size=50)


@pytest.fixture
def funded_account(ledger: CreditLedger):
    """Factory that opens an account and seeds it with bonus credits.

    Usage:
        async def test_spend(funded_account):
            account_id = await funded_account(100)
    """

    async def _create(balance: int = 100, account_id: str = ACCOUNT_ID) -> str:
        await ledger.open_account(account_id)
        if balance:
            await ledger.credit(
                account_id,
                balance,
                EntryMeta(description="Seed credits"),
                transaction_type=TransactionType.BONUS,
            )
        return account_id

    return _create


# =============================================================================
# DATABASE FIXTURES - SQLite file database
# =============================================================================


@pytest_asyncio.fixture
async def db_manager(tmp_path) -> AsyncGenerator[DatabaseManager]:
    """A connected DatabaseManager with the ledger schema created."""
    from creditgate.db import DatabaseManager

    db = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await db.create_schema()
    yield db
    await db.disconnect()


@pytest.fixture
def sql_store(db_manager: DatabaseManager) -> SqlLedgerStore:
    from creditgate.db import SqlLedgerStore

    return SqlLedgerStore(db_manager)
