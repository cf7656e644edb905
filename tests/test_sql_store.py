"""Tests for the SQLAlchemy ledger store.

These run against a SQLite file database so the same ledger, gateway and
grant flows are exercised through real sessions and constraints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from creditgate.credits.errors import AccountNotFound, PersistenceUnavailable
from creditgate.credits.gateway import ConsumptionGateway
from creditgate.credits.grants import GrantManager
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.log import TransactionLog
from creditgate.credits.pricing import ServiceId
from creditgate.credits.types import EntryMeta, FailureReason, TransactionType
from creditgate.models import Account, CreditTransaction


def _raising_context(func):
    @asynccontextmanager
    async def _ctx():
        await func()
        yield

    return _ctx


class TestAccounts:
    """Account rows."""

    @pytest.mark.asyncio
    async def test_create_and_load(self, sql_store):
        state = await sql_store.create_account("acct-1")
        assert (state.balance, state.version) == (0, 0)

        loaded = await sql_store.load("acct-1")
        assert loaded == state
        assert await sql_store.load("missing") is None

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, sql_store):
        await sql_store.create_account("acct-1")
        ledger = CreditLedger(sql_store)
        await ledger.credit("acct-1", 10)

        state = await sql_store.create_account("acct-1")

        assert state.balance == 10

    @pytest.mark.asyncio
    async def test_unknown_account(self, sql_store):
        ledger = CreditLedger(sql_store)
        with pytest.raises(AccountNotFound):
            await ledger.try_debit("missing", 5)


class TestLedgerOnSql:
    """Ledger flows persist balance and log together."""

    @pytest.mark.asyncio
    async def test_debit_persists_row_and_balance(self, sql_store, db_manager):
        ledger = CreditLedger(sql_store)
        await ledger.open_account("acct-1")
        await ledger.credit("acct-1", 100, transaction_type=TransactionType.BONUS)

        result = await ledger.try_debit(
            "acct-1", 5, EntryMeta(description="Scan", service_id="basic_scan")
        )

        assert result.ok is True
        async with db_manager.read_session() as session:
            account = await session.get(Account, "acct-1")
            rows = (
                await session.execute(
                    select(CreditTransaction)
                    .where(CreditTransaction.account_id == "acct-1")
                    .order_by(CreditTransaction.sequence)
                )
            ).scalars().all()
        assert account.balance == 95
        assert account.version == 2
        assert [(r.type, r.amount, r.balance_after) for r in rows] == [
            ("bonus", 100, 100),
            ("consumed", -5, 95),
        ]

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, sql_store):
        ledger = CreditLedger(sql_store)
        await ledger.open_account("acct-1")
        await ledger.credit("acct-1", 10)

        result = await ledger.try_debit("acct-1", 30)

        assert result.reason is FailureReason.INSUFFICIENT_FUNDS
        assert await ledger.balance("acct-1") == 10
        assert len(await sql_store.list_transactions("acct-1")) == 1

    @pytest.mark.asyncio
    async def test_transactions_round_trip(self, sql_store):
        ledger = CreditLedger(sql_store)
        gateway = ConsumptionGateway(ledger)
        await ledger.open_account("acct-1")
        await ledger.credit("acct-1", 100)

        charged = await gateway.consume("acct-1", ServiceId.ELIGIBILITY_CHECK, "advanced")
        refund = await gateway.refund("acct-1", charged.transaction_id, "Service down")

        stored = await sql_store.get_transaction(refund.transaction.id)
        assert stored.type is TransactionType.REFUNDED
        assert stored.amount == 23
        assert stored.related_transaction_id == charged.transaction_id
        assert stored.stage == "initial"
        assert stored.metadata == {"reason": "Service down"}
        assert stored.created_at.tzinfo is not None

        consumed = await sql_store.get_transaction(charged.transaction_id)
        assert consumed.metadata["tier"] == "advanced"

    @pytest.mark.asyncio
    async def test_subscription_grant_once(self, sql_store):
        ledger = CreditLedger(sql_store)
        grants = GrantManager(ledger)
        await ledger.open_account("acct-1")

        first = await grants.grant_subscription_credits("acct-1", "pro_monitor", "2024-02")
        second = await grants.grant_subscription_credits("acct-1", "pro_monitor", "2024-02")

        assert first.granted is True
        assert second.granted is False
        assert await ledger.balance("acct-1") == 900

    @pytest.mark.asyncio
    async def test_idempotency_key_is_per_account(self, sql_store):
        ledger = CreditLedger(sql_store)
        gateway = ConsumptionGateway(ledger)
        for account_id in ("alice", "bob"):
            await ledger.open_account(account_id)
            await ledger.credit(account_id, 100)

        first = await gateway.consume("alice", ServiceId.BASIC_SCAN, idempotency_key="req-1")
        second = await gateway.consume("bob", ServiceId.BASIC_SCAN, idempotency_key="req-1")

        assert second.transaction_id != first.transaction_id
        assert await ledger.balance("alice") == 95
        assert await ledger.balance("bob") == 95
        stored = await sql_store.find_by_idempotency_key("bob", "req-1")
        assert stored.account_id == "bob"

    @pytest.mark.asyncio
    async def test_history_and_audit(self, sql_store):
        ledger = CreditLedger(sql_store)
        gateway = ConsumptionGateway(ledger)
        log = TransactionLog(sql_store)
        await ledger.open_account("acct-1")
        await ledger.credit("acct-1", 100)
        for _ in range(3):
            await gateway.consume("acct-1", ServiceId.BASIC_SCAN)

        entries = await log.list("acct-1", 2)
        report = await log.verify("acct-1")

        assert [t.sequence for t in entries] == [4, 3]
        assert report.ok is True
        assert report.balance == 85


class TestSqlFailures:
    """Storage problems surface as PersistenceUnavailable."""

    @pytest.mark.asyncio
    async def test_stale_version_is_rejected(self, sql_store, db_manager):
        ledger = CreditLedger(sql_store)
        await ledger.open_account("acct-1")
        await ledger.credit("acct-1", 100)

        with pytest.raises(PersistenceUnavailable):
            async with sql_store.account("acct-1") as account:
                # Another writer commits between our read and our write
                async with db_manager.session() as other:
                    await other.execute(
                        update(Account).where(Account.id == "acct-1").values(version=99)
                    )
                await account.append(TransactionType.CONSUMED, -10, EntryMeta())

        async with db_manager.read_session() as session:
            count = len((await session.execute(select(CreditTransaction))).scalars().all())
        assert count == 1

    @pytest.mark.asyncio
    async def test_database_error_is_wrapped(self, sql_store, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        monkeypatch.setattr(sql_store.db, "read_session", _raising_context(broken))

        with pytest.raises(PersistenceUnavailable):
            await sql_store.load("acct-1")
