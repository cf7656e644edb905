"""Tests for CreditLedger, the in-memory store and balance events."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from creditgate.credits.errors import AccountNotFound, InvalidAmount, PersistenceUnavailable
from creditgate.credits.ledger import CreditLedger
from creditgate.credits.store import InMemoryLedgerStore
from creditgate.credits.types import (
    BalanceChanged,
    EntryMeta,
    FailureReason,
    TransactionType,
)


class FailingStore(InMemoryLedgerStore):
    """Store whose commits fail, as if the database went away."""

    def save(self, state, entries) -> None:
        raise PersistenceUnavailable("disk on fire")


async def log_sum(store: InMemoryLedgerStore, account_id: str) -> int:
    return sum(t.amount for t in await store.list_transactions(account_id))


class TestAccounts:
    """Opening and reading accounts."""

    @pytest.mark.asyncio
    async def test_open_account_starts_at_zero(self, ledger):
        state = await ledger.open_account("a1")
        assert state.balance == 0
        assert await ledger.balance("a1") == 0

    @pytest.mark.asyncio
    async def test_open_account_is_idempotent(self, ledger, funded_account):
        account_id = await funded_account(40)
        state = await ledger.open_account(account_id)
        assert state.balance == 40

    @pytest.mark.asyncio
    async def test_unknown_account_reads_zero(self, ledger):
        assert await ledger.balance("nobody") == 0

    @pytest.mark.asyncio
    async def test_mutating_unknown_account_raises(self, ledger):
        with pytest.raises(AccountNotFound):
            await ledger.try_debit("nobody", 5)
        with pytest.raises(AccountNotFound):
            await ledger.credit("nobody", 5)


class TestTryDebit:
    """Debits apply fully or not at all."""

    @pytest.mark.asyncio
    async def test_debit_success(self, ledger, store, funded_account):
        account_id = await funded_account(100)

        result = await ledger.try_debit(account_id, 30, EntryMeta(service_id="basic_scan"))

        assert result.ok is True
        assert result.balance == 70
        assert result.transaction.type is TransactionType.CONSUMED
        assert result.transaction.amount == -30
        assert result.transaction.balance_after == 70
        assert await ledger.balance(account_id) == 70

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_no_trace(self, ledger, store, funded_account):
        account_id = await funded_account(10)
        before = await store.list_transactions(account_id)

        result = await ledger.try_debit(account_id, 11)

        assert result.ok is False
        assert result.reason is FailureReason.INSUFFICIENT_FUNDS
        assert result.balance == 10
        assert result.transaction is None
        assert await store.list_transactions(account_id) == before
        assert await ledger.balance(account_id) == 10

    @pytest.mark.asyncio
    async def test_exact_balance_can_be_spent(self, ledger, funded_account):
        account_id = await funded_account(25)
        result = await ledger.try_debit(account_id, 25)
        assert result.ok is True
        assert result.balance == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount_rejected(self, ledger, funded_account, amount):
        account_id = await funded_account(10)
        with pytest.raises(InvalidAmount):
            await ledger.try_debit(account_id, amount)
        with pytest.raises(InvalidAmount):
            await ledger.credit(account_id, amount)

    @pytest.mark.asyncio
    async def test_debit_with_repeated_idempotency_key_charges_once(
        self, ledger, funded_account
    ):
        account_id = await funded_account(100)
        meta = EntryMeta(idempotency_key="job-42")

        first = await ledger.try_debit(account_id, 10, meta)
        second = await ledger.try_debit(account_id, 10, meta)

        assert first.ok and second.ok
        assert second.duplicate is True
        assert second.transaction.id == first.transaction.id
        assert await ledger.balance(account_id) == 90

    @pytest.mark.asyncio
    async def test_idempotency_key_is_scoped_to_account(self, ledger, store, funded_account):
        alice = await funded_account(100, "alice")
        bob = await funded_account(100, "bob")
        meta = EntryMeta(idempotency_key="req-1")

        first = await ledger.try_debit(alice, 5, meta)
        second = await ledger.try_debit(bob, 5, meta)

        assert second.ok is True
        assert second.duplicate is False
        assert second.transaction.account_id == bob
        assert second.transaction.id != first.transaction.id
        assert await ledger.balance(alice) == 95
        assert await ledger.balance(bob) == 95
        assert (await store.find_by_idempotency_key(bob, "req-1")).account_id == bob


class TestCredit:
    """Credits and idempotency keys."""

    @pytest.mark.asyncio
    async def test_credit_adds_balance(self, ledger, funded_account):
        account_id = await funded_account(0)
        result = await ledger.credit(account_id, 50, transaction_type=TransactionType.PURCHASED)
        assert result.ok is True
        assert result.balance == 50
        assert result.transaction.type is TransactionType.PURCHASED

    @pytest.mark.asyncio
    async def test_duplicate_key_applies_once(self, ledger, store, funded_account):
        account_id = await funded_account(0)
        meta = EntryMeta(idempotency_key="purchase:abc")

        first = await ledger.credit(account_id, 50, meta)
        second = await ledger.credit(account_id, 50, meta)

        assert first.duplicate is False
        assert second.duplicate is True
        assert await ledger.balance(account_id) == 50
        assert len(await store.list_transactions(account_id)) == 1

    @pytest.mark.asyncio
    async def test_recorded_metadata_is_read_only(self, ledger, store, funded_account):
        account_id = await funded_account(0)
        context = {"package_id": "starter"}

        result = await ledger.credit(account_id, 10, EntryMeta(metadata=context))
        context["package_id"] = "enterprise"

        with pytest.raises(TypeError):
            result.transaction.metadata["package_id"] = "business"  # type: ignore[index]
        stored = (await store.list_transactions(account_id))[0]
        assert stored.metadata == {"package_id": "starter"}

    @pytest.mark.asyncio
    async def test_consumed_is_not_a_credit_type(self, ledger, funded_account):
        account_id = await funded_account(0)
        with pytest.raises(ValueError):
            await ledger.credit(account_id, 5, transaction_type=TransactionType.CONSUMED)


class TestLedgerInvariants:
    """Balance always equals the signed sum of the log and never drops below zero."""

    @pytest.mark.asyncio
    async def test_balance_matches_log_after_every_operation(self, ledger, store):
        account_id = "a-invariant"
        await ledger.open_account(account_id)
        operations = [("credit", 50), ("debit", 20), ("debit", 40), ("credit", 5),
                      ("debit", 35), ("debit", 1), ("credit", 100), ("debit", 100)]

        for kind, amount in operations:
            if kind == "credit":
                await ledger.credit(account_id, amount)
            else:
                await ledger.try_debit(account_id, amount)
            balance = await ledger.balance(account_id)
            assert balance >= 0
            assert balance == await log_sum(store, account_id)

        assert await ledger.balance(account_id) == 0

    @pytest.mark.asyncio
    async def test_sequences_are_contiguous(self, ledger, store, funded_account):
        account_id = await funded_account(100)
        for _ in range(3):
            await ledger.try_debit(account_id, 10)

        entries = sorted(await store.list_transactions(account_id), key=lambda t: t.sequence)
        assert [t.sequence for t in entries] == [1, 2, 3, 4]
        assert [t.balance_after for t in entries] == [100, 90, 80, 70]

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_overdraw(self, ledger, store, funded_account):
        account_id = await funded_account(100)

        results = await asyncio.gather(*(ledger.try_debit(account_id, 30) for _ in range(10)))

        assert sum(r.ok for r in results) == 3
        assert await ledger.balance(account_id) == 10
        assert await log_sum(store, account_id) == 10
        rejected = [r for r in results if not r.ok]
        assert all(r.reason is FailureReason.INSUFFICIENT_FUNDS for r in rejected)

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_grants_apply_once(self, ledger, funded_account):
        account_id = await funded_account(0)
        meta = EntryMeta(idempotency_key="subscription:a:2024-02")

        results = await asyncio.gather(*(ledger.credit(account_id, 300, meta) for _ in range(5)))

        assert sum(not r.duplicate for r in results) == 1
        assert await ledger.balance(account_id) == 300


class TestPersistenceFailure:
    """A failed commit is never reported as success."""

    @pytest.mark.asyncio
    async def test_failed_save_raises_and_changes_nothing(self):
        store = FailingStore()
        events = MagicMock()
        events.publish = AsyncMock()
        ledger = CreditLedger(store, events)
        await ledger.open_account("a1")

        with pytest.raises(PersistenceUnavailable):
            await ledger.credit("a1", 10)

        assert await ledger.balance("a1") == 0
        assert await store.list_transactions("a1") == []
        events.publish.assert_not_called()


class TestBalanceEvents:
    """Notifications are published after commit only."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers_receive_event(self, ledger, events, funded_account):
        account_id = await funded_account(0)
        received: list[BalanceChanged] = []
        async_callback = AsyncMock()
        events.subscribe(received.append)
        events.subscribe(async_callback)

        result = await ledger.credit(account_id, 15, transaction_type=TransactionType.BONUS)

        assert len(received) == 1
        event = received[0]
        assert event.account_id == account_id
        assert event.new_balance == 15
        assert event.delta == 15
        assert event.reason is TransactionType.BONUS
        assert event.transaction_id == result.transaction.id
        async_callback.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_rejected_debit_publishes_nothing(self, ledger, events, funded_account):
        account_id = await funded_account(5)
        callback = MagicMock()
        events.subscribe(callback)

        await ledger.try_debit(account_id, 50)

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_operation(
        self, ledger, events, funded_account
    ):
        account_id = await funded_account(0)
        events.subscribe(MagicMock(side_effect=RuntimeError("ui crashed")))
        after = MagicMock()
        events.subscribe(after)

        result = await ledger.credit(account_id, 10)

        assert result.ok is True
        assert await ledger.balance(account_id) == 10
        after.assert_called_once()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, ledger, events, funded_account):
        account_id = await funded_account(0)
        callback = MagicMock()
        unsubscribe = events.subscribe(callback)
        unsubscribe()

        await ledger.credit(account_id, 10)

        callback.assert_not_called()
        assert events.subscriber_count == 0
