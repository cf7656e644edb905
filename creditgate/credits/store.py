"""Persistence capability for balances and the transaction log.

A store exposes one mutation primitive: ``account(account_id)``, an async
context manager that is the per-account critical section. Inside it the
caller sees the current balance and appends transactions; the appended
transactions and the resulting balance are saved together when the block
exits normally and discarded if it raises.

Usage:
    async with store.account("acct-1") as account:
        if account.balance >= 5:
            await account.append(TransactionType.CONSUMED, -5, EntryMeta())
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from creditgate.credits.errors import AccountNotFound, PersistenceUnavailable
from creditgate.credits.types import AccountState, EntryMeta, Transaction, TransactionType


class AccountHandle(ABC):
    """View of one locked account inside ``LedgerStore.account``."""

    def __init__(self, state: AccountState) -> None:
        self._state = state
        self.pending: list[Transaction] = []

    @property
    def state(self) -> AccountState:
        return self._state

    @property
    def balance(self) -> int:
        return self._state.balance

    async def find(self, idempotency_key: str) -> Transaction | None:
        """Find a transaction of this account already applied under the key."""
        for transaction in self.pending:
            if transaction.idempotency_key == idempotency_key:
                return transaction
        return await self._lookup(idempotency_key)

    async def append(
        self,
        transaction_type: TransactionType,
        amount: int,
        meta: EntryMeta,
    ) -> Transaction:
        """Apply a signed amount and record it as the next log entry.

        Raises:
            ValueError: If the entry would take the balance below zero.
        """
        new_balance = self._state.balance + amount
        if new_balance < 0:
            msg = (
                f"Entry of {amount} would overdraw account "
                f"{self._state.account_id} (balance {self._state.balance})"
            )
            raise ValueError(msg)

        transaction = Transaction(
            account_id=self._state.account_id,
            type=transaction_type,
            amount=amount,
            balance_after=new_balance,
            sequence=self._state.version + 1,
            description=meta.description,
            service_id=meta.service_id,
            stage=meta.stage,
            idempotency_key=meta.idempotency_key,
            related_transaction_id=meta.related_transaction_id,
            metadata=dict(meta.metadata),
        )
        await self._write(transaction)
        self._state = AccountState(
            account_id=self._state.account_id,
            balance=new_balance,
            version=transaction.sequence,
        )
        self.pending.append(transaction)
        return transaction

    @abstractmethod
    async def _lookup(self, idempotency_key: str) -> Transaction | None: ...

    @abstractmethod
    async def _write(self, transaction: Transaction) -> None: ...


class LedgerStore(ABC):
    """Abstract record store for account balances and transactions."""

    @abstractmethod
    async def create_account(self, account_id: str) -> AccountState:
        """Create an empty account; return the existing state if present."""

    @abstractmethod
    async def load(self, account_id: str) -> AccountState | None:
        """Current persisted state, or None if the account does not exist."""

    @abstractmethod
    def account(self, account_id: str) -> AsyncIterator[AccountHandle]:
        """Lock an account for a read-check-write unit.

        Raises:
            AccountNotFound: If the account does not exist.
            PersistenceUnavailable: If the unit could not be saved.
        """

    @abstractmethod
    async def list_transactions(
        self, account_id: str, limit: int | None = None
    ) -> list[Transaction]:
        """Transactions of an account, most recent first."""

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        """Look up a single transaction by id."""

    @abstractmethod
    async def find_by_idempotency_key(
        self, account_id: str, idempotency_key: str
    ) -> Transaction | None:
        """Transaction of this account already applied under ``idempotency_key``."""


class _MemoryAccountHandle(AccountHandle):
    def __init__(self, store: InMemoryLedgerStore, state: AccountState) -> None:
        super().__init__(state)
        self._store = store

    async def _lookup(self, idempotency_key: str) -> Transaction | None:
        return self._store._by_key.get((self.state.account_id, idempotency_key))

    async def _write(self, transaction: Transaction) -> None:
        # Staged until the unit exits
        return None


class InMemoryLedgerStore(LedgerStore):
    """Process-local store; each account is guarded by an ``asyncio.Lock``.

    ``save`` applies a whole unit in one synchronous step, so readers never
    observe a balance without its transactions.
    """

    def __init__(self) -> None:
        self._states: dict[str, AccountState] = {}
        self._entries: dict[str, list[Transaction]] = defaultdict(list)
        self._by_id: dict[UUID, Transaction] = {}
        # Keys are scoped to their account
        self._by_key: dict[tuple[str, str], Transaction] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def create_account(self, account_id: str) -> AccountState:
        return self._states.setdefault(account_id, AccountState(account_id, 0, 0))

    async def load(self, account_id: str) -> AccountState | None:
        return self._states.get(account_id)

    @asynccontextmanager
    async def account(self, account_id: str) -> AsyncIterator[AccountHandle]:
        async with self._locks[account_id]:
            state = self._states.get(account_id)
            if state is None:
                raise AccountNotFound(account_id)
            handle = _MemoryAccountHandle(self, state)
            yield handle
            if handle.pending:
                self.save(handle.state, handle.pending)

    def save(self, state: AccountState, entries: list[Transaction]) -> None:
        """Persist a balance together with the entries that produced it."""
        current = self._states.get(state.account_id)
        expected_version = state.version - len(entries)
        if current is None or current.version != expected_version:
            msg = f"Stale write for account {state.account_id}"
            raise PersistenceUnavailable(msg)
        keys = [(state.account_id, e.idempotency_key) for e in entries if e.idempotency_key]
        for key in keys:
            if key in self._by_key:
                msg = f"Duplicate idempotency key {key[1]!r} for account {key[0]}"
                raise PersistenceUnavailable(msg)

        self._entries[state.account_id].extend(entries)
        for entry in entries:
            self._by_id[entry.id] = entry
            if entry.idempotency_key:
                self._by_key[(state.account_id, entry.idempotency_key)] = entry
        self._states[state.account_id] = state

    async def list_transactions(
        self, account_id: str, limit: int | None = None
    ) -> list[Transaction]:
        entries = list(reversed(self._entries.get(account_id, [])))
        return entries if limit is None else entries[:limit]

    async def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        return self._by_id.get(transaction_id)

    async def find_by_idempotency_key(
        self, account_id: str, idempotency_key: str
    ) -> Transaction | None:
        return self._by_key.get((account_id, idempotency_key))
