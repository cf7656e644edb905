"""SQLAlchemy-backed ledger store.

Each ledger unit is one database transaction: the account row is locked
with ``SELECT ... FOR UPDATE``, transaction rows are inserted and the
balance is updated with a compare-and-swap on ``version``, then everything
commits together. Backends without row locks (SQLite) still cannot lose an
update; the losing unit fails with ``PersistenceUnavailable``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC
from uuid import UUID

import logfire
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from creditgate.credits.errors import AccountNotFound, PersistenceUnavailable
from creditgate.credits.store import AccountHandle, LedgerStore
from creditgate.credits.types import AccountState, Transaction, TransactionType
from creditgate.db.session import DatabaseManager
from creditgate.models import Account, CreditTransaction


def _to_domain(row: CreditTransaction) -> Transaction:
    created_at = row.created_at
    if created_at.tzinfo is None:
        # SQLite drops the offset; values are always written in UTC
        created_at = created_at.replace(tzinfo=UTC)
    return Transaction(
        id=row.id,
        account_id=row.account_id,
        type=TransactionType(row.type),
        amount=row.amount,
        balance_after=row.balance_after,
        sequence=row.sequence,
        description=row.description,
        service_id=row.service_id,
        stage=row.stage,
        idempotency_key=row.idempotency_key,
        related_transaction_id=row.related_transaction_id,
        metadata=dict(row.metadata_ or {}),
        created_at=created_at,
    )


async def _find_by_key(
    session: AsyncSession, account_id: str, idempotency_key: str
) -> Transaction | None:
    result = await session.execute(
        select(CreditTransaction).where(
            CreditTransaction.account_id == account_id,
            CreditTransaction.idempotency_key == idempotency_key,
        )
    )
    row = result.scalar_one_or_none()
    return _to_domain(row) if row else None


class _SqlAccountHandle(AccountHandle):
    def __init__(self, session: AsyncSession, state: AccountState) -> None:
        super().__init__(state)
        self._session = session

    async def _lookup(self, idempotency_key: str) -> Transaction | None:
        return await _find_by_key(self._session, self.state.account_id, idempotency_key)

    async def _write(self, transaction: Transaction) -> None:
        self._session.add(
            CreditTransaction(
                id=transaction.id,
                account_id=transaction.account_id,
                type=str(transaction.type),
                amount=transaction.amount,
                balance_after=transaction.balance_after,
                sequence=transaction.sequence,
                service_id=transaction.service_id,
                stage=transaction.stage,
                description=transaction.description,
                idempotency_key=transaction.idempotency_key,
                related_transaction_id=transaction.related_transaction_id,
                metadata_=dict(transaction.metadata),
                created_at=transaction.created_at,
            )
        )


class SqlLedgerStore(LedgerStore):
    """Ledger store on top of ``DatabaseManager`` sessions."""

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db

    async def create_account(self, account_id: str) -> AccountState:
        try:
            async with self.db.session() as session:
                account = await session.get(Account, account_id)
                if account is None:
                    session.add(Account(id=account_id, balance=0, version=0))
                    logfire.info("db.account_created", account_id=account_id)
                    return AccountState(account_id, 0, 0)
                return AccountState(account.id, account.balance, account.version)
        except IntegrityError:
            # Created concurrently by another caller
            state = await self.load(account_id)
            if state is None:
                msg = f"Could not create account {account_id}"
                raise PersistenceUnavailable(msg) from None
            return state
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(str(exc)) from exc

    async def load(self, account_id: str) -> AccountState | None:
        try:
            async with self.db.read_session() as session:
                result = await session.execute(
                    select(Account.balance, Account.version).where(Account.id == account_id)
                )
                row = result.one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(str(exc)) from exc
        if row is None:
            return None
        return AccountState(account_id, row.balance, row.version)

    @asynccontextmanager
    async def account(self, account_id: str) -> AsyncIterator[AccountHandle]:
        try:
            async with self.db.session() as session:
                with logfire.span("db.lock_account", account_id=account_id):
                    result = await session.execute(
                        select(Account.balance, Account.version)
                        .where(Account.id == account_id)
                        .with_for_update()
                    )
                    row = result.one_or_none()
                if row is None:
                    raise AccountNotFound(account_id)

                start_version = row.version
                handle = _SqlAccountHandle(
                    session, AccountState(account_id, row.balance, row.version)
                )
                yield handle

                if handle.pending:
                    await session.flush()
                    updated = await session.execute(
                        update(Account)
                        .where(Account.id == account_id, Account.version == start_version)
                        .values(balance=handle.state.balance, version=handle.state.version)
                    )
                    if updated.rowcount != 1:
                        msg = f"Account {account_id} was modified concurrently"
                        raise PersistenceUnavailable(msg)
        except SQLAlchemyError as exc:
            logfire.error("db.ledger_unit_failed", account_id=account_id, error=str(exc))
            raise PersistenceUnavailable(str(exc)) from exc

    async def list_transactions(
        self, account_id: str, limit: int | None = None
    ) -> list[Transaction]:
        query = (
            select(CreditTransaction)
            .where(CreditTransaction.account_id == account_id)
            .order_by(CreditTransaction.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self.db.read_session() as session:
                result = await session.execute(query)
                return [_to_domain(row) for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(str(exc)) from exc

    async def get_transaction(self, transaction_id: UUID) -> Transaction | None:
        try:
            async with self.db.read_session() as session:
                row = await session.get(CreditTransaction, transaction_id)
                return _to_domain(row) if row else None
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(str(exc)) from exc

    async def find_by_idempotency_key(
        self, account_id: str, idempotency_key: str
    ) -> Transaction | None:
        try:
            async with self.db.read_session() as session:
                return await _find_by_key(session, account_id, idempotency_key)
        except SQLAlchemyError as exc:
            raise PersistenceUnavailable(str(exc)) from exc
