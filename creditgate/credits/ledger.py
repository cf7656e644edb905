"""Credit ledger: the only code that changes balances.

Every mutation runs inside ``LedgerStore.account`` so the balance check and
the write form one unit per account. A debit either applies in full or
leaves nothing behind; credits with an idempotency key apply at most once.
"""

from __future__ import annotations

import logfire

from creditgate.credits.errors import InvalidAmount
from creditgate.credits.events import BalanceEvents
from creditgate.credits.store import LedgerStore
from creditgate.credits.types import (
    AccountState,
    BalanceChanged,
    EntryMeta,
    FailureReason,
    LedgerResult,
    Transaction,
    TransactionType,
)

_CREDIT_TYPES = frozenset(
    {
        TransactionType.PURCHASED,
        TransactionType.GRANTED,
        TransactionType.BONUS,
        TransactionType.REFUNDED,
    }
)


class CreditLedger:
    """Balances plus an append-only transaction log behind a ``LedgerStore``."""

    def __init__(self, store: LedgerStore, events: BalanceEvents | None = None) -> None:
        self.store = store
        self.events = events or BalanceEvents()

    async def open_account(self, account_id: str) -> AccountState:
        """Create an account with a zero balance. Safe to call repeatedly."""
        state = await self.store.create_account(account_id)
        logfire.debug("account_opened", account_id=account_id, balance=state.balance)
        return state

    async def balance(self, account_id: str) -> int:
        """Current balance; unknown accounts read as zero."""
        state = await self.store.load(account_id)
        return state.balance if state else 0

    async def try_debit(
        self,
        account_id: str,
        amount: int,
        meta: EntryMeta | None = None,
    ) -> LedgerResult:
        """Spend ``amount`` credits if the balance covers it.

        Insufficient funds is an expected outcome, reported in the result
        with no transaction written.

        Raises:
            InvalidAmount: If ``amount`` is not positive.
            AccountNotFound: If the account does not exist.
            PersistenceUnavailable: If the debit could not be saved.
        """
        if amount <= 0:
            raise InvalidAmount(amount)
        meta = meta or EntryMeta()

        with logfire.span(
            "ledger.try_debit",
            account_id=account_id,
            amount=amount,
            service_id=meta.service_id,
        ):
            async with self.store.account(account_id) as account:
                if meta.idempotency_key:
                    existing = await account.find(meta.idempotency_key)
                    if existing is not None:
                        return LedgerResult(
                            ok=True,
                            balance=account.balance,
                            transaction=existing,
                            duplicate=True,
                        )

                if account.balance < amount:
                    logfire.info(
                        "debit_rejected",
                        account_id=account_id,
                        amount=amount,
                        balance=account.balance,
                    )
                    return LedgerResult(
                        ok=False,
                        balance=account.balance,
                        reason=FailureReason.INSUFFICIENT_FUNDS,
                    )

                transaction = await account.append(TransactionType.CONSUMED, -amount, meta)

        await self._publish(transaction)
        return LedgerResult(ok=True, balance=transaction.balance_after, transaction=transaction)

    async def credit(
        self,
        account_id: str,
        amount: int,
        meta: EntryMeta | None = None,
        *,
        transaction_type: TransactionType = TransactionType.GRANTED,
    ) -> LedgerResult:
        """Add ``amount`` credits to an account.

        When ``meta.idempotency_key`` was already applied the call is a
        no-op and the result is flagged ``duplicate``.

        Raises:
            InvalidAmount: If ``amount`` is not positive.
            ValueError: If ``transaction_type`` is not a credit type.
            AccountNotFound: If the account does not exist.
            PersistenceUnavailable: If the credit could not be saved.
        """
        if amount <= 0:
            raise InvalidAmount(amount)
        if transaction_type not in _CREDIT_TYPES:
            msg = f"{transaction_type} is not a credit transaction type"
            raise ValueError(msg)
        meta = meta or EntryMeta()

        with logfire.span(
            "ledger.credit",
            account_id=account_id,
            amount=amount,
            type=transaction_type,
        ):
            async with self.store.account(account_id) as account:
                if meta.idempotency_key:
                    existing = await account.find(meta.idempotency_key)
                    if existing is not None:
                        logfire.info(
                            "credit_duplicate",
                            account_id=account_id,
                            idempotency_key=meta.idempotency_key,
                        )
                        return LedgerResult(
                            ok=True,
                            balance=account.balance,
                            transaction=existing,
                            duplicate=True,
                        )

                transaction = await account.append(transaction_type, amount, meta)

        await self._publish(transaction)
        return LedgerResult(ok=True, balance=transaction.balance_after, transaction=transaction)

    async def _publish(self, transaction: Transaction) -> None:
        await self.events.publish(
            BalanceChanged(
                account_id=transaction.account_id,
                new_balance=transaction.balance_after,
                delta=transaction.amount,
                reason=transaction.type,
                transaction_id=transaction.id,
            )
        )
