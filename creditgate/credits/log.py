"""Read side of the append-only transaction log.

Appends happen only through ``AccountHandle.append`` inside the ledger's
critical section; this module lists, summarizes and audits what was written.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from uuid import UUID

from creditgate.config import settings
from creditgate.credits.errors import UnknownTransaction
from creditgate.credits.store import LedgerStore
from creditgate.credits.types import Transaction, TransactionType


@dataclass(frozen=True, slots=True)
class MonthlyUsage:
    """Credits consumed and added during one ``YYYY-MM`` period."""

    month: str
    consumed: int = 0
    added: int = 0


@dataclass(frozen=True, slots=True)
class CreditAnalytics:
    """Aggregated view of an account's history."""

    total_consumed: int = 0
    total_purchased: int = 0
    total_granted: int = 0
    total_bonus: int = 0
    total_refunded: int = 0
    transaction_count: int = 0
    top_services: list[tuple[str, int]] = field(default_factory=list)
    monthly_trend: list[MonthlyUsage] = field(default_factory=list)

    @property
    def net_consumed(self) -> int:
        return self.total_consumed - self.total_refunded

    @property
    def total_added(self) -> int:
        return self.total_purchased + self.total_granted + self.total_bonus


@dataclass(frozen=True, slots=True)
class AuditReport:
    """Result of replaying an account's log against its balance."""

    account_id: str
    balance: int
    computed_balance: int
    issues: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


class TransactionLog:
    def __init__(self, store: LedgerStore, page_size: int | None = None) -> None:
        self.store = store
        self.page_size = page_size or settings.history_page_size

    async def list(self, account_id: str, limit: int | None = None) -> list[Transaction]:
        """Most recent transactions first. ``limit=0`` returns everything."""
        if limit == 0:
            return await self.store.list_transactions(account_id)
        return await self.store.list_transactions(account_id, limit or self.page_size)

    async def all(self, account_id: str) -> list[Transaction]:
        """Full history in the order it was applied."""
        entries = await self.store.list_transactions(account_id)
        return sorted(entries, key=lambda t: t.sequence)

    async def get(self, transaction_id: UUID) -> Transaction:
        """Fetch a transaction by id.

        Raises:
            UnknownTransaction: If no such transaction exists.
        """
        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            raise UnknownTransaction(transaction_id)
        return transaction

    async def find(self, account_id: str, idempotency_key: str) -> Transaction | None:
        return await self.store.find_by_idempotency_key(account_id, idempotency_key)

    async def summarize(self, account_id: str, top: int = 5) -> CreditAnalytics:
        entries = await self.all(account_id)
        totals: Counter[TransactionType] = Counter()
        by_service: Counter[str] = Counter()
        monthly: dict[str, dict[str, int]] = defaultdict(lambda: {"consumed": 0, "added": 0})

        for entry in entries:
            totals[entry.type] += abs(entry.amount)
            month = entry.created_at.strftime("%Y-%m")
            if entry.type is TransactionType.CONSUMED:
                monthly[month]["consumed"] += -entry.amount
                if entry.service_id:
                    by_service[entry.service_id] += -entry.amount
            elif entry.type is TransactionType.REFUNDED:
                monthly[month]["consumed"] -= entry.amount
                if entry.service_id:
                    by_service[entry.service_id] -= entry.amount
            else:
                monthly[month]["added"] += entry.amount

        return CreditAnalytics(
            total_consumed=totals[TransactionType.CONSUMED],
            total_purchased=totals[TransactionType.PURCHASED],
            total_granted=totals[TransactionType.GRANTED],
            total_bonus=totals[TransactionType.BONUS],
            total_refunded=totals[TransactionType.REFUNDED],
            transaction_count=len(entries),
            top_services=[(s, c) for s, c in by_service.most_common(top) if c > 0],
            monthly_trend=[
                MonthlyUsage(month, values["consumed"], values["added"])
                for month, values in sorted(monthly.items())
            ],
        )

    async def verify(self, account_id: str, balance: int | None = None) -> AuditReport:
        """Replay the log and check it reproduces the balance.

        Checks that sequences run 1..n without gaps, that every
        ``balance_after`` matches the running sum and that the sum equals the
        stored balance (or ``balance`` when given).
        """
        if balance is None:
            state = await self.store.load(account_id)
            balance = state.balance if state else 0

        issues: list[str] = []
        running = 0
        for expected_sequence, entry in enumerate(await self.all(account_id), start=1):
            if entry.sequence != expected_sequence:
                issues.append(f"sequence {entry.sequence} where {expected_sequence} expected")
            if entry.type.is_debit != (entry.amount < 0):
                issues.append(f"sequence {entry.sequence}: {entry.type} with amount {entry.amount}")
            running += entry.amount
            if entry.balance_after != running:
                issues.append(
                    f"sequence {entry.sequence}: balance_after {entry.balance_after}, "
                    f"replayed {running}"
                )
            if running < 0:
                issues.append(f"sequence {entry.sequence}: negative balance {running}")

        if running != balance:
            issues.append(f"log sums to {running}, balance is {balance}")

        return AuditReport(
            account_id=account_id,
            balance=balance,
            computed_balance=running,
            issues=issues,
        )
