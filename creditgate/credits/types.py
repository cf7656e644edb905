"""Types for credit operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any
from uuid import UUID, uuid4


class TransactionType(StrEnum):
    """Types of credit transactions for audit trail."""

    PURCHASED = "purchased"  # Package bought through the payment processor
    CONSUMED = "consumed"  # Spent on a paid action
    GRANTED = "granted"  # Subscription period grant
    BONUS = "bonus"  # Promotional credits
    REFUNDED = "refunded"  # Consumption credited back after a failed action

    @property
    def is_debit(self) -> bool:
        return self is TransactionType.CONSUMED


class FailureReason(StrEnum):
    """Expected, recoverable reasons an operation did not go through."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    PAYMENT_UNCONFIRMED = "payment_unconfirmed"
    ACTION_FAILED = "action_failed"


class BalanceWarning(StrEnum):
    """Remaining balance level after a consumption."""

    LOW = "low"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class Transaction:
    """Immutable ledger entry.

    ``amount`` is signed: positive for credits in, negative for credits out.
    ``sequence`` is the 1-based position in the account's log and
    ``balance_after`` the balance this entry produced.
    """

    account_id: str
    type: TransactionType
    amount: int
    balance_after: int
    sequence: int
    description: str = ""
    service_id: str | None = None
    stage: str | None = None
    idempotency_key: str | None = None
    related_transaction_id: UUID | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        # Read-only view over a private copy
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True, slots=True)
class EntryMeta:
    """Context attached to a ledger mutation."""

    description: str = ""
    service_id: str | None = None
    stage: str | None = None
    idempotency_key: str | None = None
    related_transaction_id: UUID | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AccountState:
    """Persisted balance of an account.

    ``version`` equals the sequence of the last applied transaction.
    """

    account_id: str
    balance: int
    version: int = 0


@dataclass(frozen=True, slots=True)
class LedgerResult:
    """Outcome of a single ledger mutation."""

    ok: bool
    balance: int
    transaction: Transaction | None = None
    reason: FailureReason | None = None
    duplicate: bool = False  # Idempotency key already applied, nothing written


@dataclass(frozen=True, slots=True)
class Quote:
    """Price check for a paid action, without any mutation."""

    cost: int
    balance: int

    @property
    def affordable(self) -> bool:
        return self.balance >= self.cost

    @property
    def shortfall(self) -> int:
        return max(0, self.cost - self.balance)


@dataclass(frozen=True, slots=True)
class ConsumeResult:
    """Result of spending credits on a paid action.

    Callers must only invoke the paid action when ``ok`` is true.
    """

    ok: bool
    cost: int
    balance: int
    transaction_id: UUID | None = None
    reason: FailureReason | None = None
    warning: BalanceWarning | None = None

    @property
    def reject_reason(self) -> str | None:
        """Human-readable rejection message for UI layers."""
        if self.reason is FailureReason.INSUFFICIENT_FUNDS:
            return f"Need {self.cost} credits, have {self.balance}"
        if self.reason is not None:
            return self.reason.value.replace("_", " ")
        return None


@dataclass(frozen=True, slots=True)
class GrantResult:
    """Result of adding credits through a purchase or a grant."""

    ok: bool
    granted: bool
    balance: int
    transaction_id: UUID | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True, slots=True)
class BalanceChanged:
    """Event published after every committed balance change."""

    account_id: str
    new_balance: int
    delta: int
    reason: TransactionType
    transaction_id: UUID
