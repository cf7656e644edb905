"""Credit transaction model for the audit trail."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from creditgate.models.base import Base

if TYPE_CHECKING:
    from creditgate.models.account import Account


class CreditTransaction(Base):
    """Append-only log of every credit movement.

    Rows are inserted in the same database transaction as the balance update
    they explain and are never updated or deleted.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_credit_transactions_sequence"),
        UniqueConstraint(
            "account_id", "idempotency_key", name="uq_credit_transactions_idempotency_key"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), index=True)

    # purchased, consumed, granted, bonus, refunded
    type: Mapped[str] = mapped_column(String(20), index=True)

    # Positive for credits in, negative for credits out
    amount: Mapped[int] = mapped_column()
    balance_after: Mapped[int] = mapped_column()

    # 1-based position in the account's log
    sequence: Mapped[int] = mapped_column()

    service_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    description: Mapped[str] = mapped_column(String(500), default="")

    # Prevents double grants on retried webhooks and refunds, unique per account
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Refunds point at the consumption they compensate
    related_transaction_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("credit_transactions.id"), nullable=True
    )

    metadata_: Mapped[dict] = mapped_column(
        "metadata", JSON().with_variant(JSONB(), "postgresql"), default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    account: Mapped[Account] = relationship(back_populates="transactions")

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(type={self.type!r}, amount={self.amount}, "
            f"account_id={self.account_id!r}, sequence={self.sequence})>"
        )
