"""Account model holding the prepaid credit balance."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from creditgate.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from creditgate.models.credit_transaction import CreditTransaction


class Account(TimestampMixin, Base):
    """A credit account.

    ``balance`` is only written together with a transaction row, under a
    row lock. ``version`` is the sequence of the last applied transaction.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="account_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    balance: Mapped[int] = mapped_column(default=0)
    version: Mapped[int] = mapped_column(default=0)

    transactions: Mapped[list[CreditTransaction]] = relationship(
        back_populates="account", order_by="CreditTransaction.sequence"
    )

    def __repr__(self) -> str:
        return f"<Account(id={self.id!r}, balance={self.balance}, version={self.version})>"
