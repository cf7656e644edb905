"""SQLAlchemy models for creditgate."""

from creditgate.models.account import Account
from creditgate.models.base import Base, TimestampMixin
from creditgate.models.credit_transaction import CreditTransaction

__all__ = [
    "Base",
    "TimestampMixin",
    "Account",
    "CreditTransaction",
]
