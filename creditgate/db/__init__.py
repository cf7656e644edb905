"""Database module with SQLAlchemy async support."""

from creditgate.db.session import DatabaseManager
from creditgate.db.store import SqlLedgerStore

__all__ = [
    # Session management
    "DatabaseManager",
    # Ledger storage
    "SqlLedgerStore",
]
