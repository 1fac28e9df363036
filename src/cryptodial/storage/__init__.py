"""Cryptodial storage layer -- async SQLite database and Pydantic models."""

from cryptodial.storage.database import Database, get_database
from cryptodial.storage.models import (
    SessionRecord,
    TransactionRecord,
    TransactionStatus,
    WalletRecord,
)

__all__ = [
    "Database",
    "get_database",
    "SessionRecord",
    "TransactionRecord",
    "TransactionStatus",
    "WalletRecord",
]
