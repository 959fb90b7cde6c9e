"""multichain-wallet storage layer -- async SQLite documents and Pydantic models."""

from multichain_wallet.storage.database import Database, get_database
from multichain_wallet.storage.locks import KeyedLocks
from multichain_wallet.storage.models import Session, TokenRecord, Wallet

__all__ = [
    "Database",
    "get_database",
    "KeyedLocks",
    "Session",
    "TokenRecord",
    "Wallet",
]
