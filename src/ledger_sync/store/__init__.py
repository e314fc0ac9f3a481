"""Ledger store adapters."""

from ..config import SyncConfig
from .base import LedgerStore
from .memory import InMemoryLedgerStore
from .sqlite import SQLiteLedgerStore


def create_store(config: SyncConfig, must_exist: bool = False) -> LedgerStore:
    """
    Build the store backend named in the configuration.

    Args:
        config: Application configuration
        must_exist: For file-backed stores, refuse to create a new database

    Returns:
        Open ledger store
    """
    store_config = config.store
    collections = {
        "accounts_collection": store_config.accounts_collection,
        "transactions_collection": store_config.transactions_collection,
        "users_collection": store_config.users_collection,
        "user_account_fallback": store_config.user_account_fallback,
    }
    if store_config.backend == "memory":
        return InMemoryLedgerStore(**collections)
    return SQLiteLedgerStore(
        store_config.path,
        must_exist=must_exist,
        timeout=store_config.timeout_seconds,
        **collections,
    )


__all__ = [
    "LedgerStore",
    "InMemoryLedgerStore",
    "SQLiteLedgerStore",
    "create_store",
]
