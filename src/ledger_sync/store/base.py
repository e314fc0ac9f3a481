"""
Ledger store interface.

The reconciliation engine talks to the account and transaction collections
only through this contract: keyed lookup, single-field predicate queries and
atomic, idempotent batch inserts.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
import re

from ..models.ledger import Account, LedgerTransaction

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def sort_newest_first(transactions: list[LedgerTransaction]) -> list[LedgerTransaction]:
    """Order transactions by timestamp descending, undated rows last."""
    dated = [t for t in transactions if t.timestamp is not None]
    undated = [t for t in transactions if t.timestamp is None]
    dated.sort(key=lambda t: t.timestamp or _OLDEST, reverse=True)
    return dated + undated


def validate_field_name(field: str) -> str:
    if not FIELD_NAME_PATTERN.match(field):
        raise ValueError(f"Invalid document field name: {field!r}")
    return field


def prepare_document(txn: LedgerTransaction, now: Optional[datetime] = None) -> dict[str, Any]:
    """Document to insert for a new transaction, with write timestamps."""
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    doc = txn.to_document()
    doc.setdefault("createdAt", stamp)
    doc.setdefault("updatedAt", stamp)
    return doc


def accounts_from_user(user_id: str, user_doc: dict[str, Any]) -> list[Account]:
    """
    Accounts of a user who has no rows in the accounts collection.

    An ``accounts`` array on the user document yields one account per entry
    (ids ``<user>_account_<n>`` unless the entry names its own). Without the
    array the user gets a single ``<user>_primary`` account carrying the
    user's balance.
    """
    embedded = user_doc.get("accounts")
    if isinstance(embedded, list):
        accounts = []
        for index, entry in enumerate(embedded):
            if not isinstance(entry, dict):
                continue
            doc: dict[str, Any] = {
                "accountNumber": f"****{index:04d}",
                "accountType": "primary",
                "balance": 0,
            }
            doc.update({k: v for k, v in entry.items() if v is not None})
            doc["userId"] = user_id
            account_id = str(doc.pop("id", None) or f"{user_id}_account_{index}")
            accounts.append(Account.from_document(account_id, doc))
        return accounts

    return [
        Account.from_document(
            f"{user_id}_primary",
            {
                "userId": user_id,
                "accountNumber": user_doc.get("accountNumber") or "****0001",
                "accountType": "primary",
                "balance": user_doc.get("balance"),
            },
        )
    ]


class LedgerStore(ABC):
    """Abstract interface for ledger store backends."""

    def __init__(
        self,
        accounts_collection: str = "accounts",
        transactions_collection: str = "transactions",
        users_collection: str = "users",
        user_account_fallback: bool = True,
    ):
        self.accounts_collection = accounts_collection
        self.transactions_collection = transactions_collection
        self.users_collection = users_collection
        self.user_account_fallback = user_account_fallback

    def get_accounts(
        self, user_id: Optional[str] = None, account_id: Optional[str] = None
    ) -> list[Account]:
        """
        Return accounts, optionally restricted to one user and/or one account.

        Rows of the accounts collection come first. With the user fallback
        enabled, each user document that owns no such row then contributes
        the accounts built by ``accounts_from_user``.
        """
        accounts = self._load_accounts(user_id)

        if self.user_account_fallback:
            owners = {a.user_id for a in accounts}
            for uid, user_doc in self._load_users(user_id):
                if uid not in owners:
                    accounts.extend(accounts_from_user(uid, user_doc))

        if account_id is not None:
            accounts = [a for a in accounts if a.id == account_id]
        return accounts

    @abstractmethod
    def _load_accounts(self, user_id: Optional[str] = None) -> list[Account]:
        """Accounts collection rows, optionally for one user."""
        pass

    @abstractmethod
    def _load_users(self, user_id: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        """``(id, document)`` pairs of the users collection, optionally one user."""
        pass

    @abstractmethod
    def query_transactions(self, field: str, value: Any) -> list[LedgerTransaction]:
        """Return transactions whose ``field`` equals ``value``, newest first."""
        pass

    @abstractmethod
    def transaction_exists(self, txn_id: str) -> bool:
        """Check whether a transaction id is already stored."""
        pass

    @abstractmethod
    def commit_batch(self, transactions: Iterable[LedgerTransaction]) -> int:
        """
        Insert transactions as one atomic batch.

        Transactions whose id already exists are skipped, never rewritten.
        Either every remaining transaction is written or none is.

        Returns:
            Number of transactions actually inserted
        """
        pass

    @abstractmethod
    def count_transactions(self) -> int:
        """Count all stored transactions."""
        pass

    @abstractmethod
    def add_account(self, doc_id: str, doc: dict[str, Any]) -> None:
        """Insert or replace an account document."""
        pass

    @abstractmethod
    def add_transaction(self, doc: dict[str, Any]) -> str:
        """Insert or replace a raw transaction document; returns its id."""
        pass

    @abstractmethod
    def add_user(self, doc_id: str, doc: dict[str, Any]) -> None:
        """Insert or replace a user document."""
        pass

    def close(self) -> None:
        """Release backend resources (default no-op)."""
        pass

    def __enter__(self) -> "LedgerStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
