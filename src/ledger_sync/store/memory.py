"""In-memory ledger store, used for tests and dry experiments."""

from copy import deepcopy
from typing import Any, Iterable, Optional
import threading
import uuid

from ..models.ledger import Account, LedgerTransaction
from .base import LedgerStore, prepare_document, sort_newest_first, validate_field_name


class InMemoryLedgerStore(LedgerStore):
    """Dict-backed store; documents are copied in and out to prevent aliasing."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._accounts: dict[str, dict[str, Any]] = {}
        self._transactions: dict[str, dict[str, Any]] = {}
        self._users: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()

    def _load_accounts(self, user_id: Optional[str] = None) -> list[Account]:
        with self._lock:
            return [
                Account.from_document(doc_id, deepcopy(doc))
                for doc_id, doc in self._accounts.items()
                if user_id is None or doc.get("userId") == user_id
            ]

    def _load_users(self, user_id: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        with self._lock:
            return [
                (doc_id, deepcopy(doc))
                for doc_id, doc in self._users.items()
                if user_id is None or doc_id == user_id
            ]

    def query_transactions(self, field: str, value: Any) -> list[LedgerTransaction]:
        validate_field_name(field)
        with self._lock:
            matches = [
                LedgerTransaction.from_document(doc_id, deepcopy(doc))
                for doc_id, doc in self._transactions.items()
                if field in doc and doc[field] == value
            ]
        return sort_newest_first(matches)

    def transaction_exists(self, txn_id: str) -> bool:
        with self._lock:
            return txn_id in self._transactions

    def commit_batch(self, transactions: Iterable[LedgerTransaction]) -> int:
        with self._lock:
            # Build the full batch before touching the collection
            pending: dict[str, dict[str, Any]] = {}
            for txn in transactions:
                if txn.id in self._transactions or txn.id in pending:
                    continue
                pending[txn.id] = prepare_document(txn)

            self._transactions.update(pending)
            return len(pending)

    def count_transactions(self) -> int:
        with self._lock:
            return len(self._transactions)

    def add_account(self, doc_id: str, doc: dict[str, Any]) -> None:
        with self._lock:
            self._accounts[doc_id] = deepcopy(doc)

    def add_transaction(self, doc: dict[str, Any]) -> str:
        txn_id = str(doc.get("id") or uuid.uuid4().hex)
        with self._lock:
            self._transactions[txn_id] = {**deepcopy(doc), "id": txn_id}
        return txn_id

    def add_user(self, doc_id: str, doc: dict[str, Any]) -> None:
        with self._lock:
            self._users[doc_id] = deepcopy(doc)

    def get_transaction_document(self, txn_id: str) -> Optional[dict[str, Any]]:
        """Raw stored document, for inspection."""
        with self._lock:
            doc = self._transactions.get(txn_id)
            return deepcopy(doc) if doc is not None else None

    def all_transactions(self) -> list[LedgerTransaction]:
        with self._lock:
            return [
                LedgerTransaction.from_document(doc_id, deepcopy(doc))
                for doc_id, doc in self._transactions.items()
            ]
