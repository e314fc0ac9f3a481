"""
SQLite ledger store.

Each collection is a document table (``id``, JSON ``data``, ``created_at``)
queried through SQLite's JSON functions, mirroring the schema-less shape of
the account and transaction records.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Union
import json
import logging
import sqlite3
import threading
import uuid

from ..models.ledger import Account, LedgerTransaction
from ..utils.exceptions import StoreConnectionError, StoreError
from .base import LedgerStore, prepare_document, sort_newest_first, validate_field_name

logger = logging.getLogger(__name__)

# Rows whose data is not valid JSON never match a field query
_FIELD_VALUE = "CASE WHEN json_valid(data) THEN json_extract(data, ?) END"


class SQLiteLedgerStore(LedgerStore):
    """SQLite storage implementation for the ledger."""

    def __init__(
        self,
        db_path: Union[str, Path] = ":memory:",
        must_exist: bool = False,
        timeout: float = 30.0,
        **kwargs,
    ):
        """
        Open (or create) the ledger database.

        Args:
            db_path: Database file path, or ":memory:"
            must_exist: Refuse to create a new database file
            timeout: Seconds to wait on a locked database

        Raises:
            StoreConnectionError: If the database cannot be opened
        """
        super().__init__(**kwargs)
        validate_field_name(self.accounts_collection)
        validate_field_name(self.transactions_collection)
        validate_field_name(self.users_collection)

        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None

        try:
            if must_exist and self.db_path != ":memory:":
                if not Path(self.db_path).exists():
                    raise StoreConnectionError(f"Ledger database not found: {self.db_path}")
                uri = f"{Path(self.db_path).resolve().as_uri()}?mode=rw"
                self._connection = sqlite3.connect(
                    uri, uri=True, timeout=timeout, check_same_thread=False
                )
            else:
                self._connection = sqlite3.connect(
                    self.db_path, timeout=timeout, check_same_thread=False
                )
            self._connection.row_factory = sqlite3.Row
            self._ensure_tables()
        except sqlite3.Error as e:
            raise StoreConnectionError(
                f"Cannot open ledger database {self.db_path}: {e}"
            ) from e

        logger.debug(f"Opened ledger database: {self.db_path}")

    def _ensure_tables(self) -> None:
        with self._lock, self._connection:
            for table in (
                self.accounts_collection,
                self.transactions_collection,
                self.users_collection,
            ):
                self._connection.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        data TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)

    def _execute(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._connection.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Ledger query failed: {e}") from e

    def _decode(self, table: str, row: sqlite3.Row) -> dict[str, Any]:
        try:
            doc = json.loads(row["data"])
        except ValueError as e:
            raise StoreError(f"Corrupt document {row['id']} in {table}: {e}") from e
        if not isinstance(doc, dict):
            raise StoreError(f"Corrupt document {row['id']} in {table}: not an object")
        return doc

    def _load_accounts(self, user_id: Optional[str] = None) -> list[Account]:
        sql = f"SELECT id, data FROM {self.accounts_collection}"
        params: tuple = ()
        if user_id is not None:
            sql += f" WHERE {_FIELD_VALUE} = ?"
            params = ("$.userId", user_id)
        sql += " ORDER BY created_at, id"

        rows = self._execute(sql, params)
        return [
            Account.from_document(row["id"], self._decode(self.accounts_collection, row))
            for row in rows
        ]

    def _load_users(self, user_id: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        sql = f"SELECT id, data FROM {self.users_collection}"
        params: tuple = ()
        if user_id is not None:
            sql += " WHERE id = ?"
            params = (user_id,)
        sql += " ORDER BY created_at, id"

        rows = self._execute(sql, params)
        return [(row["id"], self._decode(self.users_collection, row)) for row in rows]

    def query_transactions(self, field: str, value: Any) -> list[LedgerTransaction]:
        validate_field_name(field)
        rows = self._execute(
            f"SELECT id, data FROM {self.transactions_collection} "
            f"WHERE {_FIELD_VALUE} = ?",
            (f"$.{field}", value),
        )
        transactions = [
            LedgerTransaction.from_document(
                row["id"], self._decode(self.transactions_collection, row)
            )
            for row in rows
        ]
        return sort_newest_first(transactions)

    def transaction_exists(self, txn_id: str) -> bool:
        rows = self._execute(
            f"SELECT 1 FROM {self.transactions_collection} WHERE id = ? LIMIT 1",
            (txn_id,),
        )
        return bool(rows)

    def commit_batch(self, transactions: Iterable[LedgerTransaction]) -> int:
        now = datetime.now(timezone.utc)
        rows = [
            (txn.id, json.dumps(prepare_document(txn, now), default=str), now.isoformat())
            for txn in transactions
        ]
        if not rows:
            return 0

        with self._lock:
            try:
                # One SQLite transaction: commits on success, rolls back on error
                with self._connection:
                    inserted = 0
                    for row in rows:
                        cursor = self._connection.execute(
                            f"INSERT OR IGNORE INTO {self.transactions_collection} "
                            "(id, data, created_at) VALUES (?, ?, ?)",
                            row,
                        )
                        inserted += cursor.rowcount
            except sqlite3.Error as e:
                raise StoreError(f"Batch commit failed: {e}") from e

        return inserted

    def count_transactions(self) -> int:
        rows = self._execute(f"SELECT COUNT(*) AS n FROM {self.transactions_collection}")
        return rows[0]["n"]

    def add_account(self, doc_id: str, doc: dict[str, Any]) -> None:
        self._upsert(self.accounts_collection, doc_id, doc)

    def add_transaction(self, doc: dict[str, Any]) -> str:
        txn_id = str(doc.get("id") or uuid.uuid4().hex)
        self._upsert(self.transactions_collection, txn_id, {**doc, "id": txn_id})
        return txn_id

    def add_user(self, doc_id: str, doc: dict[str, Any]) -> None:
        self._upsert(self.users_collection, doc_id, doc)

    def _upsert(self, table: str, doc_id: str, doc: dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                with self._connection:
                    self._connection.execute(
                        f"INSERT OR REPLACE INTO {table} (id, data, created_at) "
                        f"VALUES (?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?))",
                        (doc_id, json.dumps(doc, default=str), doc_id, now),
                    )
            except sqlite3.Error as e:
                raise StoreError(f"Write to {table} failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
