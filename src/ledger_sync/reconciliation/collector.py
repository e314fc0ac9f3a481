"""
Transaction collection across legacy linkage fields.

Ledger rows may point at their account through any of several field
conventions. Each convention is a LinkPredicate; the collector runs them
all and keeps the first copy of every transaction id.
"""

from dataclasses import dataclass, field
from typing import Literal
import logging

from ..config import SyncConfig
from ..models.ledger import LedgerTransaction
from ..store.base import LedgerStore
from ..utils.exceptions import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkPredicate:
    """A document field whose value identifies the owning account or user."""

    name: str
    field: str
    source: Literal["account", "user"] = "account"

    def value_for(self, account_id: str, user_id: str) -> str:
        return user_id if self.source == "user" else account_id


DEFAULT_PREDICATES = (
    LinkPredicate("account_link", "accountId", "account"),
    LinkPredicate("owning_user", "userId", "user"),
    LinkPredicate("source_account", "fromAccount", "account"),
    LinkPredicate("destination_account", "toAccount", "account"),
)


@dataclass
class CollectionResult:
    """Deduplicated transactions plus the predicates that could not be queried."""

    transactions: list[LedgerTransaction] = field(default_factory=list)
    failed_predicates: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_predicates)


class TransactionCollector:
    """Gathers every transaction linked to an account by any predicate."""

    def __init__(self, store: LedgerStore, predicates: tuple[LinkPredicate, ...] = DEFAULT_PREDICATES):
        self.store = store
        self.predicates = predicates
        self._account_fields = tuple(p.field for p in predicates if p.source == "account")

    @classmethod
    def from_config(cls, store: LedgerStore, config: SyncConfig) -> "TransactionCollector":
        """Build a collector from the enabled link predicates in configuration."""
        predicates = tuple(
            LinkPredicate(p.name, p.field, p.source)
            for p in config.collector.link_predicates
            if p.enabled
        )
        for predicate in predicates:
            logger.debug(f"Loaded link predicate: {predicate.name} ({predicate.field})")
        return cls(store, predicates)

    def collect(self, account_id: str, user_id: str) -> CollectionResult:
        """
        Collect and deduplicate the transactions of one account.

        A predicate whose query fails contributes nothing; the others still
        run, so the result may be partial rather than missing.

        Args:
            account_id: Account identifier
            user_id: Owning user identifier

        Returns:
            CollectionResult with first-seen transactions in query order
        """
        result = CollectionResult()
        seen: set[str] = set()

        for predicate in self.predicates:
            value = predicate.value_for(account_id, user_id)
            if not value:
                continue

            try:
                matches = self.store.query_transactions(predicate.field, value)
            except StoreError as e:
                logger.warning(
                    f"Query {predicate.name} failed for account {account_id}: {e}"
                )
                result.failed_predicates.append(predicate.name)
                continue

            added = 0
            for txn in matches:
                if txn.id in seen:
                    continue
                if predicate.source == "user" and self._names_other_account(txn, account_id):
                    continue
                seen.add(txn.id)
                result.transactions.append(txn)
                added += 1

            logger.debug(
                f"Predicate {predicate.name}: {len(matches)} found, {added} new "
                f"for account {account_id}"
            )

        return result

    def _names_other_account(self, txn: LedgerTransaction, account_id: str) -> bool:
        """
        True if a user-linked row is explicitly tied to a different account.

        Such a row belongs to that other account; counting it here would make
        two accounts of the same user share one total.
        """
        linked = [txn.field_value(f) for f in self._account_fields]
        linked = [v for v in linked if v]
        return bool(linked) and account_id not in linked
