"""Typed records for the account and transaction collections."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from ..utils.money import ZERO, parse_amount


class TransactionType(Enum):
    """Kind of ledger movement."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


class TransactionStatus(Enum):
    """Settlement status of a transaction."""

    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Document fields mapped onto typed attributes; everything else lands in `extra`
ACCOUNT_FIELDS = ("userId", "balance", "accountType", "accountNumber")
TRANSACTION_FIELDS = (
    "id",
    "accountId",
    "userId",
    "amount",
    "type",
    "description",
    "balanceAfter",
    "timestamp",
    "status",
)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings, epoch seconds and exported
    document-store timestamps (``{"_seconds": ..., "_nanoseconds": ...}``).
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, dict) and "_seconds" in value:
        seconds = value["_seconds"] + value.get("_nanoseconds", 0) / 1_000_000_000
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Account:
    """
    An account whose stated balance is the reconciliation target.

    The engine only reads accounts; fields it does not understand are kept
    in ``extra`` untouched.
    """

    id: str
    user_id: str
    stated_balance: Decimal
    account_type: Optional[str] = None
    account_number: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)
    balance_readable: bool = True

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> "Account":
        """
        Build an account from a stored document.

        A missing balance means zero. A balance that is present but cannot be
        read also becomes zero, flagged through ``balance_readable``.
        """
        raw_balance = doc.get("balance")
        balance = parse_amount(raw_balance)
        return cls(
            id=doc_id,
            user_id=str(doc.get("userId") or ""),
            stated_balance=balance if balance is not None else ZERO,
            balance_readable=balance is not None or raw_balance is None,
            account_type=doc.get("accountType"),
            account_number=doc.get("accountNumber"),
            extra={k: v for k, v in doc.items() if k not in ACCOUNT_FIELDS},
        )

    def to_document(self) -> dict[str, Any]:
        """Convert back to the stored document shape."""
        doc = dict(self.extra)
        doc.update(
            {
                "userId": self.user_id,
                "balance": float(self.stated_balance),
            }
        )
        if self.account_type is not None:
            doc["accountType"] = self.account_type
        if self.account_number is not None:
            doc["accountNumber"] = self.account_number
        return doc

    @property
    def display_type(self) -> str:
        return self.account_type or "primary"


@dataclass
class LedgerTransaction:
    """
    A single row of the ledger.

    ``amount`` keeps the value exactly as stored so that malformed legacy
    amounts survive a round trip; synthesized rows always carry a Decimal.
    """

    id: str
    account_id: Optional[str]
    user_id: Optional[str]
    amount: Union[Decimal, float, int, str, None]
    type: Union[TransactionType, str, None] = None
    description: str = ""
    balance_after: Optional[Decimal] = None
    timestamp: Optional[datetime] = None
    status: Union[TransactionStatus, str] = TransactionStatus.COMPLETED
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, doc_id: str, doc: dict[str, Any]) -> "LedgerTransaction":
        """Build a transaction from a stored document."""
        raw_type = doc.get("type")
        try:
            txn_type: Union[TransactionType, str, None] = TransactionType(raw_type)
        except ValueError:
            txn_type = raw_type

        # Legacy rows written before statuses existed count as settled
        raw_status = doc.get("status") or TransactionStatus.COMPLETED.value
        try:
            status: Union[TransactionStatus, str] = TransactionStatus(raw_status)
        except ValueError:
            status = raw_status

        return cls(
            id=doc_id,
            account_id=doc.get("accountId"),
            user_id=doc.get("userId"),
            amount=doc.get("amount"),
            type=txn_type,
            description=doc.get("description") or "",
            balance_after=parse_amount(doc.get("balanceAfter")),
            timestamp=parse_timestamp(doc.get("timestamp")),
            status=status,
            extra={k: v for k, v in doc.items() if k not in TRANSACTION_FIELDS},
        )

    def to_document(self) -> dict[str, Any]:
        """Convert to the stored document shape, unknown fields included."""
        doc = dict(self.extra)
        amount = self.amount
        if isinstance(amount, Decimal):
            amount = float(amount)
        doc.update(
            {
                "id": self.id,
                "accountId": self.account_id,
                "userId": self.user_id,
                "amount": amount,
                "type": self.type.value if isinstance(self.type, TransactionType) else self.type,
                "description": self.description,
                "balanceAfter": (
                    float(self.balance_after) if self.balance_after is not None else None
                ),
                "timestamp": self.timestamp.isoformat() if self.timestamp else None,
                "status": (
                    self.status.value
                    if isinstance(self.status, TransactionStatus)
                    else self.status
                ),
            }
        )
        return doc

    def field_value(self, name: str) -> Any:
        """Value of a document field by its stored name."""
        if name == "accountId":
            return self.account_id
        if name == "userId":
            return self.user_id
        return self.extra.get(name)

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @property
    def type_label(self) -> str:
        if isinstance(self.type, TransactionType):
            return self.type.value
        return self.type or "-"
