"""Data models for ledger reconciliation."""

from .ledger import (
    Account,
    LedgerTransaction,
    TransactionStatus,
    TransactionType,
    parse_timestamp,
)
from .results import (
    AccountResult,
    AccountState,
    RunSummary,
    SynthesisMode,
)

__all__ = [
    "Account",
    "LedgerTransaction",
    "TransactionStatus",
    "TransactionType",
    "parse_timestamp",
    "AccountResult",
    "AccountState",
    "RunSummary",
    "SynthesisMode",
]
