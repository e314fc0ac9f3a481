"""Per-account and per-run reconciliation results."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .ledger import LedgerTransaction


class AccountState(Enum):
    """Stage of the per-account reconciliation pipeline."""

    COLLECTING = "collecting"
    CALCULATING = "calculating"
    IN_SYNC = "in_sync"
    NEEDS_ADJUSTMENT = "needs_adjustment"
    SYNTHESIZING = "synthesizing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class SynthesisMode(Enum):
    """How the balance gap of an account was closed."""

    NONE = "none"
    FRESH_HISTORY = "fresh_history"
    ADJUSTMENT = "adjustment"


@dataclass
class AccountResult:
    """Outcome of reconciling a single account."""

    account_id: str
    user_id: str
    target_balance: Decimal

    state: AccountState = AccountState.COLLECTING
    history: list[AccountState] = field(default_factory=list)
    current_total: Optional[Decimal] = None
    existing_count: int = 0
    failed_predicates: list[str] = field(default_factory=list)

    mode: SynthesisMode = SynthesisMode.NONE
    created_transactions: list[LedgerTransaction] = field(default_factory=list)
    persisted_count: int = 0

    error: Optional[str] = None
    processing_time_seconds: float = 0.0

    @property
    def delta(self) -> Optional[Decimal]:
        """Signed gap between the stated balance and the ledger total."""
        if self.current_total is None:
            return None
        return self.target_balance - self.current_total

    @property
    def was_adjusted(self) -> bool:
        return self.state == AccountState.DONE and bool(self.created_transactions)

    @property
    def was_in_sync(self) -> bool:
        return self.state == AccountState.DONE and not self.created_transactions

    @property
    def failed(self) -> bool:
        return self.state == AccountState.FAILED


@dataclass
class RunSummary:
    """Summary of one reconciliation run across many accounts."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None

    user_id_filter: Optional[str] = None
    account_id_filter: Optional[str] = None
    dry_run: bool = False

    results: list[AccountResult] = field(default_factory=list)
    processing_time_seconds: float = 0.0

    @property
    def accounts_processed(self) -> int:
        return len(self.results)

    @property
    def accounts_adjusted(self) -> int:
        return sum(1 for r in self.results if r.was_adjusted)

    @property
    def accounts_in_sync(self) -> int:
        return sum(1 for r in self.results if r.was_in_sync)

    @property
    def accounts_failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def transactions_persisted(self) -> int:
        return sum(r.persisted_count for r in self.results)

    @property
    def transactions_planned(self) -> int:
        """Transactions synthesized, whether or not they were written."""
        return sum(len(r.created_transactions) for r in self.results if not r.failed)

    @property
    def failed_accounts(self) -> list[AccountResult]:
        return [r for r in self.results if r.failed]
