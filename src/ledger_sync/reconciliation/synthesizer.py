"""
Synthetic transaction generation.

Closes the gap between an account's stated balance and its ledger total,
either with a plausible backdated history (accounts with no transactions)
or with a single visible administrative adjustment (accounts with history).
All randomness comes from an injected ``random.Random`` and all "now"
values from an injected clock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, NamedTuple, Optional
import logging
import random
import threading

from ..config import SynthesisConfig
from ..models.ledger import LedgerTransaction, TransactionStatus, TransactionType
from ..utils.money import CENT, ZERO, quantize_amount

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

OPENING_DEPOSIT_DESCRIPTION = "Initial Account Opening Deposit"
BALANCE_CREDIT_DESCRIPTION = "Balance Adjustment - Credit"
BALANCE_DEBIT_DESCRIPTION = "Balance Adjustment - Debit"
ADMIN_CREDIT_DESCRIPTION = "Balance Adjustment - Administrative Credit"
ADMIN_DEBIT_DESCRIPTION = "Balance Adjustment - Administrative Debit"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyntheticIdFactory:
    """
    Issues transaction ids of the form ``txn_<run>_<account>_<n>``.

    Ids repeat only within the same run id, so a retried commit of the same
    batch is recognised by the store while a later run never collides.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._counters: dict[str, int] = {}
        self._lock = threading.Lock()

    def next_id(self, account_id: str) -> str:
        with self._lock:
            n = self._counters.get(account_id, 0) + 1
            self._counters[account_id] = n
        return f"txn_{self.run_id}_{account_id}_{n:03d}"


class _Draft(NamedTuple):
    timestamp: datetime
    amount: Decimal
    type: TransactionType
    description: str


class HistorySynthesizer:
    """Builds synthetic transactions that sum exactly to a required delta."""

    def __init__(
        self,
        config: Optional[SynthesisConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
        tolerance: Decimal = CENT,
    ):
        """
        Initialize the synthesizer.

        Args:
            config: Synthesis limits and description pools
            rng: Random source; seeded from config when omitted
            clock: Callable returning the current aware datetime
            tolerance: Remainder below which generation stops
        """
        self.config = config or SynthesisConfig()
        self.rng = rng or random.Random(self.config.seed)
        self.clock = clock or utc_now
        self.tolerance = Decimal(str(tolerance))

    def generate_history(
        self,
        target: Decimal,
        account_id: str,
        user_id: str,
        id_factory: SyntheticIdFactory,
    ) -> list[LedgerTransaction]:
        """
        Generate a chronological history for an account with no transactions.

        Args:
            target: Balance the history must sum to
            account_id: Owning account
            user_id: Owning user
            id_factory: Source of transaction ids for this run

        Returns:
            Transactions sorted by timestamp ascending
        """
        cfg = self.config
        now = self.clock()
        target = quantize_amount(target)
        remaining = target
        drafts: list[_Draft] = []

        if target > 0:
            opening = quantize_amount(
                min(target * Decimal(str(cfg.opening_deposit_ratio)),
                    Decimal(str(cfg.opening_deposit_cap)))
            )
            drafts.append(
                _Draft(
                    now - timedelta(days=cfg.opening_deposit_days_ago),
                    opening,
                    TransactionType.DEPOSIT,
                    OPENING_DEPOSIT_DESCRIPTION,
                )
            )
            remaining -= opening

        generated = 0
        while abs(remaining) >= self.tolerance and generated < cfg.max_generated_entries:
            if remaining > 0:
                amount = min(remaining, self._draw(cfg.deposit_range))
                txn_type = TransactionType.DEPOSIT
                description = self._pick(cfg.deposit_descriptions, "Deposit")
            else:
                amount = max(remaining, -self._draw(cfg.withdrawal_range))
                txn_type = TransactionType.WITHDRAWAL
                description = self._pick(cfg.withdrawal_descriptions, "Withdrawal")

            amount = quantize_amount(amount)
            # Spread across the window; order is restored by the sort below
            offset = timedelta(seconds=self.rng.random() * cfg.history_window_days * 86400)
            drafts.append(_Draft(now - offset, amount, txn_type, description))
            remaining -= amount
            generated += 1

        if remaining != ZERO:
            logger.debug(
                f"Closing {remaining} left after {generated} generated entries "
                f"for account {account_id}"
            )
            drafts.append(
                _Draft(
                    now,
                    remaining,
                    TransactionType.DEPOSIT if remaining > 0 else TransactionType.WITHDRAWAL,
                    BALANCE_CREDIT_DESCRIPTION if remaining > 0 else BALANCE_DEBIT_DESCRIPTION,
                )
            )

        drafts.sort(key=lambda d: d.timestamp)

        transactions: list[LedgerTransaction] = []
        running = ZERO
        for draft in drafts:
            running += draft.amount
            transactions.append(
                self._build(draft, running, account_id, user_id, id_factory)
            )
        return transactions

    def generate_adjustment(
        self,
        delta: Decimal,
        target: Decimal,
        account_id: str,
        user_id: str,
        id_factory: SyntheticIdFactory,
    ) -> list[LedgerTransaction]:
        """
        Generate the single administrative adjustment for an account with history.

        Args:
            delta: Signed amount the ledger is short of the target
            target: Stated balance, recorded as the balance after
            account_id: Owning account
            user_id: Owning user
            id_factory: Source of transaction ids for this run

        Returns:
            A one-element list
        """
        amount = quantize_amount(delta)
        credit = amount > 0
        draft = _Draft(
            self.clock(),
            amount,
            TransactionType.DEPOSIT if credit else TransactionType.WITHDRAWAL,
            ADMIN_CREDIT_DESCRIPTION if credit else ADMIN_DEBIT_DESCRIPTION,
        )
        return [self._build(draft, quantize_amount(target), account_id, user_id, id_factory)]

    def _draw(self, bounds: tuple[float, float]) -> Decimal:
        low, high = bounds
        return quantize_amount(Decimal(str(self.rng.uniform(low, high))))

    def _pick(self, choices: list[str], fallback: str) -> str:
        return self.rng.choice(choices) if choices else fallback

    def _build(
        self,
        draft: _Draft,
        balance_after: Decimal,
        account_id: str,
        user_id: str,
        id_factory: SyntheticIdFactory,
    ) -> LedgerTransaction:
        return LedgerTransaction(
            id=id_factory.next_id(account_id),
            account_id=account_id,
            user_id=user_id,
            amount=draft.amount,
            type=draft.type,
            description=draft.description,
            balance_after=balance_after,
            timestamp=draft.timestamp,
            status=TransactionStatus.COMPLETED,
        )
