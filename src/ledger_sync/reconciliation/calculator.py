"""Balance arithmetic for ledger reconciliation."""

from decimal import Decimal
from typing import Iterable, Union

from ..models.ledger import LedgerTransaction
from ..utils.money import CENT, ZERO, parse_amount, quantize_amount

DEFAULT_TOLERANCE = CENT

__all__ = [
    "DEFAULT_TOLERANCE",
    "calculate_total",
    "is_within_tolerance",
    "parse_amount",
    "quantize_amount",
    "transaction_amount",
]


def transaction_amount(txn: LedgerTransaction) -> Decimal:
    """Signed amount of a transaction; unparseable amounts count as zero."""
    amount = parse_amount(txn.amount)
    return amount if amount is not None else ZERO


def calculate_total(transactions: Iterable[LedgerTransaction]) -> Decimal:
    """
    Sum the completed transactions of an account.

    Decimal addition is exact, so the total does not drift with the number
    of rows. Rows that are not completed do not contribute.
    """
    return sum(
        (transaction_amount(t) for t in transactions if t.is_completed),
        ZERO,
    )


def is_within_tolerance(
    calculated: Decimal,
    stated: Decimal,
    tolerance: Union[Decimal, float, str] = DEFAULT_TOLERANCE,
) -> bool:
    """True when ``abs(calculated - stated) < tolerance``."""
    return abs(calculated - stated) < Decimal(str(tolerance))
