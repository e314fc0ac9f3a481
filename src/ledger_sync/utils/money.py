"""Decimal helpers shared by the models and the reconciliation engine."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0")

# Amounts of 1e16 and above cannot be real balances and would exceed the
# decimal context once quantized to cents
MAX_AMOUNT_EXPONENT = 15


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a stored amount into a Decimal.

    Args:
        value: Amount as stored (Decimal, int, float, string or None)

    Returns:
        Decimal amount, or None when the value is not a finite number or is
        too large to be a currency amount
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, Decimal):
        amount = value
    else:
        if isinstance(value, str):
            value = value.replace("$", "").replace(",", "").strip()
            if not value:
                return None
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            return None

    if not amount.is_finite():
        return None
    if amount.adjusted() > MAX_AMOUNT_EXPONENT:
        return None
    return amount


def quantize_amount(value: Decimal) -> Decimal:
    """Round a currency amount to cents, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
