"""
Platform fee calculation for escrow orders.

Pure and versioned: the version string is stored on every EscrowOrder so a
later schedule change never alters how an existing order was priced.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from app.core import config


def platform_fee(budget: int, percent: Optional[float] = None) -> int:
    """
    Fee in the smallest currency unit for a gig budget.

    Args:
        budget: Gig budget in the smallest currency unit
        percent: Fee percentage; defaults to PLATFORM_FEE_PERCENT

    Returns:
        Non-negative integer fee, rounded half up
    """
    if budget <= 0:
        raise ValueError("budget must be positive")
    if percent is None:
        percent = config.PLATFORM_FEE_PERCENT
    if percent <= 0:
        return 0
    fee = Decimal(budget) * Decimal(str(percent)) / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def escrow_amount(budget: int, percent: Optional[float] = None) -> Tuple[int, int, str]:
    """Return (amount, fee, fee_version) for an acceptance attempt."""
    fee = platform_fee(budget, percent)
    return budget + fee, fee, config.PLATFORM_FEE_VERSION
