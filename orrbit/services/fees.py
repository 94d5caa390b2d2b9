"""
Platform fee split.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from orrbit.core.config import StellarConfig


@dataclass(frozen=True)
class FeeSplit:
    gross: Decimal
    fee: Decimal
    net: Decimal


def compute_fee_split(gross: Decimal, fee_percent: Decimal) -> FeeSplit:
    """
    Split a gross payment into platform fee and creator net.

    The fee is rounded half-up to the ledger's 7 decimal places and the net is
    the exact remainder, so fee + net == gross.
    """
    gross = Decimal(gross)
    fee = (gross * Decimal(fee_percent) / Decimal(100)).quantize(
        StellarConfig.AMOUNT_QUANTUM, rounding=ROUND_HALF_UP
    )
    return FeeSplit(gross=gross, fee=fee, net=gross - fee)
