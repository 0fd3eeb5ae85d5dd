"""
Price splitting across the rows of one booking group.

Totals are split evenly in minor units. The remainder minor units go to the
first rows, so the rows always sum exactly to the intent total and no two
rows differ by more than one minor unit.
"""

from decimal import Decimal
from typing import List, Optional

from gateway.orders import to_minor_units
from schemas.booking import Pricing

MINOR_UNIT = Decimal("0.01")


def split_evenly(total: float, parts: int) -> List[Decimal]:
    if parts < 1:
        raise ValueError(f"Cannot split a price across {parts} rows")

    base, remainder = divmod(to_minor_units(total), parts)
    return [
        (Decimal(base + (1 if index < remainder else 0)) / 100).quantize(MINOR_UNIT)
        for index in range(parts)
    ]


def discount_percentage(pricing: Pricing) -> Optional[Decimal]:
    """discount / original * 100, or None when there is no discount"""
    if pricing.discount <= 0 or pricing.original <= 0:
        return None
    ratio = Decimal(str(pricing.discount)) / Decimal(str(pricing.original)) * 100
    return ratio.quantize(MINOR_UNIT)
