from decimal import Decimal

import pytest

from bookings.pricing import discount_percentage, split_evenly
from schemas.booking import Pricing


def test_even_split():
    assert split_evenly(1000, 2) == [Decimal("500.00"), Decimal("500.00")]


@pytest.mark.parametrize("total,parts", [(1000, 3), (999.99, 7), (0.05, 4), (1, 1), (0, 3)])
def test_split_sums_exactly_and_differs_by_at_most_one_minor_unit(total, parts):
    rows = split_evenly(total, parts)
    assert len(rows) == parts
    assert sum(rows) == Decimal(str(total)).quantize(Decimal("0.01"))
    assert max(rows) - min(rows) <= Decimal("0.01")
    assert rows == sorted(rows, reverse=True)


def test_remainder_goes_to_first_rows():
    assert split_evenly(1000, 3) == [Decimal("333.34"), Decimal("333.33"), Decimal("333.33")]


def test_split_needs_at_least_one_row():
    with pytest.raises(ValueError):
        split_evenly(100, 0)


def test_discount_percentage():
    assert discount_percentage(Pricing(original=1000, discount=150, final=850)) == Decimal("15.00")
    assert discount_percentage(Pricing(original=300, discount=100, final=200)) == Decimal("33.33")
    assert discount_percentage(Pricing(original=1000, discount=0, final=1000)) is None
    assert discount_percentage(Pricing(original=0, discount=10, final=0)) is None
