from decimal import Decimal

import pytest

from app.utils.money import split_commission, to_decimal, to_minor_units, to_rate


def test_split_commission_reference_purchase():
    commission, seller = split_commission(Decimal("1000"), Decimal("0.10"))
    assert commission == Decimal("100.00")
    assert seller == Decimal("900.00")


@pytest.mark.parametrize(
    "amount",
    ["0.01", "0.05", "1.00", "33.33", "99.99", "1000.00", "1234.57", "999999.99"],
)
@pytest.mark.parametrize("rate", ["0", "0.0125", "0.075", "0.10", "0.15", "0.3"])
def test_commission_and_seller_always_sum_to_amount(amount, rate):
    commission, seller = split_commission(amount, rate)
    assert commission + seller == Decimal(amount)
    assert commission >= 0
    assert seller >= 0
    assert commission.as_tuple().exponent == -2
    assert seller.as_tuple().exponent == -2


def test_commission_rounds_half_up():
    # 0.05 * 0.10 = 0.005 -> 0.01
    commission, seller = split_commission("0.05", "0.10")
    assert commission == Decimal("0.01")
    assert seller == Decimal("0.04")


@pytest.mark.parametrize("rate", ["-0.01", "0.31", "1", "abc", "NaN"])
def test_to_rate_rejects_out_of_range(rate):
    with pytest.raises(ValueError):
        to_rate(rate)


def test_to_decimal_normalises_floats():
    assert to_decimal(10.1) == Decimal("10.10")
    assert to_decimal("2.345") == Decimal("2.35")
    with pytest.raises(ValueError):
        to_decimal("not-a-number")


def test_to_minor_units():
    assert to_minor_units(Decimal("1000.50")) == 100050
    assert to_minor_units(Decimal("0.01")) == 1
