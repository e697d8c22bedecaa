"""Tests for currency conversion, rounding and formatting"""

import pytest
from decimal import Decimal
from donation_engine.tools.currency import CurrencyConverter, format_amount, round_amount, to_decimal
from donation_engine.utils.errors import InvalidAmountError, UnsupportedCurrencyPairError


def test_identity_conversion_is_exact():
    """Same-currency conversion returns the amount unrounded"""
    converter = CurrencyConverter()
    assert converter.convert(Decimal("10.005"), "USD", "USD") == Decimal("10.005")
    assert converter.convert("0.001", "CAD", "CAD") == Decimal("0.001")


@pytest.mark.parametrize("amount", ["0.01", "1.00", "19.99", "99.99", "1234.56", "100000.00"])
def test_usd_cad_round_trip_within_a_cent(amount):
    converter = CurrencyConverter()
    there = converter.convert(Decimal(amount), "USD", "CAD")
    back = converter.convert(there, "CAD", "USD")
    assert abs(back - Decimal(amount)) <= Decimal("0.01")


def test_conversion_rounds_half_up_at_conversion():
    converter = CurrencyConverter({"USD": {"CAD": "1.35"}})
    # 0.50 * 1.35 = 0.675 -> 0.68
    assert converter.convert(Decimal("0.50"), "USD", "CAD") == Decimal("0.68")
    assert converter.convert(100, "usd", "cad") == Decimal("135.00")


def test_missing_rate_raises():
    converter = CurrencyConverter({"USD": {"CAD": "1.35"}})
    with pytest.raises(UnsupportedCurrencyPairError):
        converter.convert(Decimal("1"), "CAD", "USD")


def test_rate_lookup_and_supported_currencies():
    converter = CurrencyConverter()
    assert converter.rate("USD", "CAD") == Decimal("1.35")
    assert converter.rate("CAD", "CAD") == Decimal("1")
    assert converter.supported_currencies == ["CAD", "USD"]


def test_round_amount_half_away_from_zero():
    assert round_amount(Decimal("2.345")) == Decimal("2.35")
    assert round_amount(Decimal("-2.345")) == Decimal("-2.35")
    assert round_amount("2.344") == Decimal("2.34")


def test_format_amount():
    assert format_amount(Decimal("1234.56"), "CAD") == "$1,234.56 CAD"
    assert format_amount(-5, "usd") == "-$5.00 USD"
    assert format_amount(Decimal("0"), "USD") == "$0.00 USD"


@pytest.mark.parametrize("value", ["abc", None, "NaN", "Infinity"])
def test_to_decimal_rejects_non_numbers(value):
    with pytest.raises(InvalidAmountError):
        to_decimal(value)
