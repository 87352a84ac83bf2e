"""Tests for billing money_utils module."""

from decimal import Decimal

import pytest
from moneyed import Money

from randevu.platform.billing.money_utils import (
    TRY,
    MoneyHandler,
    create_money,
    format_money,
    is_valid_currency,
    money_handler,
    round_amount,
)


@pytest.mark.unit
class TestMoneyHandler:
    """Test MoneyHandler class."""

    def test_defaults_to_lira(self):
        handler = MoneyHandler()
        assert handler.default_currency.code == "TRY"
        assert handler.default_locale == "tr_TR"

    def test_invalid_currency(self):
        with pytest.raises(ValueError) as exc_info:
            MoneyHandler(default_currency="XXXX")
        assert "Invalid currency code" in str(exc_info.value)

    def test_unknown_locale_falls_back(self):
        assert MoneyHandler(default_locale="zz_ZZ").default_locale == "tr_TR"

    def test_create_money_from_float_keeps_precision(self):
        money = create_money(0.1, "TRY")
        assert money == Money(Decimal("0.1"), TRY)

    def test_minor_units(self):
        assert money_handler.money_to_minor_units(create_money("12.34", "TRY")) == 1234
        assert money_handler.money_to_minor_units(create_money("500", "JPY")) == 500


@pytest.mark.unit
class TestRoundAmount:
    """Half-up rounding to the currency minor unit."""

    @pytest.mark.parametrize(
        "amount, currency, expected",
        [
            (Decimal("33.335"), "TRY", Decimal("33.34")),
            (Decimal("33.334"), "TRY", Decimal("33.33")),
            (Decimal("0.005"), "USD", Decimal("0.01")),
            (Decimal("99.5"), "JPY", Decimal("100")),
        ],
    )
    def test_round_amount(self, amount, currency, expected):
        assert round_amount(amount, currency) == expected


@pytest.mark.unit
class TestHelpers:
    def test_is_valid_currency(self):
        assert is_valid_currency("try") is True
        assert is_valid_currency("ABC") is False

    def test_format_money_uses_turkish_locale(self):
        formatted = format_money(create_money("1500", "TRY"))
        assert "1.500,00" in formatted
