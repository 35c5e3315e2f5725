"""
Unit tests for fiat.py - cents conversion through USD and frozen rates.
"""

import pytest

from lending_engine import (
    ExchangeRate, FiatLoan, FiatLoanStatus, Pending, PriceUnavailable, RATE_SCALE,
    convert_fiat, fiat_loan_usd_cents, frozen_amount_to_usd_cents, from_usd_cents,
    get_currency, to_usd_cents,
)
from lending_engine.fiat import cents_to_usd_value, usd_value_to_cents

NGN_RATE = 1_500 * RATE_SCALE   # 1,500 NGN per USD
EUR_RATE = 92_000_000           # 0.92 EUR per USD


class TestConversion:

    def test_to_usd_cents(self):
        # 150,000.00 NGN -> 100.00 USD
        assert to_usd_cents(15_000_000, NGN_RATE) == 10_000

    def test_from_usd_cents(self):
        assert from_usd_cents(10_000, NGN_RATE) == 15_000_000

    def test_accepts_exchange_rate_snapshot(self):
        rate = ExchangeRate("NGN", NGN_RATE, last_updated_at=0)
        assert to_usd_cents(15_000_000, rate) == 10_000

    def test_zero_rate_is_unavailable(self):
        with pytest.raises(PriceUnavailable):
            to_usd_cents(100, 0)
        with pytest.raises(PriceUnavailable):
            from_usd_cents(100, 0)

    def test_usd_value_and_cents(self):
        assert usd_value_to_cents(123_456_789) == 123
        assert cents_to_usd_value(123) == 123_000_000


class TestConvertFiat:

    def test_same_currency_is_identity(self):
        assert convert_fiat(500, "NGN", "NGN", {}) == 500

    def test_usd_to_usd_needs_no_rates(self):
        assert convert_fiat(500, "USD", "USD", {}) == 500

    def test_cross_currency_goes_through_usd(self):
        # 1,500.00 NGN = 1.00 USD = 0.92 EUR
        assert convert_fiat(150_000, "NGN", "EUR", {"NGN": NGN_RATE, "EUR": EUR_RATE}) == 92

    def test_missing_rate_is_pending(self):
        result = convert_fiat(150_000, "NGN", "USD", {"NGN": None})
        assert isinstance(result, Pending)
        assert result.missing == ("rate_NGN",)
        assert not result

    def test_missing_amount_is_pending(self):
        assert isinstance(convert_fiat(None, "NGN", "USD", {"NGN": NGN_RATE}), Pending)

    def test_frozen_rate_overrides_live_rate(self):
        live = {"NGN": 2_000 * RATE_SCALE}
        assert convert_fiat(15_000_000, "NGN", "USD", live, frozen_rate=NGN_RATE) == 10_000

    def test_frozen_rate_requires_usd_side(self):
        with pytest.raises(ValueError):
            convert_fiat(100, "NGN", "EUR", {}, frozen_rate=NGN_RATE)

    def test_unsupported_currency(self):
        with pytest.raises(ValueError):
            convert_fiat(100, "XYZ", "USD", {})


class TestFrozenRate:

    def make_loan(self, rate):
        return FiatLoan(
            loan_id=1, borrower="0xb", supplier="0xs", collateral_asset="0xweth",
            collateral_amount=10 ** 18, fiat_amount_cents=15_000_000, currency="NGN",
            interest_rate=500, duration=30 * 86_400, status=FiatLoanStatus.ACTIVE,
            exchange_rate_at_creation=rate,
        )

    def test_loan_uses_creation_rate(self):
        assert fiat_loan_usd_cents(self.make_loan(NGN_RATE)) == 10_000

    def test_legacy_loan_without_rate_is_treated_as_usd(self):
        assert fiat_loan_usd_cents(self.make_loan(0)) == 15_000_000

    def test_usd_passes_through(self):
        assert frozen_amount_to_usd_cents(1_234, "USD", NGN_RATE) == 1_234


class TestCurrencies:

    def test_lookup(self):
        assert get_currency("NGN").symbol == "₦"

    def test_unknown(self):
        with pytest.raises(ValueError):
            get_currency("XYZ")
