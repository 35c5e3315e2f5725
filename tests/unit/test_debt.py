"""
Unit tests for calculators/debt.py - flat interest, health and repayment policy.

Reference loan (tests/fake_chain.make_loan): 1 WETH collateral against
1,000 USDC at a flat 5%, so 1,050 USDC is due.
"""

import pytest

from lending_engine import (
    AmountExceedsDebt, FiatLoan, FiatLoanStatus, HealthStatus, Pending, PriceUnavailable,
    RATE_SCALE, RepaymentBelowMinimum, USD_SCALE,
    calculate_outstanding_debt, classify_health, compute_fiat_health_factor,
    compute_health_factor, loan_outstanding_debt, normalize_repayment, plan_repayment,
)
from lending_engine.calculators.debt import (
    calculate_extended_due_date, calculate_min_partial_repayment, calculate_total_interest,
    calculate_total_repayment_due, fiat_loan_outstanding_cents, is_below_liquidation_threshold,
)

from tests.fake_chain import PRICE_UNIT, USDC_UNIT, WETH_UNIT, make_loan

DUE = 1_050 * USDC_UNIT


class TestFlatInterest:

    def test_total_interest(self):
        assert calculate_total_interest(1_000 * USDC_UNIT, 500) == 50 * USDC_UNIT

    def test_total_due(self):
        assert calculate_total_repayment_due(1_000 * USDC_UNIT, 500) == DUE

    def test_outstanding_after_partial(self):
        assert calculate_outstanding_debt(1_000 * USDC_UNIT, 500, 300 * USDC_UNIT) == 750 * USDC_UNIT

    def test_outstanding_floors_at_zero(self):
        assert calculate_outstanding_debt(1_000 * USDC_UNIT, 500, 2_000 * USDC_UNIT) == 0

    def test_loan_outstanding(self):
        assert loan_outstanding_debt(make_loan()) == DUE

    def test_loan_rejects_overrepayment(self):
        with pytest.raises(ValueError):
            make_loan(amount_repaid=DUE + 1)

    def test_loan_rejects_overrelease(self):
        with pytest.raises(ValueError):
            make_loan(collateral_released=WETH_UNIT + 1)


class TestHealthFactor:

    def health(self, weth_price, **loan_overrides):
        return compute_health_factor(
            make_loan(**loan_overrides), weth_price * PRICE_UNIT, 18, PRICE_UNIT, 6,
            liquidation_threshold_bps=8_500,
        )

    def test_healthy(self):
        result = self.health(2_000)
        assert result.health_factor_bps == 19_047
        assert result.status == HealthStatus.HEALTHY
        assert result.current_ltv_bps == 5_250
        assert result.below_liquidation_threshold is False

    def test_warning(self):
        result = self.health(1_200)
        assert result.health_factor_bps == 11_428
        assert result.status == HealthStatus.WARNING
        assert result.below_liquidation_threshold is True

    def test_danger(self):
        result = self.health(1_000)
        assert result.health_factor_bps == 9_523
        assert result.status == HealthStatus.DANGER

    def test_only_remaining_collateral_counts(self):
        result = self.health(2_000, collateral_released=WETH_UNIT // 2)
        assert result.collateral_value_usd == 1_000 * PRICE_UNIT

    def test_no_debt_is_undefined(self):
        result = self.health(2_000, amount_repaid=DUE)
        assert result.health_factor_bps is None
        assert result.status == HealthStatus.HEALTHY
        assert not result.has_debt

    def test_pending_without_prices(self):
        result = compute_health_factor(make_loan(), None, 18, PRICE_UNIT, 6)
        assert isinstance(result, Pending)
        assert result.missing == ("collateral_price",)

    def test_pending_without_loan(self):
        assert isinstance(compute_health_factor(None, PRICE_UNIT, 18, PRICE_UNIT, 6), Pending)

    def test_zero_price_raises(self):
        with pytest.raises(PriceUnavailable):
            compute_health_factor(make_loan(), 2_000 * PRICE_UNIT, 18, 0, 6)


class TestClassifyHealth:

    @pytest.mark.parametrize("bps,status", [
        (None, HealthStatus.HEALTHY),
        (15_000, HealthStatus.HEALTHY),
        (14_999, HealthStatus.WARNING),
        (10_000, HealthStatus.WARNING),
        (9_999, HealthStatus.DANGER),
        (0, HealthStatus.DANGER),
    ])
    def test_bands(self, bps, status):
        assert classify_health(bps) == status


class TestLiquidationThreshold:

    def test_no_debt_never_below(self):
        assert not is_below_liquidation_threshold(0, 0, 8_500)

    def test_exactly_at_threshold_is_not_below(self):
        assert not is_below_liquidation_threshold(10_000, 8_500, 8_500)

    def test_past_threshold(self):
        assert is_below_liquidation_threshold(10_000, 8_501, 8_500)


class TestFiatHealthFactor:

    def make_fiat_loan(self, **overrides):
        fields = dict(
            loan_id=9, borrower="0xb", supplier="0xs", collateral_asset="0xweth",
            collateral_amount=WETH_UNIT, fiat_amount_cents=15_000_000, currency="NGN",
            interest_rate=500, duration=30 * 86_400, status=FiatLoanStatus.ACTIVE,
            exchange_rate_at_creation=1_500 * RATE_SCALE,
        )
        fields.update(overrides)
        return FiatLoan(**fields)

    def test_uses_frozen_rate(self):
        # 157,500.00 NGN due at 1,500/USD -> $105 of debt
        result = compute_fiat_health_factor(self.make_fiat_loan(), 2_000 * PRICE_UNIT, 18)
        assert result.outstanding_debt == 15_750_000
        assert result.debt_value_usd == 105 * PRICE_UNIT
        assert result.health_factor_bps == 190_476

    def test_settled_loan_has_no_debt(self):
        result = compute_fiat_health_factor(
            self.make_fiat_loan(status=FiatLoanStatus.REPAID), 2_000 * PRICE_UNIT, 18,
        )
        assert result.health_factor_bps is None

    def test_claimable_disbursement_does_not_reduce_debt(self):
        loan = self.make_fiat_loan(claimable_amount_cents=15_000_000)
        assert fiat_loan_outstanding_cents(loan) == 15_750_000

    def test_pending_supplier_owes_full_amount(self):
        loan = self.make_fiat_loan(status=FiatLoanStatus.PENDING_SUPPLIER)
        assert fiat_loan_outstanding_cents(loan) == 15_750_000

    def test_pending_without_price(self):
        assert isinstance(compute_fiat_health_factor(self.make_fiat_loan(), None, 18), Pending)


class TestNormalizeRepayment:

    def test_within_tolerance_below_snaps(self):
        assert normalize_repayment(1_049_000_000, DUE) == DUE

    def test_within_tolerance_above_snaps(self):
        assert normalize_repayment(1_051_000_000, DUE) == DUE

    def test_outside_tolerance_is_partial(self):
        assert normalize_repayment(1_048_900_000, DUE) == 1_048_900_000

    def test_over_tolerance_raises(self):
        with pytest.raises(AmountExceedsDebt):
            normalize_repayment(1_052_000_000, DUE)

    def test_zero_amount(self):
        with pytest.raises(ValueError):
            normalize_repayment(0, DUE)

    def test_nothing_owed(self):
        with pytest.raises(AmountExceedsDebt):
            normalize_repayment(1, 0)


class TestPlanRepayment:

    FLOOR = 10 * USD_SCALE

    def test_min_partial_repayment(self):
        assert calculate_min_partial_repayment(self.FLOOR, PRICE_UNIT, 6) == 10 * USDC_UNIT

    def test_full_repayment_ignores_price(self):
        plan = plan_repayment(DUE, DUE, self.FLOOR, None, 6)
        assert plan.is_full
        assert plan.amount == DUE

    def test_partial_repayment(self):
        plan = plan_repayment(500 * USDC_UNIT, DUE, self.FLOOR, PRICE_UNIT, 6)
        assert not plan.is_full
        assert plan.min_partial_repayment == 10 * USDC_UNIT

    def test_partial_below_minimum(self):
        with pytest.raises(RepaymentBelowMinimum):
            plan_repayment(5 * USDC_UNIT, DUE, self.FLOOR, PRICE_UNIT, 6)

    def test_partial_without_price(self):
        with pytest.raises(PriceUnavailable):
            plan_repayment(500 * USDC_UNIT, DUE, self.FLOOR, None, 6)


class TestExtension:

    def test_extended_due_date(self):
        assert calculate_extended_due_date(1_000, 86_400) == 87_400

    def test_non_positive_extension(self):
        with pytest.raises(ValueError):
            calculate_extended_due_date(1_000, 0)
