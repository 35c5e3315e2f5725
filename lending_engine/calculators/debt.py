"""
debt.py - Debt & Health-Factor Calculator

Mirrors the marketplace's repayment arithmetic and derives a loan's health.

Interest model:
    Interest is FLAT: fixed once at origination over the full term and
    never pro-rated by elapsed time. Repaying early does not reduce it.

Key Formulas:
    total_interest       = principal * interest_rate_bps // 10000
    total_repayment_due  = principal + total_interest
    outstanding_debt     = max(total_repayment_due - amount_repaid, 0)
    debt_value_usd       = outstanding_debt * borrow_price // 10^borrow_decimals
    health_factor_bps    = remaining_collateral_value_usd * 10000 // debt_value_usd

health_factor_bps is 10000 at 100%; it is undefined (None) when there is
no debt. Status bands: HEALTHY >= 150%, WARNING >= 100%, DANGER < 100%.

Liquidation eligibility reported here is advisory only. The contract
decides, and the liquidation flow always re-confirms by simulation.

Repayment policy:
    - amounts within 0.1% of the outstanding debt snap to the exact debt
    - anything below that is a partial repayment and must meet a minimum
      derived from a USD floor at the live (fresh) price
    - full repayment does not need a price at all
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..core import (
    FiatLoan, FiatLoanStatus, HealthStatus, Loan, Pending,
    AmountExceedsDebt, PriceUnavailable, RepaymentBelowMinimum,
    BPS_DENOMINATOR, CENTS_DECIMALS, FULL_REPAYMENT_TOLERANCE_BPS,
    HEALTH_HEALTHY_BPS, HEALTH_WARNING_BPS, USD_DECIMALS,
    pending_operands,
)
from ..fiat import frozen_amount_to_usd_cents
from ..fixed_point import apply_bps, mul_div, pow10, ratio_bps, rescale, saturating_sub
from .ltv import calculate_collateral_value_usd


@dataclass(frozen=True, slots=True)
class HealthFactorResult:
    """
    Immutable result of a health-factor calculation.

    All USD values are 1e8-scaled. health_factor_bps and current_ltv_bps
    are None when undefined (no debt, or no collateral value).
    """
    outstanding_debt: int
    debt_value_usd: int
    collateral_value_usd: int
    health_factor_bps: Optional[int]
    status: HealthStatus
    current_ltv_bps: Optional[int]
    liquidation_threshold_bps: Optional[int] = None
    below_liquidation_threshold: bool = False

    @property
    def has_debt(self) -> bool:
        return self.debt_value_usd > 0


@dataclass(frozen=True, slots=True)
class RepaymentPlan:
    """A validated repayment amount and whether it settles the loan."""
    amount: int
    is_full: bool
    outstanding_debt: int
    min_partial_repayment: Optional[int] = None


# ============================================================================
# PURE CALCULATION FUNCTIONS - Debt
# ============================================================================

def calculate_total_interest(principal: int, interest_rate_bps: int) -> int:
    """Flat interest over the full term."""
    return apply_bps(principal, interest_rate_bps)


def calculate_total_repayment_due(principal: int, interest_rate_bps: int) -> int:
    return principal + calculate_total_interest(principal, interest_rate_bps)


def calculate_outstanding_debt(principal: int, interest_rate_bps: int, amount_repaid: int) -> int:
    """Remaining debt, floored at zero."""
    return saturating_sub(calculate_total_repayment_due(principal, interest_rate_bps), amount_repaid)


def loan_outstanding_debt(loan: Loan) -> int:
    return calculate_outstanding_debt(loan.principal_amount, loan.interest_rate, loan.amount_repaid)


def calculate_debt_value_usd(outstanding_debt: int, borrow_price: int, borrow_decimals: int) -> int:
    """
    USD value (1e8) of debt denominated in the borrow asset.

    Raises:
        PriceUnavailable: borrow_price is zero
    """
    if borrow_price == 0:
        raise PriceUnavailable("Borrow asset price is zero")
    return mul_div(outstanding_debt, borrow_price, pow10(borrow_decimals))


# ============================================================================
# PURE CALCULATION FUNCTIONS - Health
# ============================================================================

def calculate_health_factor_bps(collateral_value_usd: int, debt_value_usd: int) -> Optional[int]:
    """collateral / debt in bps; None when there is no debt."""
    if debt_value_usd == 0:
        return None
    return ratio_bps(collateral_value_usd, debt_value_usd)


def classify_health(health_factor_bps: Optional[int]) -> HealthStatus:
    """Map a health factor to its status band (no debt is HEALTHY)."""
    if health_factor_bps is None or health_factor_bps >= HEALTH_HEALTHY_BPS:
        return HealthStatus.HEALTHY
    if health_factor_bps >= HEALTH_WARNING_BPS:
        return HealthStatus.WARNING
    return HealthStatus.DANGER


def is_below_liquidation_threshold(
    collateral_value_usd: int,
    debt_value_usd: int,
    liquidation_threshold_bps: int,
) -> bool:
    """
    True when the loan's LTV has crossed the liquidation threshold.

    The threshold is an LTV in bps for the (collateral, duration) pair:
    eligible when debt * 10000 > collateral * threshold. Compared without
    division so truncation cannot hide a crossing.
    """
    if debt_value_usd == 0:
        return False
    return debt_value_usd * BPS_DENOMINATOR > collateral_value_usd * liquidation_threshold_bps


def calculate_health(
    collateral_value_usd: int,
    outstanding_debt: int,
    debt_value_usd: int,
    liquidation_threshold_bps: Optional[int] = None,
) -> HealthFactorResult:
    """
    Health of a position from already-valued operands.

    PURE FUNCTION - All inputs explicit.
    """
    health_factor = calculate_health_factor_bps(collateral_value_usd, debt_value_usd)
    current_ltv = ratio_bps(debt_value_usd, collateral_value_usd) if collateral_value_usd else None
    below = (
        liquidation_threshold_bps is not None
        and is_below_liquidation_threshold(collateral_value_usd, debt_value_usd, liquidation_threshold_bps)
    )
    return HealthFactorResult(
        outstanding_debt=outstanding_debt,
        debt_value_usd=debt_value_usd,
        collateral_value_usd=collateral_value_usd,
        health_factor_bps=health_factor,
        status=classify_health(health_factor),
        current_ltv_bps=current_ltv,
        liquidation_threshold_bps=liquidation_threshold_bps,
        below_liquidation_threshold=below,
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS - Repayment
# ============================================================================

def is_within_full_repayment_tolerance(
    amount: int,
    outstanding_debt: int,
    tolerance_bps: int = FULL_REPAYMENT_TOLERANCE_BPS,
) -> bool:
    """|amount - outstanding| <= outstanding * tolerance, compared exactly."""
    return abs(amount - outstanding_debt) * BPS_DENOMINATOR <= outstanding_debt * tolerance_bps


def normalize_repayment(
    amount: int,
    outstanding_debt: int,
    tolerance_bps: int = FULL_REPAYMENT_TOLERANCE_BPS,
) -> int:
    """
    Snap near-full repayments to the exact outstanding debt.

    Returns:
        outstanding_debt when amount is within tolerance, otherwise amount.

    Raises:
        ValueError: amount is zero
        AmountExceedsDebt: nothing is owed, or amount exceeds debt beyond tolerance
    """
    if amount <= 0:
        raise ValueError("Repayment amount must be greater than zero")
    if outstanding_debt == 0:
        raise AmountExceedsDebt("Loan has no outstanding debt")
    if is_within_full_repayment_tolerance(amount, outstanding_debt, tolerance_bps):
        return outstanding_debt
    if amount > outstanding_debt:
        raise AmountExceedsDebt(
            f"Repayment {amount} exceeds outstanding debt {outstanding_debt}"
        )
    return amount


def calculate_min_partial_repayment(usd_floor: int, price: int, decimals: int) -> int:
    """
    Minimum partial repayment in token units: a USD floor (1e8) at the live price.

    Raises:
        PriceUnavailable: price is zero
    """
    if price == 0:
        raise PriceUnavailable("Repayment asset price is zero")
    return mul_div(usd_floor, pow10(decimals), price)


def check_partial_repayment(amount: int, outstanding_debt: int, min_partial_repayment: int) -> None:
    """
    Raises:
        RepaymentBelowMinimum: a partial amount under the minimum
    """
    if amount < outstanding_debt and amount < min_partial_repayment:
        raise RepaymentBelowMinimum(
            f"Partial repayment {amount} is below the minimum {min_partial_repayment}"
        )


def plan_repayment(
    amount: int,
    outstanding_debt: int,
    usd_floor: int,
    price: Optional[int],
    decimals: int,
    tolerance_bps: int = FULL_REPAYMENT_TOLERANCE_BPS,
) -> RepaymentPlan:
    """
    Normalize and validate a repayment.

    A full repayment needs no price and ignores `price`. A partial one
    needs the live price of the repayment asset; callers must pass a fresh
    one (PriceOracle.get_fresh_quote) since staleness is not checked here.

    Raises:
        AmountExceedsDebt, RepaymentBelowMinimum, ValueError
        PriceUnavailable: partial repayment without a price
    """
    normalized = normalize_repayment(amount, outstanding_debt, tolerance_bps)
    if normalized == outstanding_debt:
        return RepaymentPlan(amount=normalized, is_full=True, outstanding_debt=outstanding_debt)
    if price is None:
        raise PriceUnavailable("A live price is required to validate a partial repayment")
    minimum = calculate_min_partial_repayment(usd_floor, price, decimals)
    check_partial_repayment(normalized, outstanding_debt, minimum)
    return RepaymentPlan(
        amount=normalized,
        is_full=False,
        outstanding_debt=outstanding_debt,
        min_partial_repayment=minimum,
    )


def calculate_extended_due_date(due_date: int, additional_seconds: int) -> int:
    """New due date after an approved extension."""
    if additional_seconds <= 0:
        raise ValueError("Extension must add a positive number of seconds")
    return due_date + additional_seconds


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_health_factor(
    loan: Optional[Loan],
    collateral_price: Optional[int],
    collateral_decimals: int,
    borrow_price: Optional[int],
    borrow_decimals: int,
    liquidation_threshold_bps: Optional[int] = None,
) -> Union[HealthFactorResult, Pending]:
    """
    Health factor of a crypto loan from its snapshot and live prices.

    Returns Pending while the loan or either price has not loaded.
    Only the collateral still in escrow (amount - released) counts.

    Example:
        result = compute_health_factor(loan, eth_price, 18, usdc_price, 6)
        if result:
            result.status  # HealthStatus.HEALTHY
    """
    pending = pending_operands(loan=loan, collateral_price=collateral_price, borrow_price=borrow_price)
    if pending is not None:
        return pending

    outstanding = loan_outstanding_debt(loan)
    collateral_value = calculate_collateral_value_usd(loan.remaining_collateral, collateral_price, collateral_decimals)
    debt_value = calculate_debt_value_usd(outstanding, borrow_price, borrow_decimals)
    return calculate_health(collateral_value, outstanding, debt_value, liquidation_threshold_bps)


def fiat_loan_outstanding_cents(loan: FiatLoan) -> int:
    """
    Principal plus flat interest in loan-currency cents; zero once settled.

    Fiat repayment is confirmed off-chain and settles the loan in one step
    (status moves to REPAID), so there is no partial repayment to subtract.
    claimable_amount_cents is the disbursement the borrower may withdraw,
    not a repayment, and does not reduce the debt.
    """
    if loan.status not in (FiatLoanStatus.ACTIVE, FiatLoanStatus.PENDING_SUPPLIER):
        return 0
    return calculate_total_repayment_due(loan.fiat_amount_cents, loan.interest_rate)


def compute_fiat_health_factor(
    loan: Optional[FiatLoan],
    collateral_price: Optional[int],
    collateral_decimals: int,
    liquidation_threshold_bps: Optional[int] = None,
) -> Union[HealthFactorResult, Pending]:
    """
    Health factor of a fiat loan.

    The debt is valued at the loan's frozen exchange_rate_at_creation,
    never a live rate, so no exchange-rate read is involved.
    outstanding_debt is reported in loan-currency cents.
    """
    pending = pending_operands(loan=loan, collateral_price=collateral_price)
    if pending is not None:
        return pending

    outstanding_cents = fiat_loan_outstanding_cents(loan)
    usd_cents = frozen_amount_to_usd_cents(outstanding_cents, loan.currency, loan.exchange_rate_at_creation)
    debt_value = rescale(usd_cents, CENTS_DECIMALS, USD_DECIMALS)
    collateral_value = calculate_collateral_value_usd(loan.collateral_amount, collateral_price, collateral_decimals)
    return calculate_health(collateral_value, outstanding_cents, debt_value, liquidation_threshold_bps)
