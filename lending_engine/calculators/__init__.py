"""
Calculators - Pure fixed-point mirrors of the marketplace's settlement math.

Modules:
- ltv: collateral valuation, LTV clamping, max-borrow in token or fiat
- debt: flat interest, outstanding debt, health factor, repayment policy
- liquidation: liquidator/borrower collateral split
"""

from .ltv import (
    TokenTarget,
    FiatTarget,
    BorrowTarget,
    MaxBorrowResult,
    duration_to_days,
    clamp_ltv,
    calculate_collateral_value_usd,
    calculate_loan_value_usd,
    calculate_borrow_amount,
    calculate_fiat_borrow_amount,
    calculate_token_value_usd,
    calculate_fiat_value_usd,
    calculate_current_ltv_bps,
    calculate_max_borrow,
    validate_borrow_request,
    compute_max_borrow,
)

from .debt import (
    HealthFactorResult,
    RepaymentPlan,
    calculate_total_interest,
    calculate_total_repayment_due,
    calculate_outstanding_debt,
    loan_outstanding_debt,
    calculate_debt_value_usd,
    calculate_health_factor_bps,
    classify_health,
    is_below_liquidation_threshold,
    calculate_health,
    is_within_full_repayment_tolerance,
    normalize_repayment,
    calculate_min_partial_repayment,
    check_partial_repayment,
    plan_repayment,
    calculate_extended_due_date,
    compute_health_factor,
    fiat_loan_outstanding_cents,
    compute_fiat_health_factor,
)

from .liquidation import (
    LiquidationSplit,
    calculate_liquidation_split,
    compute_liquidation_split,
)
