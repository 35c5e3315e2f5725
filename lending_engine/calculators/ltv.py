"""
ltv.py - LTV & Borrow-Amount Calculator

Computes how much a borrower can draw against collateral at a selected
loan-to-value ratio, in a token or in fiat cents.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - All inputs explicit ints, no optional operands
   - Raise PriceUnavailable / AssetNotEnabled / LTVExceeded

2. CONVENIENCE FUNCTIONS (compute_*):
   - Accept operands that may not have loaded yet (None)
   - Return Pending instead of computing on undefined inputs
   - Return a frozen result dataclass otherwise

Key Formulas:
    collateral_value_usd = collateral_amount * price // 10^collateral_decimals
    loan_value_usd       = collateral_value_usd * selected_ltv_bps // 10000
    borrow_amount        = loan_value_usd * 10^borrow_decimals // borrow_price   (token)
    fiat_amount_cents    = loan_value_usd_in_cents * rate // 1e8               (fiat)

The selected LTV is clamped into [MIN_LTV_BPS, max_ltv_bps] before use.
Every step truncates, so the implied LTV of the result never exceeds the
configured maximum.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..core import (
    AssetNotEnabled, LTVExceeded, Pending, PriceUnavailable,
    BPS_DENOMINATOR, MIN_LTV_BPS, RATE_SCALE, SECONDS_PER_DAY, USD,
    pending_operands,
)
from ..fiat import from_usd_cents, to_usd_cents, usd_value_to_cents, cents_to_usd_value
from ..fixed_point import apply_bps, mul_div, pow10, ratio_bps


# ============================================================================
# BORROW TARGETS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TokenTarget:
    """Borrow in a token with `decimals`, priced at `price` (1e8 USD, None while loading)."""
    decimals: int
    price: Optional[int]


@dataclass(frozen=True, slots=True)
class FiatTarget:
    """Borrow in fiat cents of `currency` at `rate` (fiat per USD, 1e8; None while loading)."""
    currency: str
    rate: Optional[int] = None

    def effective_rate(self) -> Optional[int]:
        return RATE_SCALE if self.currency == USD else self.rate


BorrowTarget = Union[TokenTarget, FiatTarget]


@dataclass(frozen=True, slots=True)
class MaxBorrowResult:
    """
    Immutable result of a max-borrow calculation.

    borrow_amount is in the target's native scale: token units for a
    TokenTarget, cents for a FiatTarget.
    """
    collateral_value_usd: int
    selected_ltv_bps: int
    max_ltv_bps: int
    loan_value_usd: int
    borrow_amount: int
    target: BorrowTarget


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def duration_to_days(duration_seconds: int) -> int:
    """LTV tiers are keyed by whole days, rounding a partial day up."""
    return -(-duration_seconds // SECONDS_PER_DAY)


def clamp_ltv(selected_ltv_bps: int, max_ltv_bps: int, min_ltv_bps: int = MIN_LTV_BPS) -> int:
    """
    Clamp a user-selected LTV into [min_ltv_bps, max_ltv_bps].

    Raises:
        AssetNotEnabled: max_ltv_bps is 0 (no LTV configured for the pair)
    """
    if max_ltv_bps <= 0:
        raise AssetNotEnabled("No LTV configured for this collateral and duration")
    floor = min(min_ltv_bps, max_ltv_bps)
    return max(floor, min(selected_ltv_bps, max_ltv_bps))


def calculate_collateral_value_usd(collateral_amount: int, price: int, collateral_decimals: int) -> int:
    """
    USD value (1e8) of a collateral amount.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Raises:
        PriceUnavailable: price is zero
    """
    if price == 0:
        raise PriceUnavailable("Collateral price is zero")
    return mul_div(collateral_amount, price, pow10(collateral_decimals))


def calculate_loan_value_usd(collateral_value_usd: int, ltv_bps: int) -> int:
    """USD value (1e8) drawable at ltv_bps."""
    return apply_bps(collateral_value_usd, ltv_bps)


def calculate_borrow_amount(loan_value_usd: int, borrow_price: int, borrow_decimals: int) -> int:
    """
    Token units worth loan_value_usd.

    Raises:
        PriceUnavailable: borrow_price is zero
    """
    if borrow_price == 0:
        raise PriceUnavailable("Borrow asset price is zero")
    return mul_div(loan_value_usd, pow10(borrow_decimals), borrow_price)


def calculate_fiat_borrow_amount(loan_value_usd: int, exchange_rate: int) -> int:
    """Fiat cents worth loan_value_usd: the USD value is truncated to cents first."""
    return from_usd_cents(usd_value_to_cents(loan_value_usd), exchange_rate)


def calculate_token_value_usd(amount: int, price: int, decimals: int) -> int:
    """USD value (1e8) of any token amount."""
    if price == 0:
        raise PriceUnavailable("Token price is zero")
    return mul_div(amount, price, pow10(decimals))


def calculate_fiat_value_usd(fiat_cents: int, exchange_rate: int) -> int:
    """USD value (1e8) of fiat cents."""
    return cents_to_usd_value(to_usd_cents(fiat_cents, exchange_rate))


def calculate_current_ltv_bps(borrow_value_usd: int, collateral_value_usd: int) -> int:
    """
    borrow value / collateral value in bps.

    Raises:
        ValueError: collateral value is zero
    """
    if collateral_value_usd == 0:
        raise ValueError("Collateral value is zero; LTV is undefined")
    return ratio_bps(borrow_value_usd, collateral_value_usd)


def calculate_max_borrow(
    collateral_amount: int,
    collateral_price: int,
    collateral_decimals: int,
    max_ltv_bps: int,
    target: BorrowTarget,
    selected_ltv_bps: Optional[int] = None,
) -> MaxBorrowResult:
    """
    Maximum borrowable amount at the (clamped) selected LTV.

    PURE FUNCTION - All inputs explicit.

    Args:
        collateral_amount: Collateral in token units
        collateral_price: Collateral price, 1e8 USD
        collateral_decimals: Collateral token decimals
        max_ltv_bps: Contract-reported maximum LTV for (asset, duration)
        target: TokenTarget or FiatTarget with a loaded price/rate
        selected_ltv_bps: User selection; defaults to max_ltv_bps

    Raises:
        AssetNotEnabled: max_ltv_bps is 0
        PriceUnavailable: any price or rate is zero

    Example:
        # 10 units (8 decimals) at $2000, 70% LTV, borrow a $1 6-decimal token
        r = calculate_max_borrow(10 * 10**8, 2000 * 10**8, 8, 7500,
                                 TokenTarget(decimals=6, price=10**8), 7000)
        r.borrow_amount  # 14_000_000000
    """
    ltv = clamp_ltv(max_ltv_bps if selected_ltv_bps is None else selected_ltv_bps, max_ltv_bps)
    collateral_value = calculate_collateral_value_usd(collateral_amount, collateral_price, collateral_decimals)
    loan_value = calculate_loan_value_usd(collateral_value, ltv)

    if isinstance(target, TokenTarget):
        borrow_amount = calculate_borrow_amount(loan_value, target.price, target.decimals)
    else:
        borrow_amount = calculate_fiat_borrow_amount(loan_value, target.effective_rate())

    return MaxBorrowResult(
        collateral_value_usd=collateral_value,
        selected_ltv_bps=ltv,
        max_ltv_bps=max_ltv_bps,
        loan_value_usd=loan_value,
        borrow_amount=borrow_amount,
        target=target,
    )


def validate_borrow_request(
    collateral_value_usd: int,
    borrow_value_usd: int,
    max_ltv_bps: int,
) -> int:
    """
    Check a requested borrow against the maximum LTV.

    Compares borrow_value * 10000 against collateral_value * max_ltv_bps
    without dividing, so the check cannot be flattered by truncation.

    Returns:
        The implied LTV in bps.

    Raises:
        AssetNotEnabled: max_ltv_bps is 0
        LTVExceeded: implied LTV above max_ltv_bps
    """
    if max_ltv_bps <= 0:
        raise AssetNotEnabled("No LTV configured for this collateral and duration")
    if borrow_value_usd * BPS_DENOMINATOR > collateral_value_usd * max_ltv_bps:
        implied = calculate_current_ltv_bps(borrow_value_usd, collateral_value_usd) if collateral_value_usd else None
        raise LTVExceeded(
            f"Requested borrow implies LTV {implied} bps, above maximum {max_ltv_bps} bps"
        )
    if borrow_value_usd == 0:
        return 0
    return calculate_current_ltv_bps(borrow_value_usd, collateral_value_usd)


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def compute_max_borrow(
    collateral_amount: Optional[int],
    collateral_price: Optional[int],
    collateral_decimals: int,
    max_ltv_bps: Optional[int],
    target: BorrowTarget,
    selected_ltv_bps: Optional[int] = None,
) -> Union[MaxBorrowResult, Pending]:
    """
    Max-borrow query tolerant of partially loaded inputs.

    Returns Pending while any of collateral amount, collateral price, max
    LTV, or the target's price/rate is None. A loaded zero still raises.
    """
    target_price = target.price if isinstance(target, TokenTarget) else target.effective_rate()
    pending = pending_operands(
        collateral_amount=collateral_amount,
        collateral_price=collateral_price,
        max_ltv_bps=max_ltv_bps,
        target_price=target_price,
    )
    if pending is not None:
        return pending
    return calculate_max_borrow(
        collateral_amount, collateral_price, collateral_decimals,
        max_ltv_bps, target, selected_ltv_bps,
    )
