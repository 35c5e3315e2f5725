"""
liquidation.py - Liquidation Payout Calculator

Predicts how a liquidation splits the escrowed collateral. The split is
advisory: the contract recomputes and enforces it at execution time.

Key Formulas:
    debt_value_usd          = outstanding_debt * borrow_price // 10^borrow_decimals
    collateral_for_debt     = debt_value_usd * 10^collateral_decimals // collateral_price
    liquidation_bonus       = collateral_for_debt * 500 // 10000
    collateral_to_liquidator = min(collateral_for_debt + bonus, remaining_collateral)
    collateral_to_borrower  = remaining_collateral - collateral_to_liquidator

Invariant: collateral_to_liquidator + collateral_to_borrower == remaining_collateral.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..core import (
    Loan, Pending, PriceUnavailable,
    LIQUIDATION_BONUS_BPS,
    pending_operands,
)
from ..fixed_point import apply_bps, mul_div, pow10
from .debt import calculate_debt_value_usd, loan_outstanding_debt


@dataclass(frozen=True, slots=True)
class LiquidationSplit:
    """
    Immutable predicted settlement of a liquidation.

    debt_to_pay is in borrow-asset units; every collateral_* field is in
    collateral-token units. capped is True when the escrow could not cover
    the debt plus the full bonus.
    """
    debt_to_pay: int
    debt_value_usd: int
    collateral_for_debt: int
    liquidation_bonus: int
    collateral_to_liquidator: int
    collateral_to_borrower: int
    remaining_collateral: int
    capped: bool


def calculate_liquidation_split(
    outstanding_debt: int,
    borrow_price: int,
    borrow_decimals: int,
    collateral_price: int,
    collateral_decimals: int,
    remaining_collateral: int,
    bonus_bps: int = LIQUIDATION_BONUS_BPS,
) -> LiquidationSplit:
    """
    Split remaining collateral between liquidator and borrower.

    PURE FUNCTION - All inputs explicit.

    Raises:
        PriceUnavailable: either price is zero

    Example:
        # 1,050 USDC debt, ETH at $2,500, 1 ETH in escrow
        split = calculate_liquidation_split(1_050 * 10**6, 10**8, 6,
                                            2_500 * 10**8, 18, 10**18)
        split.collateral_to_liquidator  # 0.441 ETH
        split.collateral_to_borrower    # 0.559 ETH
    """
    if collateral_price == 0:
        raise PriceUnavailable("Collateral price is zero")
    debt_value = calculate_debt_value_usd(outstanding_debt, borrow_price, borrow_decimals)
    collateral_for_debt = mul_div(debt_value, pow10(collateral_decimals), collateral_price)
    bonus = apply_bps(collateral_for_debt, bonus_bps)
    owed = collateral_for_debt + bonus
    to_liquidator = min(owed, remaining_collateral)
    return LiquidationSplit(
        debt_to_pay=outstanding_debt,
        debt_value_usd=debt_value,
        collateral_for_debt=collateral_for_debt,
        liquidation_bonus=bonus,
        collateral_to_liquidator=to_liquidator,
        collateral_to_borrower=remaining_collateral - to_liquidator,
        remaining_collateral=remaining_collateral,
        capped=owed > remaining_collateral,
    )


def compute_liquidation_split(
    loan: Optional[Loan],
    borrow_price: Optional[int],
    borrow_decimals: int,
    collateral_price: Optional[int],
    collateral_decimals: int,
) -> Union[LiquidationSplit, Pending]:
    """
    Liquidation preview for a loan snapshot.

    Returns Pending while the loan or either price has not loaded. A loan
    with nothing outstanding returns all remaining collateral to the borrower.
    """
    pending = pending_operands(loan=loan, borrow_price=borrow_price, collateral_price=collateral_price)
    if pending is not None:
        return pending
    return calculate_liquidation_split(
        outstanding_debt=loan_outstanding_debt(loan),
        borrow_price=borrow_price,
        borrow_decimals=borrow_decimals,
        collateral_price=collateral_price,
        collateral_decimals=collateral_decimals,
        remaining_collateral=loan.remaining_collateral,
    )
