"""
fixed_point.py - Decimal-scaled unsigned integer arithmetic

Every helper here reproduces contract integer arithmetic exactly:
- multiplication happens before division (a * b // scale), never the reverse
- division truncates toward zero (floor, since operands are unsigned)
- nothing rounds up

Python ints are arbitrary precision, so the intermediate product of two
1e18-scaled values cannot overflow the way a 256-bit word could; the
ordering rule still matters for precision and is kept identical to the
contracts so results match bit-for-bit.
"""

from __future__ import annotations

from .core import BPS_DENOMINATOR


def _require_unsigned(**values: int) -> None:
    for name, value in values.items():
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"{name} must be int, got {type(value).__name__}")
        if value < 0:
            raise ValueError(f"{name} must be non-negative, got {value}")


def pow10(decimals: int) -> int:
    """10 ** decimals for a token/asset decimal count."""
    _require_unsigned(decimals=decimals)
    return 10 ** decimals


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    floor(a * b / denominator) on unsigned ints.

    Raises:
        ValueError: negative operand or zero denominator
    """
    _require_unsigned(a=a, b=b, denominator=denominator)
    if denominator == 0:
        raise ValueError("denominator must be non-zero")
    return a * b // denominator


def scale_mul(a: int, b: int, b_decimals: int) -> int:
    """Multiply two scaled ints, dividing out b's full scale: a * b // 10^b_decimals."""
    return mul_div(a, b, pow10(b_decimals))


def scale_div(a: int, b: int, a_target_decimals: int) -> int:
    """Divide two scaled ints into a_target_decimals: a * 10^a_target_decimals // b."""
    return mul_div(a, pow10(a_target_decimals), b)


def rescale(amount: int, from_decimals: int, to_decimals: int) -> int:
    """Move an amount between decimal scales, truncating when precision is dropped."""
    _require_unsigned(amount=amount)
    if to_decimals >= from_decimals:
        return amount * pow10(to_decimals - from_decimals)
    return amount // pow10(from_decimals - to_decimals)


def apply_bps(amount: int, bps: int) -> int:
    """amount * bps / 10000, truncated."""
    return mul_div(amount, bps, BPS_DENOMINATOR)


def ratio_bps(numerator: int, denominator: int) -> int:
    """numerator / denominator expressed in bps, truncated."""
    return mul_div(numerator, BPS_DENOMINATOR, denominator)


def add_headroom(amount: int, headroom_bps: int) -> int:
    """amount plus a bps margin on top (100 bps: amount + amount // 100)."""
    return amount + apply_bps(amount, headroom_bps)


def saturating_sub(a: int, b: int) -> int:
    """a - b floored at zero."""
    _require_unsigned(a=a, b=b)
    return a - b if a > b else 0
