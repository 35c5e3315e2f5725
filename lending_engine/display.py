"""
display.py - Formatting at the presentation boundary

The only place integers become decimal text or floats. Calculators never
import this module.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from .calculators.debt import HealthFactorResult
from .core import BPS_DENOMINATOR, CENTS_DECIMALS, SECONDS_PER_DAY, USD_DECIMALS, Pending
from .fiat import SUPPORTED_FIAT_CURRENCIES

UNDEFINED = "--"


def format_units(amount: int, decimals: int) -> str:
    """
    Exact decimal rendering of a fixed-point amount.

    Example:
        format_units(1_500_000, 6) -> "1.5"
    """
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** decimals)
    if decimals == 0 or frac == 0:
        return f"{sign}{whole}"
    digits = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{digits}"


def parse_units(text: str, decimals: int) -> int:
    """
    Parse user input into a fixed-point amount.

    Raises:
        ValueError: not a number, negative, or more precision than `decimals`
    """
    try:
        value = Decimal(text.strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {text!r}") from None
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {text!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{text!r} has more than {decimals} decimal places")
    return int(scaled)


def to_float(amount: int, decimals: int) -> float:
    """Lossy float for charts; never feed the result back into a calculation."""
    return float(Decimal(amount).scaleb(-decimals))


def format_percentage(bps: Optional[int], places: int = 2) -> str:
    if bps is None:
        return UNDEFINED
    value = Decimal(bps) / 100
    return f"{value:.{places}f}%"


def format_health_factor(result: Union[HealthFactorResult, Pending, None], places: int = 2) -> str:
    """Health factor as a ratio ("1.50"); "--" while pending or with no debt."""
    if not isinstance(result, HealthFactorResult) or result.health_factor_bps is None:
        return UNDEFINED
    value = Decimal(result.health_factor_bps) / BPS_DENOMINATOR
    return f"{value:.{places}f}"


def format_usd(usd_value: int) -> str:
    """1e8-scaled USD value as "$1,234.56"."""
    value = Decimal(usd_value).scaleb(-USD_DECIMALS)
    return f"${value:,.2f}"


def format_fiat(amount_cents: int, currency: str) -> str:
    currency_info = SUPPORTED_FIAT_CURRENCIES.get(currency)
    symbol = currency_info.symbol if currency_info else f"{currency} "
    value = Decimal(amount_cents).scaleb(-CENTS_DECIMALS)
    return f"{symbol}{value:,.2f}"


def format_duration(seconds: int) -> str:
    days = seconds // SECONDS_PER_DAY
    hours = (seconds % SECONDS_PER_DAY) // 3600
    if days > 0:
        return f"{days} day{'s' if days != 1 else ''}"
    if hours > 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return "Less than 1 hour"
