"""
fiat.py - Fiat/USD conversion

Exchange rates are fiat units per USD, 1e8-scaled (NGN at 1,500 per USD is
150_000_000_000). Conversions operate on integer cents in both currencies:

    to_usd_cents(fiat_cents, rate)   = fiat_cents * 1e8 // rate
    from_usd_cents(usd_cents, rate)  = usd_cents * rate // 1e8

USD is the identity currency. A loan's exchange_rate_at_creation, when
present, is authoritative for that loan's lifetime and is used instead of
any live rate.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Union

from .core import (
    ExchangeRate, FiatLenderOffer, FiatLoan, Pending,
    PriceUnavailable,
    CENTS_DECIMALS, RATE_SCALE, USD, USD_DECIMALS,
    pending_operands,
)
from .fixed_point import mul_div, rescale


@dataclass(frozen=True, slots=True)
class FiatCurrency:
    code: str
    symbol: str
    name: str


SUPPORTED_FIAT_CURRENCIES: Mapping[str, FiatCurrency] = {
    c.code: c for c in (
        FiatCurrency("USD", "$", "US Dollar"),
        FiatCurrency("NGN", "₦", "Nigerian Naira"),
        FiatCurrency("EUR", "€", "Euro"),
        FiatCurrency("GBP", "£", "British Pound"),
        FiatCurrency("KES", "KSh", "Kenyan Shilling"),
        FiatCurrency("GHS", "₵", "Ghanaian Cedi"),
        FiatCurrency("ZAR", "R", "South African Rand"),
    )
}


def get_currency(code: str) -> FiatCurrency:
    """Look up a supported currency by ISO code."""
    try:
        return SUPPORTED_FIAT_CURRENCIES[code]
    except KeyError:
        raise ValueError(f"Unsupported fiat currency: {code}") from None


def _rate_value(rate: Union[int, ExchangeRate]) -> int:
    return rate.rate if isinstance(rate, ExchangeRate) else rate


def to_usd_cents(fiat_cents: int, rate: Union[int, ExchangeRate]) -> int:
    """
    Convert fiat cents to USD cents at a fiat-per-USD rate (1e8-scaled).

    Raises:
        PriceUnavailable: rate is zero
    """
    value = _rate_value(rate)
    if value == 0:
        raise PriceUnavailable("Exchange rate is zero")
    return mul_div(fiat_cents, RATE_SCALE, value)


def from_usd_cents(usd_cents: int, rate: Union[int, ExchangeRate]) -> int:
    """
    Convert USD cents to fiat cents at a fiat-per-USD rate (1e8-scaled).

    Raises:
        PriceUnavailable: rate is zero
    """
    value = _rate_value(rate)
    if value == 0:
        raise PriceUnavailable("Exchange rate is zero")
    return mul_div(usd_cents, value, RATE_SCALE)


def usd_value_to_cents(usd_value: int) -> int:
    """1e8-scaled USD value to USD cents (truncating)."""
    return rescale(usd_value, USD_DECIMALS, CENTS_DECIMALS)


def cents_to_usd_value(usd_cents: int) -> int:
    """USD cents to a 1e8-scaled USD value."""
    return rescale(usd_cents, CENTS_DECIMALS, USD_DECIMALS)


def convert_fiat(
    amount_cents: Optional[int],
    from_currency: str,
    to_currency: str,
    rates: Mapping[str, Optional[Union[int, ExchangeRate]]],
    frozen_rate: Optional[int] = None,
) -> Union[int, Pending]:
    """
    Convert an amount of cents between two currencies through USD.

    Args:
        amount_cents: Amount in cents of from_currency (None if not loaded)
        from_currency: ISO code of the amount
        to_currency: ISO code of the result
        rates: currency -> live rate (or None while loading); USD needs no entry
        frozen_rate: exchange_rate_at_creation of the loan this amount belongs
            to. When non-zero it replaces the live rate of the non-USD side.

    Returns:
        Converted cents, or Pending if a needed operand is missing.

    Freshness of live rates is the caller's job (PriceOracle.get_fresh_exchange_rate);
    this function is pure.
    """
    get_currency(from_currency)
    get_currency(to_currency)
    if frozen_rate and USD not in (from_currency, to_currency):
        raise ValueError("A frozen rate applies to a USD conversion of a single loan currency")
    if from_currency == to_currency:
        pending = pending_operands(amount_cents=amount_cents)
        return pending if pending is not None else amount_cents

    def rate_for(currency: str) -> Optional[int]:
        if currency == USD:
            return RATE_SCALE
        if frozen_rate:
            return frozen_rate
        rate = rates.get(currency)
        return None if rate is None else _rate_value(rate)

    from_rate = rate_for(from_currency)
    to_rate = rate_for(to_currency)
    pending = pending_operands(
        amount_cents=amount_cents,
        **{f"rate_{from_currency}": from_rate, f"rate_{to_currency}": to_rate},
    )
    if pending is not None:
        return pending

    usd_cents = amount_cents if from_currency == USD else to_usd_cents(amount_cents, from_rate)
    if to_currency == USD:
        return usd_cents
    return from_usd_cents(usd_cents, to_rate)


def frozen_amount_to_usd_cents(amount_cents: int, currency: str, exchange_rate_at_creation: int) -> int:
    """
    Value fiat cents in USD cents at a rate frozen at origination.

    USD passes through. A zero frozen rate (legacy loans created before the
    rate was recorded) treats the amount as USD cents.
    """
    if currency == USD or exchange_rate_at_creation == 0:
        return amount_cents
    return to_usd_cents(amount_cents, exchange_rate_at_creation)


def fiat_loan_usd_cents(loan: FiatLoan) -> int:
    """Principal of a fiat loan in USD cents, at its frozen creation rate."""
    return frozen_amount_to_usd_cents(loan.fiat_amount_cents, loan.currency, loan.exchange_rate_at_creation)


def fiat_offer_usd_cents(offer: FiatLenderOffer) -> int:
    """Size of a fiat supplier offer in USD cents, at its frozen creation rate."""
    return frozen_amount_to_usd_cents(offer.fiat_amount_cents, offer.currency, offer.exchange_rate_at_creation)
