"""
pricing_source.py - Price & staleness oracle adapter

Wraps a price source (normally the ChainReader) and classifies freshness.

Classes:
- PriceSource: Protocol for anything that can answer get_price/get_exchange_rate
- PriceOracle: adapter enforcing feed presence and staleness rules
- StaticPriceFeed: in-memory PriceSource for offline simulation and tests

Freshness rules:
- Token prices are stale after STALE_THRESHOLD_SECONDS (900s).
- Fiat exchange rates are stale after EXCHANGE_RATE_STALE_SECONDS (3600s)
  or whenever the rate oracle flags them stale.
- USD is the identity currency: rate 1e8, never stale, never read.
- A zero feed address or a non-positive price is PriceUnavailable, never 0.

Callers that need a fresh price (partial repayment, new request,
liquidation) call get_fresh_quote(). Full repayment calls get_quote() and
opts out of staleness explicitly.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Protocol, runtime_checkable

from .core import (
    Address, ExchangeRate, PriceQuote,
    PriceUnavailable, StalePriceError,
    EXCHANGE_RATE_STALE_SECONDS, RATE_SCALE, STALE_THRESHOLD_SECONDS,
    USD, ZERO_ADDRESS,
)

logger = logging.getLogger(__name__)

# Seconds since epoch, as an int (block timestamps are whole seconds).
Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


@runtime_checkable
class PriceSource(Protocol):
    """
    Anything answering price and rate reads.

    refresh=True asks for current chain state rather than a cached snapshot.
    """

    async def get_price(self, asset: Address, refresh: bool = False) -> PriceQuote:
        ...

    async def get_exchange_rate(self, currency: str, refresh: bool = False) -> ExchangeRate:
        ...


def is_stale(quote: PriceQuote, now: int, threshold: int = STALE_THRESHOLD_SECONDS) -> bool:
    """True when the quote is older than threshold seconds at `now`."""
    return quote.is_stale(now, threshold)


def seconds_until_stale(quote: PriceQuote, now: int, threshold: int = STALE_THRESHOLD_SECONDS) -> int:
    """Remaining freshness window, 0 once stale."""
    return max(0, quote.last_updated_at + threshold - now)


def usd_rate(now: int) -> ExchangeRate:
    """The identity rate for USD."""
    return ExchangeRate(currency=USD, rate=RATE_SCALE, last_updated_at=now, is_stale_flag=False)


def validate_quote(quote: PriceQuote) -> PriceQuote:
    """
    Reject quotes that cannot be used for any calculation.

    Raises:
        PriceUnavailable: no feed configured, or the feed answered <= 0
    """
    if not quote.feed_address or quote.feed_address.lower() == ZERO_ADDRESS:
        raise PriceUnavailable(f"No price feed configured for {quote.asset}")
    if quote.price <= 0:
        raise PriceUnavailable(f"Price feed for {quote.asset} returned {quote.price}")
    return quote


def require_fresh(
    quote: PriceQuote,
    now: int,
    threshold: int = STALE_THRESHOLD_SECONDS,
) -> PriceQuote:
    """
    Return the quote if it is usable and fresh.

    Raises:
        PriceUnavailable: see validate_quote()
        StalePriceError: quote older than threshold
    """
    validate_quote(quote)
    if quote.is_stale(now, threshold):
        raise StalePriceError(quote.asset, quote.age(now), threshold)
    return quote


class PriceOracle:
    """
    Price & staleness adapter over a PriceSource.

    The oracle does not cache; ChainReader owns snapshot caching and
    passes through here for classification.
    """

    def __init__(
        self,
        source: PriceSource,
        clock: Clock = system_clock,
        stale_threshold: int = STALE_THRESHOLD_SECONDS,
        exchange_rate_stale_threshold: int = EXCHANGE_RATE_STALE_SECONDS,
    ):
        self.source = source
        self.clock = clock
        self.stale_threshold = stale_threshold
        self.exchange_rate_stale_threshold = exchange_rate_stale_threshold

    async def get_quote(self, asset: Address, refresh: bool = False) -> PriceQuote:
        """Latest usable quote, without a freshness requirement."""
        quote = await self.source.get_price(asset, refresh=refresh)
        return validate_quote(quote)

    async def get_fresh_quote(self, asset: Address) -> PriceQuote:
        """Current quote (never a cached snapshot), refusing stale data."""
        quote = await self.get_quote(asset, refresh=True)
        now = self.clock()
        if quote.is_stale(now, self.stale_threshold):
            logger.warning(
                "Stale price for %s: updated %ss ago (threshold %ss)",
                asset, quote.age(now), self.stale_threshold,
            )
            raise StalePriceError(asset, quote.age(now), self.stale_threshold)
        return quote

    def classify(self, quote: PriceQuote) -> bool:
        """True when the quote is stale at the oracle's current time."""
        return quote.is_stale(self.clock(), self.stale_threshold)

    async def get_exchange_rate(self, currency: str, refresh: bool = False) -> ExchangeRate:
        """Latest fiat-per-USD rate; USD short-circuits to the identity rate."""
        if currency == USD:
            return usd_rate(self.clock())
        rate = await self.source.get_exchange_rate(currency, refresh=refresh)
        if rate.rate <= 0:
            raise PriceUnavailable(f"No exchange rate available for {currency}")
        return rate

    async def get_fresh_exchange_rate(self, currency: str) -> ExchangeRate:
        """Latest rate, refusing stale data (USD is never stale)."""
        rate = await self.get_exchange_rate(currency, refresh=True)
        now = self.clock()
        if rate.is_stale(now, self.exchange_rate_stale_threshold):
            age = max(0, now - rate.last_updated_at)
            logger.warning("Stale exchange rate for %s: updated %ss ago", currency, age)
            raise StalePriceError(currency, age, self.exchange_rate_stale_threshold)
        return rate

    def __repr__(self):
        return f"PriceOracle(threshold={self.stale_threshold}s, source={self.source!r})"


class StaticPriceFeed:
    """
    In-memory PriceSource with settable prices and rates.

    Prices are 1e8-scaled USD per whole token. Assets never set answer
    with a zero feed address, which PriceOracle maps to PriceUnavailable.
    """

    def __init__(
        self,
        prices: Optional[Dict[Address, int]] = None,
        exchange_rates: Optional[Dict[str, int]] = None,
        clock: Clock = system_clock,
    ):
        self.clock = clock
        self.quotes: Dict[Address, PriceQuote] = {}
        self.rates: Dict[str, ExchangeRate] = {}
        for asset, price in (prices or {}).items():
            self.update_price(asset, price)
        for currency, rate in (exchange_rates or {}).items():
            self.update_exchange_rate(currency, rate)

    async def get_price(self, asset: Address, refresh: bool = False) -> PriceQuote:
        quote = self.quotes.get(asset)
        if quote is None:
            return PriceQuote(asset=asset, price=0, feed_address=ZERO_ADDRESS, last_updated_at=0)
        return quote

    async def get_exchange_rate(self, currency: str, refresh: bool = False) -> ExchangeRate:
        if currency == USD:
            return usd_rate(self.clock())
        rate = self.rates.get(currency)
        if rate is None:
            return ExchangeRate(currency=currency, rate=0, last_updated_at=0, is_stale_flag=True)
        return rate

    def update_price(self, asset: Address, price: int, updated_at: Optional[int] = None,
                     feed_address: Optional[Address] = None):
        """Set the quote for an asset (updated now unless given)."""
        self.quotes[asset] = PriceQuote(
            asset=asset,
            price=price,
            feed_address=feed_address or f"feed:{asset}",
            last_updated_at=self.clock() if updated_at is None else updated_at,
        )

    def update_prices(self, prices: Dict[Address, int]):
        """Update multiple prices at once."""
        for asset, price in prices.items():
            self.update_price(asset, price)

    def update_exchange_rate(self, currency: str, rate: int, updated_at: Optional[int] = None,
                             is_stale_flag: bool = False):
        """Set the fiat-per-USD rate for a currency."""
        self.rates[currency] = ExchangeRate(
            currency=currency,
            rate=rate,
            last_updated_at=self.clock() if updated_at is None else updated_at,
            is_stale_flag=is_stale_flag,
        )

    def __repr__(self):
        return f"StaticPriceFeed({len(self.quotes)} prices, {len(self.rates)} rates)"
