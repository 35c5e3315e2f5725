"""
reader.py - Cached, decoded, retried on-chain reads

ChainReader is the only caller of ChainTransport.read_contract_state. Each
read:
1. checks the SnapshotCache under its (kind, identity) key
2. on a miss, calls the transport through the read RetryPolicy
3. decodes the raw value once into its canonical snapshot
4. stores the snapshot

Reads are independent coroutines; callers gather them concurrently and
must not assume any ordering between them. `refresh=True` bypasses the
cached value (and replaces it) for reads that must reflect chain state
right now, like the allowance re-check after an approval.

ChainReader also satisfies the PriceSource protocol, so a PriceOracle can
sit on top of it and get cached quotes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from .config import ContractAddresses, EngineConfig, DEFAULT_CONFIG
from .core import (
    Address, ChainTransport, ExchangeRate, FiatLenderOffer, FiatLoan,
    LenderOffer, Loan, LoanExtension, LoanRequest, PriceQuote,
    DecodeError, ZERO_ADDRESS,
)
from .decoders import (
    decode_fiat_lender_offer, decode_fiat_loan, decode_lender_offer,
    decode_loan, decode_loan_extension, decode_loan_request, decode_price_round,
)
from .retry import READ_POLICY, RetryPolicy, Sleep
from .snapshot_cache import (
    SnapshotCache, SnapshotKey,
    allowance_key, balance_key, debt_key, decimals_key, exchange_rate_key,
    extension_key, fiat_lender_offer_key, fiat_loan_key, lender_offer_key,
    liquidation_threshold_key, loan_key, loan_request_key, ltv_key, price_key,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _as_uint(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise DecodeError(f"expected unsigned int, got {raw!r}")
    return raw


class ChainReader:
    """
    Read side of the engine.

    Args:
        transport: ChainTransport capability
        cache: shared SnapshotCache (a fresh one if omitted)
        config: deployment config (contract addresses)
        policy: retry policy for transient ReadErrors
        sleep: awaitable sleep, injectable for tests
        price_via_feeds: read prices straight from the configured feed
            contracts (priceFeeds + latestRoundData) instead of the
            transport's get_price capability
    """

    def __init__(
        self,
        transport: ChainTransport,
        cache: Optional[SnapshotCache] = None,
        config: EngineConfig = DEFAULT_CONFIG,
        policy: RetryPolicy = READ_POLICY,
        sleep: Sleep = asyncio.sleep,
        price_via_feeds: bool = False,
    ):
        self.transport = transport
        self.cache = cache if cache is not None else SnapshotCache()
        self.config = config
        self.policy = policy
        self.sleep = sleep
        self.price_via_feeds = price_via_feeds

    @property
    def contracts(self) -> ContractAddresses:
        return self.config.contracts

    async def _call(self, address: Address, selector: str, args: Sequence[Any]) -> Any:
        return await self.policy.run(
            lambda: self.transport.read_contract_state(address, selector, tuple(args)),
            sleep=self.sleep,
        )

    async def _cached(
        self,
        key: SnapshotKey,
        load: Callable[[], Awaitable[T]],
        refresh: bool = False,
    ) -> T:
        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return cached
        value = await load()
        self.cache.put(key, value)
        return value

    async def _read(
        self,
        key: SnapshotKey,
        address: Address,
        selector: str,
        args: Sequence[Any],
        decode: Callable[[Any], T],
        refresh: bool = False,
    ) -> T:
        async def load() -> T:
            return decode(await self._call(address, selector, args))
        return await self._cached(key, load, refresh)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def get_loan(self, loan_id: int, refresh: bool = False) -> Loan:
        return await self._read(
            loan_key(loan_id), self.contracts.loan_marketplace, "loans", (loan_id,),
            decode_loan, refresh,
        )

    async def get_loan_request(self, request_id: int, refresh: bool = False) -> LoanRequest:
        return await self._read(
            loan_request_key(request_id), self.contracts.loan_marketplace, "loanRequests", (request_id,),
            decode_loan_request, refresh,
        )

    async def get_lender_offer(self, offer_id: int, refresh: bool = False) -> LenderOffer:
        return await self._read(
            lender_offer_key(offer_id), self.contracts.loan_marketplace, "lenderOffers", (offer_id,),
            decode_lender_offer, refresh,
        )

    async def get_fiat_loan(self, loan_id: int, refresh: bool = False) -> FiatLoan:
        return await self._read(
            fiat_loan_key(loan_id), self.contracts.fiat_loan_bridge, "getFiatLoan", (loan_id,),
            decode_fiat_loan, refresh,
        )

    async def get_fiat_lender_offer(self, offer_id: int, refresh: bool = False) -> FiatLenderOffer:
        return await self._read(
            fiat_lender_offer_key(offer_id), self.contracts.fiat_loan_bridge, "getFiatLenderOffer", (offer_id,),
            decode_fiat_lender_offer, refresh,
        )

    async def get_loan_extension(self, loan_id: int, refresh: bool = False) -> LoanExtension:
        return await self._read(
            extension_key(loan_id), self.contracts.loan_marketplace, "loanExtensions", (loan_id,),
            lambda raw: decode_loan_extension(loan_id, raw), refresh,
        )

    async def get_outstanding_debt(self, loan_id: int, refresh: bool = False) -> int:
        """The contract's own figure, for cross-checking the engine's mirror."""
        return await self._read(
            debt_key(loan_id), self.contracts.loan_marketplace, "getOutstandingDebt", (loan_id,),
            _as_uint, refresh,
        )

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def get_allowance(self, token: Address, owner: Address, spender: Address,
                            refresh: bool = False) -> int:
        return await self._read(
            allowance_key(token, owner, spender), token, "allowance", (owner, spender),
            _as_uint, refresh,
        )

    async def get_balance(self, token: Address, owner: Address, refresh: bool = False) -> int:
        return await self._read(
            balance_key(token, owner), token, "balanceOf", (owner,),
            _as_uint, refresh,
        )

    async def get_decimals(self, token: Address) -> int:
        return await self._read(decimals_key(token), token, "decimals", (), _as_uint)

    # ------------------------------------------------------------------
    # Risk configuration
    # ------------------------------------------------------------------

    async def get_ltv(self, asset: Address, duration_days: int, refresh: bool = False) -> int:
        """Max LTV in bps for (asset, duration); 0 when the pair is not enabled."""
        return await self._read(
            ltv_key(asset, duration_days), self.contracts.ltv_config, "getLTV", (asset, duration_days),
            _as_uint, refresh,
        )

    async def get_liquidation_threshold(self, asset: Address, duration_days: int,
                                        refresh: bool = False) -> int:
        return await self._read(
            liquidation_threshold_key(asset, duration_days), self.contracts.ltv_config,
            "getLiquidationThreshold", (asset, duration_days),
            _as_uint, refresh,
        )

    # ------------------------------------------------------------------
    # Prices (PriceSource)
    # ------------------------------------------------------------------

    async def get_price(self, asset: Address, refresh: bool = False) -> PriceQuote:
        load = self._price_from_feed if self.price_via_feeds else self._price_from_transport
        return await self._cached(price_key(asset), lambda: load(asset), refresh)

    async def _price_from_transport(self, asset: Address) -> PriceQuote:
        return await self.policy.run(lambda: self.transport.get_price(asset), sleep=self.sleep)

    async def _price_from_feed(self, asset: Address) -> PriceQuote:
        feed = await self._call(self.contracts.configuration, "priceFeeds", (asset,))
        if not feed or str(feed).lower() == ZERO_ADDRESS:
            return PriceQuote(asset=asset, price=0, feed_address=ZERO_ADDRESS, last_updated_at=0)
        raw = await self._call(feed, "latestRoundData", ())
        return decode_price_round(asset, feed, raw)

    async def get_exchange_rate(self, currency: str, refresh: bool = False) -> ExchangeRate:
        return await self._cached(
            exchange_rate_key(currency),
            lambda: self.policy.run(lambda: self.transport.get_exchange_rate(currency), sleep=self.sleep),
            refresh,
        )

    def __repr__(self):
        return f"ChainReader(cache={self.cache!r}, policy={self.policy.name})"
