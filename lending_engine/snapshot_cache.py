"""
snapshot_cache.py - Invalidation-keyed store of on-chain read snapshots

The only mutable state shared between flows. Every entry is addressed by
(resource kind, identity), e.g. (ALLOWANCE, (token, owner, spender)), so a
write path invalidates exactly the snapshots it can affect. There is no
global flush on the write path.

Every invalidation is appended to `invalidations`, letting callers (and
tests) see the exact scope a write touched. The log keeps the most recent
`max_log` keys and can be emptied with clear_log().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ResourceKind(Enum):
    LOAN = "loan"
    LOAN_REQUEST = "loan_request"
    LENDER_OFFER = "lender_offer"
    FIAT_LOAN = "fiat_loan"
    FIAT_LENDER_OFFER = "fiat_lender_offer"
    ALLOWANCE = "allowance"
    BALANCE = "balance"
    DEBT = "debt"
    PRICE = "price"
    EXCHANGE_RATE = "exchange_rate"
    EXTENSION = "extension"
    LTV = "ltv"
    LIQUIDATION_THRESHOLD = "liquidation_threshold"
    DECIMALS = "decimals"


@dataclass(frozen=True, slots=True)
class SnapshotKey:
    kind: ResourceKind
    identity: Hashable

    def __repr__(self) -> str:
        return f"{self.kind.value}:{self.identity!r}"


# Key builders, so every call site spells a given identity the same way.

def loan_key(loan_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.LOAN, loan_id)


def loan_request_key(request_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.LOAN_REQUEST, request_id)


def lender_offer_key(offer_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.LENDER_OFFER, offer_id)


def fiat_loan_key(loan_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.FIAT_LOAN, loan_id)


def fiat_lender_offer_key(offer_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.FIAT_LENDER_OFFER, offer_id)


def allowance_key(token: str, owner: str, spender: str) -> SnapshotKey:
    return SnapshotKey(ResourceKind.ALLOWANCE, (token, owner, spender))


def balance_key(token: str, owner: str) -> SnapshotKey:
    return SnapshotKey(ResourceKind.BALANCE, (token, owner))


def debt_key(loan_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.DEBT, loan_id)


def price_key(asset: str) -> SnapshotKey:
    return SnapshotKey(ResourceKind.PRICE, asset)


def exchange_rate_key(currency: str) -> SnapshotKey:
    return SnapshotKey(ResourceKind.EXCHANGE_RATE, currency)


def extension_key(loan_id: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.EXTENSION, loan_id)


def ltv_key(asset: str, duration_days: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.LTV, (asset, duration_days))


def liquidation_threshold_key(asset: str, duration_days: int) -> SnapshotKey:
    return SnapshotKey(ResourceKind.LIQUIDATION_THRESHOLD, (asset, duration_days))


def decimals_key(token: str) -> SnapshotKey:
    return SnapshotKey(ResourceKind.DECIMALS, token)


class SnapshotCache:
    """Dict-backed snapshot store with exact-key invalidation."""

    def __init__(self, max_log: int = 1_024):
        if max_log < 1:
            raise ValueError("max_log must be at least 1")
        self._entries: Dict[SnapshotKey, Any] = {}
        self.invalidations: List[SnapshotKey] = []
        self.max_log = max_log

    def get(self, key: SnapshotKey) -> Optional[Any]:
        value = self._entries.get(key)
        if value is not None:
            logger.debug("cache hit %r", key)
        return value

    def put(self, key: SnapshotKey, value: Any) -> None:
        self._entries[key] = value

    def __contains__(self, key: SnapshotKey) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def invalidate(self, keys: Iterable[SnapshotKey]) -> Tuple[SnapshotKey, ...]:
        """Drop exactly `keys`; returns them in order."""
        dropped = tuple(keys)
        for key in dropped:
            self._entries.pop(key, None)
            self.invalidations.append(key)
            logger.debug("invalidated %r", key)
        if len(self.invalidations) > self.max_log:
            del self.invalidations[:-self.max_log]
        return dropped

    def invalidate_kind(self, kind: ResourceKind) -> Tuple[SnapshotKey, ...]:
        """Drop every snapshot of one kind (used for periodic price refresh)."""
        return self.invalidate([k for k in self._entries if k.kind == kind])

    def clear(self) -> None:
        """Drop everything (account switch); not used on write paths."""
        self._entries.clear()

    def clear_log(self) -> None:
        self.invalidations.clear()

    def __repr__(self):
        return f"SnapshotCache({len(self._entries)} entries)"
