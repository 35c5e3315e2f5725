"""
config.py - Engine configuration

EngineConfig holds every tunable the calculators and orchestrator read:
freshness thresholds, approval headroom, the allowance re-check delay,
the confirmation bound, and repayment policy. Defaults mirror the
marketplace contracts. Deployments override them through environment
variables (LENDING_ENGINE_*) with EngineConfig.from_env().

ContractAddresses and TokenRegistry describe one deployment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Mapping, Optional

from .core import (
    Address,
    ALLOWANCE_RECHECK_DELAY_SECONDS, APPROVAL_HEADROOM_BPS,
    EXCHANGE_RATE_STALE_SECONDS, FULL_REPAYMENT_TOLERANCE_BPS,
    MAX_LOAN_DURATION_SECONDS, MIN_LOAN_DURATION_SECONDS,
    STALE_THRESHOLD_SECONDS, USD_SCALE, ZERO_ADDRESS,
)

ENV_PREFIX = "LENDING_ENGINE_"


@dataclass(frozen=True, slots=True)
class ContractAddresses:
    """Addresses of one marketplace deployment (zero address when not deployed)."""
    loan_marketplace: Address = ZERO_ADDRESS
    configuration: Address = ZERO_ADDRESS
    collateral_escrow: Address = ZERO_ADDRESS
    ltv_config: Address = ZERO_ADDRESS
    fiat_oracle: Address = ZERO_ADDRESS
    fiat_loan_bridge: Address = ZERO_ADDRESS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ContractAddresses":
        env = os.environ if environ is None else environ
        return cls(**{
            name: env.get(f"{ENV_PREFIX}{name.upper()}_ADDRESS", ZERO_ADDRESS)
            for name in cls.__dataclass_fields__
        })

    def supports_fiat(self) -> bool:
        return self.fiat_loan_bridge != ZERO_ADDRESS


@dataclass(frozen=True, slots=True)
class TokenInfo:
    address: Address
    symbol: str
    decimals: int
    name: str = ""


class TokenRegistry:
    """Address -> TokenInfo lookup for a deployment's supported tokens."""

    def __init__(self, tokens: Iterable[TokenInfo] = ()):
        self._by_address: Dict[str, TokenInfo] = {}
        for token in tokens:
            self.register(token)

    def register(self, token: TokenInfo) -> None:
        self._by_address[token.address.lower()] = token

    def get(self, address: Address) -> TokenInfo:
        try:
            return self._by_address[address.lower()]
        except KeyError:
            raise KeyError(f"Unknown token {address}") from None

    def decimals(self, address: Address) -> int:
        return self.get(address).decimals

    def symbol(self, address: Address) -> str:
        return self.get(address).symbol

    def __contains__(self, address: Address) -> bool:
        return address.lower() in self._by_address

    def __iter__(self):
        return iter(self._by_address.values())

    def __len__(self) -> int:
        return len(self._by_address)

    def __repr__(self):
        return f"TokenRegistry({', '.join(t.symbol for t in self)})"


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable engine settings.

    min_partial_repayment_usd is a 1e8-scaled USD floor, converted into
    the repayment asset at the live price when a partial repayment is planned.
    """
    stale_threshold_seconds: int = STALE_THRESHOLD_SECONDS
    exchange_rate_stale_seconds: int = EXCHANGE_RATE_STALE_SECONDS
    approval_headroom_bps: int = APPROVAL_HEADROOM_BPS
    allowance_recheck_delay_seconds: float = ALLOWANCE_RECHECK_DELAY_SECONDS
    confirmation_timeout_seconds: float = 180.0
    min_partial_repayment_usd: int = 10 * USD_SCALE
    full_repayment_tolerance_bps: int = FULL_REPAYMENT_TOLERANCE_BPS
    min_loan_duration_seconds: int = MIN_LOAN_DURATION_SECONDS
    max_loan_duration_seconds: int = MAX_LOAN_DURATION_SECONDS
    contracts: ContractAddresses = field(default_factory=ContractAddresses)

    def __post_init__(self):
        if self.stale_threshold_seconds <= 0:
            raise ValueError("stale_threshold_seconds must be positive")
        if self.confirmation_timeout_seconds <= 0:
            raise ValueError("confirmation_timeout_seconds must be positive")
        if self.min_loan_duration_seconds > self.max_loan_duration_seconds:
            raise ValueError("min_loan_duration_seconds exceeds max_loan_duration_seconds")

    def with_contracts(self, contracts: ContractAddresses) -> "EngineConfig":
        return replace(self, contracts=contracts)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from LENDING_ENGINE_* variables, falling back to defaults.

        e.g. LENDING_ENGINE_CONFIRMATION_TIMEOUT_SECONDS=300
             LENDING_ENGINE_LOAN_MARKETPLACE_ADDRESS=0x...
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        overrides = {}
        for name in cls.__dataclass_fields__:
            if name == "contracts":
                continue
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is None or raw.strip() == "":
                continue
            kind = type(getattr(defaults, name))
            try:
                overrides[name] = kind(raw.strip())
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name.upper()}={raw!r} is not a valid {kind.__name__}") from None
        return cls(contracts=ContractAddresses.from_env(env), **overrides)


DEFAULT_CONFIG = EngineConfig()
