"""
Core types for the lending calculation and transaction-preparation engine.

This module provides the foundational data structures and protocols:
1. Constants: fixed-point scales, thresholds, protocol parameters
2. Enums: contract status codes mirrored from the marketplace contracts
3. Exceptions: LendingError and the domain-specific error taxonomy
4. Protocols: ChainTransport, the async read/simulate/write capability
5. Immutable snapshots: Loan, LoanRequest, FiatLoan, offers, quotes
6. Pending: marker returned when a calculation operand is not yet loaded

All monetary values are unsigned Python ints in their native scale
(10^decimals for tokens, cents for fiat, 1e8 for USD, prices and rates).
Nothing in this module performs I/O.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Optional, Protocol, Sequence, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# Basis points denominator (10000 bps = 100%).
BPS_DENOMINATOR = 10_000

# USD values, oracle prices and fiat exchange rates are all 1e8-scaled.
PRICE_DECIMALS = 8
PRICE_SCALE = 10 ** PRICE_DECIMALS
USD_DECIMALS = 8
USD_SCALE = 10 ** USD_DECIMALS
RATE_SCALE = 10 ** 8

# Fiat amounts are integer cents.
CENTS_DECIMALS = 2

# A price quote older than this is unusable for new commitments.
STALE_THRESHOLD_SECONDS = 15 * 60

# Fiat exchange rates are pushed hourly by the rate oracle.
EXCHANGE_RATE_STALE_SECONDS = 60 * 60

# Liquidator bonus on top of the collateral covering the debt (5%).
LIQUIDATION_BONUS_BPS = 500

# Selectable LTV floor; the ceiling is read from the LTV configuration contract.
MIN_LTV_BPS = 1_000

# Approvals are sent for amount * 1.01 to absorb rounding between quote and execution.
APPROVAL_HEADROOM_BPS = 100

# A repayment within 0.1% of the outstanding debt is snapped to the full balance.
FULL_REPAYMENT_TOLERANCE_BPS = 10

# Delay before the single allowance re-read after an approval confirms.
ALLOWANCE_RECHECK_DELAY_SECONDS = 2.0

# Health-factor status bands, in bps of debt value (15000 = 150%).
HEALTH_HEALTHY_BPS = 15_000
HEALTH_WARNING_BPS = 10_000

# Loan duration bounds accepted by the marketplace.
MIN_LOAN_DURATION_SECONDS = 86_400
MAX_LOAN_DURATION_SECONDS = 365 * 86_400

SECONDS_PER_DAY = 86_400

ZERO_ADDRESS = "0x" + "0" * 40

USD = "USD"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Hex-encoded account or contract address.
Address = str

# Opaque transaction identifier returned by the transport on submission.
TxHandle = str

# Function name (or 4-byte selector) of a contract call.
Selector = str


# ============================================================================
# ENUMS
# ============================================================================

class LoanStatus(IntEnum):
    """On-chain status of a crypto loan."""
    NULL = 0
    ACTIVE = 1
    REPAID = 2
    LIQUIDATED = 3
    DEFAULTED = 4


class LoanRequestStatus(IntEnum):
    """Status of a borrower's pre-funding request (also used by crypto lender offers)."""
    PENDING = 0
    FUNDED = 1
    EXPIRED = 2
    CANCELLED = 3


class FiatLoanStatus(IntEnum):
    """On-chain status of a fiat-settled loan."""
    PENDING_SUPPLIER = 0
    ACTIVE = 1
    REPAID = 2
    LIQUIDATED = 3
    CANCELLED = 4


class FiatLenderOfferStatus(IntEnum):
    """Status of a fiat supplier's standing offer."""
    ACTIVE = 0
    ACCEPTED = 1
    CANCELLED = 2
    EXPIRED = 3


class HealthStatus(str, Enum):
    """
    Threshold-relative status of a loan's health factor.

    HEALTHY: health factor >= 150%
    WARNING: 100% <= health factor < 150%
    DANGER: health factor < 100%
    """
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    DANGER = "DANGER"


class ReceiptStatus(str, Enum):
    """Outcome recorded in a mined transaction receipt."""
    SUCCESS = "success"
    REVERTED = "reverted"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-engine errors."""
    pass


class PriceUnavailable(LendingError):
    """Raised when no price feed is configured for an asset, or the feed reports a zero price."""
    pass


class StalePriceError(LendingError):
    """Raised when a calculation requires a fresh price and the latest quote is older than the threshold."""

    def __init__(self, asset: str, age_seconds: int, threshold_seconds: int):
        self.asset = asset
        self.age_seconds = age_seconds
        self.threshold_seconds = threshold_seconds
        super().__init__(
            f"Price for {asset} is stale: updated {age_seconds}s ago "
            f"(threshold {threshold_seconds}s)"
        )


class AssetNotEnabled(LendingError):
    """Raised when the LTV configuration has no entry for a (collateral asset, duration) pair."""
    pass


class LTVExceeded(LendingError):
    """Raised when a requested borrow amount implies an LTV above the configured maximum."""
    pass


class AmountExceedsDebt(LendingError):
    """Raised when a repayment exceeds the outstanding debt beyond the full-repayment tolerance."""
    pass


class RepaymentBelowMinimum(LendingError):
    """Raised when a partial repayment is below the configured USD floor."""
    pass


class InsufficientBalance(LendingError):
    """Raised when the acting account does not hold enough of the token it must send."""
    pass


class AllowanceNotPropagated(LendingError):
    """Raised when an approval confirmed but the allowance read is still short after the re-check."""
    pass


class SimulationFailed(LendingError):
    """Raised when the dry-run of a call fails; `reason` carries the decoded user-facing text."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class TransactionReverted(LendingError):
    """Raised when a submitted transaction's receipt reports a revert."""

    def __init__(self, tx_handle: TxHandle):
        self.tx_handle = tx_handle
        super().__init__(f"Transaction {tx_handle} reverted")


class ConfirmationTimeout(LendingError):
    """
    Raised when a receipt did not arrive within the confirmation bound.

    The transaction may still land later; this neither asserts success nor
    failure. Callers re-check with the carried handle.
    """

    def __init__(self, tx_handle: TxHandle, timeout_seconds: float):
        self.tx_handle = tx_handle
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"No receipt for {tx_handle} within {timeout_seconds}s; "
            f"the transaction may still be mined"
        )


class ActionNotAllowed(LendingError):
    """Raised when an action is requested against an entity in the wrong state or by the wrong party."""
    pass


class FlowInProgress(LendingError):
    """Raised when a flow for the same (account, loan, action) is running or still awaits confirmation."""
    pass


class ReadError(LendingError):
    """Raised by the transport when a contract read fails."""
    pass


class DecodeError(LendingError):
    """Raised when a contract return value cannot be decoded into its entity."""
    pass


# ============================================================================
# SNAPSHOTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    Latest oracle answer for a token.

    price is USD per whole token, 1e8-scaled. A quote with a zero
    feed_address means no feed is configured for the asset.
    """
    asset: Address
    price: int
    feed_address: Address
    last_updated_at: int

    def age(self, now: int) -> int:
        return max(0, now - self.last_updated_at)

    def is_stale(self, now: int, threshold: int = STALE_THRESHOLD_SECONDS) -> bool:
        return now - self.last_updated_at > threshold


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """Fiat exchange rate: units of `currency` per USD, 1e8-scaled."""
    currency: str
    rate: int
    last_updated_at: int
    is_stale_flag: bool = False

    def is_stale(self, now: int, threshold: int = EXCHANGE_RATE_STALE_SECONDS) -> bool:
        """USD is the identity rate and never goes stale."""
        if self.currency == USD:
            return False
        return self.is_stale_flag or now - self.last_updated_at > threshold


@dataclass(frozen=True, slots=True)
class Loan:
    """
    Immutable snapshot of an active (or settled) crypto loan.

    interest_rate is a flat rate in bps applied once over the full term.
    """
    loan_id: int
    request_id: int
    borrower: Address
    lender: Address
    collateral_asset: Address
    collateral_amount: int
    collateral_released: int
    borrow_asset: Address
    principal_amount: int
    interest_rate: int
    duration: int
    start_time: int
    due_date: int
    amount_repaid: int
    status: LoanStatus
    last_interest_update: int = 0
    grace_period_end: int = 0
    is_cross_chain: bool = False
    source_chain_id: int = 0
    target_chain_id: int = 0
    remote_chain_loan_id: int = 0

    def __post_init__(self):
        if self.collateral_released > self.collateral_amount:
            raise ValueError(
                f"Loan {self.loan_id}: collateral_released {self.collateral_released} "
                f"exceeds collateral_amount {self.collateral_amount}"
            )
        total_due = self.principal_amount + self.principal_amount * self.interest_rate // BPS_DENOMINATOR
        if self.amount_repaid > total_due:
            raise ValueError(
                f"Loan {self.loan_id}: amount_repaid {self.amount_repaid} "
                f"exceeds total repayment due {total_due}"
            )

    @property
    def remaining_collateral(self) -> int:
        return self.collateral_amount - self.collateral_released

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class LoanRequest:
    """Borrower's pre-funding intent: collateral locked, awaiting a lender."""
    request_id: int
    borrower: Address
    collateral_amount: int
    collateral_token: Address
    borrow_asset: Address
    borrow_amount: int
    duration: int
    max_interest_rate: int
    interest_rate: int
    created_at: int
    expire_at: int
    status: LoanRequestStatus

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now >= self.expire_at


@dataclass(frozen=True, slots=True)
class LenderOffer:
    """Lender's standing offer of a token amount, borrowable against collateral."""
    offer_id: int
    lender: Address
    lend_asset: Address
    lend_amount: int
    remaining_amount: int
    borrowed_amount: int
    required_collateral_asset: Address
    min_collateral_amount: int
    duration: int
    interest_rate: int
    created_at: int
    expire_at: int
    status: LoanRequestStatus

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now >= self.expire_at


@dataclass(frozen=True, slots=True)
class FiatLoan:
    """
    Immutable snapshot of a fiat-settled loan.

    fiat_amount_cents is in cents of `currency`. exchange_rate_at_creation
    freezes the fiat-per-USD rate at origination; it is authoritative for
    every conversion over the loan's lifetime. Zero marks a legacy loan
    created before the rate was recorded.
    """
    loan_id: int
    borrower: Address
    supplier: Address
    collateral_asset: Address
    collateral_amount: int
    fiat_amount_cents: int
    currency: str
    interest_rate: int
    duration: int
    status: FiatLoanStatus
    created_at: int = 0
    activated_at: int = 0
    due_date: int = 0
    grace_period_end: int = 0
    claimable_amount_cents: int = 0
    funds_withdrawn: bool = False
    repayment_deposit_id: str = ""
    exchange_rate_at_creation: int = 0


@dataclass(frozen=True, slots=True)
class FiatLenderOffer:
    """Fiat supplier's standing offer, denominated in cents of `currency`."""
    offer_id: int
    lender: Address
    fiat_amount_cents: int
    remaining_amount_cents: int
    borrowed_amount_cents: int
    currency: str
    min_collateral_value_usd: int
    interest_rate: int
    duration: int
    created_at: int
    expire_at: int
    status: FiatLenderOfferStatus
    exchange_rate_at_creation: int = 0

    def is_expired(self, now: int) -> bool:
        return self.expire_at != 0 and now >= self.expire_at


@dataclass(frozen=True, slots=True)
class LoanExtension:
    """Pending or approved extension of a loan's due date."""
    loan_id: int
    additional_duration: int
    requested: bool
    approved: bool


@dataclass(frozen=True, slots=True)
class SimulationResult:
    """
    Outcome of a dry-run.

    On failure the transport fills in whatever it could decode: the custom
    error name and args, the 4-byte selector, or the raw revert string.
    """
    success: bool
    error_name: Optional[str] = None
    error_args: Tuple[Any, ...] = ()
    selector: Optional[str] = None
    revert_reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Receipt:
    """Mined transaction receipt."""
    tx_handle: TxHandle
    status: ReceiptStatus
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS


@dataclass(frozen=True, slots=True)
class Pending:
    """
    Returned by compute_* functions when operands have not loaded yet.

    `missing` names the operands that were None. Callers keep the dependent
    action disabled until a real result is available.
    """
    missing: Tuple[str, ...] = field(default_factory=tuple)

    def __bool__(self) -> bool:
        return False


def pending_operands(**operands: Any) -> Optional[Pending]:
    """Return a Pending naming every None operand, or None when all are present."""
    missing = tuple(name for name, value in operands.items() if value is None)
    if missing:
        return Pending(missing=missing)
    return None


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ChainTransport(Protocol):
    """
    Async capability the engine calls through for every on-chain interaction.

    Implementations wrap an RPC client and wallet. Every method may suspend
    for unbounded time and may raise; the engine treats each call as
    fallible and cancellable. All monetary values crossing this boundary
    are unsigned ints in their native scale.
    """

    async def read_contract_state(
        self, address: Address, selector: Selector, args: Sequence[Any]
    ) -> Any:
        """Read a view function; raise ReadError on failure."""
        ...

    async def simulate_write(
        self, address: Address, selector: Selector, args: Sequence[Any], account: Address
    ) -> SimulationResult:
        """Dry-run a state-changing call against current chain state."""
        ...

    async def submit_write(
        self, address: Address, selector: Selector, args: Sequence[Any], account: Address
    ) -> TxHandle:
        """Sign and broadcast a call, returning its handle."""
        ...

    async def await_receipt(self, tx_handle: TxHandle) -> Receipt:
        """Wait until the transaction is mined."""
        ...

    async def get_price(self, asset: Address) -> PriceQuote:
        """Latest oracle quote for a token."""
        ...

    async def get_exchange_rate(self, currency: str) -> ExchangeRate:
        """Latest fiat-per-USD rate for a currency code."""
        ...


@dataclass(frozen=True, slots=True)
class ContractCall:
    """A fully specified state-changing call, simulated then submitted verbatim."""
    address: Address
    selector: Selector
    args: Tuple[Any, ...] = ()

    def describe(self) -> str:
        rendered = ", ".join(str(a) for a in self.args)
        return f"{self.selector}({rendered}) @ {self.address}"

