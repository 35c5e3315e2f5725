"""
lending_engine - Off-chain lending calculation and transaction engine

Mirrors a peer-to-peer lending marketplace's settlement math in exact
integer fixed point, and drives every state-changing action through an
approve -> simulate -> submit -> confirm flow.

Usage:
    from lending_engine import (
        TransactionOrchestrator, ActionRequest, ActionKind, EngineConfig, ContractAddresses,
    )

    config = EngineConfig(contracts=ContractAddresses(loan_marketplace="0xMarket", ltv_config="0xLtv"))
    orchestrator = TransactionOrchestrator(transport, config)

    request = ActionRequest(ActionKind.REPAY, account="0xBorrower", target_id=7, amount=1_050_000_000)
    async for state in orchestrator.run_transaction_flow(request):
        print(state.step.value, state.message)
"""

# Core types
from .core import (
    ChainTransport,
    Address,
    TxHandle,
    Selector,
    LoanStatus,
    LoanRequestStatus,
    FiatLoanStatus,
    FiatLenderOfferStatus,
    HealthStatus,
    ReceiptStatus,
    PriceQuote,
    ExchangeRate,
    Loan,
    LoanRequest,
    LenderOffer,
    FiatLoan,
    FiatLenderOffer,
    LoanExtension,
    SimulationResult,
    Receipt,
    ContractCall,
    Pending,
    pending_operands,
    LendingError,
    PriceUnavailable,
    StalePriceError,
    AssetNotEnabled,
    LTVExceeded,
    AmountExceedsDebt,
    RepaymentBelowMinimum,
    InsufficientBalance,
    AllowanceNotPropagated,
    SimulationFailed,
    TransactionReverted,
    ConfirmationTimeout,
    ActionNotAllowed,
    FlowInProgress,
    ReadError,
    DecodeError,
    BPS_DENOMINATOR,
    PRICE_DECIMALS,
    PRICE_SCALE,
    USD_DECIMALS,
    USD_SCALE,
    RATE_SCALE,
    STALE_THRESHOLD_SECONDS,
    EXCHANGE_RATE_STALE_SECONDS,
    LIQUIDATION_BONUS_BPS,
    MIN_LTV_BPS,
    APPROVAL_HEADROOM_BPS,
    FULL_REPAYMENT_TOLERANCE_BPS,
    HEALTH_HEALTHY_BPS,
    HEALTH_WARNING_BPS,
    ZERO_ADDRESS,
    USD,
)

# Fixed point
from .fixed_point import (
    pow10,
    mul_div,
    scale_mul,
    scale_div,
    rescale,
    apply_bps,
    ratio_bps,
    add_headroom,
    saturating_sub,
)

# Prices
from .pricing_source import (
    PriceSource,
    PriceOracle,
    StaticPriceFeed,
    Clock,
    system_clock,
    is_stale,
    seconds_until_stale,
    validate_quote,
    require_fresh,
)

# Fiat
from .fiat import (
    FiatCurrency,
    SUPPORTED_FIAT_CURRENCIES,
    get_currency,
    to_usd_cents,
    from_usd_cents,
    usd_value_to_cents,
    cents_to_usd_value,
    convert_fiat,
    frozen_amount_to_usd_cents,
    fiat_loan_usd_cents,
    fiat_offer_usd_cents,
)

# Calculators
from .calculators import (
    TokenTarget,
    FiatTarget,
    MaxBorrowResult,
    duration_to_days,
    clamp_ltv,
    calculate_collateral_value_usd,
    calculate_max_borrow,
    validate_borrow_request,
    compute_max_borrow,
    HealthFactorResult,
    RepaymentPlan,
    calculate_outstanding_debt,
    loan_outstanding_debt,
    calculate_health,
    classify_health,
    normalize_repayment,
    plan_repayment,
    compute_health_factor,
    compute_fiat_health_factor,
    LiquidationSplit,
    calculate_liquidation_split,
    compute_liquidation_split,
)

# Chain boundary
from .config import (
    ContractAddresses,
    TokenInfo,
    TokenRegistry,
    EngineConfig,
    DEFAULT_CONFIG,
)
from .decoders import (
    decode_loan,
    decode_loan_request,
    decode_lender_offer,
    decode_fiat_loan,
    decode_fiat_lender_offer,
    decode_loan_extension,
    decode_price_round,
)
from .snapshot_cache import SnapshotCache, SnapshotKey, ResourceKind
from .retry import RetryPolicy, READ_POLICY, ALLOWANCE_PROPAGATION_POLICY
from .reader import ChainReader
from .revert_reasons import decode_simulation_error, map_revert_reason

# Orchestration
from .actions import (
    ActionKind,
    ActionRequest,
    ActionContext,
    TokenApproval,
    PreparedAction,
    DEFAULT_PREPARERS,
)
from .orchestrator import FlowStep, FlowState, TransactionOrchestrator, UnconfirmedTransaction

# Display
from .display import (
    format_units,
    parse_units,
    to_float,
    format_percentage,
    format_health_factor,
    format_usd,
    format_fiat,
    format_duration,
)

__all__ = [
    # Core
    'ChainTransport', 'Address', 'TxHandle', 'Selector',
    'LoanStatus', 'LoanRequestStatus', 'FiatLoanStatus', 'FiatLenderOfferStatus',
    'HealthStatus', 'ReceiptStatus',
    'PriceQuote', 'ExchangeRate', 'Loan', 'LoanRequest', 'LenderOffer',
    'FiatLoan', 'FiatLenderOffer', 'LoanExtension',
    'SimulationResult', 'Receipt', 'ContractCall', 'Pending', 'pending_operands',
    'LendingError', 'PriceUnavailable', 'StalePriceError', 'AssetNotEnabled', 'LTVExceeded',
    'AmountExceedsDebt', 'RepaymentBelowMinimum', 'InsufficientBalance', 'AllowanceNotPropagated',
    'SimulationFailed', 'TransactionReverted', 'ConfirmationTimeout', 'ActionNotAllowed',
    'FlowInProgress', 'ReadError', 'DecodeError',
    'BPS_DENOMINATOR', 'PRICE_DECIMALS', 'PRICE_SCALE', 'USD_DECIMALS', 'USD_SCALE', 'RATE_SCALE',
    'STALE_THRESHOLD_SECONDS', 'EXCHANGE_RATE_STALE_SECONDS', 'LIQUIDATION_BONUS_BPS',
    'MIN_LTV_BPS', 'APPROVAL_HEADROOM_BPS', 'FULL_REPAYMENT_TOLERANCE_BPS',
    'HEALTH_HEALTHY_BPS', 'HEALTH_WARNING_BPS', 'ZERO_ADDRESS', 'USD',
    # Fixed point
    'pow10', 'mul_div', 'scale_mul', 'scale_div', 'rescale', 'apply_bps', 'ratio_bps',
    'add_headroom', 'saturating_sub',
    # Prices
    'PriceSource', 'PriceOracle', 'StaticPriceFeed', 'Clock', 'system_clock',
    'is_stale', 'seconds_until_stale', 'validate_quote', 'require_fresh',
    # Fiat
    'FiatCurrency', 'SUPPORTED_FIAT_CURRENCIES', 'get_currency', 'to_usd_cents', 'from_usd_cents',
    'usd_value_to_cents', 'cents_to_usd_value', 'convert_fiat',
    'frozen_amount_to_usd_cents', 'fiat_loan_usd_cents', 'fiat_offer_usd_cents',
    # Calculators
    'TokenTarget', 'FiatTarget', 'MaxBorrowResult', 'duration_to_days', 'clamp_ltv',
    'calculate_collateral_value_usd', 'calculate_max_borrow', 'validate_borrow_request',
    'compute_max_borrow',
    'HealthFactorResult', 'RepaymentPlan', 'calculate_outstanding_debt', 'loan_outstanding_debt',
    'calculate_health', 'classify_health', 'normalize_repayment', 'plan_repayment',
    'compute_health_factor', 'compute_fiat_health_factor',
    'LiquidationSplit', 'calculate_liquidation_split', 'compute_liquidation_split',
    # Chain boundary
    'ContractAddresses', 'TokenInfo', 'TokenRegistry', 'EngineConfig', 'DEFAULT_CONFIG',
    'decode_loan', 'decode_loan_request', 'decode_lender_offer', 'decode_fiat_loan',
    'decode_fiat_lender_offer', 'decode_loan_extension', 'decode_price_round',
    'SnapshotCache', 'SnapshotKey', 'ResourceKind',
    'RetryPolicy', 'READ_POLICY', 'ALLOWANCE_PROPAGATION_POLICY',
    'ChainReader', 'decode_simulation_error', 'map_revert_reason',
    # Orchestration
    'ActionKind', 'ActionRequest', 'ActionContext', 'TokenApproval', 'PreparedAction',
    'DEFAULT_PREPARERS', 'FlowStep', 'FlowState', 'TransactionOrchestrator', 'UnconfirmedTransaction',
    # Display
    'format_units', 'parse_units', 'to_float', 'format_percentage', 'format_health_factor',
    'format_usd', 'format_fiat', 'format_duration',
]

__version__ = '1.0.0'
