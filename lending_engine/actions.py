"""
actions.py - Per-action transaction preparation

Each state-changing action has a preparer: an async function that reads
the current on-chain state it depends on, runs the calculators, enforces
the price freshness rules, and returns a PreparedAction describing
exactly what the orchestrator must do:

- call: the contract call to simulate and then submit, verbatim
- approval: the token allowance the call needs, if any
- invalidates: the snapshot keys a successful call makes stale
- preview: the advisory calculator result shown to the user

Freshness rules by action:
- REPAY (partial), LIQUIDATE, the CREATE_* actions and the offer
  acceptances need fresh prices and raise StalePriceError otherwise
- REPAY of the full balance needs no price
- FUND_REQUEST, the extensions, the cancellations and
  ACCEPT_FIAT_LOAN_REQUEST use no price

Preparers are registered by ActionKind in DEFAULT_PREPARERS.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .calculators.debt import (
    RepaymentPlan, calculate_extended_due_date, loan_outstanding_debt,
    normalize_repayment, plan_repayment,
)
from .calculators.liquidation import LiquidationSplit, calculate_liquidation_split
from .calculators.ltv import (
    calculate_collateral_value_usd, calculate_fiat_value_usd, calculate_token_value_usd,
    duration_to_days, validate_borrow_request,
)
from .config import EngineConfig, TokenRegistry, DEFAULT_CONFIG
from .core import (
    Address, ContractCall, FiatLenderOfferStatus, FiatLoanStatus, LoanRequestStatus, LoanStatus,
    ActionNotAllowed, AssetNotEnabled,
    ZERO_ADDRESS,
)
from .fiat import get_currency
from .pricing_source import Clock, PriceOracle, system_clock
from .reader import ChainReader
from .snapshot_cache import (
    SnapshotKey,
    allowance_key, balance_key, debt_key, extension_key, fiat_lender_offer_key,
    fiat_loan_key, lender_offer_key, loan_key, loan_request_key,
)


class ActionKind(str, Enum):
    CREATE_LOAN_REQUEST = "create_loan_request"
    CREATE_FIAT_LOAN_REQUEST = "create_fiat_loan_request"
    FUND_REQUEST = "fund_request"
    REPAY = "repay"
    LIQUIDATE = "liquidate"
    REQUEST_EXTENSION = "request_extension"
    APPROVE_EXTENSION = "approve_extension"
    CREATE_LENDER_OFFER = "create_lender_offer"
    ACCEPT_LENDER_OFFER = "accept_lender_offer"
    CANCEL_LOAN_REQUEST = "cancel_loan_request"
    CANCEL_LENDER_OFFER = "cancel_lender_offer"
    CANCEL_FIAT_LOAN_REQUEST = "cancel_fiat_loan_request"
    ACCEPT_FIAT_LOAN_REQUEST = "accept_fiat_loan_request"
    ACCEPT_FIAT_LENDER_OFFER = "accept_fiat_lender_offer"


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """
    A user's request to perform one action.

    Attributes:
        kind: Which action
        account: The acting wallet
        target_id: Loan id (repay, liquidate, extensions, fiat loan requests),
            request id (fund, cancel request) or offer id (accept, cancel
            offer); None for actions that create a new entity
        amount: Action amount in native units (repayment amount)
        params: Action-specific parameters as frozen tuple of (key, value) pairs
    """
    kind: ActionKind
    account: Address
    target_id: Optional[int] = None
    amount: Optional[int] = None
    params: tuple = ()

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def param(self, name: str) -> Any:
        try:
            return self.params_dict[name]
        except KeyError:
            raise ValueError(f"{self.kind.value} requires parameter '{name}'") from None

    @property
    def flow_key(self) -> Tuple[Address, Optional[int], ActionKind]:
        """(account, loan, action): at most one flow per key runs at a time."""
        return (self.account.lower(), self.target_id, self.kind)


@dataclass(frozen=True, slots=True)
class TokenApproval:
    """The call needs `spender` to be allowed to pull `amount` of `token` from the account."""
    token: Address
    spender: Address
    amount: int


@dataclass(frozen=True, slots=True)
class PreparedAction:
    kind: ActionKind
    call: ContractCall
    approval: Optional[TokenApproval] = None
    invalidates: Tuple[SnapshotKey, ...] = ()
    preview: Any = None


@dataclass
class ActionContext:
    """What preparers read through. One per orchestrator."""
    reader: ChainReader
    oracle: PriceOracle
    config: EngineConfig = DEFAULT_CONFIG
    tokens: TokenRegistry = field(default_factory=TokenRegistry)
    clock: Clock = system_clock

    async def decimals(self, token: Address) -> int:
        if token in self.tokens:
            return self.tokens.decimals(token)
        return await self.reader.get_decimals(token)

    @property
    def marketplace(self) -> Address:
        return self.config.contracts.loan_marketplace


Preparer = Callable[[ActionContext, ActionRequest], Awaitable[PreparedAction]]


def _token_spend_keys(token: Address, account: Address, spender: Address) -> Tuple[SnapshotKey, ...]:
    return (allowance_key(token, account, spender), balance_key(token, account))


def _validate_duration(ctx: ActionContext, duration: int) -> None:
    lo = ctx.config.min_loan_duration_seconds
    hi = ctx.config.max_loan_duration_seconds
    if not lo <= duration <= hi:
        raise ValueError(f"Loan duration {duration}s outside [{lo}, {hi}]")


async def _max_ltv(ctx: ActionContext, asset: Address, duration: int) -> int:
    ltv = await ctx.reader.get_ltv(asset, duration_to_days(duration))
    if ltv == 0:
        raise AssetNotEnabled(f"{asset} is not enabled as collateral for {duration_to_days(duration)} days")
    return ltv


def _fiat_bridge(ctx: ActionContext) -> Address:
    bridge = ctx.config.contracts.fiat_loan_bridge
    if bridge == ZERO_ADDRESS:
        raise ActionNotAllowed("Fiat loans are not available on this deployment")
    return bridge


def _require_target(request: ActionRequest, what: str) -> int:
    if request.target_id is None:
        raise ValueError(f"{request.kind.value} requires {what}")
    return request.target_id


async def _active_loan(ctx: ActionContext, request: ActionRequest):
    if request.target_id is None:
        raise ValueError(f"{request.kind.value} requires a loan id")
    loan = await ctx.reader.get_loan(request.target_id, refresh=True)
    if loan.status != LoanStatus.ACTIVE:
        raise ActionNotAllowed(f"Loan {loan.loan_id} is not active ({loan.status.name})")
    return loan


# ============================================================================
# PREPARERS
# ============================================================================

async def prepare_create_loan_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Borrower posts collateral and asks for a token loan.

    Params: collateral_token, collateral_amount, borrow_asset, borrow_amount,
    interest_rate (bps), duration (seconds).
    """
    collateral_token = request.param("collateral_token")
    collateral_amount = request.param("collateral_amount")
    borrow_asset = request.param("borrow_asset")
    borrow_amount = request.param("borrow_amount")
    interest_rate = request.param("interest_rate")
    duration = request.param("duration")
    if collateral_amount <= 0 or borrow_amount <= 0:
        raise ValueError("Collateral and borrow amounts must be greater than zero")
    _validate_duration(ctx, duration)

    max_ltv, collateral_quote, borrow_quote, collateral_decimals, borrow_decimals = await asyncio.gather(
        _max_ltv(ctx, collateral_token, duration),
        ctx.oracle.get_fresh_quote(collateral_token),
        ctx.oracle.get_fresh_quote(borrow_asset),
        ctx.decimals(collateral_token),
        ctx.decimals(borrow_asset),
    )
    collateral_value = calculate_collateral_value_usd(collateral_amount, collateral_quote.price, collateral_decimals)
    borrow_value = calculate_token_value_usd(borrow_amount, borrow_quote.price, borrow_decimals)
    implied_ltv = validate_borrow_request(collateral_value, borrow_value, max_ltv)

    spender = ctx.marketplace
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(
            spender, "createLoanRequest",
            (collateral_token, collateral_amount, borrow_asset, borrow_amount, interest_rate, duration),
        ),
        approval=TokenApproval(collateral_token, spender, collateral_amount),
        invalidates=_token_spend_keys(collateral_token, request.account, spender),
        preview=implied_ltv,
    )


async def prepare_create_fiat_loan_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Borrower posts collateral and asks for a fiat loan in cents of `currency`.

    Params: collateral_asset, collateral_amount, fiat_amount_cents, currency,
    interest_rate (bps), duration (seconds).
    """
    bridge = _fiat_bridge(ctx)
    collateral_asset = request.param("collateral_asset")
    collateral_amount = request.param("collateral_amount")
    fiat_amount_cents = request.param("fiat_amount_cents")
    currency = request.param("currency")
    interest_rate = request.param("interest_rate")
    duration = request.param("duration")
    get_currency(currency)
    if collateral_amount <= 0 or fiat_amount_cents <= 0:
        raise ValueError("Collateral and fiat amounts must be greater than zero")
    _validate_duration(ctx, duration)

    max_ltv, collateral_quote, rate, collateral_decimals = await asyncio.gather(
        _max_ltv(ctx, collateral_asset, duration),
        ctx.oracle.get_fresh_quote(collateral_asset),
        ctx.oracle.get_fresh_exchange_rate(currency),
        ctx.decimals(collateral_asset),
    )
    collateral_value = calculate_collateral_value_usd(collateral_amount, collateral_quote.price, collateral_decimals)
    borrow_value = calculate_fiat_value_usd(fiat_amount_cents, rate.rate)
    implied_ltv = validate_borrow_request(collateral_value, borrow_value, max_ltv)

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(
            bridge, "createFiatLoanRequest",
            (collateral_asset, collateral_amount, fiat_amount_cents, currency, interest_rate, duration),
        ),
        approval=TokenApproval(collateral_asset, bridge, collateral_amount),
        invalidates=_token_spend_keys(collateral_asset, request.account, bridge),
        preview=implied_ltv,
    )


async def prepare_fund_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Lender funds a pending request with its full borrow amount. No price involved."""
    if request.target_id is None:
        raise ValueError("fund_request requires a request id")
    loan_request = await ctx.reader.get_loan_request(request.target_id, refresh=True)
    if loan_request.status != LoanRequestStatus.PENDING:
        raise ActionNotAllowed(f"Request {loan_request.request_id} is not pending ({loan_request.status.name})")
    if loan_request.is_expired(ctx.clock()):
        raise ActionNotAllowed(f"Request {loan_request.request_id} has expired")
    if loan_request.borrower.lower() == request.account.lower():
        raise ActionNotAllowed("You cannot fund your own loan request")

    spender = ctx.marketplace
    token = loan_request.borrow_asset
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(spender, "fundLoanRequest", (loan_request.request_id,)),
        approval=TokenApproval(token, spender, loan_request.borrow_amount),
        invalidates=(loan_request_key(loan_request.request_id),) + _token_spend_keys(token, request.account, spender),
        preview=loan_request,
    )


async def prepare_repay(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Borrower repays `amount` of the borrow asset.

    Near-full amounts snap to the exact outstanding debt and skip the price
    read entirely. Partial amounts need a fresh price for the minimum check.
    """
    if request.amount is None:
        raise ValueError("repay requires an amount")
    loan = await _active_loan(ctx, request)
    if loan.borrower.lower() != request.account.lower():
        raise ActionNotAllowed("Only the borrower can repay this loan")

    outstanding = loan_outstanding_debt(loan)
    tolerance = ctx.config.full_repayment_tolerance_bps
    normalized = normalize_repayment(request.amount, outstanding, tolerance)
    if normalized == outstanding:
        plan = RepaymentPlan(amount=outstanding, is_full=True, outstanding_debt=outstanding)
    else:
        quote, decimals = await asyncio.gather(
            ctx.oracle.get_fresh_quote(loan.borrow_asset),
            ctx.decimals(loan.borrow_asset),
        )
        plan = plan_repayment(
            normalized, outstanding, ctx.config.min_partial_repayment_usd,
            quote.price, decimals, tolerance,
        )

    spender = ctx.marketplace
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(spender, "repayLoan", (loan.loan_id, plan.amount)),
        approval=TokenApproval(loan.borrow_asset, spender, plan.amount),
        invalidates=(loan_key(loan.loan_id), debt_key(loan.loan_id))
        + _token_spend_keys(loan.borrow_asset, request.account, spender),
        preview=plan,
    )


async def prepare_liquidate(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Liquidator pays the outstanding debt and receives collateral plus bonus.

    The split is a preview; eligibility is decided by the simulation.
    """
    loan = await _active_loan(ctx, request)
    outstanding = loan_outstanding_debt(loan)
    if outstanding == 0:
        raise ActionNotAllowed(f"Loan {loan.loan_id} has no outstanding debt")

    borrow_quote, collateral_quote, borrow_decimals, collateral_decimals = await asyncio.gather(
        ctx.oracle.get_fresh_quote(loan.borrow_asset),
        ctx.oracle.get_fresh_quote(loan.collateral_asset),
        ctx.decimals(loan.borrow_asset),
        ctx.decimals(loan.collateral_asset),
    )
    split: LiquidationSplit = calculate_liquidation_split(
        outstanding_debt=outstanding,
        borrow_price=borrow_quote.price,
        borrow_decimals=borrow_decimals,
        collateral_price=collateral_quote.price,
        collateral_decimals=collateral_decimals,
        remaining_collateral=loan.remaining_collateral,
    )

    spender = ctx.marketplace
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(spender, "liquidateLoan", (loan.loan_id,)),
        approval=TokenApproval(loan.borrow_asset, spender, outstanding),
        invalidates=(loan_key(loan.loan_id), debt_key(loan.loan_id))
        + _token_spend_keys(loan.borrow_asset, request.account, spender)
        + (balance_key(loan.collateral_asset, request.account),),
        preview=split,
    )


async def prepare_request_extension(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Borrower asks the lender for `additional_seconds` more."""
    additional = request.param("additional_seconds")
    loan = await _active_loan(ctx, request)
    if loan.borrower.lower() != request.account.lower():
        raise ActionNotAllowed("Only the borrower can request an extension")
    extension = await ctx.reader.get_loan_extension(loan.loan_id, refresh=True)
    if extension.requested and not extension.approved:
        raise ActionNotAllowed("A loan extension has already been requested")
    new_due_date = calculate_extended_due_date(loan.due_date, additional)

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(ctx.marketplace, "requestLoanExtension", (loan.loan_id, additional)),
        invalidates=(extension_key(loan.loan_id),),
        preview=new_due_date,
    )


async def prepare_approve_extension(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Lender approves the borrower's pending extension."""
    loan = await _active_loan(ctx, request)
    if loan.lender.lower() != request.account.lower():
        raise ActionNotAllowed("Only the lender can approve an extension")
    extension = await ctx.reader.get_loan_extension(loan.loan_id, refresh=True)
    if not extension.requested or extension.approved:
        raise ActionNotAllowed("No extension has been requested for this loan")

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(ctx.marketplace, "approveLoanExtension", (loan.loan_id,)),
        invalidates=(loan_key(loan.loan_id), extension_key(loan.loan_id)),
        preview=calculate_extended_due_date(loan.due_date, extension.additional_duration),
    )


# ============================================================================
# OFFERS AND CANCELLATIONS
# ============================================================================

async def prepare_create_lender_offer(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Lender escrows `lend_amount` and offers it against a minimum collateral.

    The minimum collateral must itself cover the full lend amount within the
    collateral's maximum LTV, so every acceptance the contract allows is
    within bounds.

    Params: lend_asset, lend_amount, required_collateral_asset,
    min_collateral_amount, interest_rate (bps), duration (seconds).
    """
    lend_asset = request.param("lend_asset")
    lend_amount = request.param("lend_amount")
    collateral_asset = request.param("required_collateral_asset")
    min_collateral_amount = request.param("min_collateral_amount")
    interest_rate = request.param("interest_rate")
    duration = request.param("duration")
    if lend_amount <= 0 or min_collateral_amount <= 0:
        raise ValueError("Lend amount and minimum collateral must be greater than zero")
    _validate_duration(ctx, duration)

    max_ltv, collateral_quote, lend_quote, collateral_decimals, lend_decimals = await asyncio.gather(
        _max_ltv(ctx, collateral_asset, duration),
        ctx.oracle.get_fresh_quote(collateral_asset),
        ctx.oracle.get_fresh_quote(lend_asset),
        ctx.decimals(collateral_asset),
        ctx.decimals(lend_asset),
    )
    collateral_value = calculate_collateral_value_usd(min_collateral_amount, collateral_quote.price, collateral_decimals)
    lend_value = calculate_token_value_usd(lend_amount, lend_quote.price, lend_decimals)
    implied_ltv = validate_borrow_request(collateral_value, lend_value, max_ltv)

    spender = ctx.marketplace
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(
            spender, "createLenderOffer",
            (lend_asset, lend_amount, collateral_asset, min_collateral_amount, interest_rate, duration),
        ),
        approval=TokenApproval(lend_asset, spender, lend_amount),
        invalidates=_token_spend_keys(lend_asset, request.account, spender),
        preview=implied_ltv,
    )


async def prepare_accept_lender_offer(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Borrower takes `borrow_amount` from a standing offer against collateral.

    Params: collateral_amount, borrow_amount. collateral_asset defaults to
    the offer's required asset and must match it when given.
    """
    offer_id = _require_target(request, "an offer id")
    collateral_amount = request.param("collateral_amount")
    borrow_amount = request.param("borrow_amount")
    if collateral_amount <= 0 or borrow_amount <= 0:
        raise ValueError("Collateral and borrow amounts must be greater than zero")

    offer = await ctx.reader.get_lender_offer(offer_id, refresh=True)
    if offer.status != LoanRequestStatus.PENDING:
        raise ActionNotAllowed(f"Offer {offer.offer_id} is not open ({offer.status.name})")
    if offer.is_expired(ctx.clock()):
        raise ActionNotAllowed(f"Offer {offer.offer_id} has expired")
    if offer.lender.lower() == request.account.lower():
        raise ActionNotAllowed("You cannot accept your own offer")
    collateral_asset = request.params_dict.get("collateral_asset", offer.required_collateral_asset)
    if collateral_asset.lower() != offer.required_collateral_asset.lower():
        raise ActionNotAllowed(f"Offer {offer.offer_id} requires {offer.required_collateral_asset} as collateral")
    if borrow_amount > offer.remaining_amount:
        raise ActionNotAllowed(f"Offer {offer.offer_id} has only {offer.remaining_amount} left")
    if collateral_amount < offer.min_collateral_amount:
        raise ActionNotAllowed(f"Offer {offer.offer_id} requires at least {offer.min_collateral_amount} collateral")

    max_ltv, collateral_quote, borrow_quote, collateral_decimals, borrow_decimals = await asyncio.gather(
        _max_ltv(ctx, collateral_asset, offer.duration),
        ctx.oracle.get_fresh_quote(collateral_asset),
        ctx.oracle.get_fresh_quote(offer.lend_asset),
        ctx.decimals(collateral_asset),
        ctx.decimals(offer.lend_asset),
    )
    collateral_value = calculate_collateral_value_usd(collateral_amount, collateral_quote.price, collateral_decimals)
    borrow_value = calculate_token_value_usd(borrow_amount, borrow_quote.price, borrow_decimals)
    implied_ltv = validate_borrow_request(collateral_value, borrow_value, max_ltv)

    spender = ctx.marketplace
    return PreparedAction(
        kind=request.kind,
        call=ContractCall(
            spender, "acceptLenderOffer", (offer.offer_id, collateral_asset, collateral_amount, borrow_amount),
        ),
        approval=TokenApproval(collateral_asset, spender, collateral_amount),
        invalidates=(lender_offer_key(offer.offer_id),)
        + _token_spend_keys(collateral_asset, request.account, spender)
        + (balance_key(offer.lend_asset, request.account),),
        preview=implied_ltv,
    )


async def prepare_cancel_loan_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Borrower withdraws a pending request; the escrowed collateral comes back."""
    request_id = _require_target(request, "a request id")
    loan_request = await ctx.reader.get_loan_request(request_id, refresh=True)
    if loan_request.borrower.lower() != request.account.lower():
        raise ActionNotAllowed("Only the borrower can cancel this request")
    if loan_request.status != LoanRequestStatus.PENDING:
        raise ActionNotAllowed(f"Request {request_id} is not pending ({loan_request.status.name})")

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(ctx.marketplace, "cancelLoanRequest", (request_id,)),
        invalidates=(loan_request_key(request_id), balance_key(loan_request.collateral_token, request.account)),
        preview=loan_request,
    )


async def prepare_cancel_lender_offer(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Lender withdraws an open offer; the unborrowed remainder comes back."""
    offer_id = _require_target(request, "an offer id")
    offer = await ctx.reader.get_lender_offer(offer_id, refresh=True)
    if offer.lender.lower() != request.account.lower():
        raise ActionNotAllowed("Only the lender can cancel this offer")
    if offer.status != LoanRequestStatus.PENDING:
        raise ActionNotAllowed(f"Offer {offer_id} is not open ({offer.status.name})")

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(ctx.marketplace, "cancelLenderOffer", (offer_id,)),
        invalidates=(lender_offer_key(offer_id), balance_key(offer.lend_asset, request.account)),
        preview=offer,
    )


async def prepare_cancel_fiat_loan_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Borrower withdraws a fiat loan no supplier has taken yet."""
    bridge = _fiat_bridge(ctx)
    loan_id = _require_target(request, "a fiat loan id")
    loan = await ctx.reader.get_fiat_loan(loan_id, refresh=True)
    if loan.borrower.lower() != request.account.lower():
        raise ActionNotAllowed("Only the borrower can cancel this request")
    if loan.status != FiatLoanStatus.PENDING_SUPPLIER:
        raise ActionNotAllowed(f"Fiat loan {loan_id} is no longer awaiting a supplier ({loan.status.name})")

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(bridge, "cancelFiatLoanRequest", (loan_id,)),
        invalidates=(fiat_loan_key(loan_id), balance_key(loan.collateral_asset, request.account)),
        preview=loan,
    )


async def prepare_accept_fiat_loan_request(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """Supplier commits to pay out a pending fiat loan off-chain. No token moves."""
    bridge = _fiat_bridge(ctx)
    loan_id = _require_target(request, "a fiat loan id")
    loan = await ctx.reader.get_fiat_loan(loan_id, refresh=True)
    if loan.status != FiatLoanStatus.PENDING_SUPPLIER:
        raise ActionNotAllowed(f"Fiat loan {loan_id} is no longer awaiting a supplier ({loan.status.name})")
    if loan.borrower.lower() == request.account.lower():
        raise ActionNotAllowed("You cannot supply your own fiat loan")

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(bridge, "acceptFiatLoanRequest", (loan_id,)),
        invalidates=(fiat_loan_key(loan_id),),
        preview=loan,
    )


async def prepare_accept_fiat_lender_offer(ctx: ActionContext, request: ActionRequest) -> PreparedAction:
    """
    Borrower takes `borrow_amount_cents` from a supplier's fiat offer.

    The collateral must be worth at least the offer's USD minimum and keep
    the loan within the collateral's maximum LTV at the current rate.

    Params: collateral_asset, collateral_amount, borrow_amount_cents.
    """
    bridge = _fiat_bridge(ctx)
    offer_id = _require_target(request, "an offer id")
    collateral_asset = request.param("collateral_asset")
    collateral_amount = request.param("collateral_amount")
    borrow_amount_cents = request.param("borrow_amount_cents")
    if collateral_amount <= 0 or borrow_amount_cents <= 0:
        raise ValueError("Collateral and fiat amounts must be greater than zero")

    offer = await ctx.reader.get_fiat_lender_offer(offer_id, refresh=True)
    if offer.status != FiatLenderOfferStatus.ACTIVE:
        raise ActionNotAllowed(f"Fiat offer {offer_id} is not active ({offer.status.name})")
    if offer.is_expired(ctx.clock()):
        raise ActionNotAllowed(f"Fiat offer {offer_id} has expired")
    if offer.lender.lower() == request.account.lower():
        raise ActionNotAllowed("You cannot accept your own offer")
    if borrow_amount_cents > offer.remaining_amount_cents:
        raise ActionNotAllowed(f"Fiat offer {offer_id} has only {offer.remaining_amount_cents} cents left")

    max_ltv, collateral_quote, rate, collateral_decimals = await asyncio.gather(
        _max_ltv(ctx, collateral_asset, offer.duration),
        ctx.oracle.get_fresh_quote(collateral_asset),
        ctx.oracle.get_fresh_exchange_rate(offer.currency),
        ctx.decimals(collateral_asset),
    )
    collateral_value = calculate_collateral_value_usd(collateral_amount, collateral_quote.price, collateral_decimals)
    if collateral_value < offer.min_collateral_value_usd:
        raise ActionNotAllowed(f"Fiat offer {offer_id} requires collateral worth at least {offer.min_collateral_value_usd}")
    borrow_value = calculate_fiat_value_usd(borrow_amount_cents, rate.rate)
    implied_ltv = validate_borrow_request(collateral_value, borrow_value, max_ltv)

    return PreparedAction(
        kind=request.kind,
        call=ContractCall(
            bridge, "acceptFiatLenderOffer", (offer_id, collateral_asset, collateral_amount, borrow_amount_cents),
        ),
        approval=TokenApproval(collateral_asset, bridge, collateral_amount),
        invalidates=(fiat_lender_offer_key(offer_id),) + _token_spend_keys(collateral_asset, request.account, bridge),
        preview=implied_ltv,
    )


DEFAULT_PREPARERS: Dict[ActionKind, Preparer] = {
    ActionKind.CREATE_LOAN_REQUEST: prepare_create_loan_request,
    ActionKind.CREATE_FIAT_LOAN_REQUEST: prepare_create_fiat_loan_request,
    ActionKind.FUND_REQUEST: prepare_fund_request,
    ActionKind.REPAY: prepare_repay,
    ActionKind.LIQUIDATE: prepare_liquidate,
    ActionKind.REQUEST_EXTENSION: prepare_request_extension,
    ActionKind.APPROVE_EXTENSION: prepare_approve_extension,
    ActionKind.CREATE_LENDER_OFFER: prepare_create_lender_offer,
    ActionKind.ACCEPT_LENDER_OFFER: prepare_accept_lender_offer,
    ActionKind.CANCEL_LOAN_REQUEST: prepare_cancel_loan_request,
    ActionKind.CANCEL_LENDER_OFFER: prepare_cancel_lender_offer,
    ActionKind.CANCEL_FIAT_LOAN_REQUEST: prepare_cancel_fiat_loan_request,
    ActionKind.ACCEPT_FIAT_LOAN_REQUEST: prepare_accept_fiat_loan_request,
    ActionKind.ACCEPT_FIAT_LENDER_OFFER: prepare_accept_fiat_lender_offer,
}
