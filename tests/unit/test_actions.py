"""
Unit tests for actions.py - per-action preparation against FakeChain state.

Preparers are called directly through the orchestrator's ActionContext;
nothing is simulated or submitted here.
"""

import pytest

from lending_engine import (
    ActionKind, ActionNotAllowed, ActionRequest, AmountExceedsDebt, AssetNotEnabled,
    ContractAddresses, FiatLoanStatus, LiquidationSplit, LTVExceeded, LoanExtension, LoanRequestStatus,
    RATE_SCALE, RepaymentBelowMinimum, StalePriceError, TransactionOrchestrator,
)
from lending_engine.actions import (
    prepare_accept_fiat_lender_offer, prepare_accept_fiat_loan_request, prepare_accept_lender_offer,
    prepare_approve_extension, prepare_cancel_fiat_loan_request, prepare_cancel_lender_offer,
    prepare_cancel_loan_request, prepare_create_fiat_loan_request, prepare_create_lender_offer,
    prepare_create_loan_request, prepare_fund_request, prepare_liquidate, prepare_repay,
    prepare_request_extension,
)
from lending_engine.snapshot_cache import (
    allowance_key, balance_key, debt_key, extension_key, fiat_lender_offer_key, fiat_loan_key,
    lender_offer_key, loan_key, loan_request_key,
)

from tests.fake_chain import (
    BORROWER, FIAT_BRIDGE, FIAT_LOAN_ID, LENDER, LIQUIDATOR, LOAN_ID, MARKETPLACE, OFFER_ID,
    REQUEST_ID, THIRTY_DAYS, USDC, USDC_UNIT, WETH, WETH_UNIT, make_fiat_lender_offer,
    make_fiat_loan, make_lender_offer, make_loan_request,
)

DUE = 1_050 * USDC_UNIT


@pytest.fixture
def ctx(orchestrator):
    return orchestrator.context


def loan_request_params(**overrides):
    params = dict(
        collateral_token=WETH,
        collateral_amount=WETH_UNIT,
        borrow_asset=USDC,
        borrow_amount=1_000 * USDC_UNIT,
        interest_rate=500,
        duration=THIRTY_DAYS,
    )
    params.update(overrides)
    return tuple(params.items())


class TestActionRequest:

    def test_flow_key_normalizes_account(self):
        a = ActionRequest(ActionKind.REPAY, "0xABC", target_id=1)
        b = ActionRequest(ActionKind.REPAY, "0xabc", target_id=1)
        assert a.flow_key == b.flow_key

    def test_missing_param(self):
        with pytest.raises(ValueError):
            ActionRequest(ActionKind.REQUEST_EXTENSION, BORROWER, 1).param("additional_seconds")


class TestPrepareRepay:

    @pytest.mark.asyncio
    async def test_full_repayment_snaps(self, ctx):
        request = ActionRequest(ActionKind.REPAY, BORROWER, LOAN_ID, amount=1_049_500_000)
        prepared = await prepare_repay(ctx, request)
        assert prepared.call.selector == "repayLoan"
        assert prepared.call.args == (LOAN_ID, DUE)
        assert prepared.preview.is_full
        assert prepared.approval.amount == DUE
        assert prepared.approval.spender == MARKETPLACE
        assert prepared.invalidates == (
            loan_key(LOAN_ID), debt_key(LOAN_ID),
            allowance_key(USDC, BORROWER, MARKETPLACE), balance_key(USDC, BORROWER),
        )

    @pytest.mark.asyncio
    async def test_full_repayment_skips_price(self, ctx, chain, clock):
        chain.set_price(USDC, 10 ** 8, updated_at=clock() - 10_000)
        request = ActionRequest(ActionKind.REPAY, BORROWER, LOAN_ID, amount=DUE)
        prepared = await prepare_repay(ctx, request)
        assert prepared.preview.is_full

    @pytest.mark.asyncio
    async def test_partial_repayment_needs_fresh_price(self, ctx, chain, clock):
        chain.set_price(USDC, 10 ** 8, updated_at=clock() - 901)
        request = ActionRequest(ActionKind.REPAY, BORROWER, LOAN_ID, amount=500 * USDC_UNIT)
        with pytest.raises(StalePriceError):
            await prepare_repay(ctx, request)

    @pytest.mark.asyncio
    async def test_partial_below_minimum(self, ctx):
        request = ActionRequest(ActionKind.REPAY, BORROWER, LOAN_ID, amount=5 * USDC_UNIT)
        with pytest.raises(RepaymentBelowMinimum):
            await prepare_repay(ctx, request)

    @pytest.mark.asyncio
    async def test_overpayment(self, ctx):
        request = ActionRequest(ActionKind.REPAY, BORROWER, LOAN_ID, amount=2_000 * USDC_UNIT)
        with pytest.raises(AmountExceedsDebt):
            await prepare_repay(ctx, request)

    @pytest.mark.asyncio
    async def test_only_borrower(self, ctx):
        request = ActionRequest(ActionKind.REPAY, LENDER, LOAN_ID, amount=DUE)
        with pytest.raises(ActionNotAllowed):
            await prepare_repay(ctx, request)


class TestPrepareCreateLoanRequest:

    @pytest.mark.asyncio
    async def test_preview_is_implied_ltv(self, ctx):
        request = ActionRequest(ActionKind.CREATE_LOAN_REQUEST, BORROWER, params=loan_request_params())
        prepared = await prepare_create_loan_request(ctx, request)
        assert prepared.preview == 5_000
        assert prepared.approval.token == WETH
        assert prepared.approval.amount == WETH_UNIT
        assert prepared.call.args == (WETH, WETH_UNIT, USDC, 1_000 * USDC_UNIT, 500, THIRTY_DAYS)

    @pytest.mark.asyncio
    async def test_ltv_exceeded(self, ctx):
        params = loan_request_params(borrow_amount=1_600 * USDC_UNIT)
        with pytest.raises(LTVExceeded):
            await prepare_create_loan_request(ctx, ActionRequest(ActionKind.CREATE_LOAN_REQUEST, BORROWER, params=params))

    @pytest.mark.asyncio
    async def test_duration_without_ltv_tier(self, ctx):
        params = loan_request_params(duration=THIRTY_DAYS + 1)
        with pytest.raises(AssetNotEnabled):
            await prepare_create_loan_request(ctx, ActionRequest(ActionKind.CREATE_LOAN_REQUEST, BORROWER, params=params))

    @pytest.mark.asyncio
    async def test_duration_out_of_bounds(self, ctx):
        params = loan_request_params(duration=3_600)
        with pytest.raises(ValueError):
            await prepare_create_loan_request(ctx, ActionRequest(ActionKind.CREATE_LOAN_REQUEST, BORROWER, params=params))


class TestPrepareCreateFiatLoanRequest:

    def request(self):
        params = dict(
            collateral_asset=WETH,
            collateral_amount=WETH_UNIT,
            fiat_amount_cents=150_000_000,
            currency="NGN",
            interest_rate=500,
            duration=THIRTY_DAYS,
        )
        return ActionRequest(ActionKind.CREATE_FIAT_LOAN_REQUEST, BORROWER, params=tuple(params.items()))

    @pytest.mark.asyncio
    async def test_values_fiat_at_live_rate(self, ctx, chain):
        chain.set_rate("NGN", 1_500 * RATE_SCALE)
        prepared = await prepare_create_fiat_loan_request(ctx, self.request())
        assert prepared.preview == 5_000
        assert prepared.call.address == FIAT_BRIDGE
        assert prepared.approval.spender == FIAT_BRIDGE

    @pytest.mark.asyncio
    async def test_stale_rate(self, ctx, chain, clock):
        chain.set_rate("NGN", 1_500 * RATE_SCALE, updated_at=clock() - 3_601)
        with pytest.raises(StalePriceError):
            await prepare_create_fiat_loan_request(ctx, self.request())

    @pytest.mark.asyncio
    async def test_no_bridge_deployed(self, chain, config, tokens, clock, sleep):
        config = config.with_contracts(ContractAddresses(loan_marketplace=MARKETPLACE))
        orchestrator = TransactionOrchestrator(chain, config, tokens=tokens, clock=clock, sleep=sleep)
        with pytest.raises(ActionNotAllowed):
            await prepare_create_fiat_loan_request(orchestrator.context, self.request())


class TestPrepareFundRequest:

    @pytest.mark.asyncio
    async def test_lender_funds_borrow_amount(self, ctx):
        prepared = await prepare_fund_request(ctx, ActionRequest(ActionKind.FUND_REQUEST, LENDER, REQUEST_ID))
        assert prepared.call.args == (REQUEST_ID,)
        assert prepared.approval.amount == 1_000 * USDC_UNIT
        assert prepared.invalidates[0] == loan_request_key(REQUEST_ID)

    @pytest.mark.asyncio
    async def test_cannot_fund_own_request(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_fund_request(ctx, ActionRequest(ActionKind.FUND_REQUEST, BORROWER, REQUEST_ID))

    @pytest.mark.asyncio
    async def test_expired_request(self, ctx, clock):
        clock.advance(8 * 86_400)
        with pytest.raises(ActionNotAllowed):
            await prepare_fund_request(ctx, ActionRequest(ActionKind.FUND_REQUEST, LENDER, REQUEST_ID))

    @pytest.mark.asyncio
    async def test_already_funded(self, ctx, chain):
        chain.loan_requests[REQUEST_ID] = make_loan_request(status=LoanRequestStatus.FUNDED)
        with pytest.raises(ActionNotAllowed):
            await prepare_fund_request(ctx, ActionRequest(ActionKind.FUND_REQUEST, LENDER, REQUEST_ID))


class TestPrepareLiquidate:

    @pytest.mark.asyncio
    async def test_preview_split(self, ctx, chain):
        chain.set_price(WETH, 1_200 * 10 ** 8)
        prepared = await prepare_liquidate(ctx, ActionRequest(ActionKind.LIQUIDATE, LIQUIDATOR, LOAN_ID))
        assert isinstance(prepared.preview, LiquidationSplit)
        assert prepared.approval.amount == DUE
        assert balance_key(WETH, LIQUIDATOR) in prepared.invalidates

    @pytest.mark.asyncio
    async def test_stale_collateral_price(self, ctx, chain, clock):
        chain.set_price(WETH, 1_200 * 10 ** 8, updated_at=clock() - 901)
        with pytest.raises(StalePriceError):
            await prepare_liquidate(ctx, ActionRequest(ActionKind.LIQUIDATE, LIQUIDATOR, LOAN_ID))


class TestPrepareExtensions:

    def extension_request(self, seconds=7 * 86_400):
        return ActionRequest(
            ActionKind.REQUEST_EXTENSION, BORROWER, LOAN_ID, params=(("additional_seconds", seconds),),
        )

    @pytest.mark.asyncio
    async def test_request_extension(self, ctx, chain):
        prepared = await prepare_request_extension(ctx, self.extension_request())
        assert prepared.approval is None
        assert prepared.invalidates == (extension_key(LOAN_ID),)
        assert prepared.preview == chain.loans[LOAN_ID].due_date + 7 * 86_400

    @pytest.mark.asyncio
    async def test_already_requested(self, ctx, chain):
        chain.extensions[LOAN_ID] = LoanExtension(LOAN_ID, 86_400, requested=True, approved=False)
        with pytest.raises(ActionNotAllowed):
            await prepare_request_extension(ctx, self.extension_request())

    @pytest.mark.asyncio
    async def test_lender_approves(self, ctx, chain):
        chain.extensions[LOAN_ID] = LoanExtension(LOAN_ID, 86_400, requested=True, approved=False)
        prepared = await prepare_approve_extension(ctx, ActionRequest(ActionKind.APPROVE_EXTENSION, LENDER, LOAN_ID))
        assert prepared.call.selector == "approveLoanExtension"
        assert prepared.invalidates == (loan_key(LOAN_ID), extension_key(LOAN_ID))

    @pytest.mark.asyncio
    async def test_borrower_cannot_approve(self, ctx, chain):
        chain.extensions[LOAN_ID] = LoanExtension(LOAN_ID, 86_400, requested=True, approved=False)
        with pytest.raises(ActionNotAllowed):
            await prepare_approve_extension(ctx, ActionRequest(ActionKind.APPROVE_EXTENSION, BORROWER, LOAN_ID))

    @pytest.mark.asyncio
    async def test_nothing_to_approve(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_approve_extension(ctx, ActionRequest(ActionKind.APPROVE_EXTENSION, LENDER, LOAN_ID))


class TestPrepareCreateLenderOffer:

    def request(self, **overrides):
        params = dict(
            lend_asset=USDC,
            lend_amount=1_000 * USDC_UNIT,
            required_collateral_asset=WETH,
            min_collateral_amount=WETH_UNIT,
            interest_rate=500,
            duration=THIRTY_DAYS,
        )
        params.update(overrides)
        return ActionRequest(ActionKind.CREATE_LENDER_OFFER, LENDER, params=tuple(params.items()))

    @pytest.mark.asyncio
    async def test_escrows_lend_amount(self, ctx):
        prepared = await prepare_create_lender_offer(ctx, self.request())
        assert prepared.call.selector == "createLenderOffer"
        assert prepared.call.args == (USDC, 1_000 * USDC_UNIT, WETH, WETH_UNIT, 500, THIRTY_DAYS)
        assert prepared.approval.token == USDC
        assert prepared.approval.amount == 1_000 * USDC_UNIT
        assert prepared.invalidates == (allowance_key(USDC, LENDER, MARKETPLACE), balance_key(USDC, LENDER))
        # $1,000 against $2,000 of minimum collateral
        assert prepared.preview == 5_000

    @pytest.mark.asyncio
    async def test_minimum_collateral_must_cover_lend_amount(self, ctx):
        with pytest.raises(LTVExceeded):
            await prepare_create_lender_offer(ctx, self.request(lend_amount=2_000 * USDC_UNIT))

    @pytest.mark.asyncio
    async def test_zero_minimum_collateral(self, ctx):
        with pytest.raises(ValueError):
            await prepare_create_lender_offer(ctx, self.request(min_collateral_amount=0))

    @pytest.mark.asyncio
    async def test_stale_lend_asset_price(self, ctx, chain, clock):
        chain.set_price(USDC, 10 ** 8, updated_at=clock() - 901)
        with pytest.raises(StalePriceError):
            await prepare_create_lender_offer(ctx, self.request())


class TestPrepareAcceptLenderOffer:

    @pytest.fixture(autouse=True)
    def offer(self, chain):
        chain.lender_offers[OFFER_ID] = make_lender_offer()

    def request(self, account=BORROWER, **overrides):
        params = dict(collateral_amount=WETH_UNIT, borrow_amount=1_000 * USDC_UNIT)
        params.update(overrides)
        return ActionRequest(ActionKind.ACCEPT_LENDER_OFFER, account, OFFER_ID, params=tuple(params.items()))

    @pytest.mark.asyncio
    async def test_posts_collateral_to_marketplace(self, ctx):
        prepared = await prepare_accept_lender_offer(ctx, self.request())
        assert prepared.call.selector == "acceptLenderOffer"
        assert prepared.call.args == (OFFER_ID, WETH, WETH_UNIT, 1_000 * USDC_UNIT)
        assert prepared.approval.token == WETH
        assert prepared.approval.spender == MARKETPLACE
        assert prepared.invalidates == (
            lender_offer_key(OFFER_ID),
            allowance_key(WETH, BORROWER, MARKETPLACE), balance_key(WETH, BORROWER),
            balance_key(USDC, BORROWER),
        )
        assert prepared.preview == 5_000

    @pytest.mark.asyncio
    async def test_more_than_remaining(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request(borrow_amount=1_600 * USDC_UNIT))

    @pytest.mark.asyncio
    async def test_below_minimum_collateral(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request(collateral_amount=WETH_UNIT // 2))

    @pytest.mark.asyncio
    async def test_wrong_collateral_asset(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request(collateral_asset=USDC))

    @pytest.mark.asyncio
    async def test_ltv_exceeded(self, ctx, chain):
        chain.set_price(WETH, 1_200 * 10 ** 8)
        with pytest.raises(LTVExceeded):
            await prepare_accept_lender_offer(ctx, self.request())

    @pytest.mark.asyncio
    async def test_cannot_accept_own_offer(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request(account=LENDER))

    @pytest.mark.asyncio
    async def test_expired_offer(self, ctx, clock):
        clock.advance(7 * 86_400)
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request())

    @pytest.mark.asyncio
    async def test_cancelled_offer(self, ctx, chain):
        chain.lender_offers[OFFER_ID] = make_lender_offer(status=LoanRequestStatus.CANCELLED)
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_lender_offer(ctx, self.request())


class TestPrepareCancellations:

    @pytest.mark.asyncio
    async def test_borrower_cancels_request(self, ctx):
        prepared = await prepare_cancel_loan_request(
            ctx, ActionRequest(ActionKind.CANCEL_LOAN_REQUEST, BORROWER, REQUEST_ID),
        )
        assert prepared.call.address == MARKETPLACE
        assert prepared.call.args == (REQUEST_ID,)
        assert prepared.approval is None
        assert prepared.invalidates == (loan_request_key(REQUEST_ID), balance_key(WETH, BORROWER))

    @pytest.mark.asyncio
    async def test_only_borrower_cancels_request(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_cancel_loan_request(ctx, ActionRequest(ActionKind.CANCEL_LOAN_REQUEST, LENDER, REQUEST_ID))

    @pytest.mark.asyncio
    async def test_funded_request_cannot_be_cancelled(self, ctx, chain):
        chain.loan_requests[REQUEST_ID] = make_loan_request(status=LoanRequestStatus.FUNDED)
        with pytest.raises(ActionNotAllowed):
            await prepare_cancel_loan_request(
                ctx, ActionRequest(ActionKind.CANCEL_LOAN_REQUEST, BORROWER, REQUEST_ID),
            )

    @pytest.mark.asyncio
    async def test_lender_cancels_offer(self, ctx, chain):
        chain.lender_offers[OFFER_ID] = make_lender_offer()
        prepared = await prepare_cancel_lender_offer(
            ctx, ActionRequest(ActionKind.CANCEL_LENDER_OFFER, LENDER, OFFER_ID),
        )
        assert prepared.call.selector == "cancelLenderOffer"
        assert prepared.invalidates == (lender_offer_key(OFFER_ID), balance_key(USDC, LENDER))

    @pytest.mark.asyncio
    async def test_only_lender_cancels_offer(self, ctx, chain):
        chain.lender_offers[OFFER_ID] = make_lender_offer()
        with pytest.raises(ActionNotAllowed):
            await prepare_cancel_lender_offer(ctx, ActionRequest(ActionKind.CANCEL_LENDER_OFFER, BORROWER, OFFER_ID))

    @pytest.mark.asyncio
    async def test_offer_id_required(self, ctx):
        with pytest.raises(ValueError):
            await prepare_cancel_lender_offer(ctx, ActionRequest(ActionKind.CANCEL_LENDER_OFFER, LENDER))


class TestPrepareFiatOffers:

    @pytest.fixture(autouse=True)
    def fiat_state(self, chain):
        chain.fiat_loans[FIAT_LOAN_ID] = make_fiat_loan()
        chain.fiat_lender_offers[OFFER_ID] = make_fiat_lender_offer()
        chain.set_rate("NGN", 1_500 * RATE_SCALE)

    def accept_offer(self, account=BORROWER, **overrides):
        params = dict(collateral_asset=WETH, collateral_amount=WETH_UNIT, borrow_amount_cents=150_000_000)
        params.update(overrides)
        return ActionRequest(ActionKind.ACCEPT_FIAT_LENDER_OFFER, account, OFFER_ID, params=tuple(params.items()))

    @pytest.mark.asyncio
    async def test_borrower_cancels_fiat_request(self, ctx):
        prepared = await prepare_cancel_fiat_loan_request(
            ctx, ActionRequest(ActionKind.CANCEL_FIAT_LOAN_REQUEST, BORROWER, FIAT_LOAN_ID),
        )
        assert prepared.call.address == FIAT_BRIDGE
        assert prepared.call.selector == "cancelFiatLoanRequest"
        assert prepared.invalidates == (fiat_loan_key(FIAT_LOAN_ID), balance_key(WETH, BORROWER))

    @pytest.mark.asyncio
    async def test_active_fiat_loan_cannot_be_cancelled(self, ctx, chain):
        chain.fiat_loans[FIAT_LOAN_ID] = make_fiat_loan(status=FiatLoanStatus.ACTIVE)
        with pytest.raises(ActionNotAllowed):
            await prepare_cancel_fiat_loan_request(
                ctx, ActionRequest(ActionKind.CANCEL_FIAT_LOAN_REQUEST, BORROWER, FIAT_LOAN_ID),
            )

    @pytest.mark.asyncio
    async def test_supplier_accepts_without_approval(self, ctx):
        prepared = await prepare_accept_fiat_loan_request(
            ctx, ActionRequest(ActionKind.ACCEPT_FIAT_LOAN_REQUEST, LENDER, FIAT_LOAN_ID),
        )
        assert prepared.call.args == (FIAT_LOAN_ID,)
        assert prepared.approval is None
        assert prepared.invalidates == (fiat_loan_key(FIAT_LOAN_ID),)

    @pytest.mark.asyncio
    async def test_borrower_cannot_supply_own_loan(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_fiat_loan_request(
                ctx, ActionRequest(ActionKind.ACCEPT_FIAT_LOAN_REQUEST, BORROWER, FIAT_LOAN_ID),
            )

    @pytest.mark.asyncio
    async def test_accept_fiat_offer(self, ctx):
        prepared = await prepare_accept_fiat_lender_offer(ctx, self.accept_offer())
        assert prepared.call.address == FIAT_BRIDGE
        assert prepared.call.args == (OFFER_ID, WETH, WETH_UNIT, 150_000_000)
        assert prepared.approval.spender == FIAT_BRIDGE
        assert prepared.invalidates[0] == fiat_lender_offer_key(OFFER_ID)
        # 1,500,000.00 NGN at 1,500 per USD is $1,000 against $2,000
        assert prepared.preview == 5_000

    @pytest.mark.asyncio
    async def test_collateral_below_usd_minimum(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_fiat_lender_offer(ctx, self.accept_offer(collateral_amount=WETH_UNIT * 4 // 10))

    @pytest.mark.asyncio
    async def test_more_than_remaining_cents(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_fiat_lender_offer(ctx, self.accept_offer(borrow_amount_cents=150_000_001))

    @pytest.mark.asyncio
    async def test_stale_offer_currency_rate(self, ctx, chain, clock):
        chain.set_rate("NGN", 1_500 * RATE_SCALE, updated_at=clock() - 3_601)
        with pytest.raises(StalePriceError):
            await prepare_accept_fiat_lender_offer(ctx, self.accept_offer())

    @pytest.mark.asyncio
    async def test_cannot_accept_own_fiat_offer(self, ctx):
        with pytest.raises(ActionNotAllowed):
            await prepare_accept_fiat_lender_offer(ctx, self.accept_offer(account=LENDER))
