"""
conftest.py - Shared pytest fixtures for lending engine tests

Provides common fixtures used across unit and functional tests:
- A settable clock and a recording async sleep
- A deployment config and token registry
- A FakeChain seeded with one active WETH/USDC loan and a pending request
- An orchestrator wired to all of the above
"""

import pytest

from lending_engine import ContractAddresses, EngineConfig, TokenInfo, TokenRegistry, TransactionOrchestrator

from tests.fake_chain import (
    BORROWER, CONFIGURATION, FIAT_BRIDGE, LENDER, LIQUIDATOR, LTV_CONFIG, MARKETPLACE,
    LOAN_ID, PRICE_UNIT, REQUEST_ID, USDC, USDC_UNIT, WETH, WETH_UNIT,
    FakeChain, FakeClock, RecordingSleep, make_loan, make_loan_request,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def contracts():
    return ContractAddresses(
        loan_marketplace=MARKETPLACE,
        configuration=CONFIGURATION,
        ltv_config=LTV_CONFIG,
        fiat_loan_bridge=FIAT_BRIDGE,
    )


@pytest.fixture
def config(contracts):
    return EngineConfig(contracts=contracts, confirmation_timeout_seconds=0.05)


@pytest.fixture
def tokens():
    return TokenRegistry([
        TokenInfo(WETH, "WETH", 18, "Wrapped Ether"),
        TokenInfo(USDC, "USDC", 6, "USD Coin"),
    ])


@pytest.fixture
def chain(clock):
    """FakeChain with an active loan, a pending request, live prices and funded wallets."""
    fake = FakeChain(clock)
    fake.loans[LOAN_ID] = make_loan()
    fake.loan_requests[REQUEST_ID] = make_loan_request()
    fake.decimals.update({WETH: 18, USDC: 6})
    fake.set_price(WETH, 2_000 * PRICE_UNIT)
    fake.set_price(USDC, PRICE_UNIT)
    fake.ltv[(WETH, 30)] = 7_500
    fake.liquidation_thresholds[(WETH, 30)] = 8_500
    for account in (BORROWER, LENDER, LIQUIDATOR):
        fake.balances[(USDC, account)] = 5_000 * USDC_UNIT
        fake.balances[(WETH, account)] = 10 * WETH_UNIT
    return fake


@pytest.fixture
def orchestrator(chain, config, tokens, clock, sleep):
    return TransactionOrchestrator(chain, config, tokens=tokens, clock=clock, sleep=sleep)
