"""Tests for hedge planning and quoting."""

from decimal import Decimal

import pytest

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import ActionKind, Role
from chain_allocator.data import get_token_address
from chain_allocator.errors import InsufficientAmountError, InvalidRequestError
from chain_allocator.planning import plan_hedge, quote_hedge
from chain_allocator.routing import QuoteGateway

from conftest import ARBITRUM, BASE, WALLET, FakeClock, FakeQuoteSource, make_position, make_quote, make_snapshot


@pytest.fixture
def snapshot():
    return make_snapshot(
        [
            make_position("WETH", "3500", chain_id=ARBITRUM),
            make_position("ETH", "2500", chain_id=ARBITRUM),
            make_position("USDC", "1000", chain_id=ARBITRUM),
            make_position("ETH", "9000"),
        ]
    )


def test_hedge_half_of_largest_position(snapshot):
    """Test the default hedge sells half of the largest ETH-like position on the chain."""
    action = plan_hedge(snapshot, ARBITRUM)

    assert action.kind == ActionKind.SELL
    assert action.token == "WETH"
    assert action.from_chain == action.to_chain == ARBITRUM
    assert action.from_token == get_token_address(ARBITRUM, "WETH")
    assert action.to_token == get_token_address(ARBITRUM, "USDC")
    assert action.amount_token == Decimal("0.7")
    assert action.amount_usd == Decimal("1750")
    assert action.source_role == Role.RISK_SENTINEL
    assert action.reason == "Hedge: swap 0.7 WETH to USDC on Arbitrum to reduce exposure"


def test_hedge_explicit_amount(snapshot):
    """Test that an explicit token amount overrides the percentage."""
    action = plan_hedge(snapshot, ARBITRUM, amount_token=Decimal("0.2"))

    assert action.amount_token == Decimal("0.2")
    assert action.amount_usd == Decimal("500")
    assert action.raw_amount == "200000000000000000"


@pytest.mark.parametrize(
    ("chain_id", "amount"),
    [
        (BASE, None),
        (ARBITRUM, Decimal("0")),
        (ARBITRUM, Decimal("2")),
        (ARBITRUM, Decimal("0.001")),
    ],
)
def test_hedge_rejects_unusable_amounts(snapshot, chain_id, amount):
    """Test missing holdings, zero, oversized and dust hedges."""
    with pytest.raises(InsufficientAmountError):
        plan_hedge(snapshot, chain_id, amount_token=amount)


def test_hedge_needs_tracked_quote_token(snapshot):
    """Test a quote token the registry does not track on the chain."""
    with pytest.raises(InvalidRequestError, match="not supported for hedging"):
        plan_hedge(snapshot, ARBITRUM, config=PlannerConfig(quote_token="PEPE"))


@pytest.mark.asyncio
async def test_quote_hedge(snapshot):
    """Test the quoted same-chain swap and its estimated stablecoin output."""
    source = FakeQuoteSource(make_quote(from_chain=ARBITRUM, to_chain=ARBITRUM, to_amount="1745500000"))
    clock = FakeClock()
    gateway = QuoteGateway(source, min_interval=0, clock=clock, sleep=clock.sleep)
    action = plan_hedge(snapshot, ARBITRUM)

    result = await quote_hedge(gateway, action, WALLET)

    (request,) = source.requests
    assert request.from_chain == request.to_chain == ARBITRUM
    assert request.from_token == get_token_address(ARBITRUM, "WETH")
    assert request.to_token == get_token_address(ARBITRUM, "USDC")
    assert request.from_amount == "700000000000000000"
    assert request.to_address == WALLET
    assert result.to_amount_estimate == Decimal("1745.5")
    assert result.summary == "Hedge: swap 0.7 WETH → ~1745.50 USDC on Arbitrum. Reduces WETH exposure."
