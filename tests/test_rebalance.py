"""Tests for drift analysis and rebalance planning."""

from decimal import Decimal

import pytest

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import ActionKind, AllocationTarget, Role
from chain_allocator.data import get_token_address
from chain_allocator.errors import IncompleteSnapshotError
from chain_allocator.planning import analyze_drift, compute_drift, plan_rebalance

from conftest import ARBITRUM, ETHEREUM, make_position, make_snapshot


def _targets(**percents: int) -> list[AllocationTarget]:
    return [AllocationTarget(token_symbol=s, target_percent=Decimal(p)) for s, p in percents.items()]


def test_overweight_token_is_sold_into_the_underweight_one():
    """Test a 60/40 portfolio against 50/50 targets."""
    snapshot = make_snapshot([make_position("ETH", "6000"), make_position("USDC", "4000")])

    actions = plan_rebalance(snapshot, _targets(ETH=50, USDC=50))

    assert len(actions) == 1
    sell = actions[0]
    assert sell.kind == ActionKind.SELL
    assert sell.token == "ETH"
    assert sell.amount_usd == Decimal("1000")
    assert sell.amount_token == Decimal("0.4")
    assert sell.from_chain == ETHEREUM
    assert sell.to_chain == ARBITRUM
    assert sell.to_token == get_token_address(ARBITRUM, "USDC")
    assert sell.priority == 1
    assert sell.source_role == Role.REBALANCER


def test_drift_within_threshold_produces_nothing():
    """Test that a 53/47 split against 50/50 needs no trades."""
    snapshot = make_snapshot([make_position("ETH", "5300"), make_position("USDC", "4700")])

    assert plan_rebalance(snapshot, _targets(ETH=50, USDC=50)) == []


def test_incomplete_snapshot_is_refused():
    """Test that unknown balances block planning unless explicitly allowed."""
    snapshot = make_snapshot([make_position("ETH", "6000"), make_position("USDC", "4000")], unavailable=(ARBITRUM,))

    with pytest.raises(IncompleteSnapshotError) as exc_info:
        plan_rebalance(snapshot, _targets(ETH=50, USDC=50))

    assert str(ARBITRUM) in exc_info.value.message
    assert len(plan_rebalance(snapshot, _targets(ETH=50, USDC=50), allow_partial=True)) == 1


def test_small_portfolio_is_left_alone():
    """Test that portfolios below the minimum trade size produce nothing."""
    snapshot = make_snapshot([make_position("ETH", "5"), make_position("USDC", "4")])

    assert plan_rebalance(snapshot, _targets(ETH=10, USDC=90)) == []


def test_wrapped_ether_counts_toward_ether():
    """Test WETH folding into ETH and selling from the largest position."""
    snapshot = make_snapshot(
        [
            make_position("ETH", "2500"),
            make_position("WETH", "3500", chain_id=ARBITRUM),
            make_position("USDC", "4000"),
        ]
    )

    reports = compute_drift(snapshot, _targets(ETH=50, USDC=50))
    assert reports[0].current_value_usd == Decimal("6000")

    actions = plan_rebalance(snapshot, _targets(ETH=50, USDC=50))
    assert [a.kind for a in actions] == [ActionKind.SELL]
    assert actions[0].from_chain == ARBITRUM
    assert actions[0].from_token == get_token_address(ARBITRUM, "WETH")
    assert actions[0].amount_token == Decimal("0.4")


def test_wrapped_ether_targeted_on_its_own():
    """Test that a WETH target keeps WETH separate from ETH."""
    snapshot = make_snapshot([make_position("ETH", "2500"), make_position("WETH", "3500", chain_id=ARBITRUM)])

    reports = compute_drift(snapshot, _targets(ETH=50, WETH=50))

    assert [r.current_value_usd for r in reports] == [Decimal("2500"), Decimal("3500")]


def test_unmatched_buy_remainder_is_proposed():
    """Test a capped sell leaving part of a buy to fund from the quote token."""
    snapshot = make_snapshot(
        [
            make_position("ETH", "2000"),
            make_position("ETH", "2000", chain_id=ARBITRUM),
            make_position("USDC", "6000"),
        ]
    )

    actions = plan_rebalance(snapshot, _targets(ETH=0, USDC=60, DAI=40))

    sell, buy = actions
    assert sell.kind == ActionKind.SELL
    assert sell.amount_usd == Decimal("2000")
    assert sell.to_token == get_token_address(ARBITRUM, "DAI")
    assert sell.priority == 2
    assert buy.kind == ActionKind.BUY
    assert buy.token == "DAI"
    assert buy.amount_usd == Decimal("2000")
    assert buy.from_token == get_token_address(ARBITRUM, "USDC")
    assert buy.from_token_decimals == 6


def test_sell_is_split_across_pending_buys():
    """Test that a sell never overfunds a buy and covers the next one with the rest."""
    snapshot = make_snapshot(
        [make_position("ETH", "7000"), make_position("DAI", "500"), make_position("USDC", "2500")]
    )

    actions = plan_rebalance(snapshot, _targets(ETH=50, DAI=15, USDC=35))

    assert [(a.kind, a.token, a.amount_usd, a.to_token) for a in actions] == [
        (ActionKind.SELL, "ETH", Decimal("1000"), get_token_address(ARBITRUM, "DAI")),
        (ActionKind.SELL, "ETH", Decimal("1000"), get_token_address(ARBITRUM, "USDC")),
    ]
    assert all(a.from_chain == ETHEREUM and a.amount_token == Decimal("0.4") for a in actions)


def test_sell_surplus_goes_to_quote_token_on_selling_chain():
    """Test that proceeds beyond every pending buy are parked in the quote token."""
    snapshot = make_snapshot(
        [make_position("ETH", "7000"), make_position("DAI", "1000"), make_position("USDC", "2000")]
    )

    actions = plan_rebalance(snapshot, _targets(ETH=50, DAI=20))

    matched, surplus = actions
    assert (matched.amount_usd, matched.to_chain, matched.to_token) == (
        Decimal("1000"),
        ARBITRUM,
        get_token_address(ARBITRUM, "DAI"),
    )
    assert (surplus.amount_usd, surplus.to_chain, surplus.to_token) == (
        Decimal("1000"),
        ETHEREUM,
        get_token_address(ETHEREUM, "USDC"),
    )


def test_custom_thresholds():
    """Test that a tighter threshold turns small drift into trades."""
    snapshot = make_snapshot([make_position("ETH", "5300"), make_position("USDC", "4700")])
    config = PlannerConfig(rebalance_threshold=Decimal("2"))

    actions = plan_rebalance(snapshot, _targets(ETH=50, USDC=50), config)

    assert [(a.kind, a.amount_usd) for a in actions] == [(ActionKind.SELL, Decimal("300"))]


def test_analyze_drift_recommendations():
    """Test the drift summary and its plain-language lines."""
    snapshot = make_snapshot([make_position("ETH", "6000"), make_position("USDC", "4000")])

    analysis = analyze_drift(snapshot, _targets(ETH=50, USDC=50))

    assert analysis.needs_rebalancing
    assert analysis.average_drift == Decimal("10")
    assert analysis.recommendations == [
        "ETH: Overweight by 10.0% - Sell $1000.00",
        "USDC: Underweight by 10.0% - Buy $1000.00",
    ]


def test_analyze_drift_balanced_and_empty():
    """Test summaries for a balanced and an empty portfolio."""
    balanced = make_snapshot([make_position("ETH", "5000"), make_position("USDC", "5000")])
    empty = make_snapshot([])

    assert analyze_drift(balanced, _targets(ETH=50, USDC=50)).recommendations == [
        "Portfolio is within target allocation"
    ]
    assert not analyze_drift(empty, _targets(ETH=50)).needs_rebalancing
