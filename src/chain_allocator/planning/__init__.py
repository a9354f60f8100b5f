"""Planners that turn portfolio state and market data into proposed actions."""

from chain_allocator.planning.arbitrage import (
    build_arbitrage_action,
    confidence_for,
    detect_opportunities,
    price_gap_percent,
    scan_arbitrage,
)
from chain_allocator.planning.conflicts import Reconciliation, reconcile_actions
from chain_allocator.planning.deposit import VaultDepositQuote, build_deposit_request, quote_vault_deposit
from chain_allocator.planning.hedge import HedgeQuote, plan_hedge, quote_hedge
from chain_allocator.planning.rebalance import analyze_drift, compute_drift, plan_rebalance
from chain_allocator.planning.staged import create_staged_plan, due_steps
from chain_allocator.planning.yields import find_better_opportunities, plan_yield_rotation, rank_opportunities

__all__ = [
    "HedgeQuote",
    "Reconciliation",
    "VaultDepositQuote",
    "analyze_drift",
    "build_arbitrage_action",
    "build_deposit_request",
    "compute_drift",
    "confidence_for",
    "create_staged_plan",
    "detect_opportunities",
    "due_steps",
    "find_better_opportunities",
    "plan_hedge",
    "plan_rebalance",
    "plan_yield_rotation",
    "price_gap_percent",
    "quote_hedge",
    "quote_vault_deposit",
    "rank_opportunities",
    "reconcile_actions",
    "scan_arbitrage",
]
