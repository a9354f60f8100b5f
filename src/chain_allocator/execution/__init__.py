"""Execution planning, risk scoring, signing and settlement tracking."""

from chain_allocator.execution.executor import RouteExecutor, StatusPoller, transaction_type_for
from chain_allocator.execution.planner import (
    ExecutionPlanner,
    build_plan,
    output_deviation,
    plan_warnings,
    request_for,
    score_risk,
    summarize_plan,
)
from chain_allocator.execution.signer import SignerAdapter, WalletSigner

__all__ = [
    "ExecutionPlanner",
    "RouteExecutor",
    "SignerAdapter",
    "StatusPoller",
    "WalletSigner",
    "build_plan",
    "output_deviation",
    "plan_warnings",
    "request_for",
    "score_risk",
    "summarize_plan",
    "transaction_type_for",
]
