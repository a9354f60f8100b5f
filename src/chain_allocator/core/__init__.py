"""Core functionality including models, aggregator, and strategy registry."""

from chain_allocator.core.aggregator import PortfolioAggregator
from chain_allocator.core.models import (
    ActionKind,
    AllocationTarget,
    ChainBalanceResult,
    ChainStatus,
    DriftReport,
    ExecutionPlan,
    ExecutionResult,
    ExecutionStatus,
    IntentAnalysis,
    IntentType,
    PortfolioSnapshot,
    ProposedAction,
    Quote,
    QuoteRequest,
    Role,
    TokenPosition,
)
from chain_allocator.core.registry import StrategyRegistry

__all__ = [
    "ActionKind",
    "AllocationTarget",
    "ChainBalanceResult",
    "ChainStatus",
    "DriftReport",
    "ExecutionPlan",
    "ExecutionResult",
    "ExecutionStatus",
    "IntentAnalysis",
    "IntentType",
    "PortfolioAggregator",
    "PortfolioSnapshot",
    "ProposedAction",
    "Quote",
    "QuoteRequest",
    "Role",
    "StrategyRegistry",
    "TokenPosition",
]
