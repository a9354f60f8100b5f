"""Per-role decision loops, their strategies and optional phrasing."""

from chain_allocator.loop.decision import Coordinator, CoordinatedCycle, CycleOutcome, DecisionLoop
from chain_allocator.loop.phrasing import CallLimiter, FallbackPhraser, GeminiPhraser, Phraser, TemplatePhraser
from chain_allocator.loop.strategies import (
    ArbitrageStrategy,
    RebalanceStrategy,
    StrategyContext,
    YieldRotationStrategy,
    build_strategies,
    resolve_strategies,
)

__all__ = [
    "ArbitrageStrategy",
    "CallLimiter",
    "CoordinatedCycle",
    "Coordinator",
    "CycleOutcome",
    "DecisionLoop",
    "FallbackPhraser",
    "GeminiPhraser",
    "Phraser",
    "RebalanceStrategy",
    "StrategyContext",
    "TemplatePhraser",
    "YieldRotationStrategy",
    "build_strategies",
    "resolve_strategies",
]
