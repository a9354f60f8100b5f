"""Per-role decision strategies, auto-registered with the strategy registry."""

import asyncio
import logging
from dataclasses import dataclass, field

from chain_allocator.config import PlannerConfig
from chain_allocator.core.aggregator import PortfolioAggregator
from chain_allocator.core.models import (
    AllocationTarget,
    ArbitrageOpportunity,
    CurrentYield,
    PortfolioSnapshot,
    ProposedAction,
    Role,
    YieldOpportunity,
)
from chain_allocator.core.registry import StrategyInterface, StrategyRegistry
from chain_allocator.errors import ChainAllocatorError
from chain_allocator.planning import build_arbitrage_action, plan_rebalance, plan_yield_rotation, scan_arbitrage
from chain_allocator.pricing import CrossChainPriceFeed, DeFiLlamaYields

logger = logging.getLogger(__name__)

YIELD_TOKENS = ("USDC", "USDT", "DAI")
ARBITRAGE_TOKENS = ("WETH", "USDC", "USDT")


@dataclass
class StrategyContext:
    """Everything a registered strategy may need to build itself."""

    aggregator: PortfolioAggregator
    yields: DeFiLlamaYields
    feed: CrossChainPriceFeed
    address: str
    chain_ids: list[int]
    targets: list[AllocationTarget] = field(default_factory=list)
    config: PlannerConfig = field(default_factory=PlannerConfig)
    allow_partial: bool = False


@StrategyRegistry.register
class RebalanceStrategy:
    """
    Keeps a wallet near its target allocation.

    Parameters
    ----------
    aggregator : PortfolioAggregator
        Source of portfolio snapshots
    address : str
        Wallet to watch
    chain_ids : list[int]
        Chains to aggregate
    targets : list[AllocationTarget]
        Desired allocation
    config : PlannerConfig | None
        Drift threshold and minimum trade size
    allow_partial : bool
        Plan even when some chains are unreachable

    """

    name = "rebalance"
    role = Role.REBALANCER

    def __init__(
        self,
        aggregator: PortfolioAggregator,
        address: str,
        chain_ids: list[int],
        targets: list[AllocationTarget],
        config: PlannerConfig | None = None,
        allow_partial: bool = False,
    ) -> None:
        self.aggregator = aggregator
        self.address = address
        self.chain_ids = chain_ids
        self.targets = targets
        self.config = config or PlannerConfig()
        self.allow_partial = allow_partial

    @classmethod
    def from_context(cls, context: StrategyContext) -> "RebalanceStrategy":
        return cls(
            context.aggregator,
            context.address,
            context.chain_ids,
            context.targets,
            config=context.config,
            allow_partial=context.allow_partial,
        )

    async def monitor(self) -> PortfolioSnapshot:
        return await self.aggregator.snapshot(self.address, self.chain_ids)

    def decide(self, state: PortfolioSnapshot) -> list[ProposedAction]:
        actions = plan_rebalance(state, self.targets, self.config, allow_partial=self.allow_partial)
        return sorted(actions, key=lambda a: a.priority, reverse=True)


@dataclass
class YieldState:
    snapshot: PortfolioSnapshot
    pools: list[YieldOpportunity]


@StrategyRegistry.register
class YieldRotationStrategy:
    """
    Moves idle stablecoins into the best qualifying pool.

    Wallet balances are treated as earning 0% APY.
    """

    name = "yield_rotation"
    role = Role.YIELD_SEEKER

    def __init__(
        self,
        aggregator: PortfolioAggregator,
        yields: DeFiLlamaYields,
        address: str,
        chain_ids: list[int],
        config: PlannerConfig | None = None,
        tokens: tuple[str, ...] = YIELD_TOKENS,
    ) -> None:
        self.aggregator = aggregator
        self.yields = yields
        self.address = address
        self.chain_ids = chain_ids
        self.config = config or PlannerConfig()
        self.tokens = tokens

    @classmethod
    def from_context(cls, context: StrategyContext) -> "YieldRotationStrategy":
        return cls(context.aggregator, context.yields, context.address, context.chain_ids, config=context.config)

    async def monitor(self) -> YieldState:
        snapshot, pools = await asyncio.gather(
            self.aggregator.snapshot(self.address, self.chain_ids),
            self.yields.get_pools(
                self.chain_ids,
                list(self.tokens),
                min_tvl=self.config.yield_min_tvl,
                max_apy=self.config.yield_max_apy,
                min_apy=self.config.yield_min_apy,
            ),
        )
        return YieldState(snapshot=snapshot, pools=pools)

    def decide(self, state: YieldState) -> list[ProposedAction]:
        plans = []
        for position in state.snapshot.positions:
            if position.symbol.upper() not in self.tokens or position.value_usd < self.config.min_trade_usd:
                continue
            current = CurrentYield(
                symbol=position.symbol,
                chain_id=position.chain_id,
                balance=position.formatted_balance,
                value_usd=position.value_usd,
                token_address=position.token_address,
                decimals=position.decimals,
            )
            plan = plan_yield_rotation(current, state.pools, self.config)
            if plan is not None:
                plans.append(plan)
        plans.sort(key=lambda p: p.net_benefit_usd, reverse=True)
        return [p.action for p in plans]


@StrategyRegistry.register
class ArbitrageStrategy:
    """Scans tracked tokens for cross-chain price gaps."""

    name = "arbitrage"
    role = Role.ARBITRAGE_HUNTER

    def __init__(
        self,
        feed: CrossChainPriceFeed,
        chain_ids: list[int],
        config: PlannerConfig | None = None,
        tokens: tuple[str, ...] = ARBITRAGE_TOKENS,
    ) -> None:
        self.feed = feed
        self.chain_ids = chain_ids
        self.config = config or PlannerConfig()
        self.tokens = tokens

    @classmethod
    def from_context(cls, context: StrategyContext) -> "ArbitrageStrategy":
        return cls(context.feed, context.chain_ids, config=context.config)

    async def monitor(self) -> list[ArbitrageOpportunity]:
        return await scan_arbitrage(self.feed, list(self.tokens), self.chain_ids, self.config)

    def decide(self, state: list[ArbitrageOpportunity]) -> list[ProposedAction]:
        actions = []
        for opportunity in state:
            action = build_arbitrage_action(opportunity, self.config)
            if action is None:
                logger.debug("No route tokens for %s arbitrage", opportunity.token)
                continue
            actions.append(action)
        return actions


def resolve_strategies(names: list[str] | None = None) -> list[type]:
    """
    Look up registered strategy classes by name.

    Parameters
    ----------
    names : list[str] | None
        Strategy names; every registered strategy when empty

    Returns
    -------
    list[type]
        Strategy classes in the requested order

    Raises
    ------
    ChainAllocatorError
        If a name is not registered

    """
    if not names:
        return StrategyRegistry.get_all_strategies()
    classes = []
    for name in names:
        strategy_class = StrategyRegistry.get_strategy(name)
        if strategy_class is None:
            msg = f"Unknown strategy: {name}"
            raise ChainAllocatorError(msg, hint=f"choose from {', '.join(StrategyRegistry.list_strategies())}")
        classes.append(strategy_class)
    return classes


def build_strategies(context: StrategyContext, names: list[str] | None = None) -> list[StrategyInterface]:
    """Instantiate the named registered strategies against ``context``."""
    return [strategy_class.from_context(context) for strategy_class in resolve_strategies(names)]
