"""Yield rotation planning."""

import logging
from decimal import Decimal

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import (
    ActionKind,
    CurrentYield,
    ProposedAction,
    Role,
    YieldOpportunity,
    YieldRotationPlan,
)
from chain_allocator.data import get_token_address

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = Decimal("365")


def rank_opportunities(
    opportunities: list[YieldOpportunity],
    min_tvl: Decimal = Decimal("1000000"),
    max_apy: Decimal = Decimal("100"),
    symbol: str | None = None,
) -> list[YieldOpportunity]:
    """
    Filter thin and implausible pools, best APY first.

    Parameters
    ----------
    opportunities : list[YieldOpportunity]
        Pools from the yield feed
    min_tvl : Decimal
        Pools with less TVL are dropped
    max_apy : Decimal
        Pools advertising more than this APY are dropped
    symbol : str | None
        Keep only pools for this token symbol

    Returns
    -------
    list[YieldOpportunity]
        Surviving pools sorted by APY descending

    """
    wanted = symbol.upper() if symbol else None
    kept = [
        o
        for o in opportunities
        if o.tvl_usd >= min_tvl and o.apy <= max_apy and (wanted is None or o.symbol.upper() == wanted)
    ]
    return sorted(kept, key=lambda o: o.apy, reverse=True)


def find_better_opportunities(
    current: CurrentYield,
    opportunities: list[YieldOpportunity],
    config: PlannerConfig | None = None,
) -> list[YieldOpportunity]:
    """Pools for the same token beating ``current`` by more than the minimum improvement."""
    config = config or PlannerConfig()
    ranked = rank_opportunities(opportunities, config.yield_min_tvl, config.yield_max_apy, current.symbol)
    return [o for o in ranked if o.apy - current.apy > config.yield_min_improvement]


def plan_yield_rotation(
    current: CurrentYield,
    opportunities: list[YieldOpportunity],
    config: PlannerConfig | None = None,
    move_cost_usd: Decimal = Decimal("0"),
) -> YieldRotationPlan | None:
    """
    Propose moving ``current`` into the best qualifying pool.

    Parameters
    ----------
    current : CurrentYield
        Position and the APY it earns today
    opportunities : list[YieldOpportunity]
        Candidate pools
    config : PlannerConfig | None
        Thresholds; defaults apply when omitted
    move_cost_usd : Decimal
        Estimated gas and fees of the move, used for the break-even figure

    Returns
    -------
    YieldRotationPlan | None
        The rotation, or None when no pool clears the improvement threshold

    """
    config = config or PlannerConfig()
    if current.value_usd <= 0:
        return None

    for best in find_better_opportunities(current, opportunities, config):
        to_token = get_token_address(best.chain_id, current.symbol)
        if to_token is None:
            logger.debug("%s is not tracked on chain %s, skipping %s", current.symbol, best.chain_id, best.pool_id)
            continue

        improvement = best.apy - current.apy
        annual_gain = current.value_usd * improvement / Decimal("100")
        break_even = move_cost_usd / (annual_gain / DAYS_PER_YEAR) if move_cost_usd > 0 else Decimal("0")
        action = ProposedAction(
            kind=ActionKind.YIELD_ROTATE,
            token=current.symbol.upper(),
            from_chain=current.chain_id,
            to_chain=best.chain_id,
            amount_usd=current.value_usd,
            amount_token=current.balance,
            from_token=current.token_address,
            to_token=to_token,
            from_token_decimals=current.decimals,
            reason=(
                f"{best.protocol} on {best.chain_name} pays {best.apy:.2f}% APY "
                f"vs {current.apy:.2f}% now (+{improvement:.2f} points)"
            ),
            priority=1,
            source_role=Role.YIELD_SEEKER,
        )
        return YieldRotationPlan(
            action=action,
            current=current,
            target=best,
            apy_improvement=improvement,
            estimated_annual_gain_usd=annual_gain,
            move_cost_usd=move_cost_usd,
            net_benefit_usd=annual_gain - move_cost_usd,
            break_even_days=break_even,
        )
    return None
