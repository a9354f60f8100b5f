"""Cross-chain price gap detection."""

import logging
from decimal import Decimal
from itertools import combinations

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import (
    ActionKind,
    ArbitrageOpportunity,
    Confidence,
    PricePoint,
    ProposedAction,
    Role,
)
from chain_allocator.data import get_chain_name, get_token_address, get_token_decimals
from chain_allocator.pricing import CrossChainPriceFeed

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_PERCENT = Decimal("1")
MEDIUM_CONFIDENCE_PERCENT = Decimal("0.7")


def price_gap_percent(a: Decimal, b: Decimal) -> Decimal:
    """Absolute gap between two prices as a percentage of their mean."""
    average = (a + b) / 2
    if average <= 0:
        return Decimal("0")
    return abs(a - b) / average * Decimal("100")


def confidence_for(gap_percent: Decimal) -> Confidence:
    """Fixed confidence bands: above 1% high, above 0.7% medium, otherwise low."""
    if gap_percent > HIGH_CONFIDENCE_PERCENT:
        return Confidence.HIGH
    if gap_percent > MEDIUM_CONFIDENCE_PERCENT:
        return Confidence.MEDIUM
    return Confidence.LOW


def detect_opportunities(prices: list[PricePoint], config: PlannerConfig | None = None) -> list[ArbitrageOpportunity]:
    """
    Compare every pair of chain prices for one token.

    A pair qualifies when its gap exceeds ``arbitrage_min_percent`` and the
    profit on ``arbitrage_trade_usd`` stays positive after the assumed DEX and
    bridge fee.

    Parameters
    ----------
    prices : list[PricePoint]
        Prices of one token on several chains
    config : PlannerConfig | None
        Thresholds; defaults apply when omitted

    Returns
    -------
    list[ArbitrageOpportunity]
        Qualifying opportunities, highest net profit first

    """
    config = config or PlannerConfig()
    trade = config.arbitrage_trade_usd
    fees = trade * config.arbitrage_fee_percent / Decimal("100")

    found = []
    for first, second in combinations(prices, 2):
        if first.price_usd <= 0 or second.price_usd <= 0:
            continue
        gap = price_gap_percent(first.price_usd, second.price_usd)
        if gap <= config.arbitrage_min_percent:
            continue
        gross = trade * gap / Decimal("100")
        net = gross - fees
        if net <= 0:
            continue
        cheap, dear = (first, second) if first.price_usd < second.price_usd else (second, first)
        found.append(
            ArbitrageOpportunity(
                token=cheap.symbol,
                buy_chain=cheap.chain_id,
                sell_chain=dear.chain_id,
                buy_price=cheap.price_usd,
                sell_price=dear.price_usd,
                price_diff_percent=gap,
                gross_profit_usd=gross,
                fees_usd=fees,
                net_profit_usd=net,
                confidence=confidence_for(gap),
            )
        )
    return sorted(found, key=lambda o: o.net_profit_usd, reverse=True)


async def scan_arbitrage(
    feed: CrossChainPriceFeed,
    tokens: list[str],
    chain_ids: list[int],
    config: PlannerConfig | None = None,
) -> list[ArbitrageOpportunity]:
    """Fetch prices for each token across ``chain_ids`` and detect gaps."""
    found: list[ArbitrageOpportunity] = []
    for token in tokens:
        prices = await feed.fetch(token, chain_ids)
        if len(prices) < 2:
            logger.debug("Not enough chain prices for %s (%d)", token, len(prices))
            continue
        found.extend(detect_opportunities(prices, config))
    return sorted(found, key=lambda o: o.net_profit_usd, reverse=True)


def build_arbitrage_action(opportunity: ArbitrageOpportunity, config: PlannerConfig | None = None) -> ProposedAction | None:
    """
    Express an opportunity as a route from the quote token on the cheap chain to the token on the dear one.

    Returns None when either side of the route is not in the registry.
    """
    config = config or PlannerConfig()
    from_token = get_token_address(opportunity.buy_chain, config.quote_token)
    to_token = get_token_address(opportunity.sell_chain, opportunity.token)
    if from_token is None or to_token is None:
        return None
    trade = config.arbitrage_trade_usd
    return ProposedAction(
        kind=ActionKind.ARBITRAGE,
        token=opportunity.token,
        from_chain=opportunity.buy_chain,
        to_chain=opportunity.sell_chain,
        amount_usd=trade,
        amount_token=trade,
        from_token=from_token,
        to_token=to_token,
        from_token_decimals=get_token_decimals(opportunity.buy_chain, config.quote_token),
        reason=(
            f"{opportunity.token} is {opportunity.price_diff_percent:.2f}% cheaper on "
            f"{get_chain_name(opportunity.buy_chain)} than on {get_chain_name(opportunity.sell_chain)}; "
            f"est. net ${opportunity.net_profit_usd:.2f} ({opportunity.confidence.value} confidence)"
        ),
        priority=3 if opportunity.confidence == Confidence.HIGH else 2,
        source_role=Role.ARBITRAGE_HUNTER,
    )
