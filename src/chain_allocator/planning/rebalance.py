"""Allocation drift analysis and rebalance planning."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import (
    ActionKind,
    AllocationTarget,
    DriftAnalysis,
    DriftReport,
    PortfolioSnapshot,
    ProposedAction,
    Role,
    TokenPosition,
)
from chain_allocator.data import get_token_address, get_token_decimals
from chain_allocator.errors import IncompleteSnapshotError

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
HIGH_PRIORITY_DRIFT = Decimal("10")

# Wrapped assets counted together with their native asset
WRAPPED_ALIASES: dict[str, str] = {"WETH": "ETH"}


def _targeted_symbol(symbol: str, targeted: set[str]) -> str:
    """Symbol a holding counts toward; a wrapped asset folds into its native one unless targeted itself."""
    symbol = symbol.upper()
    native = WRAPPED_ALIASES.get(symbol)
    if native and symbol not in targeted:
        return native
    return symbol


def _holdings(snapshot: PortfolioSnapshot, targets: list[AllocationTarget]) -> dict[str, list[TokenPosition]]:
    targeted = {t.token_symbol.upper() for t in targets}
    grouped: dict[str, list[TokenPosition]] = {}
    for position in snapshot.positions:
        grouped.setdefault(_targeted_symbol(position.symbol, targeted), []).append(position)
    return grouped


def compute_drift(snapshot: PortfolioSnapshot, targets: list[AllocationTarget]) -> list[DriftReport]:
    """
    Compare current holdings against allocation targets.

    Targets need not sum to 100; untargeted holdings are residual and get no report.

    Parameters
    ----------
    snapshot : PortfolioSnapshot
        Current portfolio
    targets : list[AllocationTarget]
        Desired allocation per token symbol

    Returns
    -------
    list[DriftReport]
        One report per target, in target order

    """
    total = snapshot.total_value_usd
    holdings = _holdings(snapshot, targets)
    reports = []
    for target in targets:
        symbol = target.token_symbol.upper()
        current_value = sum((p.value_usd for p in holdings.get(symbol, [])), Decimal("0"))
        current_percent = current_value / total * HUNDRED if total > 0 else Decimal("0")
        target_value = target.target_percent / HUNDRED * total
        reports.append(
            DriftReport(
                token_symbol=symbol,
                current_percent=current_percent,
                target_percent=target.target_percent,
                drift_percent=current_percent - target.target_percent,
                current_value_usd=current_value,
                target_value_usd=target_value,
                adjustment_usd=target_value - current_value,
            )
        )
    return reports


def analyze_drift(
    snapshot: PortfolioSnapshot,
    targets: list[AllocationTarget],
    threshold: Decimal = Decimal("5"),
) -> DriftAnalysis:
    """
    Summarize drift with plain-language recommendations.

    Parameters
    ----------
    snapshot : PortfolioSnapshot
        Current portfolio
    targets : list[AllocationTarget]
        Desired allocation
    threshold : Decimal
        Absolute drift, in percentage points, above which a token needs attention

    Returns
    -------
    DriftAnalysis
        Reports, average absolute drift and recommendations

    """
    if snapshot.total_value_usd <= 0:
        return DriftAnalysis(
            reports=[],
            average_drift=Decimal("0"),
            needs_rebalancing=False,
            recommendations=["No portfolio value to rebalance"],
        )

    reports = compute_drift(snapshot, targets)
    average = sum((abs(r.drift_percent) for r in reports), Decimal("0")) / len(reports) if reports else Decimal("0")

    recommendations = []
    for report in reports:
        if abs(report.drift_percent) <= threshold:
            continue
        direction = "Overweight" if report.drift_percent > 0 else "Underweight"
        verb = "Sell" if report.drift_percent > 0 else "Buy"
        recommendations.append(
            f"{report.token_symbol}: {direction} by {abs(report.drift_percent):.1f}% - "
            f"{verb} ${abs(report.adjustment_usd):.2f}"
        )
    if not recommendations:
        recommendations.append("Portfolio is within target allocation")

    return DriftAnalysis(
        reports=reports,
        average_drift=average,
        needs_rebalancing=any(abs(r.drift_percent) > threshold for r in reports),
        recommendations=recommendations,
    )


@dataclass
class _Sell:
    report: DriftReport
    position: TokenPosition
    amount_usd: Decimal
    to_chain: int
    to_token: str


@dataclass
class _Buy:
    report: DriftReport
    to_token: str
    remaining_usd: Decimal


def _priority(report: DriftReport) -> int:
    return 2 if abs(report.drift_percent) > HIGH_PRIORITY_DRIFT else 1


def plan_rebalance(
    snapshot: PortfolioSnapshot,
    targets: list[AllocationTarget],
    config: PlannerConfig | None = None,
    allow_partial: bool = False,
) -> list[ProposedAction]:
    """
    Propose the trades that bring the portfolio back to its targets.

    Only tokens whose absolute drift exceeds the threshold and whose USD
    adjustment exceeds the minimum trade size produce actions. Overweight tokens
    sell from their single largest position; underweight tokens buy on the
    preferred chain from the quote token. Each sell is split across the pending
    buys in order, each leg no larger than what that buy still needs; proceeds
    left over go to the quote token on the selling chain. Legs and buy
    remainders below the minimum trade size are dropped, as is any unmatched
    buy of the quote token itself.

    Parameters
    ----------
    snapshot : PortfolioSnapshot
        Current portfolio
    targets : list[AllocationTarget]
        Desired allocation
    config : PlannerConfig | None
        Thresholds; defaults apply when omitted
    allow_partial : bool
        Plan even when some chains were unreachable

    Returns
    -------
    list[ProposedAction]
        Sell legs followed by buy actions

    Raises
    ------
    IncompleteSnapshotError
        If the snapshot has unreachable chains and ``allow_partial`` is false

    """
    config = config or PlannerConfig()
    if not snapshot.is_complete and not allow_partial:
        msg = f"Chains {snapshot.unavailable_chains} were unreachable; balances there are unknown"
        raise IncompleteSnapshotError(msg, hint="retry once the RPC endpoints recover")

    total = snapshot.total_value_usd
    if total < config.min_trade_usd:
        return []

    quote_symbol = config.quote_token.upper()
    buy_chain = config.preferred_buy_chain
    quote_on_buy_chain = get_token_address(buy_chain, quote_symbol)
    holdings = _holdings(snapshot, targets)

    sells: list[_Sell] = []
    buys: list[_Buy] = []
    for report in compute_drift(snapshot, targets):
        if abs(report.drift_percent) <= config.rebalance_threshold:
            continue
        if abs(report.adjustment_usd) <= config.min_trade_usd:
            continue

        if report.adjustment_usd < 0:
            positions = holdings.get(report.token_symbol, [])
            if not positions:
                continue
            largest = max(positions, key=lambda p: p.value_usd)
            stable = get_token_address(largest.chain_id, quote_symbol)
            if largest.price_usd <= 0 or stable is None:
                logger.warning("Cannot size a %s sell on chain %s", report.token_symbol, largest.chain_id)
                continue
            amount = min(abs(report.adjustment_usd), largest.value_usd)
            sells.append(_Sell(report, largest, amount, largest.chain_id, stable))
        else:
            to_token = get_token_address(buy_chain, report.token_symbol)
            if to_token is None or quote_on_buy_chain is None:
                logger.warning("%s is not tradable on chain %s", report.token_symbol, buy_chain)
                continue
            buys.append(_Buy(report, to_token, report.adjustment_usd))

    legs: list[_Sell] = []
    for sell in sells:
        left = sell.amount_usd
        for buy in buys:
            portion = min(left, buy.remaining_usd)
            if portion < config.min_trade_usd:
                continue
            legs.append(_Sell(sell.report, sell.position, portion, buy_chain, buy.to_token))
            buy.remaining_usd -= portion
            left -= portion
        if left >= config.min_trade_usd:
            legs.append(_Sell(sell.report, sell.position, left, sell.to_chain, sell.to_token))

    actions = [
        ProposedAction(
            kind=ActionKind.SELL,
            token=sell.report.token_symbol,
            from_chain=sell.position.chain_id,
            to_chain=sell.to_chain,
            amount_usd=sell.amount_usd,
            amount_token=sell.amount_usd / sell.position.price_usd,
            from_token=sell.position.token_address,
            to_token=sell.to_token,
            from_token_decimals=sell.position.decimals,
            reason=(
                f"{sell.report.token_symbol} at {sell.report.current_percent:.1f}% "
                f"vs target {sell.report.target_percent}%"
            ),
            priority=_priority(sell.report),
            source_role=Role.REBALANCER,
        )
        for sell in legs
    ]
    for buy in buys:
        if buy.remaining_usd < config.min_trade_usd or buy.report.token_symbol == quote_symbol:
            continue
        actions.append(
            ProposedAction(
                kind=ActionKind.BUY,
                token=buy.report.token_symbol,
                from_chain=buy_chain,
                to_chain=buy_chain,
                amount_usd=buy.remaining_usd,
                amount_token=buy.remaining_usd,
                from_token=quote_on_buy_chain,
                to_token=buy.to_token,
                from_token_decimals=get_token_decimals(buy_chain, quote_symbol),
                reason=(
                    f"{buy.report.token_symbol} at {buy.report.current_percent:.1f}% "
                    f"vs target {buy.report.target_percent}%"
                ),
                priority=_priority(buy.report),
                source_role=Role.REBALANCER,
            )
        )

    logger.info("Rebalance produced %d action(s)", len(actions))
    return actions
