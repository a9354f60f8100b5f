"""Turns a proposed action into a scored, gated execution plan."""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from chain_allocator.config import ExecutionConfig, RiskConfig
from chain_allocator.core.models import (
    ExecutionPlan,
    ExecutionStep,
    ProposedAction,
    Quote,
    QuoteRequest,
    utc_now,
)
from chain_allocator.data import get_chain_name
from chain_allocator.routing import QuoteGateway

logger = logging.getLogger(__name__)

HIGH_RISK_SCORE = 50
SLIPPAGE_POINTS = 30
GAS_POINTS = 20
STEP_COUNT_POINTS = 15
TOOL_COUNT_POINTS = 10


def max_step_slippage(quote: Quote) -> Decimal:
    """Largest slippage fraction across the route's steps."""
    return max((step.slippage for step in quote.included_steps), default=Decimal("0"))


def score_risk(quote: Quote, config: RiskConfig | None = None) -> int:
    """
    Score a route on a 0-100 scale; lower is safer.

    Parameters
    ----------
    quote : Quote
        Route to score
    config : RiskConfig | None
        Thresholds; defaults apply when omitted

    Returns
    -------
    int
        +30 if any step slips more than ``max_step_slippage``, +20 if gas exceeds
        ``max_gas_eth`` in native units, +15 for more than ``max_steps`` steps,
        +10 for more than ``max_bridges`` distinct tools; capped at 100

    """
    config = config or RiskConfig()
    score = 0
    if any(step.slippage > config.max_step_slippage for step in quote.included_steps):
        score += SLIPPAGE_POINTS
    if quote.gas_cost_native > config.max_gas_eth:
        score += GAS_POINTS
    if len(quote.included_steps) > config.max_steps:
        score += STEP_COUNT_POINTS
    if len(set(quote.tools)) > config.max_bridges:
        score += TOOL_COUNT_POINTS
    return min(score, 100)


def plan_warnings(quote: Quote, risk_score: int, config: RiskConfig | None = None) -> list[str]:
    """Advisory warnings; independent of whether the plan is ready."""
    config = config or RiskConfig()
    warnings = []
    if risk_score > HIGH_RISK_SCORE:
        warnings.append(f"High risk route (score: {risk_score})")
    if quote.from_amount_usd > 0 and quote.gas_cost_usd > quote.from_amount_usd * config.gas_warning_ratio:
        warnings.append(f"Gas costs exceed {config.gas_warning_ratio * 100:.0f}% of swap amount")
    slippage_percent = max_step_slippage(quote) * Decimal("100")
    if slippage_percent > config.slippage_warning_percent:
        warnings.append(f"Expected slippage: {slippage_percent:.2f}%")
    return warnings


def build_steps(quote: Quote) -> list[ExecutionStep]:
    return [
        ExecutionStep(
            step_number=i + 1,
            type="bridge" if step.is_bridge else "swap",
            from_chain=get_chain_name(step.from_chain),
            to_chain=get_chain_name(step.to_chain),
            tool=step.tool or "unknown",
            estimated_time=step.execution_duration,
            gas_cost_usd=sum((g.amount_usd for g in step.gas_costs), Decimal("0")),
        )
        for i, step in enumerate(quote.included_steps)
    ]


def build_plan(
    quote: Quote,
    action: ProposedAction | None = None,
    config: RiskConfig | None = None,
    requires_reconfirmation: bool = False,
) -> ExecutionPlan:
    """
    Assemble an execution plan from a quote.

    Deterministic given the same quote; readiness is derived by the model.
    """
    risk_score = score_risk(quote, config)
    gas = quote.gas_cost_usd
    return ExecutionPlan(
        quote=quote,
        action=action,
        risk_score=risk_score,
        steps=build_steps(quote),
        estimated_output_usd=quote.to_amount_usd,
        gas_cost_usd=gas,
        net_value_usd=quote.to_amount_usd - gas,
        warnings=plan_warnings(quote, risk_score, config),
        requires_reconfirmation=requires_reconfirmation,
    )


def request_for(action: ProposedAction, from_address: str, slippage: Decimal | None = None) -> QuoteRequest:
    """Quote request moving ``action``'s amount from its source to its destination."""
    return QuoteRequest(
        from_chain=action.from_chain,
        to_chain=action.to_chain,
        from_token=action.from_token,
        to_token=action.to_token,
        from_amount=action.raw_amount,
        from_address=from_address,
        to_address=from_address,
        slippage=slippage,
    )


def output_deviation(old: Quote, new: Quote) -> Decimal:
    """Relative change of the estimated output between two quotes for the same transfer."""
    before = Decimal(old.to_amount)
    if before <= 0:
        return Decimal("0") if Decimal(new.to_amount) <= 0 else Decimal("1")
    return abs(Decimal(new.to_amount) - before) / before


class ExecutionPlanner:
    """
    Quotes proposed actions and scores the resulting routes.

    Parameters
    ----------
    gateway : QuoteGateway
        Shared, rate-limited quote gateway
    risk_config : RiskConfig | None
        Risk thresholds
    execution_config : ExecutionConfig | None
        Staleness window and re-quote tolerance
    clock : Callable[[], datetime]
        Wall-clock source, injectable for tests

    """

    def __init__(
        self,
        gateway: QuoteGateway,
        risk_config: RiskConfig | None = None,
        execution_config: ExecutionConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.gateway = gateway
        self.risk_config = risk_config or RiskConfig()
        self.execution_config = execution_config or ExecutionConfig()
        self._clock = clock

    async def prepare(self, action: ProposedAction, from_address: str, slippage: Decimal | None = None) -> ExecutionPlan:
        """
        Quote ``action`` and score the route.

        Parameters
        ----------
        action : ProposedAction
            Proposal from a planner
        from_address : str
            Wallet that will sign
        slippage : Decimal | None
            Slippage tolerance override

        Returns
        -------
        ExecutionPlan
            Scored plan

        Raises
        ------
        RoutingError
            When no quote could be obtained; no plan exists without one

        """
        quote = await self.gateway.get_quote(request_for(action, from_address, slippage))
        plan = build_plan(quote, action, self.risk_config)
        logger.info(
            "Prepared %s %s plan: risk %d, %d warning(s), ready=%s",
            action.kind.value,
            action.token,
            plan.risk_score,
            len(plan.warnings),
            plan.ready_to_execute,
        )
        return plan

    async def refresh(self, plan: ExecutionPlan, from_address: str) -> ExecutionPlan:
        """
        Re-quote a plan whose quote has aged past the staleness window.

        A fresh plan is returned unchanged. When the new estimated output moves by
        more than ``requote_tolerance`` the refreshed plan requires reconfirmation
        and is therefore not ready.
        """
        now = self._clock()
        if not plan.quote.is_stale(self.execution_config.quote_max_age, now):
            return plan

        old = plan.quote
        request = QuoteRequest(
            from_chain=old.from_chain,
            to_chain=old.to_chain,
            from_token=old.from_token,
            to_token=old.to_token,
            from_amount=old.from_amount,
            from_address=from_address,
            to_address=from_address,
        )
        logger.info("Quote %s is %.0fs old; re-quoting", old.id or "?", old.age(now))
        new = await self.gateway.get_quote(request)
        deviation = output_deviation(old, new)
        drifted = deviation > self.execution_config.requote_tolerance
        if drifted:
            logger.warning("Re-quoted output moved %.2f%%; reconfirmation required", deviation * 100)
        return build_plan(new, plan.action, self.risk_config, requires_reconfirmation=drifted)


def summarize_plan(plan: ExecutionPlan) -> str:
    """
    Human-readable multi-line description of a plan.

    Parameters
    ----------
    plan : ExecutionPlan
        Plan to describe

    Returns
    -------
    str
        Route, costs, risk verdict and warnings

    """
    quote = plan.quote
    lines = [
        f"{quote.from_token_symbol or quote.from_token} on {get_chain_name(quote.from_chain)} -> "
        f"{quote.to_token_symbol or quote.to_token} on {get_chain_name(quote.to_chain)}",
        f"Estimated output: ${plan.estimated_output_usd:.2f} (gas ${plan.gas_cost_usd:.2f}, "
        f"net ${plan.net_value_usd:.2f})",
    ]
    for step in plan.steps:
        lines.append(f"  {step.step_number}. {step.type} via {step.tool}: {step.from_chain} -> {step.to_chain}")
    if quote.routing_metadata.used:
        lines.append("Uses the native USDC burn/mint hub")
    elif quote.routing_metadata.eligible:
        lines.append("Eligible for the native USDC hub (not selected by the router)")
    verdict = "ready" if plan.ready_to_execute else "not ready"
    lines.append(f"Risk score {plan.risk_score}/100: {verdict}")
    if plan.requires_reconfirmation:
        lines.append("Quote changed since it was reviewed; confirm again before signing")
    lines.extend(f"Warning: {w}" for w in plan.warnings)
    return "\n".join(lines)
