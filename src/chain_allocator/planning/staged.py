"""Staged (dollar-cost averaged) deposit plans."""

from datetime import datetime, timedelta
from decimal import ROUND_DOWN, Decimal

from chain_allocator.core.models import StagedPlan, StagedStep, utc_now


def create_staged_plan(
    total_amount: Decimal,
    steps: int,
    days: int,
    token: str = "USDC",
    chain_id: int = 42161,
    decimals: int = 6,
    start: datetime | None = None,
) -> StagedPlan:
    """
    Split a deposit into equal dated tranches.

    The first tranche is due immediately and the rest follow every
    ``days // (steps - 1)`` days, so 100 USDC in 3 steps over 14 days gives
    tranches on days 0, 7 and 14.

    Parameters
    ----------
    total_amount : Decimal
        Whole-token amount to deposit
    steps : int
        Number of tranches
    days : int
        Span of the plan in days
    token : str
        Token symbol
    chain_id : int
        Chain the deposits happen on
    decimals : int
        Token decimals, for raw amounts
    start : datetime | None
        Day zero; now when omitted

    Returns
    -------
    StagedPlan
        The tranches in order

    Raises
    ------
    ValueError
        If ``steps`` is not positive, ``days`` is negative or the amount is not positive

    """
    if steps < 1:
        msg = f"steps must be at least 1, got {steps}"
        raise ValueError(msg)
    if days < 0:
        msg = f"days must not be negative, got {days}"
        raise ValueError(msg)
    if total_amount <= 0:
        msg = f"total_amount must be positive, got {total_amount}"
        raise ValueError(msg)

    start = start or utc_now()
    per_step = total_amount / steps
    raw_per_step = (per_step * Decimal(10) ** decimals).quantize(Decimal("1"), rounding=ROUND_DOWN)
    interval = days // max(1, steps - 1)

    return StagedPlan(
        token=token.upper(),
        chain_id=chain_id,
        total_amount=total_amount,
        days=days,
        steps=[
            StagedStep(
                step_number=i + 1,
                amount=per_step,
                raw_amount=str(int(raw_per_step)),
                day_offset=i * interval,
                scheduled_for=start + timedelta(days=i * interval),
            )
            for i in range(steps)
        ],
    )


def due_steps(plan: StagedPlan, now: datetime | None = None) -> list[StagedStep]:
    """Tranches whose scheduled time has arrived."""
    now = now or utc_now()
    return [step for step in plan.steps if step.scheduled_for <= now]
