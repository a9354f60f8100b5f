"""Tests for staged deposit plans."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from chain_allocator.planning import create_staged_plan, due_steps

START = datetime(2026, 3, 1, tzinfo=UTC)


def test_three_steps_over_two_weeks():
    """Test that 100 USDC in 3 steps over 14 days lands on days 0, 7 and 14."""
    plan = create_staged_plan(Decimal("100"), steps=3, days=14, start=START)

    assert [s.day_offset for s in plan.steps] == [0, 7, 14]
    assert [s.step_number for s in plan.steps] == [1, 2, 3]
    assert plan.steps[2].scheduled_for == START + timedelta(days=14)
    assert all(s.raw_amount == "33333333" for s in plan.steps)
    assert plan.token == "USDC"


def test_single_step_is_due_now():
    """Test a one-tranche plan."""
    plan = create_staged_plan(Decimal("50"), steps=1, days=30, start=START)

    (step,) = plan.steps
    assert step.day_offset == 0
    assert step.amount == Decimal("50")


@pytest.mark.parametrize(
    ("amount", "steps", "days"),
    [("100", 0, 14), ("100", 3, -1), ("0", 3, 14)],
)
def test_invalid_plans(amount, steps, days):
    """Test validation of amount, step count and span."""
    with pytest.raises(ValueError):
        create_staged_plan(Decimal(amount), steps=steps, days=days, start=START)


def test_due_steps():
    """Test which tranches have come due."""
    plan = create_staged_plan(Decimal("100"), steps=3, days=14, start=START)

    assert [s.step_number for s in due_steps(plan, START)] == [1]
    assert [s.step_number for s in due_steps(plan, START + timedelta(days=8))] == [1, 2]
    assert len(due_steps(plan, START + timedelta(days=30))) == 3
