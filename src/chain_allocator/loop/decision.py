"""Monitor, decide, act: one loop per role, plus a coordinator across roles."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from chain_allocator.core.models import (
    ExecutionPlan,
    ExecutionResult,
    ProposedAction,
    Role,
    utc_now,
)
from chain_allocator.core.registry import StrategyInterface
from chain_allocator.execution import ExecutionPlanner, RouteExecutor, WalletSigner
from chain_allocator.loop.phrasing import FallbackPhraser, Phraser, TemplatePhraser
from chain_allocator.notifications import Notifier, event_for_action
from chain_allocator.planning import Reconciliation, reconcile_actions
from chain_allocator.rpc.retry import Sleep

logger = logging.getLogger(__name__)

Confirm = Callable[[ExecutionPlan], Awaitable[bool]]


class CycleOutcome(BaseModel):
    """
    Structured result of one cycle. Always produced, even when a step failed.

    Attributes
    ----------
    role : Role
        Role the loop runs for
    strategy : str
        Strategy name
    proposals : list[ProposedAction]
        Everything the strategy proposed, best first
    action : ProposedAction | None
        The single action taken forward this cycle
    explanation : str | None
        Human-readable commentary on ``action``
    plan : ExecutionPlan | None
        Quote-backed plan for ``action``
    result : ExecutionResult | None
        Submission result, only after explicit confirmation
    reason : str | None
        Why the cycle stopped short of a plan or an execution

    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    role: Role
    strategy: str
    started_at: datetime = Field(default_factory=utc_now)
    proposals: list[ProposedAction] = Field(default_factory=list)
    action: ProposedAction | None = None
    explanation: str | None = None
    plan: ExecutionPlan | None = None
    result: ExecutionResult | None = None
    reason: str | None = None

    @property
    def acted(self) -> bool:
        return self.plan is not None


class DecisionLoop:
    """
    Runs one strategy through monitor, decide and act.

    The numeric gate lives in the strategy; phrasing only adds commentary. The
    loop prepares plans but submits one only when a ``confirm`` callback approves
    it and an executor and signer are configured.

    Parameters
    ----------
    strategy : StrategyInterface
        Role strategy
    planner : ExecutionPlanner | None
        Quotes and scores the chosen action; without it the loop only proposes
    from_address : str | None
        Wallet the quotes are requested for
    phraser : Phraser | None
        Commentary source; template phrasing by default
    notifier : Notifier | None
        Receives yield and arbitrage discoveries
    executor : RouteExecutor | None
        Submits confirmed plans
    signer : WalletSigner | None
        Wallet used by ``executor``
    confirm : Confirm | None
        Asked before every submission
    sleep : Sleep
        Awaitable sleep between cycles, injectable for tests

    """

    def __init__(
        self,
        strategy: StrategyInterface,
        planner: ExecutionPlanner | None = None,
        from_address: str | None = None,
        phraser: Phraser | None = None,
        notifier: Notifier | None = None,
        executor: RouteExecutor | None = None,
        signer: WalletSigner | None = None,
        confirm: Confirm | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.strategy = strategy
        self.planner = planner
        self.from_address = from_address
        self.phraser = phraser or FallbackPhraser()
        self.notifier = notifier
        self.executor = executor
        self.signer = signer
        self.confirm = confirm
        self._sleep = sleep

    @property
    def role(self) -> Role:
        return self.strategy.role

    async def propose(self) -> CycleOutcome:
        """Monitor and decide; failures become a recorded reason."""
        outcome = CycleOutcome(role=self.strategy.role, strategy=self.strategy.name)
        try:
            state: Any = await self.strategy.monitor()
        except Exception as e:
            logger.warning("%s monitor failed: %s", self.strategy.name, e)
            outcome.reason = f"monitor failed: {e}"
            return outcome
        try:
            outcome.proposals = list(self.strategy.decide(state))
        except Exception as e:
            logger.warning("%s decide failed: %s", self.strategy.name, e)
            outcome.reason = f"decide failed: {e}"
            return outcome

        if not outcome.proposals:
            outcome.reason = "no opportunity passed the threshold"
            return outcome
        outcome.action = outcome.proposals[0]
        return outcome

    async def act(self, outcome: CycleOutcome) -> CycleOutcome:
        """Explain, notify, plan and, on confirmation, execute ``outcome.action``."""
        action = outcome.action
        if action is None:
            return outcome

        try:
            outcome.explanation = await self.phraser.explain_action(action)
        except Exception as e:
            logger.warning("%s phrasing failed: %s", self.strategy.name, e)
            outcome.explanation = await TemplatePhraser().explain_action(action)
        if self.notifier is not None:
            try:
                event = event_for_action(action, outcome.explanation)
                if event is not None:
                    await self.notifier.notify(event)
            except Exception as e:
                logger.warning("%s notification failed: %s", self.strategy.name, e)

        if self.planner is None or self.from_address is None:
            outcome.reason = outcome.reason or "no planner configured; proposal only"
            return outcome
        try:
            outcome.plan = await self.planner.prepare(action, self.from_address)
        except Exception as e:
            logger.warning("%s planning failed: %s", self.strategy.name, e)
            outcome.reason = f"planning failed: {e}"
            return outcome

        if self.executor is None or self.confirm is None:
            return outcome
        try:
            if not await self.confirm(outcome.plan):
                outcome.reason = "not confirmed"
                return outcome
            plan = await self.planner.refresh(outcome.plan, self.from_address)
            outcome.plan = plan
            outcome.result = await self.executor.execute(plan, self.signer)
        except Exception as e:
            logger.warning("%s execution failed: %s", self.strategy.name, e)
            outcome.reason = f"execution failed: {e}"
        return outcome

    async def run_cycle(self) -> CycleOutcome:
        """One full monitor, decide, act pass."""
        outcome = await self.propose()
        return await self.act(outcome)

    async def run(self, cycles: int | None = None, interval: float = 60.0) -> list[CycleOutcome]:
        """
        Run cycles back to back, ``interval`` seconds apart.

        Parameters
        ----------
        cycles : int | None
            Number of cycles; forever when None
        interval : float
            Pause between cycles in seconds

        Returns
        -------
        list[CycleOutcome]
            Outcomes in order (only returned when ``cycles`` is bounded)

        """
        outcomes = []
        count = 0
        while cycles is None or count < cycles:
            outcome = await self.run_cycle()
            logger.info(
                "%s cycle %d: %s",
                self.strategy.name,
                count + 1,
                "planned" if outcome.acted else outcome.reason,
            )
            if cycles is not None:
                outcomes.append(outcome)
            count += 1
            if cycles is None or count < cycles:
                await self._sleep(interval)
        return outcomes


def _action_key(action: ProposedAction) -> tuple[Any, ...]:
    return (
        action.kind,
        action.token.upper(),
        action.from_chain,
        action.from_token.lower(),
        action.to_chain,
        action.to_token.lower(),
        action.source_role,
    )


class CoordinatedCycle(BaseModel):
    """Outcomes of every role for one coordinated cycle."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcomes: list[CycleOutcome]
    reconciliation: Reconciliation


class Coordinator:
    """
    Runs several role loops in one window without letting them contradict each other.

    Every loop proposes concurrently; the chosen actions are reconciled; the
    surviving ones are then planned one at a time.
    """

    def __init__(self, loops: list[DecisionLoop], sleep: Sleep = asyncio.sleep) -> None:
        self.loops = loops
        self._sleep = sleep

    async def run_cycle(self) -> CoordinatedCycle:
        outcomes = list(await asyncio.gather(*(loop.propose() for loop in self.loops)))
        chosen = [o.action for o in outcomes if o.action is not None]
        reconciliation = reconcile_actions(chosen)

        kept = {_action_key(a): a for a in reconciliation.kept}
        dropped = {_action_key(a): reason for a, reason in reconciliation.dropped}
        for loop, outcome in zip(self.loops, outcomes, strict=True):
            if outcome.action is None:
                continue
            key = _action_key(outcome.action)
            if key in kept:
                outcome.action = kept[key]
                await loop.act(outcome)
            else:
                outcome.reason = f"dropped in reconciliation: {dropped.get(key, 'conflict')}"
                outcome.action = None
        return CoordinatedCycle(outcomes=outcomes, reconciliation=reconciliation)

    async def run(self, cycles: int, interval: float = 60.0) -> list[CoordinatedCycle]:
        """Run ``cycles`` coordinated cycles, ``interval`` seconds apart."""
        results = []
        for count in range(1, cycles + 1):
            cycle = await self.run_cycle()
            logger.info(
                "Coordinated cycle %d: %d kept, %d dropped",
                count,
                len(cycle.reconciliation.kept),
                len(cycle.reconciliation.dropped),
            )
            results.append(cycle)
            if count < cycles:
                await self._sleep(interval)
        return results
