"""Reconciliation of proposals made by different roles in the same window."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from chain_allocator.core.models import ActionKind, ProposedAction

logger = logging.getLogger(__name__)

OPPORTUNISTIC_KINDS = (ActionKind.YIELD_ROTATE, ActionKind.ARBITRAGE)


@dataclass
class Reconciliation:
    """Proposals that survived reconciliation, and the ones dropped with a reason."""

    kept: list[ProposedAction] = field(default_factory=list)
    dropped: list[tuple[ProposedAction, str]] = field(default_factory=list)


def _scaled(action: ProposedAction, amount_usd: Decimal) -> ProposedAction:
    ratio = amount_usd / action.amount_usd
    return action.model_copy(update={"amount_usd": amount_usd, "amount_token": action.amount_token * ratio})


def reconcile_actions(actions: list[ProposedAction]) -> Reconciliation:
    """
    Resolve conflicts between proposals from concurrently running roles.

    Two passes, both in priority order (ties keep submission order):

    1. Buy and sell proposals for the same token are netted; the smaller side
       is cancelled and the larger one shrunk by the same USD amount.
    2. A yield rotation or arbitrage move whose source position is already
       being drawn on by a higher-priority proposal is dropped.

    Parameters
    ----------
    actions : list[ProposedAction]
        Proposals from every role for one cycle

    Returns
    -------
    Reconciliation
        Kept proposals, highest priority first, and dropped ones with reasons

    """
    result = Reconciliation()
    ordered = sorted(actions, key=lambda a: a.priority, reverse=True)
    remaining = [a.amount_usd for a in ordered]

    buys: dict[str, list[int]] = {}
    sells: dict[str, list[int]] = {}
    for i, action in enumerate(ordered):
        if action.kind == ActionKind.BUY:
            buys.setdefault(action.token.upper(), []).append(i)
        elif action.kind == ActionKind.SELL:
            sells.setdefault(action.token.upper(), []).append(i)

    for token in buys.keys() & sells.keys():
        offset = min(
            sum((remaining[i] for i in buys[token]), Decimal("0")),
            sum((remaining[i] for i in sells[token]), Decimal("0")),
        )
        logger.info("Netting %s buy and sell proposals by $%s", token, offset)
        for side in (buys[token], sells[token]):
            left = offset
            for i in side:
                take = min(remaining[i], left)
                remaining[i] -= take
                left -= take

    claimed: dict[tuple[int, str], ProposedAction] = {}
    for action, amount in zip(ordered, remaining, strict=True):
        if amount <= 0:
            result.dropped.append((action, f"netted against an opposite {action.token} proposal"))
            continue
        if amount != action.amount_usd:
            action = _scaled(action, amount)

        source = (action.from_chain, action.from_token.lower())
        holder = claimed.get(source)
        if holder is not None and action.kind in OPPORTUNISTIC_KINDS:
            result.dropped.append(
                (action, f"source position already used by a {holder.kind.value} {holder.token} proposal")
            )
            continue
        claimed.setdefault(source, action)
        result.kept.append(action)

    for action, reason in result.dropped:
        logger.debug("Dropped %s %s proposal: %s", action.kind.value, action.token, reason)
    return result
