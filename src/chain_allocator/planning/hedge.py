"""Hedge volatile exposure by swapping part of it into a stablecoin on the same chain."""

import logging
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from chain_allocator.config import PlannerConfig
from chain_allocator.core.models import ActionKind, PortfolioSnapshot, ProposedAction, Quote, Role
from chain_allocator.data import get_chain_name, get_token_address, get_token_decimals
from chain_allocator.errors import InsufficientAmountError, InvalidRequestError
from chain_allocator.execution import request_for
from chain_allocator.planning.rebalance import WRAPPED_ALIASES
from chain_allocator.routing import QuoteGateway

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class HedgeQuote(BaseModel):
    """Quoted hedge swap with the expected stablecoin output."""

    model_config = ConfigDict(frozen=True)

    action: ProposedAction
    quote: Quote
    to_amount_estimate: Decimal
    summary: str


def plan_hedge(
    snapshot: PortfolioSnapshot,
    chain_id: int,
    symbol: str = "ETH",
    amount_token: Decimal | None = None,
    percent: Decimal = Decimal("50"),
    config: PlannerConfig | None = None,
) -> ProposedAction:
    """
    Propose swapping part of a volatile holding into the quote stablecoin.

    The largest position of ``symbol`` on ``chain_id`` is used; wrapped variants
    count as the native asset.

    Parameters
    ----------
    snapshot : PortfolioSnapshot
        Current portfolio
    chain_id : int
        Chain the swap happens on
    symbol : str
        Asset to reduce
    amount_token : Decimal | None
        Whole tokens to swap; ``percent`` of the position when None
    percent : Decimal
        Share of the position to swap when no amount is given
    config : PlannerConfig | None
        Quote token and minimum trade size

    Returns
    -------
    ProposedAction
        Same-chain SELL into the quote token

    Raises
    ------
    InvalidRequestError
        If the quote token is not tracked on the chain
    InsufficientAmountError
        If there is nothing to hedge or the amount is outside the position

    """
    config = config or PlannerConfig()
    symbol = symbol.upper()
    chain_name = get_chain_name(chain_id)
    stable = get_token_address(chain_id, config.quote_token)
    if stable is None:
        msg = f"{chain_name} is not supported for hedging"
        raise InvalidRequestError(msg, hint=f"{config.quote_token} is not tracked there")

    held = [
        p
        for p in snapshot.positions
        if p.chain_id == chain_id and WRAPPED_ALIASES.get(p.symbol.upper(), p.symbol.upper()) == symbol
    ]
    if not held:
        msg = f"No {symbol} on {chain_name} to hedge"
        raise InsufficientAmountError(msg)
    position = max(held, key=lambda p: p.value_usd)

    amount = amount_token if amount_token is not None else position.formatted_balance * percent / HUNDRED
    if amount <= 0:
        msg = "Amount must be greater than 0"
        raise InsufficientAmountError(msg)
    if amount > position.formatted_balance:
        msg = f"Cannot hedge {amount} {position.symbol}; only {position.formatted_balance} held on {chain_name}"
        raise InsufficientAmountError(msg)
    amount_usd = amount * position.price_usd
    if amount_usd < config.min_trade_usd:
        msg = f"Hedge of ${amount_usd:.2f} is below the ${config.min_trade_usd} minimum trade"
        raise InsufficientAmountError(msg)

    return ProposedAction(
        kind=ActionKind.SELL,
        token=position.symbol,
        from_chain=chain_id,
        to_chain=chain_id,
        amount_usd=amount_usd,
        amount_token=amount,
        from_token=position.token_address,
        to_token=stable,
        from_token_decimals=position.decimals,
        reason=(
            f"Hedge: swap {amount.normalize():f} {position.symbol} to {config.quote_token} "
            f"on {chain_name} to reduce exposure"
        ),
        priority=1,
        source_role=Role.RISK_SENTINEL,
    )


async def quote_hedge(
    gateway: QuoteGateway,
    action: ProposedAction,
    from_address: str,
    config: PlannerConfig | None = None,
) -> HedgeQuote:
    """Quote a planned hedge and estimate the stablecoin it returns."""
    config = config or PlannerConfig()
    quote = await gateway.get_quote(request_for(action, from_address))
    decimals = get_token_decimals(action.to_chain, config.quote_token)
    estimate = Decimal(quote.to_amount) / Decimal(10) ** decimals
    summary = (
        f"Hedge: swap {action.amount_token.normalize():f} {action.token} → ~{estimate:.2f} {config.quote_token} "
        f"on {get_chain_name(action.from_chain)}. Reduces {action.token} exposure."
    )
    logger.info(summary)
    return HedgeQuote(action=action, quote=quote, to_amount_estimate=estimate, summary=summary)
