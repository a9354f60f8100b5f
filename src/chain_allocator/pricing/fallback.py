"""Fixed fallback prices layered under the live price feed."""

import logging
from decimal import Decimal

from chain_allocator.pricing.defillama import DeFiLlamaPricing

logger = logging.getLogger(__name__)

# Conservative estimates for well-known symbols
FALLBACK_PRICES: dict[str, Decimal] = {
    "ETH": Decimal("2500"),
    "WETH": Decimal("2500"),
    "MATIC": Decimal("0.8"),
    "AVAX": Decimal("35"),
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
    "DAI": Decimal("1"),
    "USDC.E": Decimal("1"),
    "USDBC": Decimal("1"),
}


def fallback_price(symbol: str) -> Decimal | None:
    """Fixed price for ``symbol``, or None when the symbol is not well known."""
    return FALLBACK_PRICES.get(symbol.upper())


class FallbackPricing:
    """
    Live prices with a fixed-table fallback.

    Never raises: a token priced neither by the feed nor by the table gets 0.

    Parameters
    ----------
    primary : DeFiLlamaPricing
        Live price source

    """

    def __init__(self, primary: DeFiLlamaPricing) -> None:
        self.primary = primary

    async def get_prices(
        self,
        tokens: list[tuple[int, str, str]],
    ) -> dict[tuple[int, str], tuple[Decimal, str]]:
        """
        Price tokens, falling back per token.

        Parameters
        ----------
        tokens : list[tuple[int, str, str]]
            (chain_id, address, symbol) triples

        Returns
        -------
        dict[tuple[int, str], tuple[Decimal, str]]
            (chain_id, address) to (price, source) with source ``primary``,
            ``fallback`` or ``none``

        """
        try:
            live = await self.primary.get_prices([(chain_id, address) for chain_id, address, _ in tokens])
        except Exception as e:
            logger.warning("Primary price feed failed, using fallback table: %s", e)
            live = {}

        result: dict[tuple[int, str], tuple[Decimal, str]] = {}
        for chain_id, address, symbol in tokens:
            price = live.get((chain_id, address), Decimal("0"))
            if price > 0:
                result[chain_id, address] = (price, "primary")
                continue
            fixed = fallback_price(symbol)
            if fixed is not None:
                result[chain_id, address] = (fixed, "fallback")
            else:
                result[chain_id, address] = (Decimal("0"), "none")
        return result
