"""DeFiLlama price and yield feeds."""

import asyncio
import logging
from decimal import Decimal
from typing import Any

import httpx

from chain_allocator.core.models import PricePoint, RiskLevel, YieldOpportunity
from chain_allocator.data import get_chain_config, get_supported_chain_ids, get_token_address, load_registry
from chain_allocator.rpc.cache import TTLCache
from chain_allocator.rpc.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

# DeFiLlama identifiers for native assets, which have no contract address
NATIVE_COIN_IDS = {
    "ETH": "coingecko:ethereum",
    "MATIC": "coingecko:matic-network",
    "AVAX": "coingecko:avalanche-2",
}

SAFE_PROTOCOLS = ("aave", "compound", "lido", "maker")


class DeFiLlamaPricing:
    """
    Fetches token prices from the DeFiLlama coins API.

    Failures are absorbed: a token the feed cannot price maps to ``Decimal("0")``
    and the caller decides whether to fall back.

    Parameters
    ----------
    client : httpx.AsyncClient | None
        Shared HTTP client; one is created if None
    base_url : str
        DeFiLlama coins API base URL

    """

    def __init__(self, client: httpx.AsyncClient | None = None, base_url: str = "https://coins.llama.fi") -> None:
        self.base_url = base_url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=30.0)

    async def get_prices(self, tokens: list[tuple[int, str]]) -> dict[tuple[int, str], Decimal]:
        """
        Fetch USD prices for multiple tokens in one request.

        Parameters
        ----------
        tokens : list[tuple[int, str]]
            List of (chain_id, address) tuples

        Returns
        -------
        dict[tuple[int, str], Decimal]
            Mapping of (chain_id, address) to USD price, 0 when unknown

        """
        if not tokens:
            return {}

        coin_ids = [self._format_coin_id(chain_id, addr) for chain_id, addr in tokens]
        prices_data = await self._fetch_batch_prices(sorted(set(coin_ids)))

        result = {}
        for (chain_id, address), coin_id in zip(tokens, coin_ids, strict=True):
            price_info = prices_data.get(coin_id)
            if price_info and "price" in price_info:
                result[chain_id, address] = Decimal(str(price_info["price"]))
            else:
                result[chain_id, address] = Decimal("0")

        return result

    async def get_price(self, chain_id: int, address: str) -> Decimal:
        """USD price of a single token, 0 when unknown."""
        prices = await self.get_prices([(chain_id, address)])
        return prices.get((chain_id, address), Decimal("0"))

    async def _fetch_batch_prices(self, coin_ids: list[str]) -> dict[str, Any]:
        try:
            url = f"{self.base_url}/prices/current/{','.join(coin_ids)}"
            response = await self.client.get(url)
            response.raise_for_status()
            return response.json().get("coins", {})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("DeFiLlama price request failed: %s", e)
            return {}

    def _format_coin_id(self, chain_id: int, address: str) -> str:
        """
        Format coin identifier for the DeFiLlama API.

        Returns
        -------
        str
            ``"<slug>:<address>"``, or a coingecko id for native assets

        """
        config = get_chain_config(chain_id)
        if address.lower() == load_registry()["native_token_address"].lower():
            return NATIVE_COIN_IDS.get(config["native"]["symbol"], f"{config['llama_slug']}:{address}")
        return f"{config['llama_slug']}:{address}"

    async def close(self) -> None:
        """Close HTTP client if owned."""
        if self._owns_client:
            await self.client.aclose()


def classify_pool_risk(apy: Decimal, tvl: Decimal, protocol: str) -> RiskLevel:
    """
    Coarse risk label from APY, TVL and protocol reputation.

    Very high APY or thin TVL raise the label; established lending protocols lower it.
    """
    if apy > 50:
        return RiskLevel.HIGH
    if apy > 20:
        return RiskLevel.MEDIUM
    if tvl < 1_000_000:
        return RiskLevel.HIGH
    if tvl < 10_000_000:
        return RiskLevel.MEDIUM
    if any(p in protocol.lower() for p in SAFE_PROTOCOLS):
        return RiskLevel.LOW
    return RiskLevel.MEDIUM


class DeFiLlamaYields:
    """
    Yield-pool feed from yields.llama.fi, filtered client-side.

    Parameters
    ----------
    client : httpx.AsyncClient | None
        Shared HTTP client; one is created if None
    cache : TTLCache | None
        Cache for the raw pool list
    base_url : str
        DeFiLlama yields API base URL
    cache_ttl : float
        Seconds the raw pool list is reused

    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        cache: TTLCache | None = None,
        base_url: str = "https://yields.llama.fi",
        cache_ttl: float = 300,
    ) -> None:
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=30.0)
        self.cache = cache or TTLCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl

    @with_retry(RetryConfig(max_attempts=2, base_delay=1.0), retry_on=(httpx.TransportError,))
    async def _fetch_pools(self) -> list[dict[str, Any]]:
        response = await self.client.get(f"{self.base_url}/pools")
        response.raise_for_status()
        return response.json().get("data", [])

    async def get_pools(
        self,
        chain_ids: list[int] | None = None,
        tokens: list[str] | None = None,
        min_tvl: Decimal = Decimal("1000000"),
        max_apy: Decimal = Decimal("100"),
        min_apy: Decimal = Decimal("0.1"),
    ) -> list[YieldOpportunity]:
        """
        Fetch pools filtered by chain allow-list, token allow-list, TVL and APY bounds.

        Parameters
        ----------
        chain_ids : list[int] | None
            Chains to keep; every supported chain if None
        tokens : list[str] | None
            Pool symbols to keep (exact, case-insensitive); all if None
        min_tvl : Decimal
            Minimum pool TVL in USD
        max_apy : Decimal
            APY ceiling; listings above it are treated as unsustainable
        min_apy : Decimal
            APY floor; near-zero listings are dropped

        Returns
        -------
        list[YieldOpportunity]
            Pools sorted by APY, highest first. Empty if the feed is unreachable.

        """
        raw = self.cache.get("yields", self.base_url)
        if raw is None:
            try:
                raw = await self._fetch_pools()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("DeFiLlama yields request failed: %s", e)
                return []
            self.cache.set("yields", self.base_url, raw, ttl=self.cache_ttl)

        wanted_chains = set(chain_ids or get_supported_chain_ids())
        chain_by_name = {get_chain_config(cid)["display_name"].lower(): cid for cid in get_supported_chain_ids()}
        wanted_tokens = {t.upper() for t in tokens} if tokens else None

        opportunities = []
        for pool in raw:
            chain_id = chain_by_name.get(str(pool.get("chain", "")).lower())
            if chain_id is None or chain_id not in wanted_chains:
                continue
            symbol = str(pool.get("symbol", "")).upper()
            if wanted_tokens is not None and symbol not in wanted_tokens:
                continue
            apy = Decimal(str(pool.get("apy") or 0))
            tvl = Decimal(str(pool.get("tvlUsd") or 0))
            if apy <= min_apy or apy > max_apy or tvl < min_tvl:
                continue
            protocol = str(pool.get("project", "unknown"))
            opportunities.append(
                YieldOpportunity(
                    pool_id=str(pool.get("pool", "")),
                    protocol=protocol,
                    chain_id=chain_id,
                    chain_name=get_chain_config(chain_id)["display_name"],
                    symbol=symbol,
                    apy=apy,
                    apy_base=Decimal(str(pool["apyBase"])) if pool.get("apyBase") is not None else None,
                    apy_reward=Decimal(str(pool["apyReward"])) if pool.get("apyReward") is not None else None,
                    tvl_usd=tvl,
                    risk=classify_pool_risk(apy, tvl, protocol),
                )
            )

        return sorted(opportunities, key=lambda o: o.apy, reverse=True)


class CrossChainPriceFeed:
    """
    Prices of one token symbol on several chains, for gap detection.

    Each chain is read under its own timeout; chains that time out or cannot be
    priced are left out of the result. No fixed fallback prices are used here,
    since they would hide real gaps.

    Parameters
    ----------
    pricing : DeFiLlamaPricing
        Primary price source
    timeout : float
        Per-chain timeout in seconds

    """

    def __init__(self, pricing: DeFiLlamaPricing, timeout: float = 5.0) -> None:
        self.pricing = pricing
        self.timeout = timeout

    async def _price_on_chain(self, symbol: str, chain_id: int) -> PricePoint | None:
        address = get_token_address(chain_id, symbol)
        if address is None:
            return None
        try:
            price = await asyncio.wait_for(self.pricing.get_price(chain_id, address), timeout=self.timeout)
        except TimeoutError:
            logger.debug("Price for %s on chain %d timed out", symbol, chain_id)
            return None
        if price <= 0:
            return None
        return PricePoint(chain_id=chain_id, symbol=symbol.upper(), price_usd=price)

    async def fetch(self, symbol: str, chain_ids: list[int]) -> list[PricePoint]:
        """
        Fetch ``symbol`` prices on every chain in ``chain_ids`` concurrently.

        Returns
        -------
        list[PricePoint]
            One point per chain that answered in time, in ``chain_ids`` order

        """
        results = await asyncio.gather(*(self._price_on_chain(symbol, cid) for cid in chain_ids))
        return [point for point in results if point is not None]
