"""Portfolio aggregator valuing native and tracked-token balances across chains."""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from chain_allocator.config import AggregatorConfig
from chain_allocator.core.models import ChainBalanceResult, ChainStatus, PortfolioSnapshot, TokenPosition
from chain_allocator.data import get_chain_name, get_native_token, get_tracked_tokens
from chain_allocator.pricing.fallback import FallbackPricing
from chain_allocator.rpc.provider import JsonRpcProvider
from chain_allocator.storage.history import PortfolioValueStore

logger = logging.getLogger(__name__)


@dataclass
class _RawBalance:
    chain_id: int
    address: str
    symbol: str
    decimals: int
    raw: int

    @property
    def formatted(self) -> Decimal:
        return Decimal(self.raw) / (Decimal(10) ** self.decimals)


@dataclass
class _ChainRead:
    chain_id: int
    balances: list[_RawBalance]
    failed_tokens: list[str]
    unavailable_reason: str | None = None


class PortfolioAggregator:
    """
    Builds a unified portfolio snapshot from per-chain balance reads.

    Workflow:
    1. Read native and tracked-token balances on every chain concurrently
    2. Drop dust balances
    3. Price the remaining tokens (live feed, then fixed fallback table)
    4. Tag each chain ``ok`` or ``unavailable`` and assemble the snapshot
    5. Compare with, then overwrite, the stored value point for P&L

    Parameters
    ----------
    providers : dict[int, JsonRpcProvider]
        RPC provider per chain id; each handles its own endpoint fallback
    pricing : FallbackPricing
        Price source with the fixed fallback table
    value_store : PortfolioValueStore | None
        Point-in-time value store; P&L is skipped if None
    config : AggregatorConfig | None
        Dust threshold and batching settings

    """

    def __init__(
        self,
        providers: dict[int, JsonRpcProvider],
        pricing: FallbackPricing,
        value_store: PortfolioValueStore | None = None,
        config: AggregatorConfig | None = None,
    ) -> None:
        self.providers = providers
        self.pricing = pricing
        self.value_store = value_store
        self.config = config or AggregatorConfig()

    async def snapshot(self, address: str, chain_ids: list[int]) -> PortfolioSnapshot:
        """
        Value ``address`` across ``chain_ids``.

        Parameters
        ----------
        address : str
            Wallet address
        chain_ids : list[int]
            Chains to read

        Returns
        -------
        PortfolioSnapshot
            Fresh snapshot; unreachable chains appear as ``unavailable`` results
            with no positions

        """
        reads = await asyncio.gather(*(self._read_chain(address, chain_id) for chain_id in chain_ids))

        to_price = [b for read in reads for b in read.balances]
        prices = await self.pricing.get_prices([(b.chain_id, b.address, b.symbol) for b in to_price])

        chain_results = []
        for read in reads:
            chain_name = get_chain_name(read.chain_id)
            if read.unavailable_reason is not None:
                logger.warning("Chain %s unavailable: %s", chain_name, read.unavailable_reason)
                chain_results.append(
                    ChainBalanceResult(
                        chain_id=read.chain_id,
                        chain_name=chain_name,
                        status=ChainStatus.UNAVAILABLE,
                        reason=read.unavailable_reason,
                        failed_tokens=read.failed_tokens,
                    )
                )
                continue

            positions = []
            for balance in read.balances:
                price, source = prices.get((balance.chain_id, balance.address), (Decimal("0"), "none"))
                positions.append(
                    TokenPosition(
                        chain_id=balance.chain_id,
                        token_address=balance.address,
                        symbol=balance.symbol,
                        decimals=balance.decimals,
                        raw_balance=balance.raw,
                        formatted_balance=balance.formatted,
                        price_usd=price,
                        value_usd=balance.formatted * price,
                        price_source=source,
                    )
                )
            chain_results.append(
                ChainBalanceResult(
                    chain_id=read.chain_id,
                    chain_name=chain_name,
                    status=ChainStatus.OK,
                    positions=positions,
                    failed_tokens=read.failed_tokens,
                )
            )

        snapshot = PortfolioSnapshot.build(address, chain_results)
        return self._apply_pnl(snapshot)

    def _apply_pnl(self, snapshot: PortfolioSnapshot) -> PortfolioSnapshot:
        if self.value_store is None:
            return snapshot

        if not snapshot.is_complete:
            logger.info("Snapshot incomplete; not comparing or storing its value")
            return snapshot

        previous = self.value_store.get(snapshot.address)
        self.value_store.put(snapshot.address, snapshot.total_value_usd, snapshot.taken_at)
        if previous is None:
            return snapshot

        previous_value, _ = previous
        pnl = snapshot.total_value_usd - previous_value
        pnl_percent = (pnl / previous_value * 100) if previous_value > 0 else None
        return snapshot.model_copy(update={"pnl_usd": pnl, "pnl_percent": pnl_percent})

    async def _read_chain(self, address: str, chain_id: int) -> _ChainRead:
        """
        Read every balance on one chain, tolerating individual failures.

        The chain is unavailable only when no read at all succeeded.
        """
        provider = self.providers.get(chain_id)
        if provider is None:
            return _ChainRead(chain_id, [], [], unavailable_reason="no RPC provider configured")

        native = get_native_token(chain_id)
        tokens = get_tracked_tokens(chain_id)
        attempted = 1 + len(tokens)
        balances: list[_RawBalance] = []
        failed: list[str] = []
        errors: list[BaseException] = []

        batch_size = max(1, self.config.token_batch_size)
        batches = [tokens[start : start + batch_size] for start in range(0, len(tokens), batch_size)] or [[]]
        for index, batch in enumerate(batches):
            calls = [provider.erc20_balance_of(token["address"], address) for token in batch]
            if index == 0:
                calls.insert(0, provider.get_balance(address))
            results = await asyncio.gather(*calls, return_exceptions=True)
            if index == 0:
                raw, results = results[0], results[1:]
                if isinstance(raw, BaseException):
                    failed.append(native["symbol"])
                    errors.append(raw)
                else:
                    balances.append(_RawBalance(chain_id, native["address"], native["symbol"], native["decimals"], raw))
            for token, result in zip(batch, results, strict=True):
                if isinstance(result, BaseException):
                    failed.append(token["symbol"])
                    errors.append(result)
                    continue
                balances.append(_RawBalance(chain_id, token["address"], token["symbol"], token["decimals"], result))

        if len(failed) == attempted:
            return _ChainRead(chain_id, [], failed, unavailable_reason=str(errors[0]))

        if failed:
            logger.info("Chain %d: could not read %s", chain_id, ", ".join(failed))

        non_dust = [b for b in balances if b.formatted >= self.config.dust_threshold]
        return _ChainRead(chain_id, non_dust, failed)
