"""Tests for cross-chain portfolio aggregation."""

import asyncio
from decimal import Decimal

import pytest

from chain_allocator.config import AggregatorConfig
from chain_allocator.core import PortfolioAggregator
from chain_allocator.core.models import ChainStatus
from chain_allocator.data import get_token_address
from chain_allocator.errors import UpstreamUnavailableError
from chain_allocator.pricing import FallbackPricing
from chain_allocator.storage import MemoryStore, PortfolioValueStore

from conftest import ARBITRUM, ETHEREUM, WALLET


class FakeProvider:
    """Balance reads served from a table; ``down`` makes every read fail."""

    def __init__(self, native: int = 0, tokens: dict[str, int] | None = None, down: bool = False, broken=()):
        self.native = native
        self.tokens = {k.lower(): v for k, v in (tokens or {}).items()}
        self.down = down
        self.broken = {b.lower() for b in broken}

    async def get_balance(self, address: str) -> int:
        if self.down:
            raise UpstreamUnavailableError("All RPC endpoints failed for chain")
        return self.native

    async def erc20_balance_of(self, token: str, owner: str) -> int:
        if self.down or token.lower() in self.broken:
            raise UpstreamUnavailableError("All RPC endpoints failed for chain")
        return self.tokens.get(token.lower(), 0)


class OfflineFeed:
    async def get_prices(self, tokens):
        return {}


def _aggregator(providers, value_store=None) -> PortfolioAggregator:
    return PortfolioAggregator(providers, FallbackPricing(OfflineFeed()), value_store=value_store)


@pytest.mark.asyncio
async def test_snapshot_values_positions():
    """Test native and token balances priced and summed."""
    providers = {
        ETHEREUM: FakeProvider(native=2 * 10**18, tokens={get_token_address(ETHEREUM, "USDC"): 1000 * 10**6}),
    }
    snapshot = await _aggregator(providers).snapshot(WALLET, [ETHEREUM])

    by_symbol = {p.symbol: p for p in snapshot.positions}
    assert set(by_symbol) == {"ETH", "USDC"}
    assert by_symbol["ETH"].formatted_balance == Decimal("2")
    assert by_symbol["ETH"].value_usd == Decimal("5000")
    assert by_symbol["ETH"].price_source == "fallback"
    assert snapshot.total_value_usd == Decimal("6000")
    assert snapshot.is_complete


@pytest.mark.asyncio
async def test_unreachable_chain_is_reported_not_fatal():
    """Test that one failing chain leaves the others intact."""
    providers = {
        ETHEREUM: FakeProvider(native=10**18),
        ARBITRUM: FakeProvider(down=True),
    }
    snapshot = await _aggregator(providers).snapshot(WALLET, [ETHEREUM, ARBITRUM])

    results = {r.chain_id: r for r in snapshot.chain_results}
    assert results[ETHEREUM].status == ChainStatus.OK
    assert results[ARBITRUM].status == ChainStatus.UNAVAILABLE
    assert results[ARBITRUM].reason
    assert snapshot.unavailable_chains == [ARBITRUM]
    assert snapshot.total_value_usd == Decimal("2500")


@pytest.mark.asyncio
async def test_chain_without_provider_is_unavailable():
    """Test a requested chain that has no configured provider."""
    snapshot = await _aggregator({}).snapshot(WALLET, [ETHEREUM])

    assert snapshot.unavailable_chains == [ETHEREUM]
    assert snapshot.positions == []


@pytest.mark.asyncio
async def test_partial_token_failure_keeps_chain_ok():
    """Test that a single failed token read is recorded without failing the chain."""
    usdt = get_token_address(ETHEREUM, "USDT")
    providers = {ETHEREUM: FakeProvider(native=10**18, broken=(usdt,))}
    snapshot = await _aggregator(providers).snapshot(WALLET, [ETHEREUM])

    result = snapshot.chain_results[0]
    assert result.status == ChainStatus.OK
    assert result.failed_tokens == ["USDT"]


@pytest.mark.asyncio
async def test_dust_is_dropped():
    """Test that balances below the dust threshold are skipped."""
    providers = {ETHEREUM: FakeProvider(native=10**11)}
    aggregator = PortfolioAggregator(
        providers,
        FallbackPricing(OfflineFeed()),
        config=AggregatorConfig(dust_threshold=Decimal("0.001")),
    )
    snapshot = await aggregator.snapshot(WALLET, [ETHEREUM])

    assert snapshot.positions == []
    assert snapshot.total_value_usd == Decimal("0")


@pytest.mark.asyncio
async def test_pnl_against_previous_snapshot():
    """Test value change since the last stored point."""
    store = PortfolioValueStore(MemoryStore())
    provider = FakeProvider(native=2 * 10**18)
    aggregator = _aggregator({ETHEREUM: provider}, value_store=store)

    first = await aggregator.snapshot(WALLET, [ETHEREUM])
    provider.native = 3 * 10**18
    second = await aggregator.snapshot(WALLET, [ETHEREUM])

    assert first.pnl_usd is None
    assert second.pnl_usd == Decimal("2500")
    assert second.pnl_percent == Decimal("50")
    assert store.get(WALLET)[0] == Decimal("7500")


@pytest.mark.asyncio
async def test_incomplete_snapshot_leaves_stored_value_alone():
    """Test that a snapshot with an unreachable chain neither reports nor stores P&L."""
    store = PortfolioValueStore(MemoryStore())
    arbitrum = FakeProvider(native=10**18)
    aggregator = _aggregator({ETHEREUM: FakeProvider(native=10**18), ARBITRUM: arbitrum}, value_store=store)

    first = await aggregator.snapshot(WALLET, [ETHEREUM, ARBITRUM])
    arbitrum.down = True
    partial = await aggregator.snapshot(WALLET, [ETHEREUM, ARBITRUM])
    arbitrum.down = False
    full = await aggregator.snapshot(WALLET, [ETHEREUM, ARBITRUM])

    assert first.total_value_usd == Decimal("5000")
    assert not partial.is_complete
    assert partial.pnl_usd is None
    assert full.pnl_usd == Decimal("0")
    assert store.get(WALLET)[0] == Decimal("5000")


class TracingProvider(FakeProvider):
    """Records when each read starts and finishes."""

    def __init__(self) -> None:
        super().__init__(native=10**18)
        self.events: list[str] = []

    async def get_balance(self, address: str) -> int:
        self.events.append("native:start")
        await asyncio.sleep(0)
        self.events.append("native:end")
        return self.native

    async def erc20_balance_of(self, token: str, owner: str) -> int:
        self.events.append("token:start")
        return 0


@pytest.mark.asyncio
async def test_native_and_token_reads_overlap():
    """Test that the native balance is read alongside the first token batch."""
    provider = TracingProvider()

    await _aggregator({ETHEREUM: provider}).snapshot(WALLET, [ETHEREUM])

    assert provider.events.index("token:start") < provider.events.index("native:end")
