"""Tests for the routing client, the quote gateway and hub metadata."""

import asyncio
from decimal import Decimal

import httpx
import pytest

from chain_allocator.config import RoutingConfig
from chain_allocator.core.models import QuoteRequest
from chain_allocator.data import get_token_address
from chain_allocator.errors import (
    InsufficientAmountError,
    InvalidRequestError,
    NoRouteFoundError,
    RateLimitedError,
    UpstreamUnavailableError,
)
from chain_allocator.planning import build_deposit_request
from chain_allocator.routing import (
    LiFiClient,
    QuoteGateway,
    TransferState,
    can_use_hub,
    hub_route_info,
    is_hub_route,
    is_hub_usdc,
    parse_quote,
)
from chain_allocator.rpc import RetryConfig, TTLCache

from conftest import ARBITRUM, BASE, ETHEREUM, ROUTER, WALLET, FakeClock, FakeQuoteSource, make_quote

ARB_USDC = get_token_address(ARBITRUM, "USDC")
BASE_USDC = get_token_address(BASE, "USDC")

QUOTE_PAYLOAD = {
    "id": "0xquote",
    "type": "lifi",
    "tool": "cctp",
    "toolDetails": {"key": "cctp", "name": "CCTP"},
    "action": {
        "fromChainId": ARBITRUM,
        "toChainId": BASE,
        "fromAmount": "1000000000",
        "fromToken": {"address": ARB_USDC, "symbol": "USDC", "decimals": 6},
        "toToken": {"address": BASE_USDC, "symbol": "USDC", "decimals": 6},
        "slippage": 0.005,
    },
    "estimate": {
        "fromAmount": "1000000000",
        "toAmount": "999100000",
        "toAmountMin": "994100000",
        "fromAmountUSD": "1000.00",
        "toAmountUSD": "999.10",
        "approvalAddress": "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE",
        "executionDuration": 960,
        "gasCosts": [{"amount": "150000000000000", "amountUSD": "0.45", "token": {"symbol": "ETH", "decimals": 18}}],
        "feeCosts": [{"name": "Integrator fee", "amountUSD": "0.25", "percentage": "0.00025", "included": True}],
    },
    "includedSteps": [
        {
            "type": "cross",
            "tool": "cctp",
            "toolDetails": {"name": "CCTP"},
            "action": {"fromChainId": ARBITRUM, "toChainId": BASE, "fromAmount": "1000000000", "slippage": 0.005},
            "estimate": {"toAmount": "999100000", "executionDuration": 960},
        }
    ],
    "transactionRequest": {"to": ROUTER, "data": "0xdeadbeef", "value": "0x0", "chainId": ARBITRUM, "from": WALLET},
}


def _request(amount: str = "1000000000") -> QuoteRequest:
    return QuoteRequest(
        from_chain=ARBITRUM,
        to_chain=BASE,
        from_token=ARB_USDC,
        to_token=BASE_USDC,
        from_amount=amount,
        from_address=WALLET,
    )


def _client(handler, api_key: str | None = None) -> LiFiClient:
    config = RoutingConfig(api_key=api_key, base_url="https://li.test/v1")
    return LiFiClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_parse_quote():
    """Test parsing of a full quote payload."""
    quote = parse_quote(QUOTE_PAYLOAD)

    assert quote.tool == "CCTP"
    assert quote.from_chain == ARBITRUM
    assert quote.to_token_symbol == "USDC"
    assert quote.estimated_output == Decimal("999.1")
    assert quote.gas_cost_native == Decimal("0.00015")
    assert quote.fee_cost_usd == Decimal("0.25")
    assert quote.included_steps[0].is_bridge
    assert quote.included_steps[0].slippage == Decimal("0.005")
    assert quote.transaction_request.chain_id == ARBITRUM
    assert quote.raw == QUOTE_PAYLOAD


def test_parse_quote_without_included_steps():
    """Test that a single-step payload is its own step."""
    payload = {k: v for k, v in QUOTE_PAYLOAD.items() if k not in ("includedSteps", "transactionRequest")}
    quote = parse_quote(payload)

    assert len(quote.included_steps) == 1
    assert quote.transaction_request is None


@pytest.mark.asyncio
async def test_get_quote_sends_parameters():
    """Test the query string, credential header and integrator tag."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=QUOTE_PAYLOAD)

    async with _client(handler, api_key="secret") as client:
        quote = await client.get_quote(_request())

    params = seen[0].url.params
    assert seen[0].url.path == "/v1/quote"
    assert params["fromChain"] == str(ARBITRUM)
    assert params["fromAmount"] == "1000000000"
    assert params["integrator"] == "chain-allocator"
    assert params["slippage"] == "0.01"
    assert seen[0].headers["x-lifi-api-key"] == "secret"
    assert quote.id == "0xquote"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "error"),
    [
        (429, {"message": "Too many requests"}, RateLimitedError),
        (503, {"message": "maintenance"}, UpstreamUnavailableError),
        (404, {"message": "No available quotes for the requested transfer"}, NoRouteFoundError),
        (400, {"message": "The amount is below the minimum for this bridge"}, InsufficientAmountError),
        (400, {"message": "Invalid fromToken"}, InvalidRequestError),
    ],
)
async def test_error_translation(status, body, error):
    """Test that HTTP failures map onto the error taxonomy with hints."""
    async with _client(lambda request: httpx.Response(status, json=body)) as client:
        with pytest.raises(error) as exc_info:
            await client.get_quote(_request())

    assert exc_info.value.hint


@pytest.mark.asyncio
async def test_rate_limit_hint_mentions_credential_without_key():
    """Test that the rate-limit hint suggests a credential when none is configured."""
    async with _client(lambda request: httpx.Response(429, json={"message": "slow down"})) as client:
        with pytest.raises(RateLimitedError) as exc_info:
            await client.get_quote(_request())

    assert "LIFI_API_KEY" in exc_info.value.hint


@pytest.mark.asyncio
async def test_transport_failure_is_upstream_unavailable():
    """Test that connection failures are transient upstream errors."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    async with _client(handler) as client:
        with pytest.raises(UpstreamUnavailableError):
            await client.get_quote(_request())


@pytest.mark.asyncio
async def test_get_status():
    """Test settlement status parsing, including unindexed transactions."""
    answers = [
        httpx.Response(404, json={"message": "Not found"}),
        httpx.Response(
            200,
            json={
                "status": "DONE",
                "substatus": "COMPLETED",
                "sending": {"txHash": "0xsend"},
                "receiving": {"txHash": "0xrecv", "amount": "999100000"},
                "tool": "cctp",
            },
        ),
    ]

    async with _client(lambda request: answers.pop(0)) as client:
        missing = await client.get_status("0xsend")
        done = await client.get_status("0xsend", bridge="cctp", from_chain=ARBITRUM, to_chain=BASE)

    assert missing.state == TransferState.NOT_FOUND
    assert done.state == TransferState.DONE
    assert done.receiving_tx_hash == "0xrecv"
    assert done.receiving_amount == "999100000"


@pytest.mark.asyncio
async def test_contract_calls_quote_posts_calls():
    """Test the contract-calls request body."""
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request)
        return httpx.Response(200, json=QUOTE_PAYLOAD)

    async with _client(handler) as client:
        await client.get_contract_calls_quote(build_deposit_request(BASE, 50_000_000, WALLET))

    assert bodies[0].method == "POST"
    assert bodies[0].url.path == "/v1/quote/contractCalls"
    assert b"toContractCallData" in bodies[0].content


def _gateway(source, clock: FakeClock, min_interval: float = 1.0, attempts: int = 3, **kwargs) -> QuoteGateway:
    return QuoteGateway(
        source,
        min_interval=min_interval,
        retry_config=RetryConfig(max_attempts=attempts, base_delay=2.0, max_delay=30.0),
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_gateway_serializes_requests_in_order(clock):
    """Test that five concurrent quotes start one interval apart, in submission order."""
    source = FakeQuoteSource(make_quote(), clock=clock)
    gateway = _gateway(source, clock)

    await asyncio.gather(*(gateway.get_quote(_request(str(i))) for i in range(1, 6)))

    assert [r.from_amount for r in source.requests] == ["1", "2", "3", "4", "5"]
    assert [b - a for a, b in zip(source.starts, source.starts[1:])] == [1.0, 1.0, 1.0, 1.0]


def test_gateway_spacing_depends_on_credential():
    """Test the interval chosen with and without a credential."""
    source = FakeQuoteSource(make_quote())

    assert QuoteGateway.from_config(source, RoutingConfig(api_key="k")).min_interval == 1.0
    assert QuoteGateway.from_config(source, RoutingConfig()).min_interval == 36.0


@pytest.mark.asyncio
async def test_gateway_retries_rate_limits_then_gives_up(clock):
    """Test bounded retries with growing delays and a wrapped final error."""
    errors = [RateLimitedError(f"429 #{i}") for i in range(3)]
    source = FakeQuoteSource(make_quote(), errors=errors)
    gateway = _gateway(source, clock, min_interval=0)

    with pytest.raises(RateLimitedError) as exc_info:
        await gateway.get_quote(_request())

    assert len(source.requests) == 3
    assert clock.sleeps == [2.0, 4.0]
    assert isinstance(exc_info.value.last_error, RateLimitedError)
    assert str(exc_info.value.last_error).startswith("429 #2")
    assert exc_info.value.hint


@pytest.mark.asyncio
async def test_gateway_recovers_after_transient_failure(clock):
    """Test that a transient failure followed by success returns the quote."""
    source = FakeQuoteSource(make_quote(), errors=[UpstreamUnavailableError("502")])
    gateway = _gateway(source, clock, min_interval=0)

    quote = await gateway.get_quote(_request())

    assert quote.id == "quote-1"
    assert clock.sleeps == [2.0]


@pytest.mark.asyncio
async def test_gateway_does_not_retry_permanent_errors(clock):
    """Test that no-route failures surface at once with a hint."""
    source = FakeQuoteSource(make_quote(), errors=[NoRouteFoundError("no route")])
    gateway = _gateway(source, clock)

    with pytest.raises(NoRouteFoundError) as exc_info:
        await gateway.get_quote(_request())

    assert len(source.requests) == 1
    assert clock.sleeps == []
    assert "different token pair" in exc_info.value.hint


@pytest.mark.asyncio
async def test_gateway_attaches_hub_metadata(clock):
    """Test that burn/mint routes are tagged."""
    gateway = _gateway(FakeQuoteSource(make_quote()), clock)

    quote = await gateway.get_quote(_request())

    assert quote.routing_metadata.eligible
    assert quote.routing_metadata.used
    assert quote.routing_metadata.source_domain == 3
    assert quote.routing_metadata.destination_domain == 6


@pytest.mark.asyncio
async def test_gateway_caches_quotes(clock):
    """Test that cached answers skip the routing service."""
    source = FakeQuoteSource(make_quote())
    gateway = _gateway(source, clock, cache=TTLCache(clock=clock), cache_ttl=15)

    await gateway.get_quote(_request())
    await gateway.get_quote(_request())

    assert len(source.requests) == 1


@pytest.mark.asyncio
async def test_gateway_queued_request_can_be_cancelled(clock):
    """Test that cancelling a queued request leaves the queue usable."""
    release = asyncio.Event()

    class BlockingSource(FakeQuoteSource):
        async def get_quote(self, request):
            if request.from_amount == "1":
                await release.wait()
            return await super().get_quote(request)

    source = BlockingSource(make_quote())
    gateway = _gateway(source, clock, min_interval=0)

    first = asyncio.create_task(gateway.get_quote(_request("1")))
    queued = asyncio.create_task(gateway.get_quote(_request("2")))
    await asyncio.sleep(0)
    queued.cancel()
    release.set()
    await first

    with pytest.raises(asyncio.CancelledError):
        await queued
    await gateway.get_quote(_request("3"))
    assert [r.from_amount for r in source.requests] == ["1", "3"]


def test_hub_eligibility():
    """Test native USDC hub eligibility rules."""
    assert is_hub_usdc(ARB_USDC.lower(), ARBITRUM)
    assert not is_hub_usdc(get_token_address(ARBITRUM, "USDC.e"), ARBITRUM)
    assert can_use_hub(ARBITRUM, BASE, ARB_USDC, BASE_USDC)
    assert not can_use_hub(ARBITRUM, ARBITRUM, ARB_USDC, ARB_USDC)
    assert not can_use_hub(ARBITRUM, ETHEREUM, ARB_USDC, get_token_address(ETHEREUM, "USDT"))


def test_hub_route_detection():
    """Test recognising the burn/mint bridge by tool name."""
    assert is_hub_route(["uniswap", "CCTP"])
    assert is_hub_route(["circle-bridge"])
    assert not is_hub_route(["stargate"])
    assert not is_hub_route(None)


def test_hub_info_when_not_selected():
    """Test that an eligible route on another bridge is flagged but not marked used."""
    info = hub_route_info(ARBITRUM, BASE, ARB_USDC, BASE_USDC, ["stargate"])

    assert info.eligible
    assert not info.used
    assert info.estimated_time_seconds is None
    assert not hub_route_info(ARBITRUM, BASE, ARB_USDC, get_token_address(BASE, "WETH")).eligible
