"""Tests for bridge-then-deposit quoting."""

from decimal import Decimal

import pytest
from eth_abi import decode
from eth_utils import decode_hex

from chain_allocator.config import ExecutionConfig
from chain_allocator.data import get_protocol_addresses, get_token_address
from chain_allocator.errors import InsufficientAmountError, InvalidRequestError
from chain_allocator.planning import build_deposit_request, quote_vault_deposit
from chain_allocator.routing import QuoteGateway

from conftest import ARBITRUM, BASE, WALLET, FakeClock, FakeQuoteSource, make_quote

SUPPLY_SELECTOR = "0x617ba037"


def _gateway(source: FakeQuoteSource) -> QuoteGateway:
    clock = FakeClock()
    return QuoteGateway(source, min_interval=0, clock=clock, sleep=clock.sleep)


def test_build_deposit_request():
    """Test the contract call that supplies bridged USDC to the vault."""
    request = build_deposit_request(BASE, 50_000_000, WALLET)
    vault = get_protocol_addresses(ARBITRUM, "aave_v3")

    assert request.from_chain == BASE
    assert request.to_chain == ARBITRUM
    assert request.from_token == get_token_address(BASE, "USDC")
    assert request.to_amount == "50000000"

    (call,) = request.contract_calls
    assert call.to_contract_address == vault["pool"]
    assert call.contract_outputs_token == vault["a_usdc"]
    assert call.to_contract_gas_limit == "350000"
    assert call.to_contract_call_data.startswith(SUPPLY_SELECTOR)

    asset, amount, on_behalf_of, referral = decode(
        ["address", "uint256", "address", "uint16"], decode_hex(call.to_contract_call_data)[4:]
    )
    assert asset.lower() == get_token_address(ARBITRUM, "USDC").lower()
    assert amount == 50_000_000
    assert on_behalf_of.lower() == WALLET.lower()
    assert referral == 0


def test_deposit_chain_without_vault():
    """Test a deposit chain that has no vault contracts configured."""
    with pytest.raises(InvalidRequestError):
        build_deposit_request(ARBITRUM, 50_000_000, WALLET, ExecutionConfig(deposit_chain_id=BASE))


@pytest.mark.asyncio
async def test_small_deposit_rejected_before_quoting():
    """Test that an amount under the minimum never reaches the routing service."""
    source = FakeQuoteSource(make_quote())

    with pytest.raises(InsufficientAmountError) as exc_info:
        await quote_vault_deposit(_gateway(source), ARBITRUM, 5_000_000, WALLET)

    assert source.requests == []
    assert "10" in exc_info.value.hint


@pytest.mark.asyncio
async def test_quote_vault_deposit():
    """Test the quoted deposit and its one-line summary."""
    source = FakeQuoteSource(make_quote())

    result = await quote_vault_deposit(_gateway(source), BASE, 25_500_000, WALLET)

    assert len(source.requests) == 1
    assert source.requests[0].contract_calls
    assert result.quote.id == "quote-1"
    assert result.summary == "Bridge 25.50 USDC from Base and deposit into Aave V3 on Arbitrum. One transaction."
    assert Decimal(source.requests[0].to_amount) == Decimal("25500000")
