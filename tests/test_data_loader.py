"""Tests for the chain registry loader."""

import pytest

from chain_allocator.data import (
    get_all_supported_chains,
    get_cctp_domain,
    get_chain_config,
    get_chain_id,
    get_chain_name,
    get_explorer_url,
    get_hub_usdc,
    get_native_token,
    get_protocol_addresses,
    get_rpc_endpoints,
    get_supported_chain_ids,
    get_token_address,
    get_token_decimals,
    get_tracked_tokens,
    is_native_address,
    load_registry,
)


def test_load_registry():
    """Test loading the registry file."""
    registry = load_registry()

    assert "chains" in registry
    assert registry["native_token_address"].lower() == "0x" + "e" * 40


def test_supported_chains():
    """Test the list of supported networks."""
    chains = get_all_supported_chains()

    for name in ["ethereum", "arbitrum", "optimism", "polygon", "base", "avalanche"]:
        assert name in chains
    assert get_supported_chain_ids() == [get_chain_id(name) for name in chains]


def test_chain_config_by_name_or_id():
    """Test that chains resolve by name, case-insensitively, and by id."""
    assert get_chain_config("Arbitrum") == get_chain_config(42161)
    assert get_chain_id("base") == 8453
    assert get_chain_name(10) == "Optimism"


def test_unknown_chain():
    """Test lookups for chains that are not in the registry."""
    with pytest.raises(KeyError):
        get_chain_config("solana")
    with pytest.raises(KeyError):
        get_chain_config(999)

    assert get_chain_name(999) == "chain-999"
    assert get_hub_usdc(999) is None
    assert get_protocol_addresses(999, "aave_v3") == {}


def test_rpc_endpoints():
    """Test that every chain has a primary and at least one fallback endpoint."""
    for chain_id in get_supported_chain_ids():
        endpoints = get_rpc_endpoints(chain_id)
        assert len(endpoints) >= 2
        assert all(url.startswith("https://") for url in endpoints)


def test_native_token():
    """Test native asset metadata."""
    assert get_native_token("polygon")["symbol"] == "MATIC"
    assert get_native_token(1)["decimals"] == 18
    assert is_native_address(get_native_token(1)["address"])
    assert is_native_address("0x0000000000000000000000000000000000000000")
    assert not is_native_address(get_token_address(1, "USDC"))


def test_token_lookup():
    """Test token address and decimals lookup."""
    assert get_token_address(42161, "usdc") == "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"
    assert get_token_address(1, "ETH") == load_registry()["native_token_address"]
    assert get_token_address(1, "UNKNOWN") is None
    assert get_token_decimals(1, "USDC") == 6
    assert get_token_decimals(1, "DAI") == 18
    assert {t["symbol"] for t in get_tracked_tokens("base")} >= {"USDC", "WETH"}


def test_hub_metadata():
    """Test native USDC hub addresses and CCTP domains."""
    assert get_hub_usdc(42161) == get_token_address(42161, "USDC")
    assert get_cctp_domain(1) == 0
    assert get_cctp_domain(42161) == 3


def test_aave_addresses():
    """Test the deposit vault contracts on Arbitrum."""
    addresses = get_protocol_addresses(42161, "aave_v3")

    assert addresses["pool"].startswith("0x")
    assert addresses["a_usdc"].startswith("0x")


def test_explorer_url():
    """Test explorer links."""
    assert get_explorer_url("base") == "https://basescan.org"
    assert get_explorer_url(1, "0xabc") == "https://etherscan.io/tx/0xabc"
