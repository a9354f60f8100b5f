"""Chain, token and protocol registry loader."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


@lru_cache(maxsize=1)
def load_registry() -> dict[str, Any]:
    """
    Load the chain registry from chains.yaml.

    Returns
    -------
    dict[str, Any]
        Registry including chains, tokens, hub metadata and protocol addresses

    """
    path = Path(__file__).parent / "chains.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)


def _resolve_chain_name(chain: str | int) -> str:
    """Map a chain id or name onto the registry key."""
    chains = load_registry()["chains"]
    if isinstance(chain, int):
        for name, config in chains.items():
            if config["chain_id"] == chain:
                return name
        msg = f"Unsupported chain id: {chain}"
        raise KeyError(msg)
    name = chain.lower()
    if name not in chains:
        msg = f"Unsupported chain: {chain}"
        raise KeyError(msg)
    return name


def get_chain_config(chain: str | int) -> dict[str, Any]:
    """
    Get configuration for a specific chain.

    Parameters
    ----------
    chain : str | int
        Chain name (e.g., 'ethereum', 'base') or numeric chain id

    Returns
    -------
    dict[str, Any]
        Chain configuration including RPC endpoints and tracked tokens

    Raises
    ------
    KeyError
        If chain is not found in the registry

    """
    return load_registry()["chains"][_resolve_chain_name(chain)]


def get_chain_id(chain: str) -> int:
    """
    Get numeric chain ID.

    Parameters
    ----------
    chain : str
        Chain name

    Returns
    -------
    int
        Chain ID

    """
    return get_chain_config(chain)["chain_id"]


def get_chain_name(chain_id: int) -> str:
    """Human-readable chain name for a chain id, or ``chain-<id>`` if unknown."""
    try:
        return get_chain_config(chain_id)["display_name"]
    except KeyError:
        return f"chain-{chain_id}"


def get_all_supported_chains() -> list[str]:
    """
    Get list of all supported chain names.

    Returns
    -------
    list[str]
        List of chain names

    """
    return list(load_registry()["chains"].keys())


def get_supported_chain_ids() -> list[int]:
    """Numeric ids of every supported chain, in registry order."""
    return [config["chain_id"] for config in load_registry()["chains"].values()]


def get_rpc_endpoints(chain: str | int) -> list[str]:
    """
    Get list of RPC endpoints for a chain, primary first.

    Parameters
    ----------
    chain : str | int
        Chain name or id

    Returns
    -------
    list[str]
        List of RPC endpoint URLs

    """
    return list(get_chain_config(chain)["rpc_endpoints"])


def get_native_token(chain: str | int) -> dict[str, Any]:
    """
    Get the native asset of a chain.

    Returns
    -------
    dict[str, Any]
        ``{"address", "symbol", "decimals"}`` using the shared native placeholder address

    """
    native = get_chain_config(chain)["native"]
    return {
        "address": load_registry()["native_token_address"],
        "symbol": native["symbol"],
        "decimals": native["decimals"],
    }


def get_tracked_tokens(chain: str | int) -> list[dict[str, Any]]:
    """
    Get the ERC-20 tokens tracked on a chain.

    Parameters
    ----------
    chain : str | int
        Chain name or id

    Returns
    -------
    list[dict[str, Any]]
        Entries with ``symbol``, ``address`` and ``decimals``

    """
    tokens = get_chain_config(chain).get("tokens", {})
    return [{"symbol": symbol, **info} for symbol, info in tokens.items()]


def get_token_address(chain: str | int, symbol: str) -> str | None:
    """Address of ``symbol`` on ``chain``, the native placeholder for the native asset."""
    config = get_chain_config(chain)
    if symbol.upper() == config["native"]["symbol"]:
        return load_registry()["native_token_address"]
    for token_symbol, info in config.get("tokens", {}).items():
        if token_symbol.upper() == symbol.upper():
            return info["address"]
    return None


def get_token_decimals(chain: str | int, symbol: str) -> int:
    """Decimals of ``symbol`` on ``chain``; 18 when the token is not tracked."""
    config = get_chain_config(chain)
    if symbol.upper() == config["native"]["symbol"]:
        return config["native"]["decimals"]
    for token_symbol, info in config.get("tokens", {}).items():
        if token_symbol.upper() == symbol.upper():
            return info["decimals"]
    return 18


def get_hub_usdc(chain: str | int) -> str | None:
    """
    Native (burn/mint) USDC address on a chain.

    Returns
    -------
    str | None
        Address, or None when the chain is not served by the liquidity hub

    """
    try:
        hub = get_chain_config(chain).get("hub")
    except KeyError:
        return None
    return hub["usdc"] if hub else None


def get_cctp_domain(chain: str | int) -> int | None:
    """CCTP domain number of a chain, or None when unsupported."""
    try:
        hub = get_chain_config(chain).get("hub")
    except KeyError:
        return None
    return hub["cctp_domain"] if hub else None


def get_protocol_addresses(chain: str | int, protocol: str) -> dict[str, str]:
    """
    Get all contract addresses for a protocol on a chain.

    Parameters
    ----------
    chain : str | int
        Chain name or id
    protocol : str
        Protocol name (e.g., 'aave_v3')

    Returns
    -------
    dict[str, str]
        Mapping of contract names to addresses, empty when not deployed

    """
    try:
        chain_config = get_chain_config(chain)
    except KeyError:
        return {}
    return dict(chain_config.get("protocols", {}).get(protocol, {}))


def get_explorer_url(chain: str | int, tx_hash: str | None = None) -> str:
    """Block explorer base URL, or the transaction page when ``tx_hash`` is given."""
    base = get_chain_config(chain)["explorer"]
    return f"{base}/tx/{tx_hash}" if tx_hash else base


def is_native_address(address: str) -> bool:
    """Whether ``address`` is the native-asset placeholder (or the zero address)."""
    native = load_registry()["native_token_address"].lower()
    return address.lower() in (native, "0x" + "0" * 40)
