"""Chain and token registry loading."""

from chain_allocator.data.loader import (
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

__all__ = [
    "get_all_supported_chains",
    "get_cctp_domain",
    "get_chain_config",
    "get_chain_id",
    "get_chain_name",
    "get_explorer_url",
    "get_hub_usdc",
    "get_native_token",
    "get_protocol_addresses",
    "get_rpc_endpoints",
    "get_supported_chain_ids",
    "get_token_address",
    "get_token_decimals",
    "get_tracked_tokens",
    "is_native_address",
    "load_registry",
]
