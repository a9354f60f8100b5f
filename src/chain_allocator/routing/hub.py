"""Liquidity-hub (native USDC burn/mint) route metadata."""

from chain_allocator.core.models import HubRouteInfo
from chain_allocator.data import get_cctp_domain, get_hub_usdc

# Typical attestation time for a standard burn/mint transfer
HUB_TRANSFER_SECONDS = 15 * 60
HUB_TOOL_MARKERS = ("cctp", "circle")


def is_hub_usdc(token: str, chain_id: int) -> bool:
    """True if ``token`` is the native burn/mint USDC on ``chain_id``."""
    hub_usdc = get_hub_usdc(chain_id)
    return hub_usdc is not None and token.lower() == hub_usdc.lower()


def is_hub_route(tools: list[str] | None) -> bool:
    """True if any tool of a route is the native burn/mint bridge."""
    return any(marker in tool.lower() for tool in tools or [] for marker in HUB_TOOL_MARKERS)


def can_use_hub(from_chain: int, to_chain: int, from_token: str, to_token: str) -> bool:
    """
    Whether a transfer is eligible for the liquidity hub.

    Both chains must be served, both tokens must be native USDC, and the
    transfer must actually cross chains.
    """
    if from_chain == to_chain:
        return False
    return is_hub_usdc(from_token, from_chain) and is_hub_usdc(to_token, to_chain)


def hub_route_info(
    from_chain: int,
    to_chain: int,
    from_token: str,
    to_token: str,
    tools: list[str] | None = None,
) -> HubRouteInfo:
    """
    Describe hub eligibility and usage for a quoted transfer.

    Parameters
    ----------
    from_chain : int
        Source chain id
    to_chain : int
        Destination chain id
    from_token : str
        Source token address
    to_token : str
        Destination token address
    tools : list[str] | None
        Bridge/DEX tool names the chosen route uses

    Returns
    -------
    HubRouteInfo
        Metadata for display and accounting; it never changes which route is used

    """
    eligible = can_use_hub(from_chain, to_chain, from_token, to_token)
    used = eligible and is_hub_route(tools)
    if not eligible:
        return HubRouteInfo()
    return HubRouteInfo(
        eligible=True,
        used=used,
        mechanism="burn-mint" if used else None,
        source_domain=get_cctp_domain(from_chain),
        destination_domain=get_cctp_domain(to_chain),
        estimated_time_seconds=HUB_TRANSFER_SECONDS if used else None,
    )
