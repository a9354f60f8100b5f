"""Routing service access: API client, rate-limited gateway, hub metadata."""

from chain_allocator.routing.gateway import QuoteGateway, QuoteSource
from chain_allocator.routing.hub import can_use_hub, hub_route_info, is_hub_route, is_hub_usdc
from chain_allocator.routing.lifi import LiFiClient, TransferState, TransferStatus, parse_quote

__all__ = [
    "LiFiClient",
    "QuoteGateway",
    "QuoteSource",
    "TransferState",
    "TransferStatus",
    "can_use_hub",
    "hub_route_info",
    "is_hub_route",
    "is_hub_usdc",
    "parse_quote",
]
