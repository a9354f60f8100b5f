"""Price and yield feeds."""

from chain_allocator.pricing.defillama import (
    CrossChainPriceFeed,
    DeFiLlamaPricing,
    DeFiLlamaYields,
    classify_pool_risk,
)
from chain_allocator.pricing.fallback import FALLBACK_PRICES, FallbackPricing, fallback_price

__all__ = [
    "FALLBACK_PRICES",
    "CrossChainPriceFeed",
    "DeFiLlamaPricing",
    "DeFiLlamaYields",
    "FallbackPricing",
    "classify_pool_risk",
    "fallback_price",
]
