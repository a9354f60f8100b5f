"""RPC layer with provider fallback, retry logic, caching, and ABI helpers."""

from chain_allocator.rpc.cache import CacheEntry, TTLCache
from chain_allocator.rpc.provider import JsonRpcProvider, RpcError, build_providers
from chain_allocator.rpc.retry import RetryConfig, with_retry

__all__ = [
    "CacheEntry",
    "JsonRpcProvider",
    "RetryConfig",
    "RpcError",
    "TTLCache",
    "build_providers",
    "with_retry",
]
