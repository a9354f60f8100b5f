"""Serialized, rate-limited, retrying gateway in front of the routing service."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from chain_allocator.config import RoutingConfig
from chain_allocator.core.models import ContractCallsQuoteRequest, Quote, QuoteRequest
from chain_allocator.errors import (
    ChainAllocatorError,
    InsufficientAmountError,
    NoRouteFoundError,
    RateLimitedError,
    UpstreamUnavailableError,
    is_retryable,
)
from chain_allocator.routing.hub import hub_route_info
from chain_allocator.rpc.cache import TTLCache
from chain_allocator.rpc.retry import RetryConfig, Sleep

logger = logging.getLogger(__name__)

DEFAULT_HINTS: dict[type[ChainAllocatorError], str] = {
    RateLimitedError: "likely rate limited; add a routing credential or wait before retrying",
    NoRouteFoundError: "try a different token pair, another chain, or a larger amount",
    InsufficientAmountError: "amount below typical bridge minimum; resubmit with a larger amount",
    UpstreamUnavailableError: "the routing service is unreachable; try again shortly",
}


class QuoteSource(Protocol):
    """Anything that can answer quote requests (the LI.FI client, or a test fake)."""

    async def get_quote(self, request: QuoteRequest) -> Quote: ...

    async def get_contract_calls_quote(self, request: ContractCallsQuoteRequest) -> Quote: ...


class QuoteGateway:
    """
    Single entry point for quote requests.

    One gateway is constructed per process and passed to every caller. It
    enforces, in order:

    1. FIFO serialization: exactly one request in flight at a time
    2. A minimum interval between request start times
    3. Exponential backoff retries for rate-limit and transient failures only
    4. Liquidity-hub metadata on every returned quote

    A queued request is abandoned by cancelling the awaiting task.

    Parameters
    ----------
    source : QuoteSource
        Underlying routing client
    min_interval : float
        Minimum seconds between request starts
    retry_config : RetryConfig | None
        Attempt ceiling and backoff curve
    cache : TTLCache | None
        Optional cache for plain quote answers
    cache_ttl : float
        TTL for cached quotes; 0 disables caching
    clock : Callable[[], float]
        Monotonic time source, injectable for tests
    sleep : Sleep
        Awaitable sleep, injectable for tests

    """

    def __init__(
        self,
        source: QuoteSource,
        min_interval: float = 1.0,
        retry_config: RetryConfig | None = None,
        cache: TTLCache | None = None,
        cache_ttl: float = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.source = source
        self.min_interval = min_interval
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=2.0, max_delay=30.0)
        self.cache = cache
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    @classmethod
    def from_config(cls, source: QuoteSource, config: RoutingConfig, cache: TTLCache | None = None) -> "QuoteGateway":
        """Build a gateway whose spacing depends on whether a credential is configured."""
        return cls(
            source,
            min_interval=config.effective_min_interval,
            retry_config=RetryConfig(
                max_attempts=config.max_attempts,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
            ),
            cache=cache if config.quote_cache_ttl > 0 else None,
            cache_ttl=config.quote_cache_ttl,
        )

    async def get_quote(self, request: QuoteRequest) -> Quote:
        """
        Fetch a quote through the throttle and retry policy.

        Parameters
        ----------
        request : QuoteRequest
            Transfer description

        Returns
        -------
        Quote
            Quote with ``routing_metadata`` describing hub eligibility

        Raises
        ------
        RateLimitedError
            When every attempt was rate limited; wraps the last underlying error
        RoutingError
            Non-transient failures, raised on the first occurrence

        """
        cache_params = request.model_dump(mode="json")
        if self.cache is not None:
            cached = self.cache.get("quote", cache_params)
            if cached is not None:
                return cached

        quote = await self._with_retry(lambda: self.source.get_quote(request), "quote")
        quote = self._attach_hub_metadata(quote)

        if self.cache is not None:
            self.cache.set("quote", cache_params, quote, ttl=self.cache_ttl)
        return quote

    async def get_contract_calls_quote(self, request: ContractCallsQuoteRequest) -> Quote:
        """Fetch a contract-calls quote through the same throttle and retry policy."""
        quote = await self._with_retry(lambda: self.source.get_contract_calls_quote(request), "contract-calls quote")
        return self._attach_hub_metadata(quote)

    def _attach_hub_metadata(self, quote: Quote) -> Quote:
        info = hub_route_info(quote.from_chain, quote.to_chain, quote.from_token, quote.to_token, quote.tools)
        if info.used:
            logger.info("Route %s uses the native USDC hub (%s)", quote.id or "?", ", ".join(quote.tools))
        return quote.model_copy(update={"routing_metadata": info})

    async def _throttled(self, call: Callable[[], Awaitable[Quote]]) -> Quote:
        async with self._lock:
            if self._last_start is not None:
                wait = self._last_start + self.min_interval - self._clock()
                if wait > 0:
                    logger.debug("Quote throttle: waiting %.2fs", wait)
                    await self._sleep(wait)
            self._last_start = self._clock()
            return await call()

    async def _with_retry(self, call: Callable[[], Awaitable[Quote]], label: str) -> Quote:
        last_error: ChainAllocatorError | None = None
        attempts = self.retry_config.max_attempts

        for attempt in range(attempts):
            try:
                return await self._throttled(call)
            except ChainAllocatorError as e:
                if e.hint is None:
                    e.hint = DEFAULT_HINTS.get(type(e))
                if not is_retryable(e):
                    raise
                last_error = e
                if attempt < attempts - 1:
                    delay = self.retry_config.get_delay(attempt)
                    logger.warning(
                        "%s attempt %d/%d failed (%s); retrying in %.1fs", label, attempt + 1, attempts, e, delay
                    )
                    await self._sleep(delay)

        assert last_error is not None
        if isinstance(last_error, RateLimitedError):
            msg = f"Routing service still rate limited after {attempts} attempts"
            raise RateLimitedError(
                msg,
                hint=last_error.hint or DEFAULT_HINTS[RateLimitedError],
                last_error=last_error,
            ) from last_error
        msg = f"Routing service unavailable after {attempts} attempts: {last_error.message}"
        raise UpstreamUnavailableError(msg, hint=DEFAULT_HINTS[UpstreamUnavailableError]) from last_error
