"""Human-readable commentary: rule-based templates with optional text-generation enhancement."""

import logging
import time
from collections import deque
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from chain_allocator.config import PhrasingConfig
from chain_allocator.core.models import ActionKind, IntentAnalysis, ProposedAction
from chain_allocator.data import get_chain_name
from chain_allocator.errors import RateLimitedError, UpstreamUnavailableError
from chain_allocator.rpc.cache import TTLCache

logger = logging.getLogger(__name__)


class Phraser(Protocol):
    """Produces commentary; never decides anything."""

    async def explain_action(self, action: ProposedAction) -> str: ...

    async def acknowledge_intent(self, text: str, analysis: IntentAnalysis) -> str: ...


class TemplatePhraser:
    """Rule-based phrasing that always works."""

    async def explain_action(self, action: ProposedAction) -> str:
        source = get_chain_name(action.from_chain)
        target = get_chain_name(action.to_chain)
        amount = f"${action.amount_usd:,.2f}"
        if action.kind == ActionKind.SELL:
            text = f"Sell {amount} of {action.token} on {source} to bring it back to target."
        elif action.kind == ActionKind.BUY:
            text = f"Buy {amount} of {action.token} on {target} to bring it back to target."
        elif action.kind == ActionKind.YIELD_ROTATE:
            text = f"Move {amount} of {action.token} from {source} to {target} for a better yield."
        else:
            text = f"Buy {action.token} on {source} and sell on {target} with {amount}."
        return f"{text} {action.reason}".strip()

    async def acknowledge_intent(self, text: str, analysis: IntentAnalysis) -> str:
        if analysis.needs_clarification:
            return "Which token, how much, and on which chains? Give me those and I'll find a route."
        return f"Got it: {analysis.description}."


class GeminiPhraser:
    """
    Phrasing through the Gemini ``generateContent`` REST endpoint.

    Parameters
    ----------
    config : PhrasingConfig
        Model, endpoint and credential
    client : httpx.AsyncClient | None
        HTTP client (creates one if not provided)

    """

    def __init__(self, config: PhrasingConfig, client: httpx.AsyncClient | None = None) -> None:
        if not config.api_key:
            msg = "Gemini phrasing needs an API key"
            raise ValueError(msg)
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=15.0)
        self._owns_client = client is None

    async def generate(self, prompt: str) -> str:
        """
        Generate text for ``prompt``.

        Raises
        ------
        RateLimitedError
            On HTTP 429 or an exhausted quota
        UpstreamUnavailableError
            On any other failure or an empty answer

        """
        url = f"{self.config.base_url}/models/{self.config.model}:generateContent"
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        try:
            response = await self.client.post(url, params={"key": self.config.api_key}, json=body)
        except httpx.HTTPError as e:
            msg = f"Text generation request failed: {e}"
            raise UpstreamUnavailableError(msg) from e
        if response.status_code == 429:
            msg = "Text generation quota exceeded"
            raise RateLimitedError(msg)
        if response.status_code >= 400:
            msg = f"Text generation returned HTTP {response.status_code}"
            raise UpstreamUnavailableError(msg)

        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            msg = "Text generation returned a malformed response"
            raise UpstreamUnavailableError(msg) from e
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            msg = "Text generation returned no candidates"
            raise UpstreamUnavailableError(msg) from e
        return str(text).strip()

    async def explain_action(self, action: ProposedAction) -> str:
        prompt = (
            "In one short, plain sentence, explain this DeFi action to its owner. "
            f"Action: {action.kind.value} {action.token}, ${action.amount_usd:.2f}, "
            f"from {get_chain_name(action.from_chain)} to {get_chain_name(action.to_chain)}. "
            f"Reason: {action.reason}"
        )
        return await self.generate(prompt)

    async def acknowledge_intent(self, text: str, analysis: IntentAnalysis) -> str:
        prompt = (
            f'A user of a cross-chain DeFi assistant said: "{text}". '
            f"It was understood as: {analysis.description}. "
            "Reply with one short, natural sentence acknowledging the request."
        )
        return await self.generate(prompt)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class CallLimiter:
    """Sliding-window call budget."""

    def __init__(self, max_calls: int, window: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_calls = max_calls
        self.window = window
        self._clock = clock
        self._calls: deque[float] = deque()

    def _prune(self) -> None:
        now = self._clock()
        while self._calls and now - self._calls[0] >= self.window:
            self._calls.popleft()

    def try_acquire(self) -> bool:
        """Record a call if the budget allows it."""
        self._prune()
        if len(self._calls) >= self.max_calls:
            return False
        self._calls.append(self._clock())
        return True

    @property
    def remaining(self) -> int:
        self._prune()
        return max(0, self.max_calls - len(self._calls))


class FallbackPhraser:
    """
    Try enhanced phrasing, fall back to templates.

    The enhanced phraser is skipped when absent or when the call budget is spent,
    and any failure it raises degrades to the template answer. Enhanced answers
    are cached for ``cache_ttl`` seconds.

    Parameters
    ----------
    enhanced : Phraser | None
        Text-generation phraser, usually ``GeminiPhraser``
    fallback : Phraser | None
        Rule-based phraser
    limiter : CallLimiter | None
        Budget for enhanced calls (10 per minute by default)
    cache : TTLCache | None
        Cache for enhanced answers
    cache_ttl : int
        Cache lifetime in seconds

    """

    def __init__(
        self,
        enhanced: Phraser | None = None,
        fallback: Phraser | None = None,
        limiter: CallLimiter | None = None,
        cache: TTLCache | None = None,
        cache_ttl: int = 180,
    ) -> None:
        self.enhanced = enhanced
        self.fallback = fallback or TemplatePhraser()
        self.limiter = limiter or CallLimiter(10)
        self.cache = cache or TTLCache(default_ttl=cache_ttl)
        self.cache_ttl = cache_ttl

    @classmethod
    def from_config(cls, config: PhrasingConfig, client: httpx.AsyncClient | None = None) -> "FallbackPhraser":
        enhanced = GeminiPhraser(config, client) if config.api_key else None
        return cls(enhanced=enhanced, limiter=CallLimiter(config.max_calls_per_minute), cache_ttl=config.cache_ttl)

    async def _enhanced(self, namespace: str, params: dict[str, Any], call: Callable[[Phraser], Any]) -> str | None:
        if self.enhanced is None:
            return None
        cached = self.cache.get(namespace, params)
        if cached is not None:
            return cached
        if not self.limiter.try_acquire():
            logger.debug("Phrasing budget spent; using templates")
            return None
        try:
            text = await call(self.enhanced)
        except Exception as e:
            logger.warning("Enhanced phrasing unavailable (%s); using templates", e)
            return None
        self.cache.set(namespace, params, text, ttl=self.cache_ttl)
        return text

    async def explain_action(self, action: ProposedAction) -> str:
        text = await self._enhanced(
            "phrase:action", action.model_dump(mode="json"), lambda p: p.explain_action(action)
        )
        return text or await self.fallback.explain_action(action)

    async def acknowledge_intent(self, text: str, analysis: IntentAnalysis) -> str:
        reply = await self._enhanced(
            "phrase:intent",
            {"text": text, "intent": analysis.intent_type.value},
            lambda p: p.acknowledge_intent(text, analysis),
        )
        return reply or await self.fallback.acknowledge_intent(text, analysis)
