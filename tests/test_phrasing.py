"""Tests for action and intent phrasing."""

import httpx
import pytest

from chain_allocator.config import PhrasingConfig
from chain_allocator.core.models import ActionKind
from chain_allocator.errors import RateLimitedError, UpstreamUnavailableError
from chain_allocator.intent import classify
from chain_allocator.loop import CallLimiter, FallbackPhraser, GeminiPhraser, TemplatePhraser

from conftest import FakeClock, make_action

CONFIG = PhrasingConfig(api_key="test-key", base_url="https://gemini.test/v1beta")


def _gemini(handler) -> GeminiPhraser:
    return GeminiPhraser(CONFIG, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _answer(text: str) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": f"  {text}\n"}]}}]})


class CountingPhraser:
    def __init__(self, fail: Exception | None = None) -> None:
        self.calls = 0
        self.fail = fail

    async def explain_action(self, action) -> str:
        self.calls += 1
        if self.fail is not None:
            raise self.fail
        return "enhanced"

    async def acknowledge_intent(self, text, analysis) -> str:
        self.calls += 1
        return "enhanced ack"


@pytest.mark.asyncio
async def test_template_phrasing():
    """Test rule-based action and intent phrasing."""
    phraser = TemplatePhraser()

    rotation = await phraser.explain_action(make_action())
    sell = await phraser.explain_action(make_action(ActionKind.SELL, reason=""))

    assert rotation == "Move $1,000.00 of USDC from Arbitrum to Base for a better yield. test"
    assert sell == "Sell $1,000.00 of USDC on Arbitrum to bring it back to target."
    assert "how much" in await phraser.acknowledge_intent("swap stuff", classify("swap stuff"))
    assert (await phraser.acknowledge_intent("x", classify("hello"))).startswith("Got it: ")


@pytest.mark.asyncio
async def test_gemini_generate():
    """Test the request shape and answer extraction."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _answer("Moving idle USDC to Base earns more.")

    phraser = _gemini(handler)
    text = await phraser.explain_action(make_action())

    assert text == "Moving idle USDC to Base earns more."
    assert seen[0].url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert seen[0].url.params["key"] == "test-key"
    assert b"yield_rotate USDC" in seen[0].content


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("response", "error"),
    [
        (httpx.Response(429), RateLimitedError),
        (httpx.Response(500), UpstreamUnavailableError),
        (httpx.Response(200, json={"candidates": []}), UpstreamUnavailableError),
        (httpx.Response(200, text="<html>oops</html>"), UpstreamUnavailableError),
    ],
)
async def test_gemini_failures(response, error):
    """Test the error mapping of the text-generation client."""
    with pytest.raises(error):
        await _gemini(lambda request: response).generate("hi")


def test_gemini_needs_key():
    """Test that the client refuses to start without a credential."""
    with pytest.raises(ValueError):
        GeminiPhraser(PhrasingConfig())


@pytest.mark.asyncio
async def test_fallback_on_rate_limit():
    """Test that an exhausted quota degrades to templates."""
    phraser = FallbackPhraser(enhanced=_gemini(lambda request: httpx.Response(429)))

    text = await phraser.explain_action(make_action())

    assert text.startswith("Move $1,000.00 of USDC")


@pytest.mark.asyncio
async def test_fallback_caches_enhanced_answers():
    """Test that repeated phrasing of the same action is served from cache."""
    enhanced = CountingPhraser()
    phraser = FallbackPhraser(enhanced=enhanced)
    action = make_action()

    assert await phraser.explain_action(action) == "enhanced"
    assert await phraser.explain_action(action) == "enhanced"
    assert enhanced.calls == 1


@pytest.mark.asyncio
async def test_fallback_respects_call_budget():
    """Test that enhanced phrasing stops once the budget is spent."""
    enhanced = CountingPhraser()
    phraser = FallbackPhraser(enhanced=enhanced, limiter=CallLimiter(1, clock=FakeClock()))

    assert await phraser.explain_action(make_action()) == "enhanced"
    second = await phraser.explain_action(make_action(priority=5))

    assert enhanced.calls == 1
    assert second.startswith("Move $1,000.00")


@pytest.mark.asyncio
async def test_fallback_without_credential():
    """Test that no credential means template phrasing only."""
    phraser = FallbackPhraser.from_config(PhrasingConfig())

    assert phraser.enhanced is None
    assert (await phraser.acknowledge_intent("hello", classify("hello"))).startswith("Got it")


def test_call_limiter_window():
    """Test the sliding window budget."""
    clock = FakeClock()
    limiter = CallLimiter(2, window=60, clock=clock)

    assert limiter.try_acquire()
    assert limiter.try_acquire()
    assert not limiter.try_acquire()
    assert limiter.remaining == 0

    clock.now = 60
    assert limiter.remaining == 2
    assert limiter.try_acquire()


@pytest.mark.asyncio
async def test_fallback_on_unexpected_error():
    """Test that any failure of the enhanced phraser degrades to templates."""
    enhanced = CountingPhraser(fail=RuntimeError("model crashed"))
    phraser = FallbackPhraser(enhanced=enhanced)

    text = await phraser.explain_action(make_action())

    assert enhanced.calls == 1
    assert text.startswith("Move $1,000.00 of USDC")
