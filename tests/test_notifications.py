"""Tests for discovery notifications."""

import json

import httpx
import pytest

from chain_allocator.core.models import ActionKind, NotificationEvent
from chain_allocator.notifications import LoggingSink, Notifier, WebhookSink, event_for_action

from conftest import make_action


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    async def send(self, event: NotificationEvent) -> None:
        self.events.append(event)


def test_event_for_action():
    """Test which proposals produce discovery events."""
    yield_event = event_for_action(make_action())
    arbitrage_event = event_for_action(make_action(ActionKind.ARBITRAGE, token="WETH"), body="gap found")

    assert yield_event.kind == "yield_opportunity"
    assert yield_event.title == "Better USDC yield on Base"
    assert yield_event.body == "test"
    assert yield_event.payload["from_chain"] == 42161
    assert arbitrage_event.title == "WETH arbitrage: Arbitrum -> Base"
    assert arbitrage_event.body == "gap found"
    assert event_for_action(make_action(ActionKind.SELL)) is None


@pytest.mark.asyncio
async def test_webhook_sink_posts_json():
    """Test the webhook payload."""
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(204)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await WebhookSink("https://hooks.test/x", client=client).send(event_for_action(make_action()))

    assert bodies[0]["kind"] == "yield_opportunity"
    assert bodies[0]["payload"]["token"] == "USDC"


@pytest.mark.asyncio
async def test_failing_sink_does_not_stop_delivery():
    """Test that a broken webhook is skipped and the other sinks still receive the event."""
    recording = RecordingSink()
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))) as client:
        notifier = Notifier([WebhookSink("https://hooks.test/x", client=client), recording, LoggingSink()])
        delivered = await notifier.notify(event_for_action(make_action()))

    assert delivered == 2
    assert len(recording.events) == 1


def test_default_sink_logs():
    """Test the default sink list."""
    assert [type(s) for s in Notifier().sinks] == [LoggingSink]


class BrokenSink:
    async def send(self, event: NotificationEvent) -> None:
        raise RuntimeError("socket closed")


@pytest.mark.asyncio
async def test_unexpected_sink_error_is_skipped():
    """Test that a sink raising an arbitrary error does not stop delivery."""
    recording = RecordingSink()

    delivered = await Notifier([BrokenSink(), recording]).notify(event_for_action(make_action()))

    assert delivered == 1
    assert len(recording.events) == 1
