"""Notification events for discoveries, and the sinks that deliver them."""

import logging
from typing import Protocol

import httpx

from chain_allocator.core.models import ActionKind, NotificationEvent, ProposedAction
from chain_allocator.data import get_chain_name
from chain_allocator.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

NOTIFIED_KINDS = {
    ActionKind.YIELD_ROTATE: "yield_opportunity",
    ActionKind.ARBITRAGE: "arbitrage_opportunity",
}


class NotificationSink(Protocol):
    async def send(self, event: NotificationEvent) -> None: ...


class LoggingSink:
    """Writes events to the log."""

    async def send(self, event: NotificationEvent) -> None:
        logger.info("[%s] %s: %s", event.kind, event.title, event.body)


class WebhookSink:
    """
    POSTs events as JSON to a webhook.

    Parameters
    ----------
    url : str
        Webhook endpoint
    client : httpx.AsyncClient | None
        HTTP client (creates one if not provided)

    """

    def __init__(self, url: str, client: httpx.AsyncClient | None = None) -> None:
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=10.0)
        self._owns_client = client is None

    async def send(self, event: NotificationEvent) -> None:
        try:
            response = await self.client.post(self.url, json=event.model_dump(mode="json"))
            response.raise_for_status()
        except httpx.HTTPError as e:
            msg = f"Webhook delivery to {self.url} failed: {e}"
            raise UpstreamUnavailableError(msg) from e

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


class Notifier:
    """
    Fans events out to every sink.

    A failing sink is logged and skipped; delivery problems never reach the
    decision loop.
    """

    def __init__(self, sinks: list[NotificationSink] | None = None) -> None:
        self.sinks = sinks if sinks is not None else [LoggingSink()]

    async def notify(self, event: NotificationEvent) -> int:
        """
        Deliver ``event``.

        Returns
        -------
        int
            Number of sinks that accepted the event

        """
        delivered = 0
        for sink in self.sinks:
            try:
                await sink.send(event)
            except Exception as e:
                logger.warning("Notification sink %s failed: %s", type(sink).__name__, e)
                continue
            delivered += 1
        return delivered


def event_for_action(action: ProposedAction, body: str | None = None) -> NotificationEvent | None:
    """Discovery event for yield and arbitrage proposals; None for other kinds."""
    kind = NOTIFIED_KINDS.get(action.kind)
    if kind is None:
        return None
    if action.kind == ActionKind.YIELD_ROTATE:
        title = f"Better {action.token} yield on {get_chain_name(action.to_chain)}"
    else:
        title = (
            f"{action.token} arbitrage: {get_chain_name(action.from_chain)} -> {get_chain_name(action.to_chain)}"
        )
    return NotificationEvent(
        kind=kind,
        title=title,
        body=body or action.reason,
        payload=action.model_dump(mode="json"),
    )
