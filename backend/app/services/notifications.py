"""Best-effort settlement notifications.

Settlement hands a :class:`SettlementEvent` to a sink after its ledger commit.
The HTTP layer schedules :meth:`WebhookNotifier.deliver` as a background task,
so delivery happens after the response and can never fail the settlement.
"""

from __future__ import annotations

import httpx
from fastapi import BackgroundTasks
from loguru import logger

from app.domain import SettlementEvent


class WebhookNotifier:
    def __init__(
        self,
        url: str | None,
        *,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def deliver(self, event: SettlementEvent) -> bool:
        if not self.url:
            logger.info(
                "Notification webhook not configured; dropping settlement event for game {}",
                event.game_id,
            )
            return False
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.url, json=event.to_dict())
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error(
                "Settlement notification for game {} failed: {}", event.game_id, exc.__class__.__name__
            )
            return False
        logger.info("Delivered settlement notification for game {}", event.game_id)
        return True


class BackgroundTaskSink:
    """Sink that defers delivery to FastAPI's post-response background tasks."""

    def __init__(self, tasks: BackgroundTasks, notifier: WebhookNotifier) -> None:
        self._tasks = tasks
        self._notifier = notifier

    def __call__(self, event: SettlementEvent) -> None:
        self._tasks.add_task(self._notifier.deliver, event)


def discard_event(event: SettlementEvent) -> None:
    logger.debug("Settlement event for game {} not forwarded", event.game_id)


__all__ = ["BackgroundTaskSink", "WebhookNotifier", "discard_event"]
