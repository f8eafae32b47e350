"""Publish/subscribe registry for runtime events.

Subscriptions are keyed by session id and subscriber id. Each subscription
owns a queue and a consumer task, so a slow or failing subscriber never blocks
the publisher or other subscribers, and events reach each subscriber in order.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog

if TYPE_CHECKING:
    from switchboard.runtime.base import RuntimeEvent

logger = structlog.get_logger(__name__)

EventCallback = Callable[["RuntimeEvent"], Awaitable[None]]

_STOP = object()


@dataclass
class _Subscription:
    queue: asyncio.Queue
    task: asyncio.Task


class EventHub:
    """Routes events published for a session to its registered subscribers."""

    def __init__(self) -> None:
        self._subs: dict[str, dict[str, _Subscription]] = {}

    def subscribe(self, session_id: str, subscriber_id: str, callback: EventCallback) -> None:
        """Register ``callback`` for events of ``session_id``.

        Re-subscribing with the same subscriber id replaces the previous
        subscription.
        """
        self.unsubscribe(session_id, subscriber_id)
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(
            self._consume(session_id, subscriber_id, queue, callback)
        )
        self._subs.setdefault(session_id, {})[subscriber_id] = _Subscription(queue, task)
        logger.debug("Subscribed", session_id=session_id, subscriber_id=subscriber_id)

    def unsubscribe(self, session_id: str, subscriber_id: str) -> bool:
        """Remove a subscription. Returns False when it did not exist.

        Events already queued for the subscriber are dropped. When called from
        inside the subscriber's own callback, the callback is allowed to finish.
        """
        subs = self._subs.get(session_id)
        sub = subs.pop(subscriber_id, None) if subs else None
        if subs is not None and not subs:
            self._subs.pop(session_id, None)
        if sub is None:
            return False
        if sub.task is asyncio.current_task():
            while not sub.queue.empty():
                sub.queue.get_nowait()
            sub.queue.put_nowait(_STOP)
        else:
            sub.task.cancel()
        logger.debug("Unsubscribed", session_id=session_id, subscriber_id=subscriber_id)
        return True

    def unsubscribe_session(self, session_id: str) -> None:
        """Remove every subscription for a session."""
        for subscriber_id in list(self._subs.get(session_id, {})):
            self.unsubscribe(session_id, subscriber_id)

    def subscribers(self, session_id: str) -> list[str]:
        return list(self._subs.get(session_id, {}))

    def publish(self, session_id: str, event: RuntimeEvent) -> int:
        """Queue ``event`` for every subscriber of ``session_id``.

        Returns the number of subscribers the event was queued for.
        """
        subs = list(self._subs.get(session_id, {}).values())
        for sub in subs:
            sub.queue.put_nowait(event)
        return len(subs)

    async def _consume(
        self,
        session_id: str,
        subscriber_id: str,
        queue: asyncio.Queue,
        callback: EventCallback,
    ) -> None:
        while True:
            event = await queue.get()
            if event is _STOP:
                return
            try:
                await callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed",
                    session_id=session_id,
                    subscriber_id=subscriber_id,
                    event_type=type(event).__name__,
                )
