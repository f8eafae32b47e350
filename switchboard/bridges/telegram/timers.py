"""Per-slot typing and idle timers, each an asyncio task keyed by "chat:topic"."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

SlotCallback = Callable[[int, int], Awaitable[None]]


def slot_key(chat_id: int, topic_id: int) -> str:
    return f"{chat_id}:{topic_id}"


class SlotTimers:
    """Typing-indicator refresh and idle-eviction deadlines for chat slots.

    Args:
        send_typing: Called immediately and then every ``typing_interval``
            seconds while typing is active.
        on_idle: Called once when a slot's idle deadline expires.
        on_idle_warning: Called ``warning`` seconds before the deadline.
        typing_interval: Seconds between typing pings.
        sleep: Sleep coroutine, replaceable in tests.
    """

    def __init__(
        self,
        *,
        send_typing: SlotCallback,
        on_idle: SlotCallback,
        on_idle_warning: SlotCallback | None = None,
        typing_interval: float = 4.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._send_typing = send_typing
        self._on_idle = on_idle
        self._on_idle_warning = on_idle_warning
        self._typing_interval = typing_interval
        self._sleep = sleep
        self._typing: dict[str, asyncio.Task] = {}
        self._idle: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    def is_typing(self, chat_id: int, topic_id: int) -> bool:
        task = self._typing.get(slot_key(chat_id, topic_id))
        return task is not None and not task.done()

    def start_typing(self, chat_id: int, topic_id: int) -> None:
        """Start the typing loop for a slot. No-op when already running."""
        if self.is_typing(chat_id, topic_id):
            return
        self._typing[slot_key(chat_id, topic_id)] = asyncio.create_task(
            self._typing_loop(chat_id, topic_id)
        )

    def stop_typing(self, chat_id: int, topic_id: int) -> None:
        """Stop the typing loop for a slot. No-op when not running."""
        task = self._typing.pop(slot_key(chat_id, topic_id), None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _typing_loop(self, chat_id: int, topic_id: int) -> None:
        while True:
            try:
                await self._send_typing(chat_id, topic_id)
            except Exception:
                logger.exception("Typing ping failed", chat_id=chat_id, topic_id=topic_id)
            await self._sleep(self._typing_interval)

    # ------------------------------------------------------------------
    # Idle
    # ------------------------------------------------------------------

    def has_idle_timer(self, chat_id: int, topic_id: int) -> bool:
        task = self._idle.get(slot_key(chat_id, topic_id))
        return task is not None and not task.done()

    def arm_idle(self, chat_id: int, topic_id: int, timeout: float, warning: float = 0) -> None:
        """(Re)arm the idle deadline ``timeout`` seconds from now.

        A warning fires ``warning`` seconds before expiry when the timeout
        is longer than the warning window.
        """
        self.cancel_idle(chat_id, topic_id)
        if timeout <= 0:
            return
        self._idle[slot_key(chat_id, topic_id)] = asyncio.create_task(
            self._idle_wait(chat_id, topic_id, timeout, warning)
        )

    def cancel_idle(self, chat_id: int, topic_id: int) -> None:
        task = self._idle.pop(slot_key(chat_id, topic_id), None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _idle_wait(self, chat_id: int, topic_id: int, timeout: float, warning: float) -> None:
        key = slot_key(chat_id, topic_id)
        if warning > 0 and timeout > warning and self._on_idle_warning is not None:
            await self._sleep(timeout - warning)
            try:
                await self._on_idle_warning(chat_id, topic_id)
            except Exception:
                logger.exception("Idle warning failed", chat_id=chat_id, topic_id=topic_id)
            await self._sleep(warning)
        else:
            await self._sleep(timeout)

        # Expired: this task is no longer the slot's timer.
        if self._idle.get(key) is asyncio.current_task():
            del self._idle[key]
        logger.info("Idle timeout expired", chat_id=chat_id, topic_id=topic_id)
        try:
            await self._on_idle(chat_id, topic_id)
        except Exception:
            logger.exception("Idle eviction failed", chat_id=chat_id, topic_id=topic_id)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def clear(self, chat_id: int, topic_id: int) -> None:
        """Cancel both timers of a slot."""
        self.stop_typing(chat_id, topic_id)
        self.cancel_idle(chat_id, topic_id)

    def clear_all(self) -> None:
        for task in [*self._typing.values(), *self._idle.values()]:
            if task is not asyncio.current_task():
                task.cancel()
        self._typing.clear()
        self._idle.clear()
