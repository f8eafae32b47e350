"""Tests for per-slot typing and idle timers."""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeClock, settle
from switchboard.bridges.telegram.timers import SlotTimers


def _timers(clock: FakeClock, **kwargs) -> SlotTimers:
    kwargs.setdefault("send_typing", AsyncMock())
    kwargs.setdefault("on_idle", AsyncMock())
    return SlotTimers(sleep=clock.sleep, **kwargs)


class TestIdleTimer:
    """Idle eviction deadlines."""

    @pytest.mark.anyio
    async def test_fires_at_deadline_not_before(self) -> None:
        """A 30 minute timer fires at t0+30m and not earlier."""
        clock = FakeClock()
        on_idle = AsyncMock()
        timers = _timers(clock, on_idle=on_idle)
        timers.arm_idle(1, 0, 30 * 60)

        await clock.advance(30 * 60 - 1)
        on_idle.assert_not_awaited()
        assert timers.has_idle_timer(1, 0)

        await clock.advance(1)
        on_idle.assert_awaited_once_with(1, 0)
        assert not timers.has_idle_timer(1, 0)

    @pytest.mark.anyio
    async def test_rearm_restarts_deadline(self) -> None:
        """Re-arming replaces the previous deadline."""
        clock = FakeClock()
        on_idle = AsyncMock()
        timers = _timers(clock, on_idle=on_idle)
        timers.arm_idle(1, 0, 1800)
        await clock.advance(1000)
        timers.arm_idle(1, 0, 1800)

        await clock.advance(1000)
        on_idle.assert_not_awaited()
        await clock.advance(800)
        on_idle.assert_awaited_once_with(1, 0)

    @pytest.mark.anyio
    async def test_warning_before_expiry(self) -> None:
        """The warning fires ``warning`` seconds before the deadline."""
        clock = FakeClock()
        on_idle = AsyncMock()
        on_warning = AsyncMock()
        timers = _timers(clock, on_idle=on_idle, on_idle_warning=on_warning)
        timers.arm_idle(5, 3, 3600, 300)

        await clock.advance(3299)
        on_warning.assert_not_awaited()
        await clock.advance(1)
        on_warning.assert_awaited_once_with(5, 3)
        on_idle.assert_not_awaited()
        await clock.advance(300)
        on_idle.assert_awaited_once_with(5, 3)

    @pytest.mark.anyio
    async def test_zero_timeout_disables(self) -> None:
        """A non-positive timeout arms nothing."""
        timers = _timers(FakeClock())
        timers.arm_idle(1, 0, 0)
        assert not timers.has_idle_timer(1, 0)

    @pytest.mark.anyio
    async def test_cancel_prevents_firing(self) -> None:
        """Cancelled timers never fire."""
        clock = FakeClock()
        on_idle = AsyncMock()
        timers = _timers(clock, on_idle=on_idle)
        timers.arm_idle(1, 0, 60)
        timers.cancel_idle(1, 0)
        await clock.advance(120)
        on_idle.assert_not_awaited()

    @pytest.mark.anyio
    async def test_failing_callback_is_contained(self) -> None:
        """A raising idle callback is logged, not propagated."""
        clock = FakeClock()
        timers = _timers(clock, on_idle=AsyncMock(side_effect=RuntimeError("boom")))
        timers.arm_idle(1, 0, 10)
        await clock.advance(10)
        assert not timers.has_idle_timer(1, 0)


class TestTyping:
    """Typing indicator refresh."""

    @pytest.mark.anyio
    async def test_pings_immediately_and_on_interval(self) -> None:
        """Typing is sent at once and then every interval."""
        clock = FakeClock()
        send = AsyncMock()
        timers = _timers(clock, send_typing=send, typing_interval=4.0)
        timers.start_typing(1, 2)
        await settle()
        assert send.await_count == 1

        await clock.advance(4)
        assert send.await_count == 2
        timers.stop_typing(1, 2)

    @pytest.mark.anyio
    async def test_start_is_idempotent(self) -> None:
        """Starting twice keeps a single loop."""
        clock = FakeClock()
        send = AsyncMock()
        timers = _timers(clock, send_typing=send)
        timers.start_typing(1, 0)
        timers.start_typing(1, 0)
        await settle()
        assert send.await_count == 1
        timers.stop_typing(1, 0)

    @pytest.mark.anyio
    async def test_stop_is_idempotent(self) -> None:
        """Stopping twice, or without a loop, is harmless."""
        clock = FakeClock()
        send = AsyncMock()
        timers = _timers(clock, send_typing=send)
        timers.stop_typing(1, 0)
        timers.start_typing(1, 0)
        await settle()
        timers.stop_typing(1, 0)
        timers.stop_typing(1, 0)
        assert not timers.is_typing(1, 0)

        await clock.advance(20)
        assert send.await_count == 1

    @pytest.mark.anyio
    async def test_clear_all(self) -> None:
        """clear_all cancels every typing loop and idle timer."""
        clock = FakeClock()
        on_idle = AsyncMock()
        timers = _timers(clock, on_idle=on_idle)
        timers.start_typing(1, 0)
        timers.arm_idle(2, 0, 10)
        timers.clear_all()
        await clock.advance(30)
        assert not timers.is_typing(1, 0)
        on_idle.assert_not_awaited()
