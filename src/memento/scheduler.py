"""Debounced, single-flight scheduling of memory processing cycles."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class DebounceScheduler:
    """Runs a cycle once activity has been quiet for an idle window.

    Every touch() cancels the pending timer and starts a new one, so a burst
    of activity produces a single cycle after the last event. At most one
    cycle runs at a time. If the timer fires while a cycle is running, the
    timer is re-armed once that cycle finishes.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        idle_seconds: float = 600.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the scheduler.

        Args:
            callback: Coroutine function run once per cycle.
            idle_seconds: Quiet period before a cycle starts.
            sleep: Sleep function, replaceable in tests.
        """
        self._callback = callback
        self.idle_seconds = idle_seconds
        self._sleep = sleep
        self._timer: asyncio.Task | None = None
        self._cycle: asyncio.Task | None = None
        self._rerun = False

    @property
    def is_scheduled(self) -> bool:
        """True while the idle timer is pending."""
        return self._timer is not None and not self._timer.done()

    @property
    def is_processing(self) -> bool:
        """True while a cycle is running."""
        return self._cycle is not None and not self._cycle.done()

    def touch(self) -> None:
        """Restart the idle timer."""
        self.cancel()
        self._timer = asyncio.create_task(self._fire_after_idle())

    def cancel(self) -> None:
        """Cancel the pending timer, if any. A running cycle is not affected."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def flush(self) -> None:
        """Run a cycle now, bypassing the timer.

        Waits for a running cycle first so the flush covers anything that
        arrived after that cycle took its input.
        """
        self.cancel()
        await self.wait_for_cycle()
        self.cancel()
        self._rerun = False
        cycle = self._start_cycle()
        if cycle is not None:
            await cycle

    async def wait_for_cycle(self) -> None:
        """Wait for the running cycle, if any, to finish."""
        cycle = self._cycle
        if cycle is not None and not cycle.done():
            await asyncio.shield(cycle)

    async def close(self) -> None:
        """Cancel the timer and let a running cycle finish."""
        self.cancel()
        self._rerun = False
        await self.wait_for_cycle()

    async def _fire_after_idle(self) -> None:
        await self._sleep(self.idle_seconds)
        self._timer = None
        self._start_cycle()

    def _start_cycle(self) -> asyncio.Task | None:
        if self.is_processing:
            logger.debug("Cycle already running, will re-arm when it finishes")
            self._rerun = True
            return None
        self._cycle = asyncio.create_task(self._run_cycle())
        return self._cycle

    async def _run_cycle(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Memory cycle failed")
        finally:
            if self._rerun:
                self._rerun = False
                if not self.is_scheduled:
                    self.touch()
