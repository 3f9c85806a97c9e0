"""Periodic attribute refresh.

One background task per device.  Each cycle sleeps first, then
refreshes only if the device is online when it wakes up::

    offline              → sleep offline_refresh_interval (60 s)  → skip
    online / unpublished → sleep refresh_interval (300 s)         → refresh if online

The shorter offline interval means a device that comes back is picked
up within a minute rather than five.  The task runs until
:meth:`AttributeRefreshScheduler.stop` cancels it; cancellation
interrupts the current sleep immediately.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from hassbridge._availability import AvailabilityState
from hassbridge._clock import ClockPort

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[None]]


class AttributeRefreshScheduler:
    """Cancellable periodic refresh loop.

    Args:
        refresh: Awaited once per cycle while online.
        state: Polled to pick the interval and gate the refresh.
        clock: Provides the (cancellable) sleep.
        interval: Seconds between cycles unless offline.
        offline_interval: Seconds between cycles while offline.
        name: Label for log lines.
    """

    def __init__(
        self,
        *,
        refresh: RefreshCallback,
        state: Callable[[], AvailabilityState],
        clock: ClockPort,
        interval: float = 300.0,
        offline_interval: float = 60.0,
        name: str = "",
    ) -> None:
        if interval <= 0 or offline_interval <= 0:
            msg = "refresh intervals must be positive"
            raise ValueError(msg)
        self._refresh = refresh
        self._state = state
        self._clock = clock
        self._interval = interval
        self._offline_interval = offline_interval
        self._name = name
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop.  No-op if it is already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"refresh:{self._name}")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish.  Idempotent."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    def next_delay(self) -> float:
        """Seconds until the next cycle, from the current availability."""
        if self._state() is AvailabilityState.OFFLINE:
            return self._offline_interval
        return self._interval

    async def tick(self) -> bool:
        """Run one cycle.  Returns whether a refresh happened."""
        await self._clock.sleep(self.next_delay())
        if self._state() is not AvailabilityState.ONLINE:
            return False
        try:
            await self._refresh()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[%s] Attribute refresh failed", self._name)
        return True

    async def _run(self) -> None:
        while True:
            await self.tick()
