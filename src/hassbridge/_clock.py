"""Clock port and system adapter.

Every wait in the bridge (the availability settle delay after
``online()``, the attribute refresh interval) goes through
:class:`ClockPort`, so tests substitute a fake clock that records the
requested delays instead of sleeping for real.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Cooperative sleeper used for every delay in the bridge."""

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for *seconds*.

        Cancelling the task must interrupt the wait immediately.
        """
        ...


class SystemClock:
    """Production clock backed by ``asyncio.sleep()``."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
