"""Per-device availability state machine.

States::

    unpublished ──online()──▶ online ◀──▶ offline
         └───────offline()──────────────────▲

``unpublished`` is only the initial state; once a device has gone
``online`` or ``offline`` it moves between those two for the rest of
the process lifetime.

Every transition publishes the new state to the device availability
topic, including a repeated transition into the current state (the hub
may have missed the retained value).  Only the debug trace of such a
repeat is suppressed.

``online()`` waits ``settle_delay`` seconds after publishing so that
subscribers have processed availability before the caller starts
publishing state.  Once the shutdown flag is set, ``online()`` does
nothing, so a delayed vendor update racing process teardown cannot
flip a device back online.

The bridge itself also has an availability topic, ``{root}/status``,
whose offline value is registered as the MQTT Last Will
(:func:`build_will_config`).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum

from hassbridge._clock import ClockPort
from hassbridge._mqtt import WillConfig
from hassbridge._publish import PublishGateway, Trace

logger = logging.getLogger(__name__)

PAYLOAD_ONLINE = "online"
PAYLOAD_OFFLINE = "offline"


class AvailabilityState(StrEnum):
    UNPUBLISHED = "unpublished"
    ONLINE = "online"
    OFFLINE = "offline"


def build_will_config(root: str) -> WillConfig:
    """LWT publishing ``"offline"`` to ``{root}/status`` on a lost connection."""
    return WillConfig(
        topic=f"{root}/status",
        payload=PAYLOAD_OFFLINE,
        retain=True,
    )


@dataclass
class AvailabilityTracker:
    """Drives and publishes the availability of one device.

    Args:
        gateway: Egress for the availability messages.
        topic: The device availability topic.
        clock: Used for the post-``online()`` settle delay.
        shutdown_event: Device shutdown flag; suppresses ``online()``.
        settle_delay: Seconds ``online()`` waits after publishing.
    """

    gateway: PublishGateway
    topic: str
    clock: ClockPort
    shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    settle_delay: float = 2.0
    _state: AvailabilityState = field(
        default=AvailabilityState.UNPUBLISHED,
        init=False,
    )

    @property
    def state(self) -> AvailabilityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is AvailabilityState.ONLINE

    async def online(self) -> None:
        """Publish ``"online"`` then wait for subscribers to settle."""
        if self.shutdown_event.is_set():
            logger.debug("Suppressed online transition for %s during shutdown", self.topic)
            return
        trace = None if self._state is AvailabilityState.ONLINE else Trace.MQTT
        self._state = AvailabilityState.ONLINE
        await self.gateway.publish(self.topic, PAYLOAD_ONLINE, trace=trace)
        await self.clock.sleep(self.settle_delay)

    async def offline(self) -> None:
        """Publish ``"offline"``.  No settle delay."""
        trace = None if self._state is AvailabilityState.OFFLINE else Trace.MQTT
        self._state = AvailabilityState.OFFLINE
        await self.gateway.publish(self.topic, PAYLOAD_OFFLINE, trace=trace)
