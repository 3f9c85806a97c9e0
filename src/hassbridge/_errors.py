"""Exceptions and command-failure reports.

Configuration problems in entity declarations raise
:class:`EntityConfigError` as soon as the declaration is built, so a
device type with a broken entity table never reaches the bus.

When a device type's command handler raises, the bridge keeps running
and reports the failure on the bus instead, so it is visible from the
hub side::

    {root}/error            every failure
    {device_topic}/error    failures of that device

Payload::

    {
        "error_type": "TimeoutError",
        "message": "Vendor API did not answer",
        "device": "5aa5b2e1",
        "command": "siren/command",
        "timestamp": "2026-02-14T12:34:56+00:00"
    }

Reports are not retained (they are events, not state) and a report
that cannot be published is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

from hassbridge._mqtt import MqttPort

logger = logging.getLogger(__name__)


class BridgeError(Exception):
    """Base class for hassbridge errors."""


class EntityConfigError(BridgeError, ValueError):
    """An entity declaration cannot produce a valid discovery message."""


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """One command failure, as published."""

    error_type: str
    message: str
    device: str | None
    command: str | None
    timestamp: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    device: str | None = None,
    command: str | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Describe *error*; ``error_type`` is the exception class name."""
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=type(error).__name__,
        message=str(error),
        device=device,
        command=command,
        timestamp=now.isoformat(),
    )


@dataclass
class ErrorPublisher:
    """Publishes command failures under the root topic.

    Args:
        mqtt: Bus the reports go out on.
        topic_prefix: Root topic (e.g. ``"ring"``).
        clock: Timestamp source; ``datetime.now(UTC)`` when omitted.
    """

    mqtt: MqttPort
    topic_prefix: str
    clock: Callable[[], datetime] | None = None

    async def publish(
        self,
        error: Exception,
        *,
        device: str | None = None,
        device_topic: str | None = None,
        command: str | None = None,
    ) -> None:
        """Report *error* on ``{root}/error`` and, if given, ``{device_topic}/error``."""
        payload = build_error_payload(error, device=device, command=command, clock=self.clock)
        logger.warning(
            "Reporting %s from device %s (command %s): %s",
            payload.error_type,
            device,
            command,
            payload.message,
        )
        body = payload.to_json()
        topics = [f"{self.topic_prefix}/error"]
        if device_topic is not None:
            topics.append(f"{device_topic}/error")
        for topic in topics:
            try:
                await self.mqtt.publish(topic, body)
            except Exception:
                logger.exception("Failed to publish error to %s", topic)
