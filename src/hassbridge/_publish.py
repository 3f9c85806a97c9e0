"""Single egress point for everything a device publishes.

Every discovery, availability, state and attribute message of a device
goes through :meth:`PublishGateway.publish`, so tracing and masking
policy live in one place.

Each publish is traced at DEBUG level on one of the trace channels
(see :class:`Trace`) unless the caller passes ``trace=None``.  The
trace record carries ``device``, ``topic`` and ``payload`` as ``extra``
fields; callers publishing secrets pass a ``masked`` variant which is
what ends up in the log.

Bus failures are logged and never propagated — there are no retries
here; reconnects and redelivery belong to the MQTT adapter.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from hassbridge._discovery import serialize
from hassbridge._mqtt import MqttPort

logger = logging.getLogger(__name__)


class Trace(StrEnum):
    """Debug trace channels; each maps to a ``hassbridge.<channel>`` logger."""

    MQTT = "mqtt"
    DISCOVERY = "discovery"
    ATTRIBUTES = "attributes"
    STREAM = "stream"

    @property
    def logger(self) -> logging.Logger:
        return logging.getLogger(f"hassbridge.{self.value}")


@dataclass
class PublishGateway:
    """Publishes on behalf of one device.

    Args:
        mqtt: Bus port that performs the actual write.
        device_name: Display name used to tag trace records.
    """

    mqtt: MqttPort
    device_name: str = ""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        trace: Trace | None = Trace.MQTT,
        masked: str | None = None,
    ) -> None:
        """Write *payload* to *topic*, tracing it unless *trace* is ``None``."""
        if trace is not None:
            shown = masked if masked is not None else payload
            trace.logger.debug(
                "[%s] %s %s",
                self.device_name,
                topic,
                shown,
                extra={"device": self.device_name, "topic": topic, "payload": shown},
            )
        try:
            await self.mqtt.publish(topic, payload)
        except Exception:
            logger.exception("[%s] Failed to publish to %s", self.device_name, topic)

    async def publish_json(
        self,
        topic: str,
        data: Mapping[str, object],
        *,
        trace: Trace | None = Trace.MQTT,
    ) -> None:
        await self.publish(topic, serialize(data), trace=trace)
