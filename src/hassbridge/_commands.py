"""Command-topic subscription wiring.

When an entity is published for the first time, every ``*command_topic``
derived for it is subscribed on the bus and routed to the device's
command callback as ``(command, message)``, where ``command`` is the
short topic name ``{entity_key}/{suffix}`` (e.g. ``"light/brightness_command"``).

Stream entities (``stream`` and ``event_stream``) are additionally
reachable from the stream workers over the IPC channel, and relay the
workers' debug output on a sibling ``debug`` topic into the
``hassbridge.stream`` log.

Empty messages are logged and dropped; they never reach the callback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from hassbridge._entities import EntitySpec
from hassbridge._mqtt import MqttPort
from hassbridge._publish import Trace
from hassbridge._router import CommandRouter
from hassbridge._topics import command_name, stream_debug_topic

logger = logging.getLogger(__name__)

CommandCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (command, message) for each valid command."""

ErrorCallback = Callable[[str, Exception], Awaitable[None]]
"""Async callback receiving (command, exception) when a command handler raises."""

STREAM_ENTITIES: frozenset[str] = frozenset({"stream", "event_stream"})


@dataclass
class CommandSubscriptionManager:
    """Wires the command topics of one device.

    Args:
        mqtt: Bus used for command subscriptions.
        router: Inbound dispatch table shared by all devices.
        on_command: Device command callback; ``None`` means commands are
            logged and dropped.
        ipc: Channel shared with stream workers; defaults to *mqtt*.
        device_name: Display name used in log lines.
        on_error: Awaited with the command name and the exception when
            *on_command* raises.
    """

    mqtt: MqttPort
    router: CommandRouter
    on_command: CommandCallback | None = None
    ipc: MqttPort | None = None
    device_name: str = ""
    on_error: ErrorCallback | None = None

    async def wire(self, entity_key: str, spec: EntitySpec) -> list[str]:
        """Subscribe and route every command topic of *spec*.

        Must be called once per entity, after its topics are derived.

        Returns:
            The command topics that were wired.
        """
        wired: list[str] = []
        for topic in spec.command_topics.values():
            await self.mqtt.subscribe(topic)
            self.router.register(topic, self._handle_command)
            wired.append(topic)
            if entity_key in STREAM_ENTITIES:
                await self._wire_stream(topic)
        return wired

    async def _wire_stream(self, command_topic: str) -> None:
        ipc = self.ipc if self.ipc is not None else self.mqtt
        await ipc.subscribe(command_topic)
        debug_topic = stream_debug_topic(command_topic)
        if self.router.is_registered(debug_topic):
            return
        await ipc.subscribe(debug_topic)
        self.router.register(debug_topic, self._handle_stream_debug)

    async def _handle_command(self, topic: str, message: str) -> None:
        command = command_name(topic)
        if not message:
            logger.warning(
                "[%s] Received invalid or null value to command topic %s",
                self.device_name,
                command,
            )
            return
        if self.on_command is None:
            logger.warning(
                "[%s] No command handler for %s, ignoring %r",
                self.device_name,
                command,
                message,
            )
            return
        logger.debug("[%s] Command %s: %s", self.device_name, command, message)
        try:
            await self.on_command(command, message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[%s] Command %s failed: %s", self.device_name, command, exc)
            if self.on_error is not None:
                await self.on_error(command, exc)

    async def _handle_stream_debug(self, topic: str, message: str) -> None:
        if not message:
            logger.warning(
                "[%s] Received invalid or null value to debug log topic %s",
                self.device_name,
                command_name(topic),
            )
            return
        Trace.STREAM.logger.debug(
            "[%s] %s",
            self.device_name,
            message,
            extra={"device": self.device_name, "topic": topic},
        )
