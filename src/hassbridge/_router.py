"""Inbound message routing.

Maps exact topics to handlers.  The bridge registers :meth:`route` as
the inbound-message callback of its MQTT adapters; devices register one
handler per command topic (and per stream debug topic) when their
entities are first published.

Topic convention::

    {device_topic}/{entity}/command            → entity command
    {device_topic}/{entity}/{x}_command        → secondary entity command
    {device_topic}/{entity}/debug              → stream worker debug output
    {device_topic}/{entity}/state              → state (published, not routed)

Handler exceptions are logged and contained here, so one misbehaving
device cannot stall dispatch for the others.
"""

from __future__ import annotations

import asyncio
import logging

from hassbridge._mqtt import MessageCallback

logger = logging.getLogger(__name__)


class CommandRouter:
    """Routes inbound MQTT messages to per-topic handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, MessageCallback] = {}

    def register(self, topic: str, handler: MessageCallback) -> None:
        """Register *handler* for messages on *topic*.

        Raises:
            ValueError: If a handler is already registered for *topic*.
        """
        if topic in self._handlers:
            msg = f"Handler already registered for topic '{topic}'"
            raise ValueError(msg)
        self._handlers[topic] = handler

    def is_registered(self, topic: str) -> bool:
        return topic in self._handlers

    async def route(self, topic: str, payload: str) -> None:
        """Dispatch *payload* to the handler registered for *topic*.

        Messages on unknown topics are ignored (logged at DEBUG, since
        the adapter also delivers topics subscribed by other parties).
        """
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("No handler registered for topic %s", topic)
            return
        try:
            await handler(topic, payload)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Handler for topic %s failed", topic)

    @property
    def subscriptions(self) -> list[str]:
        """Topics with a registered handler, in registration order."""
        return list(self._handlers)
