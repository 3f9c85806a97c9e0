"""Message bus port and adapters.

A device needs three things from the bus: publish a payload, ask for a
subscription, and be handed inbound messages.  :class:`MqttPort` is
exactly that contract.  Connecting and disconnecting is a separate,
optional port (:class:`MqttLifecycle`); the bridge starts and stops the
adapters that have one.

Adapters:

- :class:`MqttClient`: aiomqtt-backed.  Publishes issued while the
  broker is unreachable wait in an outbox and go out, in order, right
  after the next connect.
- :class:`MockMqttClient`: records traffic and replays inbound messages.
- :class:`NullMqttClient`: discards everything.

QoS is a broker-connection concern: the real adapter applies
``MqttSettings.qos`` to every publish and subscription, so callers never
pass it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from hassbridge._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving ``(topic, payload)`` for each inbound message."""


@dataclass(frozen=True)
class WillConfig:
    """Message the broker publishes for us when the connection drops."""

    topic: str
    payload: str = "offline"
    retain: bool = True


class Publication(NamedTuple):
    """One recorded or queued publish."""

    topic: str
    payload: str
    retain: bool = False


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """What a device needs from the bus."""

    async def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        """Send *payload* to *topic*."""
        ...

    async def subscribe(self, topic: str) -> None:
        """Request delivery of messages on *topic*."""
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register *callback* for every inbound message."""
        ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters with an explicit connect/disconnect lifecycle."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def decode_payload(raw: object) -> str:
    """Inbound payload as text; a missing payload becomes ``""``."""
    if raw is None:
        return ""
    if isinstance(raw, (bytes, bytearray)):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


# ---------------------------------------------------------------------------
# Test and no-op adapters
# ---------------------------------------------------------------------------


class NullMqttClient:
    """Bus that drops every publish and never delivers anything."""

    async def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:  # noqa: ARG002
        logger.debug("Discarded publish to %s", topic)

    async def subscribe(self, topic: str) -> None:
        logger.debug("Discarded subscription to %s", topic)

    def on_message(self, callback: MessageCallback) -> None:  # noqa: ARG002
        """Nothing is ever delivered, so *callback* is never called."""


@dataclass
class MockMqttClient:
    """In-memory bus for tests.

    ``published`` and ``subscriptions`` record outbound traffic in
    order; :meth:`deliver` plays an inbound message through every
    registered callback, exactly like the real adapter's dispatch.
    """

    published: list[Publication] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    _callbacks: list[MessageCallback] = field(default_factory=list, init=False, repr=False)

    async def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        self.published.append(Publication(topic, payload, retain))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message."""
        for callback in self._callbacks:
            await callback(topic, payload)

    @property
    def publish_count(self) -> int:
        return len(self.published)

    @property
    def subscribe_count(self) -> int:
        return len(self.subscriptions)

    @property
    def topics(self) -> list[str]:
        """Published topics in publish order."""
        return [p.topic for p in self.published]

    def get_messages_for(self, topic: str) -> list[tuple[str, bool]]:
        """``(payload, retain)`` of every publish to *topic*."""
        return [(p.payload, p.retain) for p in self.published if p.topic == topic]


# ---------------------------------------------------------------------------
# aiomqtt adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Broker connection backed by *aiomqtt*.

    A background task keeps the connection up, reconnecting after
    ``settings.reconnect_interval``.  On every connect it restores all
    requested subscriptions, then flushes the outbox, then dispatches
    inbound messages to the registered callbacks one at a time.

    The outbox holds at most ``settings.outbox_size`` publishes; when it
    overflows the oldest one is dropped.  ``aiomqtt`` is imported lazily
    so the other adapters work without it.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(default_factory=list, init=False, repr=False)
    _subscriptions: dict[str, None] = field(default_factory=dict, init=False, repr=False)
    _outbox: deque[Publication] = field(default_factory=deque, init=False, repr=False)
    _client: Any = field(default=None, init=False, repr=False)
    _task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def pending(self) -> list[Publication]:
        """Publishes waiting for the next connect."""
        return list(self._outbox)

    async def publish(self, topic: str, payload: str, *, retain: bool = False) -> None:
        message = Publication(topic, payload, retain)
        if self._client is None:
            self._enqueue(message)
            return
        try:
            await self._send(self._client, message)
        except Exception:
            logger.warning("Publish to %s failed, queued for reconnect", topic, exc_info=True)
            self._enqueue(message)

    async def subscribe(self, topic: str) -> None:
        """Subscribe now if connected; always restored on reconnect."""
        self._subscriptions[topic] = None
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._connection_loop(), name="mqtt")

    async def stop(self) -> None:
        """Cancel the connection loop.  Idempotent; queued publishes are kept."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._client = None

    # -- Internal -----------------------------------------------------------

    def _enqueue(self, message: Publication) -> None:
        if len(self._outbox) >= self.settings.outbox_size:
            dropped = self._outbox.popleft()
            logger.warning("MQTT outbox full, dropping publish to %s", dropped.topic)
        self._outbox.append(message)

    async def _send(self, client: Any, message: Publication) -> None:
        await client.publish(
            message.topic,
            message.payload,
            qos=self.settings.qos,
            retain=message.retain,
        )

    async def _flush(self, client: Any) -> None:
        while self._outbox:
            await self._send(client, self._outbox[0])
            self._outbox.popleft()

    async def _connection_loop(self) -> None:
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        password = self.settings.password.get_secret_value() if self.settings.password else None
        will = (
            aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.settings.qos,
                retain=self.will.retain,
            )
            if self.will is not None
            else None
        )

        while True:
            try:
                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.settings.client_id or None,
                    will=will,
                ) as client:
                    for topic in self._subscriptions:
                        await client.subscribe(topic, qos=self.settings.qos)
                    await self._flush(client)
                    self._client = client
                    logger.info("MQTT connected to %s:%d", self.settings.host, self.settings.port)
                    try:
                        async for message in client.messages:
                            await self._dispatch(str(message.topic), decode_payload(message.payload))
                    finally:
                        self._client = None
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    self.settings.reconnect_interval,
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _dispatch(self, topic: str, payload: str) -> None:
        for callback in self._callbacks:
            try:
                await callback(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
