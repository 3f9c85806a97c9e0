"""The device engine.

:class:`Device` is the fixed base every bridged device runs on.  Device
types do not subclass it; they hand it a declarative entity table plus
two callbacks:

- ``on_command(command, message)`` — invoked for every non-empty message
  on one of the device's command topics.
- ``attribute_source()`` — returns the current device attributes; used
  by the periodic refresh and :meth:`Device.publish_attributes`.

Typical lifecycle (driven by the bridge and the vendor client)::

    device = Device(identity, ctx, entities={...}, on_command=handle)
    await device.publish_discovery()
    await device.online()
    device.start()                  # periodic attribute refresh
    ...
    await device.publish_entity("motion", "ON")
    ...
    await device.stop()
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable, Collection, Iterable, Mapping
from typing import Any

from hassbridge._availability import AvailabilityState, AvailabilityTracker
from hassbridge._commands import CommandCallback, CommandSubscriptionManager
from hassbridge._context import DeviceContext
from hassbridge._discovery import DeviceIdentity, compose, masked_payload, serialize
from hassbridge._entities import (
    DISABLE,
    INFO_ENTITY,
    EntityRegistry,
    EntitySpec,
    build_attribute_entities,
    filter_attributes,
)
from hassbridge._errors import EntityConfigError
from hassbridge._publish import PublishGateway, Trace
from hassbridge._scheduler import AttributeRefreshScheduler
from hassbridge._state import StateBlob
from hassbridge._topics import DeviceTopics, build_device_topics, config_topic

logger = logging.getLogger(__name__)

AttributeSource = Callable[[], Awaitable[Mapping[str, object]]]

ATTRIBUTE_ENTITY_KINDS: frozenset[str] = frozenset({"battery", "tamper", "wireless"})


class Device:
    """One bridged device: its entities, topics, availability and refresh loop.

    Args:
        identity: Device id, location, category and display name.
        ctx: Shared runtime handles (bus, router, clock, settings, ...).
        entities: Declarative entity table of the device type.
        primary_attribute: Attribute shown as the ``info`` sensor value.
            :data:`~hassbridge.DISABLE` skips the attribute entities and
            the refresh loop altogether.
        attribute_entities: Extra attribute-backed entities to add
            (``"battery"``, ``"tamper"``, ``"wireless"``).
        on_command: Command callback, ``(command, message)``.
        attribute_source: Async callable returning current attributes.
        parent_device: Device this one hangs off (e.g. a hub); not owned.

    Raises:
        EntityConfigError: On an invalid or duplicate entity declaration.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        ctx: DeviceContext,
        *,
        entities: Mapping[str, EntitySpec] | None = None,
        primary_attribute: str | None = None,
        attribute_entities: Collection[str] = (),
        on_command: CommandCallback | None = None,
        attribute_source: AttributeSource | None = None,
        parent_device: Device | None = None,
    ) -> None:
        self.identity = identity
        self._ctx = ctx
        self.topics: DeviceTopics = build_device_topics(
            ctx.root,
            identity.location_id,
            identity.category,
            identity.device_id,
        )
        self.entity = EntityRegistry(entities)
        self._attribute_source = attribute_source
        self._shutdown = asyncio.Event()

        self._parent: weakref.ref[Device] | None = None
        self._children: weakref.WeakSet[Device] = weakref.WeakSet()
        if parent_device is not None:
            self._parent = weakref.ref(parent_device)
            parent_device._children.add(self)

        discovery = ctx.settings.discovery
        self._gateway = PublishGateway(ctx.mqtt, device_name=identity.name)
        self._availability = AvailabilityTracker(
            gateway=self._gateway,
            topic=self.topics.availability_topic,
            clock=ctx.clock,
            shutdown_event=self._shutdown,
            settle_delay=discovery.settle_delay,
        )
        self._commands = CommandSubscriptionManager(
            mqtt=ctx.mqtt,
            router=ctx.router,
            on_command=on_command,
            ipc=ctx.ipc,
            device_name=identity.name,
            on_error=self._publish_command_error,
        )

        self._scheduler: AttributeRefreshScheduler | None = None
        if primary_attribute != DISABLE:
            unknown = set(attribute_entities) - ATTRIBUTE_ENTITY_KINDS
            if unknown:
                msg = f"Unknown attribute entities: {sorted(unknown)}"
                raise EntityConfigError(msg)
            extras = {kind: kind in attribute_entities for kind in ATTRIBUTE_ENTITY_KINDS}
            for key, spec in build_attribute_entities(primary_attribute, **extras).items():
                if key not in self.entity:
                    self.entity.add(key, spec)
            self._scheduler = AttributeRefreshScheduler(
                refresh=self.publish_attributes,
                state=lambda: self.availability_state,
                clock=ctx.clock,
                interval=discovery.refresh_interval,
                offline_interval=discovery.offline_refresh_interval,
                name=identity.name,
            )

    def __repr__(self) -> str:
        return f"Device({self.identity.device_id!r}, name={self.identity.name!r})"

    # -- Identity and relations -----------------------------------------------

    @property
    def device_id(self) -> str:
        return self.identity.device_id

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def parent_device(self) -> Device | None:
        return self._parent() if self._parent is not None else None

    @property
    def child_devices(self) -> set[Device]:
        return set(self._children)

    def device_block(self) -> dict[str, Any]:
        """Discovery ``device`` block, linked to the parent when there is one."""
        parent = self.parent_device
        return self.identity.device_block(
            via_device=parent.device_id if parent is not None else None,
        )

    # -- Availability ---------------------------------------------------------

    @property
    def availability_state(self) -> AvailabilityState:
        return self._availability.state

    @property
    def is_online(self) -> bool:
        return self._availability.is_online

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    async def online(self) -> None:
        await self._availability.online()

    async def offline(self) -> None:
        await self._availability.offline()

    # -- Discovery ------------------------------------------------------------

    async def publish_discovery(self) -> None:
        """Publish a discovery message for every entity.

        The first publish of an entity also stores its derived topics on
        the spec and wires its command topics; republishing only sends
        the config messages again.
        """
        verb = (
            "Publishing new"
            if self.availability_state is AvailabilityState.UNPUBLISHED
            else "Republishing existing"
        )
        Trace.DISCOVERY.logger.debug("%s device id: %s", verb, self.device_id)

        disarm_code = self._ctx.disarm_code
        device_block = self.device_block()
        for key, spec in self.entity.items():
            message = compose(
                self.identity,
                key,
                spec,
                topics=self.topics,
                disarm_code=disarm_code,
                device_block=device_block,
            )
            await self._gateway.publish(
                config_topic(self._ctx.root, self.device_id, spec.component, key),
                serialize(message),
                trace=Trace.DISCOVERY,
                masked=masked_payload(message),
            )
            if self.entity.mark_published(key, message):
                await self._commands.wire(key, spec)

    # -- State and attributes -------------------------------------------------

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        trace: Trace | None = Trace.MQTT,
        masked: str | None = None,
    ) -> None:
        """Publish through this device's gateway."""
        await self._gateway.publish(topic, payload, trace=trace, masked=masked)

    async def publish_entity(
        self,
        entity_key: str,
        payload: str,
        *,
        topic: str | None = None,
    ) -> None:
        """Publish *payload* on one of an entity's derived topics.

        *topic* names the topic field (e.g. ``"brightness_state_topic"``);
        by default the entity's state topic.  Entities that have not been
        published yet are skipped, so nothing stateful precedes discovery.
        """
        spec = self.entity[entity_key]
        target = spec.topics.get(topic) if topic is not None else spec.state_topic
        if target is None:
            logger.debug(
                "[%s] Skipping %s publish for unpublished entity %s",
                self.name,
                topic or "state",
                entity_key,
            )
            return
        await self._gateway.publish(target, payload)

    async def publish_attributes(self) -> None:
        """Fetch current attributes and publish them.

        The full mapping becomes the ``info`` entity's state; attribute
        entities receive their filtered subsets.
        """
        if self._attribute_source is None:
            return
        attributes = dict(await self._attribute_source())
        if INFO_ENTITY in self.entity:
            info_topic = self.entity[INFO_ENTITY].state_topic
            if info_topic is not None:
                await self._gateway.publish_json(info_topic, attributes, trace=Trace.ATTRIBUTES)
        await self.publish_attribute_entities(attributes)

    async def publish_attribute_entities(self, attributes: Mapping[str, object]) -> None:
        """Publish the matching attribute subset of each filtering entity."""
        for _key, spec in self.entity.attribute_entities():
            topic = spec.json_attributes_topic
            if topic is None:
                continue
            subset = filter_attributes(attributes, spec.attributes)  # type: ignore[arg-type]
            if subset:
                await self._gateway.publish_json(topic, subset, trace=Trace.ATTRIBUTES)

    # -- Saved state ----------------------------------------------------------

    def get_saved_state(self) -> StateBlob:
        return self._ctx.state_store.get_device_state(self.device_id)

    def set_saved_state(self, data: StateBlob) -> None:
        self._ctx.state_store.set_device_state(self.device_id, data)

    # -- Lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the attribute refresh loop (requires a running event loop)."""
        if self._scheduler is not None and not self.shutdown_requested:
            self._scheduler.start()

    async def stop(self) -> None:
        """Set the shutdown flag and cancel the refresh loop.

        Late ``online()`` calls are ignored from here on.  Commands
        already being handled are not awaited.
        """
        self._shutdown.set()
        if self._scheduler is not None:
            await self._scheduler.stop()

    async def _publish_command_error(self, command: str, exc: Exception) -> None:
        await self._ctx.error_publisher.publish(
            exc,
            device=self.device_id,
            device_topic=self.topics.device_topic,
            command=command,
        )


def flatten_devices(result: Device | Iterable[Device]) -> list[Device]:
    """Normalise a device factory result to a list."""
    if isinstance(result, Device):
        return [result]
    return list(result)
