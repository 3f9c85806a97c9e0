"""Bridge orchestrator.

The :class:`Bridge` class is the composition root.  Applications
register device factories on it; the bridge builds the shared
:class:`~hassbridge.DeviceContext`, runs the factories, and drives every
device through discovery, availability and attribute refresh until
shutdown.

Typical usage::

    import hassbridge

    bridge = hassbridge.Bridge(name="ring-bridge", version="0.1.0")

    @bridge.device
    def doorbell(ctx: hassbridge.DeviceContext) -> hassbridge.Device:
        return hassbridge.Device(
            hassbridge.DeviceIdentity("d1", "loc1", "camera", "Front Door"),
            ctx,
            entities={"ding": hassbridge.EntitySpec(component="binary_sensor")},
        )

    bridge.run()

Discovery is published again for every device whenever the hub
announces ``online`` on its status topic, since a restarted hub has
forgotten every non-retained config message.  The republish runs on its
own task, so commands keep flowing while its settle delays elapse.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid
from collections.abc import Callable, Iterable

from hassbridge._availability import PAYLOAD_OFFLINE, PAYLOAD_ONLINE, build_will_config
from hassbridge._clock import ClockPort, SystemClock
from hassbridge._context import DeviceContext
from hassbridge._device import Device, flatten_devices
from hassbridge._logging import configure_logging
from hassbridge._mqtt import MqttClient, MqttLifecycle, MqttPort
from hassbridge._router import CommandRouter
from hassbridge._settings import Settings
from hassbridge._state import StateStorePort

logger = logging.getLogger(__name__)

DeviceFactory = Callable[[DeviceContext], Device | Iterable[Device]]


class Bridge:
    """Central composition root and lifecycle orchestrator.

    Args:
        name: Application name (service name in logs, client id stem).
        version: Application version string.
        description: Short description for CLI help text.
        settings_class: Settings subclass to instantiate at startup.
    """

    def __init__(
        self,
        name: str,
        version: str = "0.0.0",
        *,
        description: str = "Smart-home to MQTT discovery bridge",
        settings_class: type[Settings] = Settings,
    ) -> None:
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class
        self._factories: list[DeviceFactory] = []
        self._devices: list[Device] = []
        self._republish_tasks: set[asyncio.Task[None]] = set()

    # --- Registration -------------------------------------------------------

    def device(self, factory: DeviceFactory) -> DeviceFactory:
        """Register a device factory (usable as a decorator).

        The factory receives the shared :class:`DeviceContext` and returns
        one device or an iterable of devices.
        """
        self._factories.append(factory)
        return factory

    @property
    def devices(self) -> list[Device]:
        """Devices built by the current (or last) run."""
        return list(self._devices)

    # --- Entrypoints --------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Start the bridge (blocking).  Ctrl-C shuts down cleanly."""
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    mqtt=mqtt,
                    settings=settings,
                    shutdown_event=shutdown_event,
                    clock=clock,
                ),
            )

    def cli(self) -> None:
        """Start the bridge with CLI argument parsing."""
        from hassbridge._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    # --- Orchestration ------------------------------------------------------

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
        state_store: StateStorePort | None = None,
        ipc: MqttPort | None = None,
    ) -> None:
        """Async orchestration.

        1. Bootstrap (settings, logging, MQTT, router).
        2. Build devices from the registered factories.
        3. Announce the bridge, publish discovery, bring devices online,
           start refresh loops.
        4. Block until shutdown, then stop devices and publish offline.

        Parameters exist for testability — inject a ``MockMqttClient``,
        ``FakeClock`` and a manual ``asyncio.Event`` to avoid real I/O.
        """
        # --- Phase 1: Bootstrap ---
        resolved_settings = settings if settings is not None else self._settings_class()
        root = resolved_settings.mqtt.topic_prefix
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()
        mqtt = self._create_mqtt(mqtt, resolved_settings)
        router = CommandRouter()
        ctx = DeviceContext(
            settings=resolved_settings,
            mqtt=mqtt,
            router=router,
            clock=resolved_clock,
            state_store=state_store,
            ipc=ipc,
        )

        for port in {id(p): p for p in (mqtt, ipc) if p is not None}.values():
            port.on_message(router.route)

        shutdown_event = self._install_signal_handlers(shutdown_event)

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()

        try:
            # --- Phase 2: Devices ---
            self._devices = self._build_devices(ctx)

            hub_status_topic = resolved_settings.discovery.hub_status_topic
            router.register(hub_status_topic, self._on_hub_status)
            await mqtt.subscribe(hub_status_topic)

            # --- Phase 3: Run ---
            await mqtt.publish(f"{root}/status", PAYLOAD_ONLINE, retain=True)
            for device in self._devices:
                await device.publish_discovery()
                await device.online()
                device.start()
            logger.info("Bridge running with %d device(s)", len(self._devices))

            await shutdown_event.wait()

            # --- Phase 4: Tear down ---
            await self._stop_devices()
        finally:
            with contextlib.suppress(Exception):
                await mqtt.publish(f"{root}/status", PAYLOAD_OFFLINE, retain=True)
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()

        logger.info("Shutdown complete")

    # --- _run_async helpers -------------------------------------------------

    def _create_mqtt(self, mqtt: MqttPort | None, settings: Settings) -> MqttPort:
        """Create the MQTT client, or return the injected one."""
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(
            settings=mqtt_settings,
            will=build_will_config(mqtt_settings.topic_prefix),
        )

    @staticmethod
    def _install_signal_handlers(shutdown_event: asyncio.Event | None) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers.  Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    def _build_devices(self, ctx: DeviceContext) -> list[Device]:
        devices: list[Device] = []
        for factory in self._factories:
            devices.extend(flatten_devices(factory(ctx)))
        return devices

    async def _on_hub_status(self, _topic: str, payload: str) -> None:
        """Schedule a discovery republish when the hub reports ``online``.

        Runs inside inbound dispatch, so the republish (with its settle
        delays) happens on a background task.
        """
        if payload != PAYLOAD_ONLINE:
            logger.info("Hub status is now %r", payload)
            return
        logger.info("Hub came online, republishing discovery")
        task = asyncio.create_task(self._republish_all(), name="republish-discovery")
        self._republish_tasks.add(task)
        task.add_done_callback(self._republish_tasks.discard)

    async def _republish_all(self) -> None:
        await asyncio.gather(*(self._republish(device) for device in self._devices))

    @staticmethod
    async def _republish(device: Device) -> None:
        try:
            await device.publish_discovery()
            if device.is_online:
                await device.online()
        except Exception:
            logger.exception("[%s] Discovery republish failed", device.name)

    async def _cancel_republish(self) -> None:
        tasks = list(self._republish_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._republish_tasks.clear()

    async def _stop_devices(self) -> None:
        await self._cancel_republish()
        for device in self._devices:
            await device.stop()
        for device in self._devices:
            await device.offline()
