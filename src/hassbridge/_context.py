"""Shared runtime handles injected into every device.

A :class:`DeviceContext` bundles what a :class:`~hassbridge.Device`
needs from its surroundings: settings, the bus, the inbound router, a
clock, the saved-state store and the error publisher.  Nothing in the
device layer reaches for a global; tests build a context around a
``MockMqttClient`` and a ``FakeClock`` and get a fully isolated device.
"""

from __future__ import annotations

from hassbridge._clock import ClockPort, SystemClock
from hassbridge._errors import ErrorPublisher
from hassbridge._mqtt import MqttPort
from hassbridge._router import CommandRouter
from hassbridge._settings import Settings
from hassbridge._state import MemoryStateStore, StateStorePort


class DeviceContext:
    """Runtime handles shared by the devices of one bridge."""

    def __init__(
        self,
        *,
        settings: Settings,
        mqtt: MqttPort,
        router: CommandRouter | None = None,
        clock: ClockPort | None = None,
        state_store: StateStorePort | None = None,
        ipc: MqttPort | None = None,
        error_publisher: ErrorPublisher | None = None,
    ) -> None:
        """Initialise the context.

        Args:
            settings: Bridge settings instance.
            mqtt: Bus port for publishing and subscribing.
            router: Inbound dispatch table; a fresh one when omitted.
            clock: Clock for delays; :class:`SystemClock` when omitted.
            state_store: Saved-state store; in-memory when omitted.
            ipc: Channel shared with stream workers; ``None`` reuses *mqtt*.
            error_publisher: Publishes command handler failures; built on
                *mqtt* under the root topic when omitted.
        """
        self._settings = settings
        self._mqtt = mqtt
        self._router = router if router is not None else CommandRouter()
        self._clock = clock if clock is not None else SystemClock()
        self._state_store = state_store if state_store is not None else MemoryStateStore()
        self._ipc = ipc
        self._error_publisher = (
            error_publisher
            if error_publisher is not None
            else ErrorPublisher(mqtt=mqtt, topic_prefix=settings.mqtt.topic_prefix)
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def mqtt(self) -> MqttPort:
        return self._mqtt

    @property
    def router(self) -> CommandRouter:
        return self._router

    @property
    def clock(self) -> ClockPort:
        return self._clock

    @property
    def state_store(self) -> StateStorePort:
        return self._state_store

    @property
    def ipc(self) -> MqttPort | None:
        return self._ipc

    @property
    def error_publisher(self) -> ErrorPublisher:
        return self._error_publisher

    @property
    def root(self) -> str:
        """Root topic prefix."""
        return self._settings.mqtt.topic_prefix

    @property
    def disarm_code(self) -> str | None:
        """Configured disarm code in clear text, or ``None``."""
        code = self._settings.discovery.disarm_code
        return code.get_secret_value() if code is not None else None
