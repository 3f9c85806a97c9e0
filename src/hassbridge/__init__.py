"""hassbridge.

Entity discovery and publication engine for bridging smart-home devices
to a home-automation hub over MQTT.
"""

from importlib.metadata import PackageNotFoundError, version

from hassbridge._app import Bridge, DeviceFactory
from hassbridge._availability import (
    PAYLOAD_OFFLINE,
    PAYLOAD_ONLINE,
    AvailabilityState,
    AvailabilityTracker,
    build_will_config,
)
from hassbridge._clock import ClockPort, SystemClock
from hassbridge._commands import CommandSubscriptionManager
from hassbridge._context import DeviceContext
from hassbridge._device import Device
from hassbridge._discovery import DeviceIdentity, compose, masked_payload, serialize
from hassbridge._entities import (
    DEFAULT_PRIMARY_ATTRIBUTE,
    DISABLE,
    Component,
    EntityRegistry,
    EntitySpec,
    filter_attributes,
)
from hassbridge._errors import (
    BridgeError,
    EntityConfigError,
    ErrorPayload,
    ErrorPublisher,
    build_error_payload,
)
from hassbridge._logging import JsonFormatter, TextFormatter, configure_logging
from hassbridge._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttPort,
    NullMqttClient,
    Publication,
    WillConfig,
)
from hassbridge._publish import PublishGateway, Trace
from hassbridge._router import CommandRouter
from hassbridge._scheduler import AttributeRefreshScheduler
from hassbridge._settings import DiscoverySettings, LoggingSettings, MqttSettings, Settings
from hassbridge._state import MemoryStateStore, StateStorePort
from hassbridge._topics import DeviceTopics, build_device_topics, command_name, config_topic

try:
    __version__ = version("hassbridge")
except PackageNotFoundError:
    # Source checkout without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Bridge
    "Bridge",
    "DeviceContext",
    "DeviceFactory",
    # Device engine
    "Device",
    "DeviceIdentity",
    "AttributeRefreshScheduler",
    "CommandSubscriptionManager",
    "CommandRouter",
    # Entities
    "Component",
    "DEFAULT_PRIMARY_ATTRIBUTE",
    "DISABLE",
    "EntityRegistry",
    "EntitySpec",
    "filter_attributes",
    # Topics and discovery
    "DeviceTopics",
    "build_device_topics",
    "command_name",
    "config_topic",
    "compose",
    "masked_payload",
    "serialize",
    # Availability
    "AvailabilityState",
    "AvailabilityTracker",
    "PAYLOAD_OFFLINE",
    "PAYLOAD_ONLINE",
    "build_will_config",
    # Publishing
    "PublishGateway",
    "Trace",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "TextFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttPort",
    "NullMqttClient",
    "Publication",
    "WillConfig",
    # Errors
    "BridgeError",
    "EntityConfigError",
    "ErrorPayload",
    "ErrorPublisher",
    "build_error_payload",
    # Settings
    "DiscoverySettings",
    "LoggingSettings",
    "MqttSettings",
    "Settings",
    # State
    "MemoryStateStore",
    "StateStorePort",
]
