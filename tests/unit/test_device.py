"""Tests for hassbridge._device — the device engine.

Test Techniques Used:
    - Behavioural Testing: discovery, state and attribute publishing
    - State-based Testing: published flags and derived topics
    - Idempotence Testing: republishing never rewires subscriptions
    - Mock-based Testing: AsyncMock command callback / attribute source
    - Fake Clock: settle delay and refresh loop without real sleeps
"""

from __future__ import annotations

import gc
import json
import logging
from unittest.mock import AsyncMock

import pytest

from hassbridge._availability import AvailabilityState
from hassbridge._context import DeviceContext
from hassbridge._device import Device, flatten_devices
from hassbridge._discovery import DeviceIdentity
from hassbridge._entities import DISABLE, EntitySpec
from hassbridge._errors import EntityConfigError
from hassbridge._mqtt import MockMqttClient
from hassbridge.testing import FakeClock, make_settings

BASE = "test/loc1/light/dev1"

# ---------------------------------------------------------------------------
# Helpers / fixtures
# ---------------------------------------------------------------------------


def _identity(device_id: str = "dev1", name: str = "Porch Light") -> DeviceIdentity:
    return DeviceIdentity(
        device_id=device_id,
        location_id="loc1",
        category="light",
        name=name,
    )


@pytest.fixture
def on_command() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def device(device_context: DeviceContext, on_command: AsyncMock) -> Device:
    return Device(
        _identity(),
        device_context,
        entities={
            "light": EntitySpec(component="light", brightness_scale=100, is_legacy_entity=True),
            "motion": EntitySpec(component="binary_sensor", device_class="motion"),
        },
        on_command=on_command,
        attribute_source=AsyncMock(return_value={"commStatus": "ok", "batteryLevel": 80}),
        attribute_entities=("battery",),
    )


def _config(mock_mqtt: MockMqttClient, component: str, key: str, device_id: str = "dev1") -> dict:
    messages = mock_mqtt.get_messages_for(f"test/config/{device_id}/{component}/{key}")
    assert messages, f"no discovery message for {key}"
    return json.loads(messages[-1][0])


# ---------------------------------------------------------------------------
# TestConstruction
# ---------------------------------------------------------------------------


class TestConstruction:
    """Entity table and attribute entities.

    Technique: State-based Testing.
    """

    def test_topics(self, device: Device) -> None:
        assert device.topics.device_topic == BASE
        assert device.topics.availability_topic == f"{BASE}/status"

    def test_attribute_entities_appended(self, device: Device) -> None:
        assert list(device.entity) == ["light", "motion", "info", "battery"]

    def test_initial_availability(self, device: Device) -> None:
        assert device.availability_state is AvailabilityState.UNPUBLISHED

    def test_disable_skips_attribute_entities(self, device_context: DeviceContext) -> None:
        device = Device(
            _identity(),
            device_context,
            entities={"siren": EntitySpec(component="switch")},
            primary_attribute=DISABLE,
        )
        assert list(device.entity) == ["siren"]
        assert device._scheduler is None

    def test_declared_info_entity_kept(self, device_context: DeviceContext) -> None:
        custom = EntitySpec(component="sensor", icon="mdi:x")
        device = Device(_identity(), device_context, entities={"info": custom})
        assert device.entity["info"] is custom

    def test_unknown_attribute_entity_rejected(self, device_context: DeviceContext) -> None:
        with pytest.raises(EntityConfigError, match="Unknown attribute entities"):
            Device(_identity(), device_context, attribute_entities=("humidity",))

    def test_duplicate_key_rejected_via_registry(self, device_context: DeviceContext) -> None:
        with pytest.raises(EntityConfigError):
            Device(_identity(), device_context, entities={"bad key": EntitySpec(component="sensor")})

    def test_repr(self, device: Device) -> None:
        assert repr(device) == "Device('dev1', name='Porch Light')"


# ---------------------------------------------------------------------------
# TestDiscovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    """Discovery publication and first-publish wiring.

    Technique: Behavioural Testing + Idempotence Testing.
    """

    async def test_one_config_message_per_entity(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        assert [t for t in mock_mqtt.topics if "/config/" in t] == [
            "test/config/dev1/light/light",
            "test/config/dev1/binary_sensor/motion",
            "test/config/dev1/sensor/info",
            "test/config/dev1/sensor/battery",
        ]

    async def test_legacy_light_message(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        msg = _config(mock_mqtt, "light", "light")
        assert msg["name"] == "Porch Light"
        assert msg["unique_id"] == "dev1"
        assert msg["command_topic"] == f"{BASE}/light/command"
        assert msg["brightness_command_topic"] == f"{BASE}/light/brightness_command"

    async def test_first_publish_stores_topics(self, device: Device) -> None:
        await device.publish_discovery()
        spec = device.entity["light"]
        assert spec.published is True
        assert spec.state_topic == f"{BASE}/light/state"
        assert spec.topics["availability_topic"] == f"{BASE}/status"

    async def test_command_topics_subscribed(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        assert mock_mqtt.subscriptions == [
            f"{BASE}/light/command",
            f"{BASE}/light/brightness_command",
        ]

    async def test_republish_does_not_rewire(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        await device.publish_discovery()
        assert mock_mqtt.subscribe_count == 2
        assert len([t for t in mock_mqtt.topics if "/config/" in t]) == 8

    async def test_discovery_trace_verb(
        self,
        device: Device,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.DEBUG, logger="hassbridge.discovery"):
            await device.publish_discovery()
            await device.online()
            await device.publish_discovery()
        assert "Publishing new device id: dev1" in caplog.text
        assert "Republishing existing device id: dev1" in caplog.text

    async def test_disarm_code_masked_in_trace(
        self,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        ctx = DeviceContext(
            settings=make_settings(topic_prefix="test", disarm_code="4321"),
            mqtt=mock_mqtt,
            clock=fake_clock,
        )
        device = Device(
            DeviceIdentity("alarm1", "loc1", "alarm", "Alarm"),
            ctx,
            entities={"alarm": EntitySpec(component="alarm_control_panel")},
            primary_attribute=DISABLE,
        )
        with caplog.at_level(logging.DEBUG, logger="hassbridge.discovery"):
            await device.publish_discovery()
        assert _config(mock_mqtt, "alarm_control_panel", "alarm", "alarm1")["code"] == "4321"
        assert "4321" not in caplog.text

    async def test_child_device_block(self, device_context: DeviceContext, mock_mqtt: MockMqttClient) -> None:
        hub = Device(_identity("hub1", "Hub"), device_context, primary_attribute=DISABLE)
        child = Device(
            _identity("dev2", "Sensor"),
            device_context,
            entities={"motion": EntitySpec(component="binary_sensor")},
            primary_attribute=DISABLE,
            parent_device=hub,
        )
        await child.publish_discovery()
        assert _config(mock_mqtt, "binary_sensor", "motion", "dev2")["device"]["via_device"] == "hub1"
        assert child.parent_device is hub
        assert hub.child_devices == {child}


# ---------------------------------------------------------------------------
# TestCommands
# ---------------------------------------------------------------------------


class TestCommands:
    """Inbound commands reach the device callback.

    Technique: Mock-based Testing.
    """

    async def test_command_routed(
        self,
        device: Device,
        device_context: DeviceContext,
        on_command: AsyncMock,
    ) -> None:
        await device.publish_discovery()
        await device_context.router.route(f"{BASE}/light/brightness_command", "50")
        on_command.assert_awaited_once_with("light/brightness_command", "50")

    async def test_command_error_published(
        self,
        device_context: DeviceContext,
        mock_mqtt: MockMqttClient,
    ) -> None:
        device = Device(
            _identity(),
            device_context,
            entities={"siren": EntitySpec(component="switch")},
            primary_attribute=DISABLE,
            on_command=AsyncMock(side_effect=RuntimeError("vendor api down")),
        )
        await device.publish_discovery()
        await device_context.router.route(f"{BASE}/siren/command", "ON")
        errors = mock_mqtt.get_messages_for(f"{BASE}/error")
        assert len(errors) == 1
        payload = json.loads(errors[0][0])
        assert payload["device"] == "dev1"
        assert payload["message"] == "vendor api down"
        assert payload["command"] == "siren/command"
        assert payload["error_type"] == "RuntimeError"
        assert mock_mqtt.get_messages_for("test/error")


# ---------------------------------------------------------------------------
# TestStatePublishing
# ---------------------------------------------------------------------------


class TestStatePublishing:
    """Entity state and attributes.

    Technique: Behavioural Testing.
    """

    async def test_publish_entity_before_discovery_skipped(
        self,
        device: Device,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await device.publish_entity("motion", "ON")
        assert mock_mqtt.publish_count == 0

    async def test_publish_entity_state(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        await device.publish_entity("motion", "ON")
        assert mock_mqtt.get_messages_for(f"{BASE}/motion/state") == [("ON", False)]

    async def test_publish_entity_named_topic(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        await device.publish_entity("light", "40", topic="brightness_state_topic")
        assert mock_mqtt.get_messages_for(f"{BASE}/light/brightness_state") == [("40", False)]

    async def test_publish_attributes(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.publish_discovery()
        await device.publish_attributes()
        info = mock_mqtt.get_messages_for(f"{BASE}/info/state")
        battery = mock_mqtt.get_messages_for(f"{BASE}/battery/attributes")
        assert json.loads(info[0][0]) == {"commStatus": "ok", "batteryLevel": 80}
        assert json.loads(battery[0][0]) == {"batteryLevel": 80}

    async def test_attribute_filter_subset(self, device_context: DeviceContext, mock_mqtt: MockMqttClient) -> None:
        device = Device(
            _identity(),
            device_context,
            entities={"status": EntitySpec(component="sensor", attributes="batt|tamper")},
            primary_attribute=DISABLE,
        )
        await device.publish_discovery()
        await device.publish_attribute_entities({"battery": 90, "tamper": "ok", "other": 1})
        messages = mock_mqtt.get_messages_for(f"{BASE}/status/attributes")
        assert json.loads(messages[0][0]) == {"battery": 90, "tamper": "ok"}

    async def test_no_matching_attributes_publishes_nothing(
        self,
        device: Device,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await device.publish_discovery()
        before = mock_mqtt.publish_count
        await device.publish_attribute_entities({"unrelated": 1})
        assert mock_mqtt.publish_count == before

    async def test_publish_attributes_without_source(self, device_context: DeviceContext) -> None:
        device = Device(_identity(), device_context)
        await device.publish_discovery()
        await device.publish_attributes()


# ---------------------------------------------------------------------------
# TestLifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    """Availability, refresh loop and shutdown.

    Technique: Fake Clock + State-based Testing.
    """

    async def test_online_publishes_and_settles(
        self,
        device: Device,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        await device.online()
        assert device.is_online
        assert mock_mqtt.get_messages_for(f"{BASE}/status") == [("online", False)]
        assert fake_clock.sleeps == [2.0]

    async def test_stop_suppresses_online(self, device: Device, mock_mqtt: MockMqttClient) -> None:
        await device.stop()
        await device.online()
        assert device.shutdown_requested
        assert mock_mqtt.publish_count == 0

    async def test_start_runs_refresh_loop(self, device: Device, fake_clock: FakeClock) -> None:
        await device.publish_discovery()
        await device.online()
        device.start()
        for _ in range(5):
            await fake_clock.sleep(0)
        await device.stop()
        assert 300.0 in fake_clock.sleeps

    async def test_refresh_interval_follows_availability(self, device: Device) -> None:
        assert device._scheduler is not None
        assert device.availability_state is AvailabilityState.UNPUBLISHED
        assert device._scheduler.next_delay() == 300.0
        await device.offline()
        assert device._scheduler.next_delay() == 60.0

    async def test_start_after_stop_is_noop(self, device: Device) -> None:
        await device.stop()
        device.start()
        assert device._scheduler is not None
        assert not device._scheduler.running

    def test_saved_state(self, device: Device) -> None:
        device.set_saved_state({"preset": "away"})
        assert device.get_saved_state() == {"preset": "away"}

    def test_child_link_is_weak(self, device_context: DeviceContext) -> None:
        hub = Device(_identity("hub1", "Hub"), device_context, primary_attribute=DISABLE)
        Device(_identity("dev2", "Sensor"), device_context, primary_attribute=DISABLE, parent_device=hub)
        gc.collect()
        assert hub.child_devices == set()


# ---------------------------------------------------------------------------
# TestFlattenDevices
# ---------------------------------------------------------------------------


class TestFlattenDevices:
    """Factory result normalisation.

    Technique: Equivalence Partitioning.
    """

    def test_single(self, device: Device) -> None:
        assert flatten_devices(device) == [device]

    def test_iterable(self, device: Device) -> None:
        assert flatten_devices(iter([device, device])) == [device, device]
