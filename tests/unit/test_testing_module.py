"""Unit tests for hassbridge.testing — public test-support utilities.

Test Techniques Used:
    - Specification-based Testing: ``__all__`` and factory defaults
    - Identity Testing: re-exports are the private-module objects
    - Fixture Injection: plugin fixtures available without local definitions
"""

from __future__ import annotations

import hassbridge._mqtt as _mqtt_mod
import hassbridge.testing as testing_mod
from hassbridge._context import DeviceContext
from hassbridge._settings import Settings
from hassbridge.testing import BridgeHarness, FakeClock, MockMqttClient, make_settings


class TestPublicAPI:
    """All expected symbols are importable and listed in ``__all__``."""

    def test_all(self) -> None:
        assert set(testing_mod.__all__) == {
            "BridgeHarness",
            "FakeClock",
            "MockMqttClient",
            "NullMqttClient",
            "make_settings",
        }

    def test_reexports_are_identical(self) -> None:
        assert testing_mod.MockMqttClient is _mqtt_mod.MockMqttClient
        assert testing_mod.NullMqttClient is _mqtt_mod.NullMqttClient


class TestMakeSettings:
    """Technique: Specification-based — factory defaults."""

    def test_returns_settings(self) -> None:
        assert isinstance(make_settings(), Settings)

    def test_default_prefix(self) -> None:
        assert make_settings().mqtt.topic_prefix == "hassbridge"


class TestPluginFixtures:
    """Technique: Fixture Injection."""

    def test_mock_mqtt(self, mock_mqtt: MockMqttClient) -> None:
        assert mock_mqtt.published == []

    def test_fake_clock(self, fake_clock: FakeClock) -> None:
        assert fake_clock.elapsed == 0.0
        assert not fake_clock.held
        assert fake_clock.sleeps == []

    def test_device_context(
        self,
        device_context: DeviceContext,
        mock_mqtt: MockMqttClient,
        fake_clock: FakeClock,
    ) -> None:
        assert device_context.mqtt is mock_mqtt
        assert device_context.clock is fake_clock
        assert device_context.root == "test"


class TestBridgeHarness:
    """Technique: Specification-based — harness wiring."""

    def test_create(self) -> None:
        harness = BridgeHarness.create(name="ring-bridge", topic_prefix="ring")
        assert harness.bridge._name == "ring-bridge"
        assert harness.settings.mqtt.topic_prefix == "ring"
        assert not harness.shutdown_event.is_set()

    def test_trigger_shutdown(self) -> None:
        harness = BridgeHarness.create()
        harness.trigger_shutdown()
        assert harness.shutdown_event.is_set()
