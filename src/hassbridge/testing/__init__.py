"""Public test-support utilities for hassbridge.

Re-exports test doubles and factories so that consumer test suites
can import everything from a single ``hassbridge.testing`` namespace
instead of reaching into private modules.

Provided symbols:

- :class:`BridgeHarness` — Bridge wrapped with pre-configured doubles.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — silent no-op MQTT adapter.
- :class:`FakeClock` — deterministic clock that records sleeps.
- :func:`make_settings` — factory for ``Settings`` without ``.env`` files.
"""

from hassbridge._mqtt import MockMqttClient, NullMqttClient
from hassbridge.testing._clock import FakeClock
from hassbridge.testing._harness import BridgeHarness
from hassbridge.testing._settings import make_settings

__all__ = [
    "BridgeHarness",
    "FakeClock",
    "MockMqttClient",
    "NullMqttClient",
    "make_settings",
]
