"""Saved-state port.

Devices that need to remember something across vendor reconnects
(e.g. the last chosen preset) store a small JSON-compatible mapping
keyed by device id.  Persistence is the store's business; the bridge
only consumes this narrow port.
"""

from __future__ import annotations

import copy
from typing import Any, Protocol, runtime_checkable

StateBlob = dict[str, Any]


@runtime_checkable
class StateStorePort(Protocol):
    """Save/restore contract for per-device state."""

    def get_device_state(self, device_id: str) -> StateBlob: ...

    def set_device_state(self, device_id: str, data: StateBlob) -> None: ...


class MemoryStateStore:
    """In-process store.  Hands out copies so callers cannot alias entries."""

    def __init__(self, initial: dict[str, StateBlob] | None = None) -> None:
        self._states: dict[str, StateBlob] = copy.deepcopy(initial or {})

    def get_device_state(self, device_id: str) -> StateBlob:
        return copy.deepcopy(self._states.get(device_id, {}))

    def set_device_state(self, device_id: str, data: StateBlob) -> None:
        self._states[device_id] = copy.deepcopy(data)
