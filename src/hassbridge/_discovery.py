"""Discovery message composition.

Turns one declared entity into the discovery payload the hub uses to
auto-create a UI entity.  Composition is an ordered table of
:class:`Rule` values; each rule has a predicate and a field builder,
and :func:`compose` applies every matching rule in table order.  Rules
only add keys (a later rule may overwrite the value of an earlier key,
which keeps that key's position), so the insertion order of the result,
and therefore its JSON serialisation, is stable.

Naming compatibility:

- An explicit ``name`` always wins.
- Legacy entities, and entities whose key already appears in the device
  name, reuse the device name verbatim so entity ids created by older
  releases stay the same.
- Everything else is ``"{device name} {Entity Key}"``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from hassbridge._entities import INFO_ENTITY, Component, EntitySpec
from hassbridge._topics import DeviceTopics

DiscoveryMessage = dict[str, Any]

INFO_ICON = "mdi:information-outline"
MASK = "********"

FAN_PRESET_MODES: tuple[str, ...] = ("low", "medium", "high")
FAN_SPEED_RANGE: tuple[int, int] = (11, 100)
CLIMATE_TEMP_RANGE: tuple[int, int] = (10, 37)

PASSTHROUGH_FIELDS: tuple[str, ...] = (
    "device_class",
    "unit_of_measurement",
    "state_class",
    "value_template",
    "min",
    "max",
)

_WORD_START = re.compile(r"(^\w)|(\s+\w)")


# ---------------------------------------------------------------------------
# Device identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    """Who a device is, as far as topics and discovery are concerned."""

    device_id: str
    location_id: str
    category: str
    name: str
    manufacturer: str = ""
    model: str = ""

    def device_block(self, *, via_device: str | None = None) -> dict[str, Any]:
        """The ``device`` descriptor grouping all entities of this device."""
        block: dict[str, Any] = {
            "identifiers": [self.device_id],
            "name": self.name,
        }
        if self.manufacturer:
            block["manufacturer"] = self.manufacturer
        if self.model:
            block["model"] = self.model
        if via_device is not None:
            block["via_device"] = via_device
        return block


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ComposeInput:
    """Everything a rule may look at.  Built once per entity."""

    identity: DeviceIdentity
    entity_key: str
    spec: EntitySpec
    entity_topic: str
    state_topic: str
    availability_topic: str
    device_block: Mapping[str, Any] = field(default_factory=dict)
    disarm_code: str | None = None


@dataclass(frozen=True, slots=True)
class Rule:
    """One composition step: add ``fields(inp)`` when ``applies(inp)``."""

    name: str
    applies: Callable[[ComposeInput], bool]
    fields: Callable[[ComposeInput], dict[str, Any]]


def _always(_inp: ComposeInput) -> bool:
    return True


def title_key(entity_key: str) -> str:
    """``"motion_sensor"`` → ``"Motion Sensor"`` (other letters untouched)."""
    return _WORD_START.sub(lambda m: m.group(0).upper(), entity_key.replace("_", " "))


def entity_name(display_name: str, entity_key: str, spec: EntitySpec) -> str:
    if spec.name is not None:
        return spec.name
    if spec.is_legacy_entity or entity_key.lower() in display_name.lower():
        return display_name
    return f"{display_name} {title_key(entity_key)}"


def entity_unique_id(device_id: str, entity_key: str, spec: EntitySpec) -> str:
    if spec.unique_id is not None:
        return spec.unique_id
    if spec.is_legacy_entity:
        return device_id
    return f"{device_id}_{entity_key}"


def state_topic_field(component: Component) -> str:
    """Name of the state topic field for *component*."""
    if component is Component.CAMERA:
        return "topic"
    if component is Component.CLIMATE:
        return "mode_state_topic"
    return "state_topic"


def _name(inp: ComposeInput) -> dict[str, Any]:
    return {"name": entity_name(inp.identity.name, inp.entity_key, inp.spec)}


def _unique_id(inp: ComposeInput) -> dict[str, Any]:
    return {"unique_id": entity_unique_id(inp.identity.device_id, inp.entity_key, inp.spec)}


def _state_topic(inp: ComposeInput) -> dict[str, Any]:
    return {state_topic_field(Component(inp.spec.component)): inp.state_topic}


def _command_topic(inp: ComposeInput) -> dict[str, Any]:
    return {"command_topic": f"{inp.entity_topic}/command"}


def _passthrough(inp: ComposeInput) -> dict[str, Any]:
    return {
        name: getattr(inp.spec, name)
        for name in PASSTHROUGH_FIELDS
        if getattr(inp.spec, name) is not None
    }


def _has_attributes_topic(inp: ComposeInput) -> bool:
    return inp.spec.attribute_filter is not None or inp.entity_key == INFO_ENTITY


def _attributes_topic(inp: ComposeInput) -> dict[str, Any]:
    if inp.spec.attribute_filter is not None:
        return {"json_attributes_topic": f"{inp.entity_topic}/attributes"}
    # the info entity's state document is its attribute document
    return {"json_attributes_topic": inp.state_topic}


def _has_icon(inp: ComposeInput) -> bool:
    return inp.spec.icon is not None or inp.entity_key == INFO_ENTITY


def _icon(inp: ComposeInput) -> dict[str, Any]:
    return {"icon": inp.spec.icon if inp.spec.icon is not None else INFO_ICON}


def _has_alarm_code(inp: ComposeInput) -> bool:
    return inp.spec.component is Component.ALARM_CONTROL_PANEL and bool(inp.disarm_code)


def _alarm_code(inp: ComposeInput) -> dict[str, Any]:
    return {
        "code": str(inp.disarm_code),
        "code_arm_required": False,
        "code_disarm_required": True,
    }


def _brightness(inp: ComposeInput) -> dict[str, Any]:
    return {
        "brightness_state_topic": f"{inp.entity_topic}/brightness_state",
        "brightness_command_topic": f"{inp.entity_topic}/brightness_command",
        "brightness_scale": inp.spec.brightness_scale,
    }


def _fan(inp: ComposeInput) -> dict[str, Any]:
    topic = inp.entity_topic
    return {
        "percentage_state_topic": f"{topic}/percent_speed_state",
        "percentage_command_topic": f"{topic}/percent_speed_command",
        "preset_mode_state_topic": f"{topic}/speed_state",
        "preset_mode_command_topic": f"{topic}/speed_command",
        "preset_modes": list(FAN_PRESET_MODES),
        "speed_range_min": FAN_SPEED_RANGE[0],
        "speed_range_max": FAN_SPEED_RANGE[1],
    }


def _climate(inp: ComposeInput) -> dict[str, Any]:
    topic = inp.entity_topic
    modes = list(inp.spec.modes or [])
    fields: dict[str, Any] = {
        "action_topic": f"{topic}/action_state",
        "aux_state_topic": f"{topic}/aux_state",
        "aux_command_topic": f"{topic}/aux_command",
        "current_temperature_topic": f"{topic}/current_temperature_state",
    }
    if inp.spec.fan_modes is not None:
        fields["fan_modes"] = list(inp.spec.fan_modes)
    fields.update(
        {
            "fan_mode_state_topic": f"{topic}/fan_mode_state",
            "fan_mode_command_topic": f"{topic}/fan_mode_command",
            "max_temp": CLIMATE_TEMP_RANGE[1],
            "min_temp": CLIMATE_TEMP_RANGE[0],
            "modes": modes,
            "mode_state_topic": f"{topic}/mode_state",
            "mode_command_topic": f"{topic}/mode_command",
            "temperature_state_topic": f"{topic}/temperature_state",
            "temperature_command_topic": f"{topic}/temperature_command",
        },
    )
    if "auto" in modes:
        fields.update(
            {
                "temperature_high_state_topic": f"{topic}/temperature_high_state",
                "temperature_high_command_topic": f"{topic}/temperature_high_command",
                "temperature_low_state_topic": f"{topic}/temperature_low_state",
                "temperature_low_command_topic": f"{topic}/temperature_low_command",
            },
        )
    fields["temperature_unit"] = "C"
    return fields


def _options(inp: ComposeInput) -> dict[str, Any]:
    return {"options": list(inp.spec.options or [])}


def _availability(inp: ComposeInput) -> dict[str, Any]:
    return {
        "availability_topic": inp.availability_topic,
        "payload_available": "online",
        "payload_not_available": "offline",
        "device": dict(inp.device_block),
    }


def _is(component: Component) -> Callable[[ComposeInput], bool]:
    def predicate(inp: ComposeInput) -> bool:
        return inp.spec.component is component

    return predicate


RULES: tuple[Rule, ...] = (
    Rule("name", _always, _name),
    Rule("unique_id", _always, _unique_id),
    Rule("state_topic", _always, _state_topic),
    Rule("command_topic", lambda inp: inp.spec.is_commandable, _command_topic),
    Rule("passthrough", _always, _passthrough),
    Rule("json_attributes_topic", _has_attributes_topic, _attributes_topic),
    Rule("icon", _has_icon, _icon),
    Rule("alarm_code", _has_alarm_code, _alarm_code),
    Rule("brightness", lambda inp: inp.spec.brightness_scale is not None, _brightness),
    Rule("fan", _is(Component.FAN), _fan),
    Rule("climate", _is(Component.CLIMATE), _climate),
    Rule("select", _is(Component.SELECT), _options),
    Rule("availability", _always, _availability),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def compose(
    identity: DeviceIdentity,
    entity_key: str,
    spec: EntitySpec,
    *,
    topics: DeviceTopics,
    disarm_code: str | None = None,
    device_block: Mapping[str, Any] | None = None,
    rules: tuple[Rule, ...] = RULES,
) -> DiscoveryMessage:
    """Build the discovery message for one entity.

    Deterministic and side-effect free: calling it twice with the same
    arguments yields equal messages with equal key order.
    """
    inp = ComposeInput(
        identity=identity,
        entity_key=entity_key,
        spec=spec,
        entity_topic=topics.entity_topic(entity_key),
        state_topic=topics.entity_state_topic(entity_key, spec),
        availability_topic=topics.availability_topic,
        device_block=device_block if device_block is not None else identity.device_block(),
        disarm_code=disarm_code,
    )
    message: DiscoveryMessage = {}
    for rule in rules:
        if rule.applies(inp):
            message.update(rule.fields(inp))
    return message


def serialize(message: Mapping[str, Any]) -> str:
    """Compact JSON with non-ASCII text kept as is, in insertion order."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def masked_payload(message: Mapping[str, Any]) -> str | None:
    """Serialised copy of *message* with secrets replaced, or ``None``.

    Returns ``None`` when the message carries nothing to hide.
    """
    if "code" not in message:
        return None
    return serialize({**message, "code": MASK})
