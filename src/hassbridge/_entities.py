"""Declarative entity specs and the per-device entity registry.

A device type describes its logical sub-entities with a table of
:class:`EntitySpec` values keyed by entity key::

    {
        "motion": EntitySpec(component="binary_sensor", device_class="motion",
                             is_legacy_entity=True),
        "battery": EntitySpec(component="sensor", device_class="battery",
                              parent_state_topic="info/state",
                              attributes="batt"),
    }

Specs are validated when they are built, so a misconfigured table fails
at registration time instead of publishing an incomplete discovery
message.  On the first discovery publish the registry enriches each spec
in place with the topics derived for it (``spec.topics``) and flips its
``published`` flag.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from hassbridge._errors import EntityConfigError

DISABLE = "disable"
"""``primary_attribute`` value that skips attribute entities and refresh."""

INFO_ENTITY = "info"
"""Entity key of the sensor that self-reports the device attributes."""

DEFAULT_PRIMARY_ATTRIBUTE = "commStatus"

_INVALID_KEY_CHARS = re.compile(r"[/+#\s]")


class Component(StrEnum):
    """Hub component types an entity can be published as."""

    ALARM_CONTROL_PANEL = "alarm_control_panel"
    BINARY_SENSOR = "binary_sensor"
    BUTTON = "button"
    CAMERA = "camera"
    CLIMATE = "climate"
    COVER = "cover"
    DEVICE_TRACKER = "device_tracker"
    EVENT = "event"
    FAN = "fan"
    HUMIDIFIER = "humidifier"
    IMAGE = "image"
    LAWN_MOWER = "lawn_mower"
    LIGHT = "light"
    LOCK = "lock"
    NOTIFY = "notify"
    NUMBER = "number"
    SCENE = "scene"
    SELECT = "select"
    SENSOR = "sensor"
    SIREN = "siren"
    SWITCH = "switch"
    TAG = "tag"
    TEXT = "text"
    UPDATE = "update"
    VACUUM = "vacuum"
    VALVE = "valve"
    WATER_HEATER = "water_heater"


COMMANDABLE_COMPONENTS: frozenset[Component] = frozenset(
    {
        Component.SWITCH,
        Component.NUMBER,
        Component.LIGHT,
        Component.FAN,
        Component.LOCK,
        Component.ALARM_CONTROL_PANEL,
        Component.SELECT,
    },
)
"""Components that receive a ``command_topic``."""


@dataclass(kw_only=True)
class EntitySpec:
    """Declarative description of one entity of a device.

    ``attributes`` is either ``True`` (the device publishes the entity's
    JSON attributes itself) or a case-insensitive regular expression
    selecting which device attributes belong to this entity.

    ``topics`` and ``published`` are filled in by the registry on the
    first discovery publish and should not be set by device types.
    """

    component: Component | str
    name: str | None = None
    unique_id: str | None = None
    device_class: str | None = None
    unit_of_measurement: str | None = None
    state_class: str | None = None
    value_template: str | None = None
    min: float | None = None
    max: float | None = None
    icon: str | None = None
    attributes: bool | str | None = None
    is_legacy_entity: bool = False
    brightness_scale: int | None = None
    modes: list[str] | None = None
    fan_modes: list[str] | None = None
    options: list[str] | None = None
    parent_state_topic: str | None = None

    topics: dict[str, str] = field(default_factory=dict, repr=False)
    published: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        try:
            self.component = Component(self.component)
        except ValueError:
            msg = f"Unknown component type {self.component!r}"
            raise EntityConfigError(msg) from None

        if self.component is Component.CLIMATE and not self.modes:
            msg = "climate entities must declare a non-empty 'modes' list"
            raise EntityConfigError(msg)
        if self.component is Component.SELECT and not self.options:
            msg = "select entities must declare a non-empty 'options' list"
            raise EntityConfigError(msg)
        if self.brightness_scale is not None and self.brightness_scale <= 0:
            msg = f"brightness_scale must be positive, got {self.brightness_scale}"
            raise EntityConfigError(msg)

        if self.attributes is False:
            self.attributes = None
        if isinstance(self.attributes, str):
            try:
                re.compile(self.attributes)
            except re.error as exc:
                msg = f"Invalid attribute filter {self.attributes!r}: {exc}"
                raise EntityConfigError(msg) from exc
        elif self.attributes not in (None, True):
            msg = f"attributes must be True or a filter pattern, got {self.attributes!r}"
            raise EntityConfigError(msg)

    @property
    def attribute_filter(self) -> str | None:
        """The attribute filter pattern, or ``None`` for pass-through/absent."""
        return self.attributes if isinstance(self.attributes, str) else None

    @property
    def is_commandable(self) -> bool:
        return self.component in COMMANDABLE_COMPONENTS

    @property
    def state_topic(self) -> str | None:
        """The derived state topic, whatever the component calls it."""
        for key in ("state_topic", "topic", "mode_state_topic"):
            if key in self.topics:
                return self.topics[key]
        return None

    @property
    def json_attributes_topic(self) -> str | None:
        return self.topics.get("json_attributes_topic")

    @property
    def command_topics(self) -> dict[str, str]:
        """Derived topics whose key names a command topic."""
        return {k: v for k, v in self.topics.items() if "command_topic" in k}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class EntityRegistry:
    """Ordered mapping of entity key → :class:`EntitySpec` for one device."""

    def __init__(self, entities: Mapping[str, EntitySpec] | None = None) -> None:
        self._entities: dict[str, EntitySpec] = {}
        for key, spec in (entities or {}).items():
            self.add(key, spec)

    def add(self, key: str, spec: EntitySpec) -> None:
        """Register *spec* under *key*.

        Raises:
            EntityConfigError: If the key is empty, contains characters
                that are not valid in a topic level, or is already taken.
        """
        if not key or _INVALID_KEY_CHARS.search(key):
            msg = f"Invalid entity key {key!r}"
            raise EntityConfigError(msg)
        if key in self._entities:
            msg = f"Entity '{key}' is already registered"
            raise EntityConfigError(msg)
        self._entities[key] = spec

    def mark_published(self, key: str, message: Mapping[str, Any]) -> bool:
        """Record the first publish of entity *key*.

        Stores every key of *message* containing ``"topic"`` on the spec
        and sets ``published``.  Later calls leave the spec untouched.

        Returns:
            ``True`` on the first call for *key*, ``False`` afterwards.
        """
        spec = self._entities[key]
        if spec.published:
            return False
        spec.published = True
        spec.topics.update(
            {name: value for name, value in message.items() if "topic" in name},
        )
        return True

    def attribute_entities(self) -> Iterator[tuple[str, EntitySpec]]:
        """Entities that select a filtered subset of device attributes."""
        for key, spec in self._entities.items():
            if spec.attribute_filter is not None:
                yield key, spec

    def items(self) -> Iterator[tuple[str, EntitySpec]]:
        yield from self._entities.items()

    def __getitem__(self, key: str) -> EntitySpec:
        return self._entities[key]

    def __contains__(self, key: object) -> bool:
        return key in self._entities

    def __iter__(self) -> Iterator[str]:
        return iter(self._entities)

    def __len__(self) -> int:
        return len(self._entities)


# ---------------------------------------------------------------------------
# Attribute helpers
# ---------------------------------------------------------------------------


def filter_attributes(
    attributes: Mapping[str, object],
    pattern: str,
) -> dict[str, object]:
    """Select the attributes whose key matches *pattern* (case-insensitive).

    >>> filter_attributes({"battery": 90, "tamper": "ok", "other": 1}, "batt|tamper")
    {'battery': 90, 'tamper': 'ok'}
    """
    regex = re.compile(pattern, re.IGNORECASE)
    return {key: value for key, value in attributes.items() if regex.search(key)}


def build_attribute_entities(
    primary_attribute: str | None = None,
    *,
    battery: bool = False,
    tamper: bool = False,
    wireless: bool = False,
) -> dict[str, EntitySpec]:
    """Entities backed by the device attribute document.

    The ``info`` sensor publishes the full attribute mapping as its
    state and shows *primary_attribute* as its value.  The optional
    entities read their value from the same document through
    ``parent_state_topic`` and expose a filtered attribute subset.
    """
    primary = primary_attribute or DEFAULT_PRIMARY_ATTRIBUTE
    entities: dict[str, EntitySpec] = {
        INFO_ENTITY: EntitySpec(
            component=Component.SENSOR,
            value_template=f'{{{{ value_json["{primary}"] | default("") }}}}',
        ),
    }
    if battery:
        entities["battery"] = EntitySpec(
            component=Component.SENSOR,
            device_class="battery",
            unit_of_measurement="%",
            state_class="measurement",
            parent_state_topic=f"{INFO_ENTITY}/state",
            attributes="batt",
            value_template='{{ value_json["batteryLevel"] | default("") }}',
        )
    if tamper:
        entities["tamper"] = EntitySpec(
            component=Component.BINARY_SENSOR,
            device_class="tamper",
            parent_state_topic=f"{INFO_ENTITY}/state",
            attributes="tamper",
            value_template=(
                '{% if value_json["tamperStatus"] is equalto "tamper" %}'
                "ON{% else %}OFF{% endif %}"
            ),
        )
    if wireless:
        entities["wireless"] = EntitySpec(
            component=Component.SENSOR,
            device_class="signal_strength",
            unit_of_measurement="dBm",
            parent_state_topic=f"{INFO_ENTITY}/state",
            attributes="wireless",
            value_template='{{ value_json["wirelessSignal"] | default("") }}',
        )
    return entities
