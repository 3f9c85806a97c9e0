"""Topic hierarchy derivation.

Pure functions only — identical inputs always produce identical topics,
which is what makes discovery republication idempotent.

Topic layout::

    {root}/{location_id}/{category}/{device_id}                    ← device topic
    {root}/{location_id}/{category}/{device_id}/status             ← availability
    {root}/{location_id}/{category}/{device_id}/{entity}           ← entity topic
    {root}/{location_id}/{category}/{device_id}/{entity}/{suffix}  ← state, command, ...
    {root}/config/{device_id}/{component}/{entity}                 ← discovery config
"""

from __future__ import annotations

from dataclasses import dataclass

from hassbridge._entities import Component, EntitySpec

AVAILABILITY_SUFFIX = "status"


@dataclass(frozen=True, slots=True)
class DeviceTopics:
    """Device-level topics, computed once per device."""

    root: str
    device_topic: str
    availability_topic: str

    def entity_topic(self, entity_key: str) -> str:
        return entity_topic(self.device_topic, entity_key)

    def entity_state_topic(self, entity_key: str, spec: EntitySpec) -> str:
        return entity_state_topic(self.device_topic, entity_key, spec)


def build_device_topics(
    root: str,
    location_id: str,
    category: str,
    device_id: str,
) -> DeviceTopics:
    """Derive the device and availability topics for one device."""
    device_topic = f"{root}/{location_id}/{category}/{device_id}"
    return DeviceTopics(
        root=root,
        device_topic=device_topic,
        availability_topic=f"{device_topic}/{AVAILABILITY_SUFFIX}",
    )


def entity_topic(device_topic: str, entity_key: str) -> str:
    return f"{device_topic}/{entity_key}"


def entity_state_topic(device_topic: str, entity_key: str, spec: EntitySpec) -> str:
    """State topic of an entity.

    Entities reading their value from another entity's document name it
    with ``parent_state_topic`` (relative to the device topic).  Cameras
    publish images rather than state.
    """
    if spec.parent_state_topic is not None:
        return f"{device_topic}/{spec.parent_state_topic}"
    base = entity_topic(device_topic, entity_key)
    if spec.component is Component.CAMERA:
        return f"{base}/image"
    return f"{base}/state"


def config_topic(root: str, device_id: str, component: str, entity_key: str) -> str:
    """Discovery config topic receiving the serialised discovery message."""
    return f"{root}/config/{device_id}/{component}/{entity_key}"


def command_name(topic: str) -> str:
    """Short command name of a command topic: ``{entity}/{suffix}``."""
    return "/".join(topic.split("/")[-2:])


def stream_debug_topic(command_topic: str) -> str:
    """Debug channel of a stream entity: its command topic's parent + ``/debug``."""
    return command_topic.rsplit("/", 1)[0] + "/debug"
