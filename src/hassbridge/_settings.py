"""Bridge configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  Nested models use ``__`` as the delimiter in env var names and
every variable carries the ``HASSBRIDGE_`` prefix, e.g.
``HASSBRIDGE_MQTT__HOST=broker.local``.

The schema covers three concerns:

* **MQTT** — broker connection and the root topic prefix.
* **Discovery** — disarm code, hub status topic and the timing of the
  availability / attribute-refresh cycle.
* **Logging** — level, format, optional file sink, rotation and the
  publish trace channels.

All durations are in **seconds**.
"""

from __future__ import annotations

from typing import Annotated, Literal, get_args

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

TraceChannel = Literal["mqtt", "discovery", "attributes", "stream"]
TRACE_CHANNELS: tuple[str, ...] = get_args(TraceChannel)

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        HASSBRIDGE_MQTT__HOST=broker.local
        HASSBRIDGE_MQTT__PORT=1883
        HASSBRIDGE_MQTT__USERNAME=user
        HASSBRIDGE_MQTT__PASSWORD=secret
        HASSBRIDGE_MQTT__TOPIC_PREFIX=ring
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'{name}-{hex8}' at startup for debuggability."
        ),
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS level used for every publish and subscription.",
    )
    outbox_size: Annotated[int, Field(ge=1)] = Field(
        default=1000,
        description=(
            "Publishes kept while the broker is unreachable; the oldest "
            "is dropped on overflow."
        ),
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    topic_prefix: str = Field(
        default="hassbridge",
        min_length=1,
        description=(
            "Root prefix for every device, availability and discovery "
            "config topic."
        ),
    )


class DiscoverySettings(BaseModel):
    """Discovery publication and availability timing.

    ``disarm_code`` accepts numbers as well as strings (``1234`` and
    ``"1234"`` are equivalent) and is stored as a secret so it never
    shows up in ``repr()`` or settings dumps.
    """

    disarm_code: SecretStr | None = Field(
        default=None,
        description="Code embedded in alarm panel discovery payloads.",
    )
    hub_status_topic: str = Field(
        default="homeassistant/status",
        description=(
            "Topic where the hub announces its own availability. "
            "An 'online' message triggers a discovery republish."
        ),
    )
    refresh_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Seconds between attribute refreshes while a device is online.",
    )
    offline_refresh_interval: Annotated[float, Field(gt=0)] = Field(
        default=60.0,
        description=(
            "Seconds between refresh checks while a device is offline "
            "or not yet published."
        ),
    )
    settle_delay: Annotated[float, Field(ge=0)] = Field(
        default=2.0,
        description=(
            "Seconds to wait after publishing 'online' before the "
            "caller continues with state publishes."
        ),
    )

    @field_validator("disarm_code", mode="before")
    @classmethod
    def _coerce_disarm_code(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        if value == "":
            return None
        return value


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    The ``format`` field selects the output format:

    - ``"json"`` (default) — structured JSON lines for container
      log aggregators.  Publish traces carry their ``device``,
      ``topic`` and ``payload`` as separate JSON fields.
    - ``"text"`` — human-readable timestamped format for local
      development and direct terminal use.

    ``traces`` lists the publish trace channels to follow at DEBUG
    while everything else stays at ``level``.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description=(
            "Log output format. "
            "'json' emits structured JSON lines for "
            "container environments; "
            "'text' emits human-readable timestamped "
            "lines for development."
        ),
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description=(
            "Maximum log file size in megabytes before rotation. "
            "Only applies when ``file`` is set."
        ),
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )
    traces: list[TraceChannel] = Field(
        default_factory=list,
        description=(
            "Publish trace channels logged at DEBUG regardless of "
            "'level', e.g. '[\"discovery\", \"attributes\"]'."
        ),
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for hassbridge applications.

    Loaded from ``HASSBRIDGE_``-prefixed environment variables with the
    nested delimiter ``__`` and an optional ``.env`` file in the working
    directory.

    Example ``.env``::

        HASSBRIDGE_MQTT__HOST=broker.local
        HASSBRIDGE_MQTT__TOPIC_PREFIX=ring
        HASSBRIDGE_DISCOVERY__DISARM_CODE=1234
        HASSBRIDGE_LOGGING__LEVEL=DEBUG
        HASSBRIDGE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="HASSBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    discovery: DiscoverySettings = Field(
        default_factory=DiscoverySettings,
        description="Discovery and availability settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
