"""Log output for the bridge process.

Two layers of output:

- The ordinary module loggers (``hassbridge._app``, ``hassbridge._mqtt``
  and so on), gated by ``LoggingSettings.level``.
- The publish trace channels, one logger per kind of traffic::

      hassbridge.mqtt         state and availability publishes
      hassbridge.discovery    discovery config publishes
      hassbridge.attributes   attribute publishes
      hassbridge.stream       text relayed from stream workers

  Each channel listed in ``LoggingSettings.traces`` is switched to DEBUG
  on its own, so one kind of traffic can be followed without turning the
  whole process up to DEBUG.

Trace records carry ``device``, ``topic`` and ``payload`` as ``extra``
attributes.  The JSON format emits them as top-level fields; the text
format appends the device name in brackets.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from hassbridge._settings import TRACE_CHANNELS, LoggingSettings

TRACE_FIELDS: tuple[str, ...] = ("device", "topic", "payload")
"""``extra`` attributes a trace record may carry."""

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def trace_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The trace attributes present on *record*, in :data:`TRACE_FIELDS` order."""
    return {name: getattr(record, name) for name in TRACE_FIELDS if hasattr(record, name)}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fields: ``timestamp`` (UTC, ISO 8601), ``level``, ``logger``,
    ``message``, ``service``, then ``version`` when known, the trace
    fields the record carries, and ``exception`` for logged exceptions.

    Args:
        service: Bridge name stamped on every line.
        version: Bridge version; left out when empty.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }
        if self._version:
            entry["version"] = self._version
        entry.update(trace_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Terminal format; trace records get their device appended."""

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        device = getattr(record, "device", None)
        if device:
            head, _, rest = line.partition("\n")
            line = f"{head} [{device}]" + (f"\n{rest}" if rest else "")
        return line


def apply_traces(channels: list[str]) -> None:
    """Open the listed trace channels at DEBUG; the others follow the root level."""
    for channel in TRACE_CHANNELS:
        level = logging.DEBUG if channel in channels else logging.NOTSET
        logging.getLogger(f"hassbridge.{channel}").setLevel(level)


def _handlers(settings: LoggingSettings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * 1024 * 1024,
                backupCount=settings.backup_count,
            )
        )
    return handlers


def configure_logging(settings: LoggingSettings, *, service: str, version: str = "") -> None:
    """Replace the root handlers according to *settings* and apply its traces.

    stderr always gets a handler; ``settings.file`` adds a size-rotated
    file next to it.  Both share one formatter.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter: logging.Formatter = (
        JsonFormatter(service=service, version=version) if settings.format == "json" else TextFormatter()
    )
    for handler in _handlers(settings):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(settings.level)
    apply_traces(settings.traces)
