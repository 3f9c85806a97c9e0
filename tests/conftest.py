"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

from hassbridge._settings import TRACE_CHANNELS

# The hassbridge testing plugin is registered via a ``pytest11`` entry
# point (pyproject.toml) for external consumers.  Our own suite disables
# it (``-p no:hassbridge``) and loads it here instead, so the import
# chain is measured by ``pytest-cov``.
pytest_plugins = ["hassbridge.testing._plugin"]


@pytest.fixture
def _restore_root_logger() -> Iterator[None]:
    """Restore root handlers and trace channel levels around ``configure_logging``."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    for channel in TRACE_CHANNELS:
        logging.getLogger(f"hassbridge.{channel}").setLevel(logging.NOTSET)
