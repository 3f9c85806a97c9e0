"""Command line entry point of a bridge (Typer-based).

``bridge.cli()`` parses the options below, loads :class:`Settings`
from the environment and the ``.env`` file, folds the logging options
into it and runs the bridge until it is interrupted::

    ring-bridge --env-file ring.env --log-format text --trace discovery --trace stream

Exit codes: ``0`` after a clean shutdown, ``1`` when the settings do not
validate, ``3`` when the bridge fails while running.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import TYPE_CHECKING, Annotated, Any, get_args

import typer
from pydantic import ValidationError

from hassbridge._settings import TRACE_CHANNELS, LoggingSettings

if TYPE_CHECKING:
    from hassbridge._app import Bridge
    from hassbridge._settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

LOG_LEVELS: tuple[str, ...] = get_args(LoggingSettings.model_fields["level"].annotation)
LOG_FORMATS: tuple[str, ...] = get_args(LoggingSettings.model_fields["format"].annotation)


def _choice(value: str, choices: tuple[str, ...], *, what: str, option: str) -> str:
    """*value* normalised to the spelling used in *choices*, or a usage error."""
    for choice in choices:
        if value.lower() == choice.lower():
            return choice
    raise typer.BadParameter(
        f"Invalid {what} '{value}'. Choose from: {', '.join(choices)}",
        param_hint=f"'{option}'",
    )


def logging_overrides(
    *,
    log_level: str | None = None,
    log_format: str | None = None,
    traces: list[str] | None = None,
) -> dict[str, Any]:
    """``LoggingSettings`` fields set on the command line, validated."""
    update: dict[str, Any] = {}
    if log_level is not None:
        update["level"] = _choice(log_level, LOG_LEVELS, what="log level", option="--log-level")
    if log_format is not None:
        update["format"] = _choice(log_format, LOG_FORMATS, what="log format", option="--log-format")
    if traces:
        update["traces"] = [_choice(t, TRACE_CHANNELS, what="trace channel", option="--trace") for t in traces]
    return update


def _load_settings(bridge: Bridge, env_file: str) -> Settings:
    try:
        return bridge._settings_class(_env_file=env_file)  # type: ignore[call-arg]
    except ValidationError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(EXIT_CONFIG_ERROR) from exc


def _run(bridge: Bridge, settings: Settings) -> None:
    try:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(bridge._run_async(settings=settings))
    except SystemExit:
        raise
    except Exception as exc:
        logger.error("Bridge %s stopped on error: %s", bridge._name, exc)
        sys.exit(EXIT_RUNTIME_ERROR)


def build_cli(bridge: Bridge) -> typer.Typer:
    """Typer app that configures and runs *bridge*."""
    name = bridge._name
    version = bridge._version
    cli = typer.Typer(help=f"{name} v{version}: {bridge._description}")

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help=f"Override the log level ({', '.join(LOG_LEVELS)})."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override the log format (json or text)."),
        ] = None,
        trace: Annotated[
            list[str] | None,
            typer.Option(
                "--trace",
                help=f"Log a publish trace channel at DEBUG; repeatable ({', '.join(TRACE_CHANNELS)}).",
            ),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to the .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"{name} v{version}")
            raise typer.Exit()

        update = logging_overrides(log_level=log_level, log_format=log_format, traces=trace)
        settings = _load_settings(bridge, env_file)
        if update:
            settings.logging = settings.logging.model_copy(update=update)
        _run(bridge, settings)

    return cli
