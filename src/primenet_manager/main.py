"""CLI entrypoint for primenet-manager."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from primenet_manager import __version__
from primenet_manager.config import DEVICE_KINDS, GPU72_WORK_OPTIONS, MAX_POLL_HOURS
from primenet_manager.sync.controllers import (
    ManagerCliController,
    RunCommand,
    SettingsOverrides,
    StatusCommand,
    WriteSettingsCommand,
)
from primenet_manager.sync.worker import UpdateAbortedError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = ManagerCliController()

_SETTINGS_OPTIONS = (
    click.option(
        "--settings",
        "settings_path",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="YAML settings file. Defaults to PRIMENET_MANAGER_SETTINGS or settings.yml.",
    ),
    click.option("--user", "username", default=None, help="PrimeNet user name."),
    click.option("--password", default=None, help="PrimeNet password."),
    click.option("--gpu72-user", "gpu72_username", default=None, help="GPU72 user name."),
    click.option("--gpu72-password", default=None, help="GPU72 password."),
    click.option(
        "--poll-hours",
        type=click.IntRange(min=0),
        default=None,
        help=f"Polling delay in hours, 0 to run once (max {MAX_POLL_HOURS}).",
    ),
    click.option(
        "--max-failed-cycles",
        type=click.IntRange(min=0),
        default=None,
        help="Exit after this many consecutive failed cycles; 0 retries forever.",
    ),
    click.option(
        "--log-file",
        type=click.Path(path_type=Path, dir_okay=False),
        default=None,
        help="Append log output to this file instead of stderr.",
    ),
    click.option("--device", type=click.IntRange(min=0), default=None, help="GPU device number."),
    click.option(
        "--directory",
        type=click.Path(path_type=Path, file_okay=False),
        default=None,
        help="Work directory holding worktodo.txt and results.txt.",
    ),
    click.option(
        "--kind",
        type=click.Choice(DEVICE_KINDS, case_sensitive=False),
        default=None,
        help="`tf` for mfakto trial factoring, `ll` for clLucas.",
    ),
    click.option(
        "--work-type",
        default=None,
        help="TF: `lltf` or `dctf`. LL: `100` first-time, `101` double-check, `102` world record.",
    ),
    click.option(
        "--work-option",
        type=click.Choice(tuple(GPU72_WORK_OPTIONS), case_sensitive=False),
        default=None,
        help="GPU72 assignment preference.",
    ),
    click.option(
        "--target",
        "target_exponent",
        type=click.IntRange(min=1),
        default=None,
        help='Target "will factor to" bit level for TF work (minimum 73).',
    ),
    click.option(
        "--assignments",
        type=click.IntRange(min=1),
        default=None,
        help="Number of assignments to keep cached.",
    ),
)


def _settings_options(func: Callable[..., Any]) -> Callable[..., Any]:
    for option in reversed(_SETTINGS_OPTIONS):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="primenet-manager")
def primenet_manager() -> None:
    """Keep GPU worktodo.txt queues topped up and submit results to PrimeNet."""


@primenet_manager.command("run")
@_settings_options
@click.option(
    "--log-level",
    type=click.Choice(("DEBUG", "INFO", "WARNING", "ERROR"), case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Logging verbosity.",
)
def run(log_level: str, **overrides: Any) -> None:
    """Top off work and send results for every device, then repeat every poll interval."""

    try:
        lines = CONTROLLER.run(
            RunCommand(overrides=SettingsOverrides(**overrides), log_level=log_level),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    except UpdateAbortedError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@primenet_manager.command("write-settings")
@_settings_options
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=Path("settings.yml"),
    show_default=True,
    help="Where to write the effective settings.",
)
def write_settings(output_path: Path, **overrides: Any) -> None:
    """Write the effective settings (file, environment and options merged) as YAML."""

    try:
        lines = CONTROLLER.write_settings(
            WriteSettingsCommand(
                overrides=SettingsOverrides(**overrides),
                output_path=output_path,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@primenet_manager.command("status")
@_settings_options
def status(**overrides: Any) -> None:
    """Show queue depth and pending results for each device without contacting PrimeNet."""

    try:
        lines = CONTROLLER.status(StatusCommand(overrides=SettingsOverrides(**overrides)))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    primenet_manager()
