"""Command-line entry point for railroad-runners."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from . import __version__
from .core.config import LauncherConfig, resolve_config
from .core.constants import (
    APP_NAME,
    LAUNCH_FAILURE_EXIT_CODE,
    SUPERVISION_FAILURE_EXIT_CODE,
)
from .core.errors import ConfigError, LaunchError, SupervisionError
from .driver import SEED_MAX, SEED_MIN, GameDriver, GameSettings, random_seed
from .supervisor import InvocationRequest, InvocationResult, StdinMode, Supervisor

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name=APP_NAME,
    help="Run the railroad-runners MIPS assignment under mipsy.",
    add_completion=False,
)

MIPSY_PATH_HINT = "Try providing the path to mipsy via --mipsy-path /path/to/mipsy."


def _configure_logging(verbose: bool) -> None:
    """Send package logs to stderr; WARNING by default, DEBUG with --verbose."""
    pkg_logger = logging.getLogger("railroad_runners")
    pkg_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(h, RichHandler) for h in pkg_logger.handlers):
        pkg_logger.addHandler(RichHandler(console=err_console, show_path=False))


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"{APP_NAME} {__version__}")
        raise typer.Exit()


def _report_launch_error(exc: LaunchError, config: Optional[LauncherConfig]) -> None:
    err_console.print(f"[red]Error:[/red] {escape(exc.reason)}: {escape(str(exc.path))}", soft_wrap=True)
    hint = exc.hint
    if (
        hint is None
        and config is not None
        and config.mipsy_path_is_default
        and exc.path == config.mipsy_path
    ):
        hint = MIPSY_PATH_HINT
    if hint:
        err_console.print(f"[yellow]{escape(hint)}[/yellow]", soft_wrap=True)


def _report_result(result: InvocationResult) -> None:
    if result.terminated_by_signal:
        err_console.print(
            f"[yellow]mipsy was terminated by signal {result.signal_name}[/yellow]",
            soft_wrap=True,
        )
    elif result.exit_code:
        logger.info("mipsy exited with code %s", result.exit_code)


def _run_realtime(
    supervisor: Supervisor, request: InvocationRequest, settings: GameSettings
) -> InvocationResult:
    driver = GameDriver(settings)
    console.print(f"Using seed {settings.seed}")
    console.print("Starting Railroad Runners...")
    try:
        result = supervisor.run(request, stdin_mode=StdinMode.PIPE, on_start=driver.attach)
    finally:
        driver.finish(on_wait=lambda: console.print("Press any key to exit"))
    console.print(f"Game finished! Seed was {settings.seed}")
    return result


@app.command()
def play(
    file_name: Path = typer.Argument(
        ..., help="The file name of the railroad-runners assignment.", show_default=False
    ),
    mipsy_path: Optional[Path] = typer.Option(
        None, "--mipsy-path", metavar="MIPSY_PATH", help="The path to the mipsy executable."
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", metavar="CONFIG", help="YAML config file (defaults to the per-user config)."
    ),
    realtime: bool = typer.Option(
        False,
        "--realtime",
        help="Drive the game in real time: send the seed, tick automatically and relay w/a/s/d/q keys.",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        min=SEED_MIN,
        max=SEED_MAX,
        help="Seed for the game (implies --realtime). If omitted, a random seed will be used.",
    ),
    speed: Optional[float] = typer.Option(
        None, "--speed", help="Tick pacing multiplier for --realtime; higher is slower."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
    version: Optional[bool] = typer.Option(
        None, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit."
    ),
) -> None:
    """Run FILE_NAME under mipsy and exit with mipsy's exit code."""
    _configure_logging(verbose)
    realtime = realtime or seed is not None

    config: Optional[LauncherConfig] = None
    try:
        config = resolve_config(mipsy_path=mipsy_path, speed_multiplier=speed, config_file=config_file)
        request = InvocationRequest(interpreter_path=config.mipsy_path, program_path=file_name)
        supervisor = Supervisor()
        if realtime:
            settings = GameSettings(
                seed=seed if seed is not None else random_seed(),
                speed_multiplier=config.speed_multiplier,
            )
            result = _run_realtime(supervisor, request, settings)
        else:
            result = supervisor.run(request)
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(LAUNCH_FAILURE_EXIT_CODE)
    except LaunchError as exc:
        _report_launch_error(exc, config)
        raise typer.Exit(LAUNCH_FAILURE_EXIT_CODE)
    except SupervisionError as exc:
        err_console.print(f"[red]Supervision failed:[/red] {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(SUPERVISION_FAILURE_EXIT_CODE)

    _report_result(result)
    raise typer.Exit(result.shell_exit_code)


def main() -> None:
    app()


__all__ = ["app", "main", "play"]
