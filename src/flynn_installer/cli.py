"""Typer-powered command line for ``flynn-install``.

A single command installs flynn-host, removes it (``--remove``), or does both
(``--clean``). Every fatal condition prints a red diagnostic and exits with
status 1; asking for help or passing unknown arguments does the same after
printing usage.
"""
from __future__ import annotations

import textwrap
from enum import Enum
from pathlib import Path
from typing import NoReturn

import click
import typer
from rich.console import Console
from typer.core import TyperCommand

from .config import ConfigError, load_config
from .errors import InstallerError, RemovalDeclined
from .executor import CommandRunner
from .exit_codes import ExitCode
from .host_config import StoragePoolRequest
from .logging import OperationScope, StructuredLogger
from .orchestrator import InstallOptions, Orchestrator
from .probe import detect_target, require_root
from .templates import TemplateEngine

console = Console()


class Channel(str, Enum):
    """Release channels a host can follow."""

    STABLE = "stable"
    NIGHTLY = "nightly"


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install or remove the Flynn host daemon.

        Supports Ubuntu 16.04 LTS (Xenial) and 14.04 LTS (Trusty). Must be run
        as root.
        """
    ).strip(),
)

CONTEXT_SETTINGS = {
    "help_option_names": [],
    "allow_extra_args": True,
    "ignore_unknown_options": True,
}


class InstallCommand(TyperCommand):
    """Command whose parse errors share the fatal exit status."""

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        try:
            return super().parse_args(ctx, args)
        except click.UsageError as exc:
            # Covers bad choices and options missing their value.
            exc.exit_code = int(ExitCode.FAILURE)
            raise


def _build_orchestrator(
    config_file: Path | None,
    overrides: dict[str, object],
) -> Orchestrator:
    """Resolve configuration and host facts once and wire the components."""
    config = load_config(config_file=config_file, overrides=overrides)
    require_root()
    target = detect_target(config.lsb_release_file)
    return Orchestrator(
        config=config,
        target=target,
        runner=CommandRunner(),
        templates=TemplateEngine.with_overrides(config.templates_dir),
        console=console,
        input_fn=typer.prompt,
    )


def _fail(message: str, op: OperationScope | None = None) -> NoReturn:
    """Emit a fatal diagnostic and terminate with the failure status."""
    console.print(f"[bold red]===> ERROR:[/bold red] {message}")
    if op is not None:
        op.error(message, rc=int(ExitCode.FAILURE))
    raise typer.Exit(code=int(ExitCode.FAILURE))


def _usage_error(ctx: typer.Context, message: str | None = None) -> NoReturn:
    console.print(ctx.get_help())
    if message:
        console.print(f"[red]{message}[/red]")
    raise typer.Exit(code=int(ExitCode.FAILURE))


@app.command(cls=InstallCommand, context_settings=CONTEXT_SETTINGS)
def install(
    ctx: typer.Context,
    version: str | None = typer.Option(
        None,
        "--version",
        help="Install an explicit version instead of the latest on the channel.",
    ),
    channel: Channel | None = typer.Option(
        None,
        "--channel",
        case_sensitive=True,
        help="Release channel to follow (defaults to stable).",
    ),
    clean: bool = typer.Option(
        False,
        "--clean",
        help="Remove an existing installation before installing.",
    ),
    remove: bool = typer.Option(
        False,
        "--remove",
        help="Remove Flynn and all of its data, then exit.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        help="Assume 'yes' for the removal confirmation prompt.",
    ),
    no_ntp: bool = typer.Option(
        False,
        "--no-ntp",
        help="Do not install the ntp time-sync daemon.",
    ),
    repo: str | None = typer.Option(
        None,
        "--repo",
        metavar="URL",
        help="Repository to download flynn-host and its components from.",
    ),
    zpool_create_device: Path | None = typer.Option(
        None,
        "--zpool-create-device",
        metavar="DEV",
        help="Block device to create the flynn-default ZFS pool on.",
    ),
    zpool_create_options: str | None = typer.Option(
        None,
        "--zpool-create-options",
        metavar="OPTS",
        help="Extra options passed to 'zpool create'.",
    ),
    config_file: Path | None = typer.Option(
        None,
        "--config-file",
        dir_okay=False,
        help="Override the path to the installer's YAML config file.",
    ),
    show_help: bool = typer.Option(
        False,
        "-h",
        "--help",
        is_eager=True,
        help="Show this message and exit.",
    ),
) -> None:
    """Install flynn-host and register it as a supervised service."""
    if show_help:
        _usage_error(ctx)
    if ctx.args:
        _usage_error(ctx, f"unknown argument: {' '.join(ctx.args)}")

    overrides: dict[str, object] = {
        "channel": channel.value if channel is not None else None,
        "repo_url": repo,
        "version": version,
    }
    try:
        orchestrator = _build_orchestrator(config_file, overrides)
    except (InstallerError, ConfigError) as exc:
        _fail(str(exc))

    config = orchestrator.config
    warnings: list[str] = []
    pool_request: StoragePoolRequest | None = None
    if zpool_create_device is not None:
        pool_request = StoragePoolRequest(
            device=zpool_create_device,
            create_options=zpool_create_options or "",
        )
    elif zpool_create_options:
        warnings.append("--zpool-create-options ignored without --zpool-create-device")
        orchestrator.warn(warnings[-1])

    options = InstallOptions(
        channel=config.channel,
        clean=clean,
        remove=remove,
        assume_yes=yes,
        install_ntp=config.ntp and not no_ntp,
        repo_url=repo,
        version=version or config.version,
        pool_request=pool_request,
    )
    remove_only = remove and not clean

    logger = StructuredLogger(config.log_dir)
    with logger.operation(
        "remove" if remove_only else "install",
        args={
            "channel": options.channel,
            "clean": clean,
            "remove": remove,
            "assume_yes": yes,
            "install_ntp": options.install_ntp,
            "repo_url": repo or config.repo_url,
            "version": options.version,
            "zpool_create_device": zpool_create_device,
        },
    ) as op:
        try:
            # Removal needs neither overlayfs nor the package tools.
            if not remove_only:
                orchestrator.preflight()
            report = orchestrator.run(options, op)
        except RemovalDeclined:
            console.print("[yellow]Removal cancelled; nothing was changed.[/yellow]")
            op.success("Removal declined by operator.", changed=0)
            raise typer.Exit(code=int(ExitCode.OK)) from None
        except (InstallerError, ConfigError) as exc:
            _fail(str(exc), op)
        message = "Installation complete." if report.installed else "Removal complete."
        context = {"packages": report.packages}
        if warnings:
            op.warning(message, warnings=warnings, changed=1, context=context)
        else:
            op.success(message, changed=1, context=context)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["Channel", "InstallCommand", "app", "install", "main"]
