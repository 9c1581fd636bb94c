"""Sequence probing, provisioning, fetching and registration for one run."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import typer
from rich.console import Console

from .artifact import ArtifactFetcher
from .components import download_components
from .config import InstallerConfig
from .dependencies import DependencyProvisioner
from .errors import AlreadyInstalled, ChecksumVerificationFailed
from .executor import CommandRunner, require_tools
from .host_config import StoragePoolRequest, maybe_create_pool, write_channel
from .logging import OperationScope
from .probe import InstallationTarget, OSVariant, require_union_filesystem
from .providers import ServiceRegistrar, service_provider_for
from .templates import TemplateEngine
from .uninstall import RemovalPaths, Uninstaller

LOGGER = logging.getLogger(__name__)

BASE_REQUIRED_TOOLS = ("apt-get", "modprobe", "mount", "umount")


@dataclass(frozen=True, slots=True)
class InstallOptions:
    """Flags controlling a single run."""

    channel: str = "stable"
    clean: bool = False
    remove: bool = False
    assume_yes: bool = False
    install_ntp: bool = True
    repo_url: str | None = None
    version: str | None = None
    pool_request: StoragePoolRequest | None = None


@dataclass(slots=True)
class InstallReport:
    """What an install run did."""

    removed: bool = False
    installed: bool = False
    packages: list[str] = field(default_factory=list)
    start_hint: str | None = None


def required_tools(target: InstallationTarget) -> tuple[str, ...]:
    """Return the command-line tools needed to install on *target*."""
    if target.variant is OSVariant.TRUSTY:
        return (*BASE_REQUIRED_TOOLS, "apt-key")
    return BASE_REQUIRED_TOOLS


@dataclass(slots=True)
class Orchestrator:
    """Drive an install, a removal, or a clean reinstall."""

    config: InstallerConfig
    target: InstallationTarget
    runner: CommandRunner
    templates: TemplateEngine
    console: Console
    input_fn: Callable[[str], str] = typer.prompt
    fetcher_factory: Callable[[str], ArtifactFetcher] = ArtifactFetcher
    service: ServiceRegistrar = field(init=False)

    def __post_init__(self) -> None:
        self.service = service_provider_for(self.target, self.config, self.runner, self.templates)

    def preflight(self) -> None:
        """Verify required tools, then kernel capability, before mutating anything.

        Tools are checked first so every missing program is reported at once.
        """
        require_tools(self.runner, required_tools(self.target))
        require_union_filesystem(self.runner)

    def run(self, options: InstallOptions, op: OperationScope | None = None) -> InstallReport:
        """Execute *options*; every step must succeed before the next begins."""
        report = InstallReport()
        if options.remove or options.clean:
            self.uninstaller().remove(assume_yes=options.assume_yes)
            report.removed = True
            self._step(op, "remove")
            self.info("Flynn successfully removed")
            if not options.clean:
                return report

        if self.config.flynn_host_bin.exists():
            raise AlreadyInstalled(
                "flynn-host is already installed. Run 'flynn-host update' to update to a "
                "more recent version, or use --clean to remove the existing install first"
            )

        digest = self.config.flynn_host_checksum
        if not digest:
            raise ChecksumVerificationFailed(
                "no flynn-host checksum configured; set FLYNN_HOST_CHECKSUM"
            )

        self.info("installing runtime dependencies")
        packages = self.provisioner().provision(self.target, options.install_ntp)
        report.packages = packages.as_list()
        self._step(op, "dependencies", detail=" ".join(packages))

        repo_url = (options.repo_url or self.config.repo_url).rstrip("/")
        fetcher = self.fetcher_factory(repo_url)

        self.info("downloading and verifying flynn-host binary")
        with fetcher.fetch(digest) as artifact:
            self._step(op, "artifact", detail=artifact.content_digest)

            self.info(f"setting release channel to {options.channel}")
            write_channel(self.config.channel_file, options.channel)
            self._step(op, "channel", detail=options.channel)

            if options.pool_request is not None:
                self.info(f"creating ZFS pool {self.config.pool_name}")
            if maybe_create_pool(self.runner, options.pool_request, self.config.pool_name):
                self._step(op, "zpool", detail=self.config.pool_name)

            self.info("downloading Flynn components")
            download_components(
                self.runner,
                artifact,
                repo_url=repo_url,
                tuf_db=self.config.tuf_db,
                config_dir=self.config.config_dir,
                bin_dir=self.config.bin_dir,
                version=options.version or self.config.version,
            )
            self._step(op, "components")

        self.info(f"registering flynn-host service ({self.service.descriptor_path})")
        self.service.register(self.config.flynn_host_bin)
        self._step(op, "service", detail=str(self.service.descriptor_path))

        report.installed = True
        report.start_hint = self.service.start_hint()
        self.info("installation complete!")
        self.info(f"start the daemon with '{report.start_hint}'")
        return report

    def provisioner(self) -> DependencyProvisioner:
        """Return the dependency provisioner for this host."""
        return DependencyProvisioner(
            runner=self.runner,
            apt_sources_dir=self.config.apt_sources_dir,
            zfs_ppa=self.config.zfs_ppa,
        )

    def uninstaller(self) -> Uninstaller:
        """Return the uninstaller for this host."""
        paths = RemovalPaths(
            bin_dir=self.config.bin_dir,
            data_dir=self.config.data_dir,
            config_dir=self.config.config_dir,
            descriptor_files=(self.config.upstart_job_file, self.config.systemd_unit_file),
        )
        self.warn("*** WARNING ***")
        self.warn("About to stop Flynn and remove all existing data")
        return Uninstaller(
            runner=self.runner,
            service=self.service,
            paths=paths,
            pool_name=self.config.pool_name,
            mounts_file=self.config.mounts_file,
            input_fn=self.input_fn,
            notify=self.info,
        )

    def info(self, message: str) -> None:
        """Print a progress line."""
        LOGGER.debug(message)
        self.console.print(f"[green]===>[/green] {message}")

    def warn(self, message: str) -> None:
        """Print a warning line."""
        LOGGER.debug(message)
        self.console.print(f"[yellow]===> WARN:[/yellow] {message}")

    @staticmethod
    def _step(op: OperationScope | None, name: str, *, detail: str | None = None) -> None:
        if op is not None:
            op.add_step(name, detail=detail)


__all__ = [
    "BASE_REQUIRED_TOOLS",
    "InstallOptions",
    "InstallReport",
    "Orchestrator",
    "required_tools",
]
