"""Service-manager providers for the flynn-host daemon."""
from __future__ import annotations

from pathlib import Path
from typing import Protocol

from ..config import InstallerConfig
from ..executor import CommandRunner
from ..probe import InstallationTarget, OSVariant
from ..templates import TemplateEngine
from .systemd import SystemdProvider
from .upstart import UpstartProvider


class ServiceRegistrar(Protocol):
    """Operations shared by every supported service manager."""

    @property
    def descriptor_path(self) -> Path:
        """Return the descriptor file written by :meth:`register`."""
        ...

    def register(self, binary_path: Path) -> bool:
        """Write the descriptor and enable the service."""
        ...

    def stop_and_disable(self) -> list[str]:
        """Stop and disable the service when applicable."""
        ...

    def start_hint(self) -> str:
        """Return the command that starts the service."""
        ...


def service_provider_for(
    target: InstallationTarget,
    config: InstallerConfig,
    runner: CommandRunner,
    templates: TemplateEngine,
) -> ServiceRegistrar:
    """Return the provider matching the host's service manager."""
    if target.variant is OSVariant.XENIAL:
        return SystemdProvider(templates=templates, runner=runner, unit_path=config.systemd_unit_file)
    return UpstartProvider(templates=templates, runner=runner, job_path=config.upstart_job_file)


__all__ = [
    "ServiceRegistrar",
    "SystemdProvider",
    "UpstartProvider",
    "service_provider_for",
]
