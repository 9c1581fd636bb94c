"""Compute and install the OS packages flynn-host depends on."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from .config import ZfsPpaConfig
from .executor import CommandRunner
from .probe import InstallationTarget, OSVariant

LOGGER = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
FIREWALL_PACKAGE = "iptables"
NTP_PACKAGE = "ntp"
ZFS_PACKAGES = {
    OSVariant.XENIAL: "zfsutils-linux",
    OSVariant.TRUSTY: "ubuntu-zfs",
}
ZFS_KERNEL_MODULE = "zfs"
ZFS_SOURCES_LIST = "zfs.list"


class DependencySet:
    """Ordered, de-duplicated, append-only collection of package names."""

    def __init__(self, packages: Iterable[str] = ()) -> None:
        """Seed the set with *packages* in order."""
        self._packages: list[str] = []
        for package in packages:
            self.add(package)

    def add(self, package: str) -> bool:
        """Append *package* unless already present; return whether it was added."""
        if package in self._packages:
            return False
        self._packages.append(package)
        return True

    def __contains__(self, package: object) -> bool:
        return package in self._packages

    def __iter__(self) -> Iterator[str]:
        return iter(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def __repr__(self) -> str:
        return f"DependencySet({self._packages!r})"

    def as_list(self) -> list[str]:
        """Return a copy of the packages in insertion order."""
        return list(self._packages)


def plan_dependencies(variant: OSVariant, install_ntp: bool) -> DependencySet:
    """Return the packages required on *variant*."""
    packages = DependencySet([FIREWALL_PACKAGE])
    if install_ntp:
        packages.add(NTP_PACKAGE)
    packages.add(ZFS_PACKAGES[variant])
    return packages


@dataclass(slots=True)
class DependencyProvisioner:
    """Install runtime dependencies through apt and load the ZFS module.

    Failures propagate immediately; packages already installed are left in
    place.
    """

    runner: CommandRunner
    apt_sources_dir: Path = Path("/etc/apt/sources.list.d")
    zfs_ppa: ZfsPpaConfig = field(default_factory=ZfsPpaConfig)

    def provision(self, target: InstallationTarget, install_ntp: bool) -> DependencySet:
        """Prepare package sources, install the dependency set and load ZFS."""
        packages = plan_dependencies(target.variant, install_ntp)
        if target.variant is OSVariant.XENIAL:
            self._apt(["update"])
        else:
            self._add_zfs_ppa()
            self._apt(["update"])
            # zfs-dkms builds against the running kernel's headers.
            self._apt(["install", "-y", f"linux-headers-{target.kernel_release}"])

        LOGGER.debug("Installing runtime dependencies: %s", ", ".join(packages))
        self._apt(["install", "-y", *packages])
        self.runner.run(["modprobe", ZFS_KERNEL_MODULE])
        return packages

    def _add_zfs_ppa(self) -> None:
        self.runner.run(
            [
                "apt-key",
                "adv",
                "--keyserver",
                self.zfs_ppa.keyserver,
                "--recv",
                self.zfs_ppa.key,
            ]
        )
        sources_list = self.apt_sources_dir / ZFS_SOURCES_LIST
        sources_list.parent.mkdir(parents=True, exist_ok=True)
        sources_list.write_text(f"{self.zfs_ppa.source}\n", encoding="utf-8")
        LOGGER.debug("Wrote %s", sources_list)

    def _apt(self, args: list[str]) -> None:
        self.runner.run(["apt-get", *args], env=APT_ENV)


__all__ = [
    "DependencyProvisioner",
    "DependencySet",
    "FIREWALL_PACKAGE",
    "NTP_PACKAGE",
    "ZFS_PACKAGES",
    "plan_dependencies",
]
