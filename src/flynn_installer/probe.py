"""Host capability probes run before any mutation takes place."""
from __future__ import annotations

import logging
import os
import platform
import tempfile
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .errors import ExternalCommandFailed, MissingCapability, PrivilegeError, UnsupportedPlatform
from .executor import CommandRunner

LOGGER = logging.getLogger(__name__)


class OSVariant(str, Enum):
    """Supported Ubuntu releases."""

    XENIAL = "xenial"
    TRUSTY = "trusty"

    @property
    def description(self) -> str:
        """Return the human-readable release name."""
        if self is OSVariant.XENIAL:
            return "Ubuntu 16.04 LTS (Xenial Xerus)"
        return "Ubuntu 14.04 LTS (Trusty Tahr)"


@dataclass(frozen=True, slots=True)
class InstallationTarget:
    """Facts about the host, captured once per run."""

    variant: OSVariant
    kernel_release: str


def require_root(euid: int | None = None) -> None:
    """Raise :class:`PrivilegeError` unless running as root."""
    effective = os.geteuid() if euid is None else euid
    if effective != 0:
        raise PrivilegeError("this script must be executed as the root user")


def detect_variant(lsb_release_file: Path) -> OSVariant:
    """Return the :class:`OSVariant` described by *lsb_release_file*."""
    try:
        content = lsb_release_file.read_text(encoding="utf-8")
    except OSError:
        content = ""
    fields: dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            fields[key.strip()] = value.strip().strip('"')
    codename = fields.get("DISTRIB_CODENAME", "")
    for variant in OSVariant:
        if codename == variant.value:
            return variant
    supported = " and ".join(variant.description for variant in OSVariant)
    raise UnsupportedPlatform(f"this script is only compatible with {supported}")


def detect_target(lsb_release_file: Path, *, kernel_release: str | None = None) -> InstallationTarget:
    """Build the :class:`InstallationTarget` for the running host."""
    variant = detect_variant(lsb_release_file)
    release = kernel_release if kernel_release is not None else platform.release()
    LOGGER.debug("Detected %s, kernel %s", variant.value, release)
    return InstallationTarget(variant=variant, kernel_release=release)


@contextmanager
def _overlay_mount(
    runner: CommandRunner,
    root: Path,
    lower_dirs: list[Path],
) -> Iterator[Path | None]:
    """Mount an overlay of *lower_dirs* under *root*, yielding the mount point.

    Yields ``None`` when the kernel refuses the mount. An established mount
    is always unmounted on exit.
    """
    upper = root / "upper"
    work = root / "work"
    mountpoint = root / "mnt"
    for path in (upper, work, mountpoint):
        path.mkdir()
    options = (
        f"lowerdir={':'.join(str(path) for path in lower_dirs)},"
        f"upperdir={upper},workdir={work}"
    )
    result = runner.run(
        ["mount", "-t", "overlay", "-o", options, "overlay", str(mountpoint)],
        check=False,
    )
    if result.returncode != 0:
        LOGGER.debug("Overlay mount refused (exit %s)", result.returncode)
        yield None
        return
    try:
        yield mountpoint
    finally:
        runner.run(["umount", str(mountpoint)])


def check_union_filesystem(runner: CommandRunner, *, tmp_root: Path | None = None) -> bool:
    """Return ``True`` when overlayfs supports multiple lower directories."""
    if runner.run(["modprobe", "overlay"], check=False).returncode != 0:
        return False

    with ExitStack() as stack:
        tmp_dir = stack.enter_context(
            tempfile.TemporaryDirectory(
                prefix="flynn-overlay-check-",
                dir=str(tmp_root) if tmp_root is not None else None,
            )
        )
        root = Path(tmp_dir)
        lower_dirs: list[Path] = []
        for index in (1, 2):
            lower = root / f"lower{index}"
            lower.mkdir()
            (lower / str(index)).write_text(f"{index}\n", encoding="utf-8")
            lower_dirs.append(lower)

        # Registered after the directory so it unwinds first: unmount, then remove.
        mountpoint = stack.enter_context(_overlay_mount(runner, root, lower_dirs))
        if mountpoint is None:
            return False
        return all(_non_empty(mountpoint / str(index)) for index in (1, 2))


def _non_empty(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


def require_union_filesystem(runner: CommandRunner, *, tmp_root: Path | None = None) -> None:
    """Raise :class:`MissingCapability` if the overlay check fails."""
    try:
        supported = check_union_filesystem(runner, tmp_root=tmp_root)
    except ExternalCommandFailed as exc:
        raise MissingCapability(f"overlayfs probe failed to clean up: {exc}") from exc
    if not supported:
        raise MissingCapability(
            "overlayfs with multiple lower directories is required (Linux 4.0+)"
        )


__all__ = [
    "InstallationTarget",
    "OSVariant",
    "check_union_filesystem",
    "detect_target",
    "detect_variant",
    "require_root",
    "require_union_filesystem",
]
