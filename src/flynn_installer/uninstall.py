"""Remove flynn-host and everything it manages from the host.

Removal walks a fixed sequence of stages. A failure in any stage propagates
immediately; the remaining stages are not attempted and there is no resume.
Every stage tolerates targets that are already gone, so running removal on a
clean host succeeds.
"""
from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import typer

from .errors import RemovalDeclined
from .executor import CommandRunner
from .providers import ServiceRegistrar

LOGGER = logging.getLogger(__name__)

CONTAINER_INIT_NAME = ".containerinit"
KILL_RETRIES = 5
MANAGED_FILESYSTEM = "zfs"

InputFn = Callable[[str], str]


class ConfirmationState(str, Enum):
    """States of the removal confirmation prompt."""

    PROMPTING = "prompting"
    CONFIRMED = "confirmed"
    DECLINED = "declined"


@dataclass(slots=True)
class ConfirmationPrompt:
    """Ask the operator to type ``yes`` or ``no`` until they do."""

    input_fn: InputFn
    question: str = "Are you sure you want to remove Flynn and all of its data? [yes/no]"
    state: ConfirmationState = ConfirmationState.PROMPTING
    attempts: int = 0

    def ask(self) -> ConfirmationState:
        """Prompt until an exact, case-sensitive ``yes`` or ``no`` is entered.

        End of input or an aborted prompt counts as ``no``.
        """
        while self.state is ConfirmationState.PROMPTING:
            self.attempts += 1
            try:
                answer = self.input_fn(self.question)
            except (EOFError, typer.Abort):
                self.state = ConfirmationState.DECLINED
                break
            answer = answer.strip("\r\n")
            if answer == "yes":
                self.state = ConfirmationState.CONFIRMED
            elif answer == "no":
                self.state = ConfirmationState.DECLINED
        return self.state


class RemovalStage(str, Enum):
    """Stages of the removal sequence, in execution order."""

    CONFIRM_PENDING = "confirm-pending"
    STOPPING = "stopping"
    KILLING_WORKLOADS = "killing-workloads"
    DESTROYING_VOLUMES = "destroying-volumes"
    REMOVING_FILES = "removing-files"
    REMOVED = "removed"


@dataclass(slots=True)
class RemovalPaths:
    """Filesystem locations deleted during removal."""

    bin_dir: Path
    data_dir: Path
    config_dir: Path
    descriptor_files: tuple[Path, ...]

    @property
    def flynn_host_bin(self) -> Path:
        """Return the installed agent binary."""
        return self.bin_dir / "flynn-host"


@dataclass(slots=True)
class Uninstaller:
    """Reverse an installation: stop, kill, destroy, delete."""

    runner: CommandRunner
    service: ServiceRegistrar
    paths: RemovalPaths
    pool_name: str = "flynn-default"
    mounts_file: Path = Path("/proc/mounts")
    input_fn: InputFn = typer.prompt
    notify: Callable[[str], None] = LOGGER.info
    stage: RemovalStage = RemovalStage.CONFIRM_PENDING
    history: list[RemovalStage] = field(default_factory=list)

    def remove(self, assume_yes: bool = False) -> None:
        """Run every removal stage, prompting first unless *assume_yes*.

        Raises :class:`RemovalDeclined` when the operator does not confirm.
        """
        self._enter(RemovalStage.CONFIRM_PENDING)
        if not assume_yes:
            prompt = ConfirmationPrompt(self.input_fn)
            if prompt.ask() is not ConfirmationState.CONFIRMED:
                raise RemovalDeclined("removal not confirmed")

        self._enter(RemovalStage.STOPPING)
        self.notify("stopping flynn-host daemon")
        self.service.stop_and_disable()

        self._enter(RemovalStage.KILLING_WORKLOADS)
        self.notify("killing running containers")
        self.kill_workloads()

        self._enter(RemovalStage.DESTROYING_VOLUMES)
        self.notify("destroying ZFS volumes")
        self.destroy_volumes()

        self._enter(RemovalStage.REMOVING_FILES)
        self.notify("removing Flynn files and directories")
        self.remove_files()

        self._enter(RemovalStage.REMOVED)

    def kill_workloads(self) -> None:
        """Send SIGTERM to container init processes; none running is fine."""
        self.runner.run(
            [
                "start-stop-daemon",
                "--stop",
                "--oknodo",
                "--retry",
                str(KILL_RETRIES),
                "--name",
                CONTAINER_INIT_NAME,
            ]
        )

    def destroy_volumes(self) -> None:
        """Unmount ZFS mounts, destroy flynn volumes and the flynn pool.

        The binary check and the pool check are independent: a pool left
        behind by a missing binary is still destroyed.
        """
        for mountpoint in self.managed_mounts():
            self.runner.run(["umount", mountpoint])

        flynn_host = self.paths.flynn_host_bin
        if flynn_host.exists():
            self.runner.run([str(flynn_host), "destroy-volumes", "--include-data"])

        if self.pool_exists():
            self.runner.run(["zpool", "destroy", self.pool_name])

    def managed_mounts(self) -> list[str]:
        """Return mount points of type ``zfs`` from the live mount table."""
        try:
            content = self.mounts_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        mounts: list[str] = []
        for line in content.splitlines():
            fields = line.split()
            if len(fields) >= 3 and fields[2] == MANAGED_FILESYSTEM:
                mounts.append(_unescape_mount_path(fields[1]))
        return mounts

    def pool_exists(self) -> bool:
        """Return whether ``zpool list`` shows the flynn pool."""
        if self.runner.which("zpool") is None:
            return False
        result = self.runner.run(["zpool", "list", "-H", "-o", "name"], check=False)
        if result.returncode != 0:
            return False
        return self.pool_name in (result.stdout or "").split()

    def remove_files(self) -> None:
        """Delete binaries, data, config and both service descriptors."""
        targets: list[Path] = []
        if self.paths.bin_dir.is_dir():
            targets.extend(sorted(self.paths.bin_dir.glob("flynn*")))
        targets.extend([self.paths.data_dir, self.paths.config_dir])
        targets.extend(self.paths.descriptor_files)
        for target in targets:
            _remove_path(target)

    def _enter(self, stage: RemovalStage) -> None:
        LOGGER.debug("Removal stage: %s", stage.value)
        self.stage = stage
        self.history.append(stage)


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)
    LOGGER.debug("Removed %s", path)


def _unescape_mount_path(value: str) -> str:
    # /proc/mounts octal-escapes whitespace and backslashes.
    return (
        value.replace("\\040", " ")
        .replace("\\011", "\t")
        .replace("\\012", "\n")
        .replace("\\134", "\\")
    )


__all__ = [
    "ConfirmationPrompt",
    "ConfirmationState",
    "RemovalPaths",
    "RemovalStage",
    "Uninstaller",
]
