"""Systemd provider for the flynn-host unit (Xenial)."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..errors import MissingTool
from ..executor import CommandRunner
from ..templates import TemplateEngine

UNIT_TEMPLATE = "systemd/flynn-host.service.j2"


@dataclass(slots=True)
class SystemdProvider:
    """Render and manage the flynn-host systemd unit."""

    templates: TemplateEngine
    runner: CommandRunner
    unit_path: Path = Path("/lib/systemd/system/flynn-host.service")
    systemctl_bin: str = "systemctl"

    @property
    def unit_name(self) -> str:
        """Return the systemd unit name."""
        return self.unit_path.name

    @property
    def descriptor_path(self) -> Path:
        """Return the path of the unit file."""
        return self.unit_path

    def render_unit(self, binary_path: Path) -> bool:
        """Render the unit file running *binary_path*; reload systemd if it changed."""
        context = {"exec_start": f"{binary_path} daemon"}
        changed = self.templates.render_to_path(UNIT_TEMPLATE, self.unit_path, context, mode=0o644)
        if changed:
            self._reload_daemon()
        return changed

    def register(self, binary_path: Path) -> bool:
        """Write the unit and enable it. Enabling twice is harmless."""
        changed = self.render_unit(binary_path)
        self.enable()
        return changed

    def enable(self) -> subprocess.CompletedProcess[str]:
        """Enable the unit."""
        return self._systemctl("enable")

    def disable(self) -> subprocess.CompletedProcess[str]:
        """Disable the unit."""
        return self._systemctl("disable")

    def stop(self) -> subprocess.CompletedProcess[str]:
        """Stop the unit."""
        return self._systemctl("stop")

    def is_active(self) -> bool:
        """Return whether the unit is currently running."""
        return self._query("is-active")

    def is_enabled(self) -> bool:
        """Return whether the unit is enabled."""
        return self._query("is-enabled")

    def stop_and_disable(self) -> list[str]:
        """Stop and disable the unit, skipping whatever is not applicable.

        Returns the actions that were performed.
        """
        actions: list[str] = []
        if self.is_active():
            self.stop()
            actions.append("stop")
        if self.is_enabled():
            self.disable()
            actions.append("disable")
        return actions

    def start_hint(self) -> str:
        """Return the command an operator runs to start the daemon."""
        return f"{self.systemctl_bin} start {self.unit_path.stem}"

    # ------------------------------------------------------------------
    def _query(self, command: str) -> bool:
        try:
            result = self._systemctl(command, check=False)
        except MissingTool:
            return False
        return result.returncode == 0

    def _reload_daemon(self) -> None:
        try:
            self._systemctl("daemon-reload", unit=False)
        except MissingTool:
            # Allow tests and non-systemd environments to proceed without error.
            return

    def _systemctl(
        self,
        command: str,
        *,
        unit: bool = True,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        args = [self.systemctl_bin, command]
        if unit:
            args.append(self.unit_path.stem)
        return self.runner.run(args, check=check)


__all__ = ["SystemdProvider"]
