"""Upstart provider for the flynn-host job (Trusty)."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..errors import MissingTool
from ..executor import CommandRunner
from ..templates import TemplateEngine

JOB_TEMPLATE = "upstart/flynn-host.conf.j2"
RESPAWN_LIMIT = 100
RESPAWN_INTERVAL = 60


@dataclass(slots=True)
class UpstartProvider:
    """Render and manage the flynn-host upstart job."""

    templates: TemplateEngine
    runner: CommandRunner
    job_path: Path = Path("/etc/init/flynn-host.conf")

    @property
    def job_name(self) -> str:
        """Return the upstart job name."""
        return self.job_path.stem

    @property
    def descriptor_path(self) -> Path:
        """Return the path of the job file."""
        return self.job_path

    def render_job(self, binary_path: Path) -> bool:
        """Render the job file running *binary_path*."""
        context = {
            "exec_start": f"{binary_path} daemon",
            "respawn_limit": RESPAWN_LIMIT,
            "respawn_interval": RESPAWN_INTERVAL,
        }
        return self.templates.render_to_path(JOB_TEMPLATE, self.job_path, context, mode=0o644)

    def register(self, binary_path: Path) -> bool:
        """Write the job file and make upstart pick it up."""
        changed = self.render_job(binary_path)
        self.runner.run(["initctl", "reload-configuration"])
        return changed

    def is_running(self) -> bool:
        """Return whether upstart reports the job as running."""
        try:
            result = self.runner.run(["status", self.job_name], check=False)
        except MissingTool:
            return False
        return result.returncode == 0 and "running" in (result.stdout or "")

    def stop_and_disable(self) -> list[str]:
        """Stop the job when it is running.

        Upstart has no separate enable state; removing the job file disables it.
        """
        if not self.is_running():
            return []
        self.runner.run(["stop", self.job_name])
        return ["stop"]

    def start_hint(self) -> str:
        """Return the command an operator runs to start the daemon."""
        return f"start {self.job_name}"


__all__ = ["UpstartProvider"]
