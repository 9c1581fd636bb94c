"""Command execution capability injected into installer components."""
from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from .errors import ExternalCommandFailed, MissingTool

LOGGER = logging.getLogger(__name__)


def format_command(args: Sequence[str]) -> str:
    """Return *args* as a shell-quoted string for logs and messages."""
    return " ".join(shlex.quote(str(arg)) for arg in args)


@dataclass(slots=True)
class CommandRunner:
    """Run external programs sequentially, blocking until each completes.

    No timeout is applied: a hung package manager hangs the whole run.
    """

    env: Mapping[str, str] = field(default_factory=dict)

    def run(
        self,
        args: Sequence[str],
        *,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *args* and return the completed process.

        Raises :class:`ExternalCommandFailed` on a non-zero exit when *check*
        is true and :class:`MissingTool` when the program does not exist.
        """
        argv = [str(arg) for arg in args]
        LOGGER.debug("CMD %s", format_command(argv))
        merged = dict(os.environ)
        merged.update(self.env)
        if env:
            merged.update(env)
        try:
            result = subprocess.run(  # noqa: S603
                argv,
                input=input_text,
                capture_output=True,
                text=True,
                check=False,
                env=merged,
            )
        except FileNotFoundError as exc:
            raise MissingTool([argv[0]]) from exc
        if result.stdout:
            LOGGER.debug("STDOUT %s", result.stdout.strip())
        if result.stderr:
            LOGGER.debug("STDERR %s", result.stderr.strip())
        if check and result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise ExternalCommandFailed(argv, result.returncode, message)
        return result

    def which(self, name: str) -> str | None:
        """Return the resolved path for *name*, or ``None`` when absent."""
        return shutil.which(name)


def require_tools(runner: CommandRunner, tools: Iterable[str]) -> None:
    """Raise :class:`MissingTool` listing every entry of *tools* not on PATH."""
    missing = [tool for tool in tools if runner.which(tool) is None]
    if missing:
        raise MissingTool(missing)


__all__ = ["CommandRunner", "format_command", "require_tools"]
