"""Error taxonomy shared by every installer component.

All errors are fatal: the CLI reports them once and exits with
:attr:`ExitCode.FAILURE`. Nothing is retried automatically.
"""
from __future__ import annotations

from collections.abc import Sequence

from .exit_codes import ExitCode


class InstallerError(RuntimeError):
    """Base class for fatal installer failures."""

    exit_code: ExitCode = ExitCode.FAILURE


class PrivilegeError(InstallerError):
    """Raised when the installer is not running as root."""


class UnsupportedPlatform(InstallerError):
    """Raised when the host OS release is neither Xenial nor Trusty."""


class MissingCapability(InstallerError):
    """Raised when the kernel lacks multi-lower-directory overlay support."""


class MissingTool(InstallerError):
    """Raised when one or more required command-line tools are absent."""

    def __init__(self, tools: Sequence[str]) -> None:
        """Record *tools* and build a single aggregated message."""
        self.tools = list(tools)
        super().__init__(f"this script requires: {' '.join(self.tools)}")


class AlreadyInstalled(InstallerError):
    """Raised when an install is requested on a host that already has flynn-host."""


class DownloadFailed(InstallerError):
    """Raised when the artifact cannot be fetched."""


class DecodeFailed(InstallerError):
    """Raised when the downloaded artifact cannot be decompressed."""


class ChecksumVerificationFailed(InstallerError):
    """Raised when the artifact digest is malformed or does not match."""


class ExternalCommandFailed(InstallerError):
    """Raised when a wrapped OS command exits non-zero."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = "") -> None:
        """Capture the literal command, its exit status and any output."""
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = f"command failed (exit {returncode}): {' '.join(self.command)}"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


class RemovalDeclined(Exception):
    """Raised when the operator answers ``no`` to the removal prompt.

    Not an :class:`InstallerError`: the run ends cleanly with exit status 0.
    """


__all__ = [
    "AlreadyInstalled",
    "ChecksumVerificationFailed",
    "DecodeFailed",
    "DownloadFailed",
    "ExternalCommandFailed",
    "InstallerError",
    "MissingCapability",
    "MissingTool",
    "PrivilegeError",
    "RemovalDeclined",
    "UnsupportedPlatform",
]
