"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes emitted by ``flynn-install``.

    Every fatal condition shares a single status; usage errors included.
    """

    OK = 0
    FAILURE = 1
