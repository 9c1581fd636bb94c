"""Persist host configuration: the update channel and the optional ZFS pool."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from .executor import CommandRunner

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoragePoolRequest:
    """Device (and free-form ``zpool create`` options) for the flynn pool."""

    device: Path
    create_options: str = ""


def write_channel(channel_file: Path, channel: str) -> None:
    """Write *channel* to *channel_file*, replacing any previous value."""
    channel_file.parent.mkdir(parents=True, exist_ok=True)
    channel_file.write_text(f"{channel}\n", encoding="utf-8")
    LOGGER.debug("Release channel set to %s in %s", channel, channel_file)


def read_channel(channel_file: Path) -> str | None:
    """Return the persisted channel, or ``None`` when unset."""
    try:
        value = channel_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return value or None


def maybe_create_pool(
    runner: CommandRunner,
    request: StoragePoolRequest | None,
    pool_name: str,
) -> bool:
    """Create *pool_name* on the requested device; skip entirely without a request.

    Returns ``True`` when ``zpool create`` was run.
    """
    if request is None:
        return False
    args = ["zpool", "create", "-f", *shlex.split(request.create_options)]
    args.extend([pool_name, str(request.device)])
    runner.run(args)
    return True


__all__ = ["StoragePoolRequest", "maybe_create_pool", "read_channel", "write_channel"]
