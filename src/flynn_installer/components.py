"""Run the verified flynn-host binary to pull the remaining components."""
from __future__ import annotations

from pathlib import Path

from .artifact import Artifact
from .errors import ChecksumVerificationFailed
from .executor import CommandRunner


def download_command(
    artifact: Artifact,
    *,
    repo_url: str,
    tuf_db: Path,
    config_dir: Path,
    bin_dir: Path,
    version: str | None = None,
) -> list[str]:
    """Return the ``flynn-host download`` invocation for *artifact*."""
    args = [
        str(artifact.local_path),
        "download",
        "--repository",
        f"{repo_url.rstrip('/')}/tuf",
        "--tuf-db",
        str(tuf_db),
        "--config-dir",
        str(config_dir),
        "--bin-dir",
        str(bin_dir),
    ]
    if version:
        args.extend(["--version", version])
    return args


def download_components(
    runner: CommandRunner,
    artifact: Artifact,
    *,
    repo_url: str,
    tuf_db: Path,
    config_dir: Path,
    bin_dir: Path,
    version: str | None = None,
) -> None:
    """Download flynn components into *bin_dir* using *artifact*."""
    if not artifact.verified:
        raise ChecksumVerificationFailed(
            f"refusing to execute unverified artifact {artifact.local_path}"
        )
    config_dir.mkdir(parents=True, exist_ok=True)
    bin_dir.mkdir(parents=True, exist_ok=True)
    runner.run(
        download_command(
            artifact,
            repo_url=repo_url,
            tuf_db=tuf_db,
            config_dir=config_dir,
            bin_dir=bin_dir,
            version=version,
        )
    )


__all__ = ["download_command", "download_components"]
