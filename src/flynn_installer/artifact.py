"""Download and verify the content-addressed flynn-host binary.

The artifact is addressed by its own SHA-512 digest, which doubles as the
integrity proof. Verification happens before the payload is decompressed or
marked executable; any mismatch aborts the run.
"""
from __future__ import annotations

import gzip
import hashlib
import hmac
import logging
import os
import re
import shutil
import ssl
import tempfile
import urllib.error
import urllib.request
import zlib
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .errors import ChecksumVerificationFailed, DecodeFailed, DownloadFailed

LOGGER = logging.getLogger(__name__)

ARTIFACT_NAME = "flynn-host"
_CHECK_LINE = re.compile(r"^(?P<digest>[0-9a-f]{128}) [ *](?P<name>\S.*)$")
_CHUNK_SIZE = 1024 * 1024


@dataclass(slots=True)
class Artifact:
    """A downloaded binary and whether its digest has been verified."""

    content_digest: str
    source_repository_url: str
    local_path: Path
    verified: bool = False


def artifact_url(repo_url: str, digest: str) -> str:
    """Return the download URL for the artifact with *digest*."""
    return f"{repo_url.rstrip('/')}/tuf/targets/{digest}.{ARTIFACT_NAME}.gz"


def compute_digest(path: Path) -> str:
    """Return the SHA-512 hex digest of *path*."""
    digest = hashlib.sha512()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_digest(path: Path, expected: str) -> None:
    """Check *path* against *expected* the way ``sha512sum --check`` does.

    Raises :class:`ChecksumVerificationFailed` when the check line is malformed
    or the digest does not match.
    """
    check_line = f"{expected.strip().lower()}  {path.name}"
    match = _CHECK_LINE.match(check_line)
    if match is None:
        raise ChecksumVerificationFailed(
            f"malformed SHA-512 digest for {path.name}: {expected!r}"
        )
    actual = compute_digest(path)
    if not hmac.compare_digest(actual, match.group("digest")):
        raise ChecksumVerificationFailed(
            f"checksum mismatch for {path.name}: expected {match.group('digest')}, got {actual}"
        )


def decompress(source: Path, destination: Path) -> None:
    """Gunzip *source* into *destination* and remove *source*."""
    try:
        with gzip.open(source, "rb") as compressed, destination.open("wb") as plain:
            shutil.copyfileobj(compressed, plain, _CHUNK_SIZE)
    except (OSError, EOFError, zlib.error) as exc:
        destination.unlink(missing_ok=True)
        raise DecodeFailed(f"failed to decompress {source.name}: {exc}") from exc
    source.unlink()


class ArtifactFetcher:
    """Fetch flynn-host from a repository and verify it before use."""

    def __init__(self, repo_url: str, *, tmp_root: Path | None = None) -> None:
        """Initialise the fetcher for *repo_url*."""
        self.repo_url = repo_url.rstrip("/")
        self.tmp_root = tmp_root

    @contextmanager
    def fetch(self, digest: str) -> Iterator[Artifact]:
        """Yield a verified, executable :class:`Artifact` for *digest*.

        The artifact lives in an ephemeral directory that is removed when the
        context exits, whether normally, on error, or on interrupt.
        """
        with tempfile.TemporaryDirectory(
            prefix="flynn-host-",
            dir=str(self.tmp_root) if self.tmp_root is not None else None,
        ) as tmp_dir:
            workdir = Path(tmp_dir)
            compressed = workdir / f"{ARTIFACT_NAME}.gz"
            artifact = Artifact(
                content_digest=digest,
                source_repository_url=self.repo_url,
                local_path=workdir / ARTIFACT_NAME,
            )

            url = artifact_url(self.repo_url, digest)
            LOGGER.debug("Downloading %s to %s", url, compressed)
            self._download(url, compressed)

            verify_digest(compressed, digest)
            artifact.verified = True

            decompress(compressed, artifact.local_path)
            os.chmod(artifact.local_path, 0o755)
            yield artifact

    def _download(self, url: str, destination: Path) -> None:
        """Stream *url* into *destination* (isolated for testing)."""
        request = urllib.request.Request(url, headers={"User-Agent": "flynn-install"})
        context = ssl.create_default_context()
        try:
            with urllib.request.urlopen(request, context=context) as response:  # noqa: S310
                with destination.open("wb") as handle:
                    shutil.copyfileobj(response, handle, _CHUNK_SIZE)
        except urllib.error.HTTPError as exc:
            raise DownloadFailed(f"download of {url} failed: HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise DownloadFailed(f"download of {url} failed: {exc}") from exc


__all__ = [
    "ARTIFACT_NAME",
    "Artifact",
    "ArtifactFetcher",
    "artifact_url",
    "compute_digest",
    "decompress",
    "verify_digest",
]
