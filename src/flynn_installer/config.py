"""Configuration loader for flynn_installer.

Values are resolved once, at start-up, from the following sources in
increasing order of precedence:

1. Built-in defaults.
2. ``/etc/flynn-installer.yml`` (or an override path).
3. Environment variables: the named overrides ``FLYNN_HOST_CHECKSUM``,
   ``FLYNN_CHANNEL``, ``FLYNN_VERSION`` and ``FLYNN_REPO_URL``, plus any
   key prefixed with ``FLYNN_INSTALL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Prefixed environment keys use double underscores to express nesting, e.g.::

    export FLYNN_INSTALL_NTP=false
    export FLYNN_INSTALL_ZFS_PPA__KEYSERVER=hkp://keyserver.ubuntu.com:80

Values are coerced via PyYAML's ``safe_load`` so that booleans are parsed
naturally. The result is an immutable :class:`InstallerConfig` that is passed
to every component; nothing re-reads the environment afterwards.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure is environmental
    raise RuntimeError(
        "PyYAML is required to load flynn-installer configuration. Install with "
        "`pip install flynn-host-installer` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "FLYNN_INSTALL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}
NAMED_ENV_OVERRIDES = {
    "FLYNN_HOST_CHECKSUM": "flynn_host_checksum",
    "FLYNN_CHANNEL": "channel",
    "FLYNN_VERSION": "version",
    "FLYNN_REPO_URL": "repo_url",
}
ALLOWED_CHANNELS = ("stable", "nightly")


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class ZfsPpaConfig:
    """Third-party package source used for ZFS on Trusty."""

    keyserver: str = "keyserver.ubuntu.com"
    key: str = "E871F18B51E0147C77796AC81196BA81F6B0FC61"
    source: str = "deb http://ppa.launchpad.net/zfs-native/stable/ubuntu trusty main"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"keyserver": self.keyserver, "key": self.key, "source": self.source}


@dataclass(frozen=True)
class InstallerConfig:
    """Resolved configuration values for a single installer run."""

    config_file: Path
    repo_url: str
    flynn_host_checksum: str
    channel: str
    version: str | None
    bin_dir: Path
    config_dir: Path
    data_dir: Path
    log_dir: Path
    templates_dir: Path | None
    pool_name: str
    lsb_release_file: Path
    mounts_file: Path
    apt_sources_dir: Path
    systemd_unit_file: Path
    upstart_job_file: Path
    ntp: bool
    zfs_ppa: ZfsPpaConfig

    @property
    def channel_file(self) -> Path:
        """Return the path holding the persisted update channel."""
        return self.config_dir / "channel.txt"

    @property
    def tuf_db(self) -> Path:
        """Return the local metadata database used by ``flynn-host download``."""
        return self.config_dir / "tuf.db"

    @property
    def flynn_host_bin(self) -> Path:
        """Return the install path of the agent binary."""
        return self.bin_dir / "flynn-host"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "repo_url": self.repo_url,
            "flynn_host_checksum": self.flynn_host_checksum,
            "channel": self.channel,
            "version": self.version,
            "bin_dir": str(self.bin_dir),
            "config_dir": str(self.config_dir),
            "data_dir": str(self.data_dir),
            "log_dir": str(self.log_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "pool_name": self.pool_name,
            "lsb_release_file": str(self.lsb_release_file),
            "mounts_file": str(self.mounts_file),
            "apt_sources_dir": str(self.apt_sources_dir),
            "systemd_unit_file": str(self.systemd_unit_file),
            "upstart_job_file": str(self.upstart_job_file),
            "ntp": self.ntp,
            "zfs_ppa": self.zfs_ppa.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/flynn-installer.yml",
    "repo_url": "https://dl.flynn.io",
    "flynn_host_checksum": "",
    "channel": "stable",
    "version": None,
    "bin_dir": "/usr/local/bin",
    "config_dir": "/etc/flynn",
    "data_dir": "/var/lib/flynn",
    "log_dir": "/var/log/flynn-installer",
    "templates_dir": None,
    "pool_name": "flynn-default",
    "lsb_release_file": "/etc/lsb-release",
    "mounts_file": "/proc/mounts",
    "apt_sources_dir": "/etc/apt/sources.list.d",
    "systemd_unit_file": "/lib/systemd/system/flynn-host.service",
    "upstart_job_file": "/etc/init/flynn-host.conf",
    "ntp": True,
    "zfs_ppa": {
        "keyserver": "keyserver.ubuntu.com",
        "key": "E871F18B51E0147C77796AC81196BA81F6B0FC61",
        "source": "deb http://ppa.launchpad.net/zfs-native/stable/ubuntu trusty main",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_ZFS_PPA_KEYS = {"keyserver", "key", "source"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> InstallerConfig:
    """Load and merge configuration sources into an :class:`InstallerConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, {key: value for key, value in overrides.items() if value is not None})

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_installer_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    channel = raw.get("channel")
    if str(channel) not in ALLOWED_CHANNELS:
        allowed = ", ".join(ALLOWED_CHANNELS)
        raise ConfigError(f"Unsupported channel '{channel}'. Allowed: {allowed}.")

    repo_url = raw.get("repo_url")
    if not isinstance(repo_url, str) or not repo_url.strip():
        raise ConfigError("repo_url must be a non-empty string.")

    pool_name = raw.get("pool_name")
    if not isinstance(pool_name, str) or not pool_name.strip():
        raise ConfigError("pool_name must be a non-empty string.")

    if not isinstance(raw.get("ntp"), bool):
        raise ConfigError("ntp must be a boolean.")

    ppa_map = _as_dict(raw.get("zfs_ppa"), "zfs_ppa")
    unknown = set(ppa_map.keys()) - ALLOWED_ZFS_PPA_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown zfs_ppa configuration keys: {joined}.")


def _build_installer_config(raw: Mapping[str, object]) -> InstallerConfig:
    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    version_value = raw.get("version")
    version = str(version_value).strip() if version_value not in (None, "") else None

    checksum_value = raw.get("flynn_host_checksum")
    checksum = "" if checksum_value is None else str(checksum_value).strip()

    ppa_mapping = _as_dict(raw.get("zfs_ppa"), "zfs_ppa")
    defaults = ZfsPpaConfig()
    zfs_ppa = ZfsPpaConfig(
        keyserver=str(ppa_mapping.get("keyserver", defaults.keyserver)),
        key=str(ppa_mapping.get("key", defaults.key)),
        source=str(ppa_mapping.get("source", defaults.source)),
    )

    return InstallerConfig(
        config_file=_to_path(raw.get("config_file")),
        repo_url=str(raw.get("repo_url")).rstrip("/"),
        flynn_host_checksum=checksum,
        channel=str(raw.get("channel")),
        version=version,
        bin_dir=_to_path(raw.get("bin_dir")),
        config_dir=_to_path(raw.get("config_dir")),
        data_dir=_to_path(raw.get("data_dir")),
        log_dir=_to_path(raw.get("log_dir")),
        templates_dir=templates_dir,
        pool_name=str(raw.get("pool_name")),
        lsb_release_file=_to_path(raw.get("lsb_release_file")),
        mounts_file=_to_path(raw.get("mounts_file")),
        apt_sources_dir=_to_path(raw.get("apt_sources_dir")),
        systemd_unit_file=_to_path(raw.get("systemd_unit_file")),
        upstart_job_file=_to_path(raw.get("upstart_job_file")),
        ntp=bool(raw.get("ntp")),
        zfs_ppa=zfs_ppa,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in NAMED_ENV_OVERRIDES:
            # Named overrides are taken verbatim; a digest is never YAML-coerced.
            overrides[NAMED_ENV_OVERRIDES[key]] = value.strip()
            continue
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "ALLOWED_CHANNELS",
    "ConfigError",
    "InstallerConfig",
    "ZfsPpaConfig",
    "load_config",
]
