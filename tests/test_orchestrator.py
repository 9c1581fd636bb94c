"""End-to-end scenarios for the install, removal and reinstall flows."""
from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from flynn_installer.config import InstallerConfig
from flynn_installer.errors import AlreadyInstalled, ChecksumVerificationFailed, MissingTool
from flynn_installer.host_config import StoragePoolRequest, read_channel
from flynn_installer.logging import StructuredLogger
from flynn_installer.orchestrator import InstallOptions, Orchestrator, required_tools
from flynn_installer.probe import InstallationTarget, OSVariant
from flynn_installer.providers import SystemdProvider, UpstartProvider
from flynn_installer.templates import TemplateEngine
from tests.fakes import (
    FakeRunner,
    StaticFetcher,
    gzipped_payload,
    make_config,
    overlay_mount_action,
    overlay_umount_action,
)

XENIAL = InstallationTarget(variant=OSVariant.XENIAL, kernel_release="4.4.0-21-generic")
TRUSTY = InstallationTarget(variant=OSVariant.TRUSTY, kernel_release="4.4.0-45-generic")


class Harness:
    """Wire an orchestrator against fakes rooted in a temporary directory."""

    def __init__(
        self,
        tmp_path: Path,
        *,
        target: InstallationTarget = XENIAL,
        payload: bytes | None = None,
        answers: tuple[str, ...] = (),
        **config_overrides: object,
    ) -> None:
        """Build the config, runner, fetcher and orchestrator."""
        good_payload, digest = gzipped_payload()
        config_overrides.setdefault("flynn_host_checksum", digest)
        self.config: InstallerConfig = make_config(tmp_path, **config_overrides)
        self.runner = FakeRunner()
        self.output = io.StringIO()
        self.fetchers: list[StaticFetcher] = []
        served = good_payload if payload is None else payload
        scratch = tmp_path / "scratch"
        scratch.mkdir(exist_ok=True)

        def _factory(repo_url: str) -> StaticFetcher:
            fetcher = StaticFetcher(repo_url, served, tmp_root=scratch)
            self.fetchers.append(fetcher)
            return fetcher

        replies = iter(answers)

        def _input(prompt: str) -> str:
            return next(replies)

        self.orchestrator = Orchestrator(
            config=self.config,
            target=target,
            runner=self.runner,
            templates=TemplateEngine.with_overrides(None),
            console=Console(file=self.output, force_terminal=False, width=200),
            input_fn=_input,
            fetcher_factory=_factory,
        )

    def seed_install(self) -> None:
        """Lay down the files a previous installation would have left."""
        self.config.bin_dir.mkdir(parents=True, exist_ok=True)
        self.config.flynn_host_bin.write_text("old", encoding="utf-8")
        (self.config.bin_dir / "flynn-init").write_text("old", encoding="utf-8")
        (self.config.data_dir / "volumes").mkdir(parents=True, exist_ok=True)
        self.config.config_dir.mkdir(parents=True, exist_ok=True)
        self.config.channel_file.write_text("nightly\n", encoding="utf-8")
        self.config.systemd_unit_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.systemd_unit_file.write_text("old unit", encoding="utf-8")


def test_fresh_xenial_install(tmp_path: Path) -> None:
    """Dependencies, artifact, channel, components and unit, in that order."""
    harness = Harness(tmp_path)
    options = InstallOptions(channel="stable", install_ntp=True)

    report = harness.orchestrator.run(options)

    commands = harness.runner.commands()
    assert commands[:3] == [
        "apt-get update",
        "apt-get install -y iptables ntp zfsutils-linux",
        "modprobe zfs",
    ]
    assert harness.runner.calls[3][1:4] == ["download", "--repository", "https://dl.example.test/tuf"]
    assert commands[4:] == ["systemctl daemon-reload", "systemctl enable flynn-host"]

    assert report.installed is True
    assert report.removed is False
    assert report.packages == ["iptables", "ntp", "zfsutils-linux"]
    assert report.start_hint == "systemctl start flynn-host"
    assert read_channel(harness.config.channel_file) == "stable"
    assert "ExecStart=" + str(harness.config.flynn_host_bin) in harness.config.systemd_unit_file.read_text(
        encoding="utf-8"
    )
    assert not harness.config.upstart_job_file.exists()
    assert list((tmp_path / "scratch").iterdir()) == []
    assert "installation complete!" in harness.output.getvalue()


def test_install_respects_repo_version_and_ntp(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    options = InstallOptions(
        channel="nightly",
        install_ntp=False,
        repo_url="https://mirror.example.test/",
        version="v20170101.0",
    )

    harness.orchestrator.run(options)

    assert harness.fetchers[0].urls[0].startswith("https://mirror.example.test/tuf/targets/")
    download = harness.runner.calls[3]
    assert download[download.index("--repository") + 1] == "https://mirror.example.test/tuf"
    assert download[-2:] == ["--version", "v20170101.0"]
    assert "ntp" not in harness.runner.calls[1]
    assert read_channel(harness.config.channel_file) == "nightly"


def test_install_creates_pool_when_requested(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    options = InstallOptions(pool_request=StoragePoolRequest(device=Path("/dev/sdb")))

    harness.orchestrator.run(options)

    commands = harness.runner.commands()
    assert commands.index("zpool create -f flynn-default /dev/sdb") < 4


def test_already_installed_changes_nothing(tmp_path: Path) -> None:
    """An existing binary aborts before any command runs."""
    harness = Harness(tmp_path)
    harness.seed_install()

    with pytest.raises(AlreadyInstalled, match="--clean"):
        harness.orchestrator.run(InstallOptions())

    assert harness.runner.calls == []
    assert harness.fetchers == []
    assert harness.config.channel_file.read_text(encoding="utf-8") == "nightly\n"


def test_clean_reinstall_removes_then_installs(tmp_path: Path) -> None:
    """--clean --yes tears down the old install without prompting."""
    harness = Harness(tmp_path)
    harness.seed_install()
    harness.runner.on("zpool", "list", stdout="flynn-default\n")
    old_binary = str(harness.config.flynn_host_bin)

    report = harness.orchestrator.run(InstallOptions(clean=True, assume_yes=True))

    commands = harness.runner.commands()
    assert f"{old_binary} destroy-volumes --include-data" in commands
    destroy = commands.index("zpool destroy flynn-default")
    assert destroy < commands.index("apt-get update")
    assert report.removed is True
    assert report.installed is True
    assert not (harness.config.bin_dir / "flynn-init").exists()
    assert not (harness.config.data_dir / "volumes").exists()
    assert read_channel(harness.config.channel_file) == "stable"
    assert "Flynn successfully removed" in harness.output.getvalue()


def test_remove_only_stops_after_removal(tmp_path: Path) -> None:
    harness = Harness(tmp_path, answers=("yes",))
    harness.seed_install()

    report = harness.orchestrator.run(InstallOptions(remove=True))

    assert report.removed is True
    assert report.installed is False
    assert "apt-get update" not in harness.runner.commands()
    assert not harness.config.flynn_host_bin.exists()
    assert not harness.config.systemd_unit_file.exists()


def test_missing_checksum_fails_before_provisioning(tmp_path: Path) -> None:
    harness = Harness(tmp_path, flynn_host_checksum="")

    with pytest.raises(ChecksumVerificationFailed, match="FLYNN_HOST_CHECKSUM"):
        harness.orchestrator.run(InstallOptions())

    assert harness.runner.calls == []


def test_tampered_artifact_stops_before_configuration(tmp_path: Path) -> None:
    """A digest mismatch leaves no channel, components or service behind."""
    payload, _ = gzipped_payload()
    tampered = payload[:-1] + bytes([payload[-1] ^ 0xFF])
    harness = Harness(tmp_path, payload=tampered)

    with pytest.raises(ChecksumVerificationFailed):
        harness.orchestrator.run(InstallOptions())

    assert harness.runner.commands()[-1] == "modprobe zfs"
    assert not harness.config.channel_file.exists()
    assert not harness.config.systemd_unit_file.exists()
    assert list((tmp_path / "scratch").iterdir()) == []


def test_trusty_install_uses_ppa_and_upstart(tmp_path: Path) -> None:
    harness = Harness(tmp_path, target=TRUSTY)

    report = harness.orchestrator.run(InstallOptions())

    assert isinstance(harness.orchestrator.service, UpstartProvider)
    commands = harness.runner.commands()
    assert commands[0].startswith("apt-key adv --keyserver keyserver.ubuntu.com")
    assert "apt-get install -y linux-headers-4.4.0-45-generic" in commands
    assert "apt-get install -y iptables ntp ubuntu-zfs" in commands
    assert commands[-1] == "initctl reload-configuration"
    assert harness.config.upstart_job_file.exists()
    assert report.start_hint == "start flynn-host"


def test_xenial_uses_systemd(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    assert isinstance(harness.orchestrator.service, SystemdProvider)


def test_steps_are_logged(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    logger = StructuredLogger(harness.config.log_dir)

    with logger.operation("install") as op:
        harness.orchestrator.run(InstallOptions(), op)
        names = [step["name"] for step in op.steps]

    assert names == ["dependencies", "artifact", "channel", "components", "service"]


def test_required_tools_per_variant() -> None:
    assert "apt-key" in required_tools(TRUSTY)
    assert "apt-key" not in required_tools(XENIAL)


def test_preflight_passes_with_overlay_support(tmp_path: Path) -> None:
    harness = Harness(tmp_path)
    harness.runner.on("mount", action=overlay_mount_action()).on("umount", action=overlay_umount_action)
    harness.orchestrator.preflight()
    assert harness.runner.commands()[0] == "modprobe overlay"


def test_preflight_reports_missing_tools(tmp_path: Path) -> None:
    harness = Harness(tmp_path, target=TRUSTY)
    harness.runner.available = {"apt-get", "modprobe", "mount", "umount"}
    harness.runner.on("mount", action=overlay_mount_action()).on("umount", action=overlay_umount_action)

    with pytest.raises(MissingTool, match="this script requires: apt-key"):
        harness.orchestrator.preflight()


def test_preflight_aggregates_missing_tools_before_probing(tmp_path: Path) -> None:
    """Every absent program is listed in one error and nothing is executed."""
    harness = Harness(tmp_path, target=TRUSTY)
    harness.runner.missing = {"modprobe", "apt-key", "apt-get"}

    with pytest.raises(MissingTool) as excinfo:
        harness.orchestrator.preflight()

    assert excinfo.value.tools == ["apt-get", "modprobe", "apt-key"]
    assert harness.runner.calls == []
