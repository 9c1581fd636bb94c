"""Tests for the structured operations log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from flynn_installer.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    path = logger._operations_log_path  # type: ignore[attr-defined]
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_operation_records_steps_and_result(tmp_path: Path) -> None:
    """Each operation becomes one JSON line with its steps and outcome."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("install", args={"channel": "stable", "device": Path("/dev/sdb")}) as op:
        op.add_step("dependencies", detail="iptables ntp zfsutils-linux")
        op.add_step("service")
        op.success("Installation complete.", changed=1, context={"packages": ["iptables"]})

    (record,) = _records(logger)
    assert record["command"] == "install"
    assert record["args"] == {"channel": "stable", "device": "/dev/sdb"}
    assert record["steps"] == [
        {"name": "dependencies", "status": "success", "detail": "iptables ntp zfsutils-linux"},
        {"name": "service", "status": "success"},
    ]
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "success"
    assert result["changed"] == 1
    assert result["context"] == {"packages": ["iptables"]}


def test_operation_defaults_to_success(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")
    with logger.operation("remove"):
        pass
    (record,) = _records(logger)
    assert record["result"]["status"] == "success"  # type: ignore[index]


def test_escaping_exception_is_recorded_and_reraised(tmp_path: Path) -> None:
    """Uncaught failures are logged as errors before propagating."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError, match="apt-get exploded"):
        with logger.operation("install"):
            raise RuntimeError("apt-get exploded")

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["errors"] == ["apt-get exploded"]


def test_explicit_result_survives_exception(tmp_path: Path) -> None:
    """A result set before the exception is kept as-is."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(SystemExit):
        with logger.operation("install") as op:
            op.error("checksum mismatch", rc=1)
            raise SystemExit(1)

    (record,) = _records(logger)
    assert record["result"]["message"] == "checksum mismatch"  # type: ignore[index]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("install", args={"channel": "nightly"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger._operations_log_path  # type: ignore[attr-defined]

    original_open = Path.open

    def fail_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_open)

    with logger.operation("install") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("remove") as op:
        op.success("done", changed=0)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("install") as op:
        op.warning(
            "zpool options ignored",
            warnings=("no device",),
            context={"path": Path("/var/lib/flynn"), "obj": Custom()},
        )

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "warning"
    assert result["warnings"] == ["no device"]
    assert result["context"] == {"path": "/var/lib/flynn", "obj": "<custom>"}
