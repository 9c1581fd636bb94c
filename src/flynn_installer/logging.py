"""Structured operation logging for installer runs.

Each CLI invocation is recorded as a single JSON line in
``<log_dir>/operations.jsonl`` describing its arguments, the steps that were
executed and the final result. Logging is best-effort: if the directory
cannot be created or a write fails, the logger disables itself and the run
continues.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray)):
        return [_sanitize(item) for item in value]
    return str(value)


class OperationScope:
    """Collects steps and the outcome of one logged operation."""

    def __init__(self, command: str, args: Mapping[str, object] | None) -> None:
        """Initialise an empty scope for *command*."""
        self.command = command
        self.args = dict(args or {})
        self.op_id = uuid.uuid4().hex[:12]
        self.started_at = _timestamp()
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a named step."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result("success", message, rc=0, changed=changed, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as finished with warnings."""
        self._set_result(
            "warning",
            message,
            rc=0,
            changed=changed,
            context=context,
            warnings=list(warnings),
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            rc=rc,
            context=context,
            errors=list(errors) if errors else [message],
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        rc: int,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
        warnings: list[str] | None = None,
        errors: list[str] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "rc": rc,
            "changed": changed,
        }
        if warnings:
            result["warnings"] = warnings
        if errors:
            result["errors"] = errors
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable record for this operation."""
        return {
            "op_id": self.op_id,
            "command": self.command,
            "started_at": self.started_at,
            "finished_at": _timestamp(),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "args": _sanitize(self.args),
            "steps": self.steps,
            "result": self.result,
        }


class StructuredLogger:
    """Append-only JSON-lines log of installer operations."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*; disable logging if it cannot be created."""
        self.log_dir = log_dir
        self._operations_log_path = log_dir / "operations.jsonl"
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.debug("Disabling operations log; cannot create %s: %s", log_dir, exc)
            self._enabled = False

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield a scope for *command* and persist it when the block exits.

        Exceptions escaping the block are recorded as errors and re-raised.
        """
        scope = OperationScope(command, args)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            LOGGER.debug("Disabling operations log after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
