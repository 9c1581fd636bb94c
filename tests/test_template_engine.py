"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from flynn_installer.templates import TemplateEngine


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "systemd/flynn-host.service.j2",
        {"exec_start": "/usr/local/bin/flynn-host daemon"},
    )

    assert "ExecStart=/usr/local/bin/flynn-host daemon" in output
    assert output.endswith("\n")


def test_missing_variable_is_an_error() -> None:
    engine = TemplateEngine.with_overrides(None)
    with pytest.raises(UndefinedError):
        engine.render_to_string("upstart/flynn-host.conf.j2", {"exec_start": "x"})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "lib" / "systemd" / "system" / "flynn-host.service"
    context = {"exec_start": "/usr/local/bin/flynn-host daemon"}

    changed = engine.render_to_path(
        "systemd/flynn-host.service.j2",
        destination,
        context,
        mode=0o600,
    )

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"
    assert not destination.with_name(".flynn-host.service.tmp").exists()

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path(
        "systemd/flynn-host.service.j2",
        destination,
        context,
        mode=0o600,
    )
    assert changed_again is False


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "upstart" / "flynn-host.conf.j2"
    override_template.parent.mkdir(parents=True, exist_ok=True)
    override_template.write_text("exec {{ exec_start }} --debug", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    rendered = engine.render_to_string("upstart/flynn-host.conf.j2", {"exec_start": "flynn-host daemon"})
    assert rendered == "exec flynn-host daemon --debug"

    # Templates absent from the override directory still come from the package.
    unit = engine.render_to_string("systemd/flynn-host.service.j2", {"exec_start": "x"})
    assert "[Service]" in unit


def test_missing_override_directory_is_ignored(tmp_path: Path) -> None:
    engine = TemplateEngine.with_overrides(tmp_path / "absent")
    assert "respawn" in engine.render_to_string(
        "upstart/flynn-host.conf.j2",
        {"exec_start": "x", "respawn_limit": 1, "respawn_interval": 2},
    )
