"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from flynn_installer.config import InstallerConfig
from flynn_installer.templates import TemplateEngine
from tests.fakes import FakeRunner, make_config


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Return a runner that records commands without executing them."""
    return FakeRunner()


@pytest.fixture
def config(tmp_path: Path) -> InstallerConfig:
    """Return a config rooted in the temporary directory."""
    return make_config(tmp_path)


@pytest.fixture
def templates() -> TemplateEngine:
    """Return a template engine using the built-in templates."""
    return TemplateEngine.with_overrides(None)
