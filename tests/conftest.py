"""Shared fixtures for aci_imagegen tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import SIMPLE_MANIFEST, FakeRuntime


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path_factory, monkeypatch):
    """Keep user config files and sudo variables out of every test."""
    config_dir = tmp_path_factory.mktemp("config")
    monkeypatch.setenv("ACIGEN_CONFIG_DIR", str(config_dir))
    for var in ("SUDO_UID", "SUDO_GID", "SUDO_USER"):
        monkeypatch.delenv(var, raising=False)
    return config_dir


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Project directory with a simple manifest."""
    path = tmp_path / "project"
    path.mkdir()
    (path / "aci-manifest.yml").write_text(SIMPLE_MANIFEST)
    return path


@pytest.fixture
def runtime() -> FakeRuntime:
    """Recording fake runtime."""
    return FakeRuntime()
