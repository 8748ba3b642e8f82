"""Tests for the rkt runtime adapter.

subprocess is mocked; no rkt binary is needed.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from aci_imagegen.errors import RuntimeCommandError
from aci_imagegen.runtime.bridge import RuntimeBridge
from aci_imagegen.runtime.rkt import RktRuntime


def _completed(returncode: int = 0, stdout: str = "", stderr: str = ""):
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


class TestRktRuntime:
    """Tests for RktRuntime."""

    def test_implements_bridge(self) -> None:
        assert isinstance(RktRuntime(), RuntimeBridge)

    def test_compose_includes_global_options(self) -> None:
        runtime = RktRuntime("/opt/rkt", ["--dir=/var/lib/rkt"])
        assert runtime.compose("image", "rm", "sha512-x") == [
            "/opt/rkt",
            "--dir=/var/lib/rkt",
            "image",
            "rm",
            "sha512-x",
        ]

    def test_fetch_returns_last_line(self) -> None:
        with patch("subprocess.run", return_value=_completed(stdout="noise\nsha512-abc\n")) as run:
            assert RktRuntime().fetch("example.com/a:1") == "sha512-abc"
        assert run.call_args[0][0] == ["rkt", "fetch", "--full=true", "example.com/a:1"]

    def test_fetch_insecure(self, tmp_path: Path) -> None:
        archive = tmp_path / "image.aci"
        with patch("subprocess.run", return_value=_completed(stdout="sha512-def\n")) as run:
            assert RktRuntime().fetch_insecure(archive) == "sha512-def"
        assert "--insecure-options=image" in run.call_args[0][0]
        assert run.call_args[0][0][-1] == str(archive)

    def test_fetch_insecure_without_hash(self, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=_completed(stdout="")):
            with pytest.raises(RuntimeCommandError, match="hash"):
                RktRuntime().fetch_insecure(tmp_path / "image.aci")

    def test_failed_command(self) -> None:
        """Non-zero exit raises with stderr attached."""
        with patch("subprocess.run", return_value=_completed(1, stderr="no such image\n")):
            with pytest.raises(RuntimeCommandError) as exc_info:
                RktRuntime().read_manifest("example.com/a")
        assert exc_info.value.exit_code == 1
        assert exc_info.value.context()["stderr"] == "no such image"

    def test_missing_binary(self) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("rkt")):
            with pytest.raises(RuntimeCommandError, match="Failed to execute rkt"):
                RktRuntime().fetch("example.com/a")

    def test_run_returns_status(self) -> None:
        """run inherits the terminal and returns the exit status."""
        with patch("subprocess.run", return_value=_completed(3)) as run:
            assert RktRuntime().run(["--net=host", "sha512-x"]) == 3
        assert run.call_args[0][0] == ["rkt", "run", "--net=host", "sha512-x"]
        assert "capture_output" not in run.call_args[1]

    def test_remove_instance(self, tmp_path: Path) -> None:
        uuid_file = tmp_path / "builder.uuid"
        with patch("subprocess.run", return_value=_completed()) as run:
            RktRuntime().remove_instance_from_file(uuid_file)
        assert run.call_args[0][0] == ["rkt", "rm", f"--uuid-file={uuid_file}"]
