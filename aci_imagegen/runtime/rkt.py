"""rkt command-line adapter.

This module handles:
- Composing rkt command lines (fetch, cat-manifest, run, rm)
- Executing them with subprocess
- Turning failed invocations into ``RuntimeCommandError``
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from aci_imagegen.errors import RuntimeCommandError

logger = logging.getLogger(__name__)


class RktRuntime:
    """``RuntimeBridge`` implementation driving the rkt binary.

    Args:
        rkt_path: rkt executable.
        global_options: Options inserted before every rkt sub-command
            (e.g. ``--dir=/var/lib/rkt``).
    """

    def __init__(
        self,
        rkt_path: str = "rkt",
        global_options: Sequence[str] | None = None,
    ) -> None:
        self.rkt_path = rkt_path
        self.global_options = list(global_options or [])

    def compose(self, *args: str) -> list[str]:
        """Compose a full rkt command line."""
        return [self.rkt_path, *self.global_options, *args]

    def _execute(self, cmd: list[str]) -> str:
        cmd_str = shlex.join(cmd)
        logger.debug("Executing: %s", cmd_str)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise RuntimeCommandError(
                f"Failed to execute rkt: {e}",
                fields={"command": cmd_str},
            ) from e

        if result.returncode != 0:
            raise RuntimeCommandError(
                f"rkt exited with status {result.returncode}",
                exit_code=result.returncode,
                stderr=result.stderr,
                fields={"command": cmd_str, "stderr": result.stderr.strip()},
            )
        return result.stdout

    @staticmethod
    def _last_line(output: str) -> str:
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        return lines[-1] if lines else ""

    def fetch(self, image: str) -> str:
        logger.debug("Fetching image %s", image)
        return self._last_line(self._execute(self.compose("fetch", "--full=true", image)))

    def fetch_insecure(self, archive_path: Path) -> str:
        logger.debug("Importing local image %s", archive_path)
        output = self._execute(
            self.compose(
                "fetch",
                "--insecure-options=image",
                "--full=true",
                str(archive_path),
            )
        )
        image_hash = self._last_line(output)
        if not image_hash:
            raise RuntimeCommandError(
                "rkt fetch did not report an image hash",
                fields={"path": str(archive_path)},
            )
        return image_hash

    def read_manifest(self, image: str) -> str:
        return self._execute(self.compose("image", "cat-manifest", image))

    def run(self, args: Sequence[str]) -> int:
        """Run rkt interactively, inheriting the terminal.

        No timeout is applied: the builder may legitimately run for hours
        or trap into an interactive shell.
        """
        cmd = self.compose("run", *args)
        logger.info("Executing: %s", shlex.join(cmd))
        try:
            result = subprocess.run(cmd, check=False)
        except OSError as e:
            raise RuntimeCommandError(
                f"Failed to execute rkt: {e}",
                fields={"command": shlex.join(cmd)},
            ) from e
        return result.returncode

    def remove_instance_from_file(self, uuid_file: Path) -> None:
        self._execute(self.compose("rm", f"--uuid-file={uuid_file}"))

    def remove_image(self, image_hash: str) -> None:
        self._execute(self.compose("image", "rm", image_hash))


__all__ = ["RktRuntime"]
