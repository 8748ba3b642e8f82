"""Detached artifact signatures through gpg."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Protocol

from aci_imagegen.errors import SigningError

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".asc"


def signature_path(path: Path) -> Path:
    """Path of the detached signature of ``path``."""
    return path.with_name(path.name + SIGNATURE_SUFFIX)


class Signer(Protocol):
    """Produces a detached signature next to a file."""

    def sign(self, path: Path) -> Path:
        """Sign ``path`` and return the signature path."""
        ...


class GpgSigner:
    """Signer shelling out to ``gpg --armor --detach-sign``.

    Args:
        gpg_path: gpg executable.
        key: Optional ``--local-user`` key id.
        keyring: Optional secret keyring file.
    """

    def __init__(
        self,
        gpg_path: str = "gpg",
        key: str | None = None,
        keyring: Path | None = None,
    ) -> None:
        self.gpg_path = gpg_path
        self.key = key
        self.keyring = keyring

    def compose_command(self, path: Path) -> list[str]:
        cmd = [self.gpg_path, "--batch", "--yes", "--armor"]
        if self.keyring is not None:
            cmd += ["--no-default-keyring", "--keyring", str(self.keyring)]
        if self.key:
            cmd += ["--local-user", self.key]
        cmd += ["--output", str(signature_path(path)), "--detach-sign", str(path)]
        return cmd

    def sign(self, path: Path) -> Path:
        cmd = self.compose_command(path)
        logger.info("Signing %s", path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise SigningError(
                f"Failed to execute gpg: {e}", fields={"path": str(path)}
            ) from e
        if result.returncode != 0:
            raise SigningError(
                f"gpg exited with status {result.returncode}",
                fields={
                    "path": str(path),
                    "command": shlex.join(cmd),
                    "stderr": result.stderr.strip(),
                },
            )
        return signature_path(path)


__all__ = ["SIGNATURE_SUFFIX", "GpgSigner", "Signer", "signature_path"]
