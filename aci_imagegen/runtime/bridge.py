"""Interface to the isolation runtime.

The build orchestrator only talks to the runtime through this protocol, so
tests can substitute an in-memory fake and other runtimes can be plugged in.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class RuntimeBridge(Protocol):
    """Operations the build pipeline needs from the isolation runtime."""

    def fetch(self, image: str) -> str:
        """Ensure a signed image is in the local store; return its hash."""
        ...

    def fetch_insecure(self, archive_path: Path) -> str:
        """Import a local unsigned archive; return its content hash."""
        ...

    def read_manifest(self, image: str) -> str:
        """Return the JSON manifest of an image in the local store."""
        ...

    def run(self, args: Sequence[str]) -> int:
        """Run an isolated instance with the given arguments; blocking."""
        ...

    def remove_instance_from_file(self, uuid_file: Path) -> None:
        """Remove the instance whose UUID is stored in ``uuid_file``."""
        ...

    def remove_image(self, image_hash: str) -> None:
        """Evict an image from the local store."""
        ...


__all__ = ["RuntimeBridge"]
