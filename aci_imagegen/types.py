"""Shared type definitions for aci_imagegen.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum


class BuilderCommand(str, Enum):
    """Sub-command executed by the builder inside the isolated run."""

    BUILD = "build"
    TEST = "test"
    TRY = "try"


class BuildState(str, Enum):
    """State of a build pipeline run."""

    IDLE = "idle"
    DEPENDENCIES_CHECKED = "dependencies_checked"
    STAGE1_PREPARED = "stage1_prepared"
    BUILDER_PREPARED = "builder_prepared"
    INVOKED = "invoked"
    EXTRACTED = "extracted"
    DONE = "done"
    FAILED = "failed"


class ErrorReason(str, Enum):
    """Typed reason code carried by every build error."""

    MANIFEST_MALFORMED = "manifest_malformed"
    MANIFEST_MISSING_NAME = "manifest_missing_name"
    FILESYSTEM = "filesystem"
    DEPENDENCY = "dependency"
    RUNTIME = "runtime"
    INVOCATION = "invocation"
    EXTRACTION = "extraction"
    VERSION_MARKER = "version_marker"
    SIGNING = "signing"
    PUSH = "push"
    NO_TESTS = "no_tests"
    CONFIG = "config"


@dataclass
class ArtifactSet:
    """Artifacts present under a target directory after an operation.

    Attributes:
        target_path: Directory holding the artifacts.
        image: Uncompressed image archive.
        image_signature: Detached signature of the uncompressed archive.
        compressed_image: Compressed image archive.
        compressed_image_signature: Detached signature of the compressed archive.
        manifest_json: Extracted image manifest.
        version_file: Plain-text name and version marker.
        name_and_version: Content of the version marker, when known.
        imported_hashes: Runtime hashes of images imported by install.
    """

    target_path: str
    image: str | None = None
    image_signature: str | None = None
    compressed_image: str | None = None
    compressed_image_signature: str | None = None
    manifest_json: str | None = None
    version_file: str | None = None
    name_and_version: str | None = None
    imported_hashes: list[str] = field(default_factory=list)


__all__ = [
    "ArtifactSet",
    "BuildState",
    "BuilderCommand",
    "ErrorReason",
]
