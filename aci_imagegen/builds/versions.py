"""Dependency version checks.

Compares pinned dependency versions against the latest available ones and
logs an advisory warning when a newer version exists. These checks never
fail a build.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from functools import total_ordering
from typing import Protocol

from aci_imagegen.manifest.schema import ACFullname, AciManifest

logger = logging.getLogger(__name__)

LABEL_DEPENDENCY = "dependency"
LABEL_BUILDER_DEPENDENCY = "builder dependency"
LABEL_TESTER_BUILDER_DEPENDENCY = "tester builder dependency"
LABEL_TESTER_DEPENDENCY = "tester dependency"

_SEGMENT_SPLIT = re.compile(r"[.\-+_]")


@total_ordering
class Version:
    """Version compared segment by segment.

    Segments are split on ``.``, ``-``, ``+`` and ``_``. Numeric segments
    compare as integers (so ``1.10`` > ``1.9``), other segments as text,
    and a numeric segment sorts before a textual one. When one version is a
    prefix of the other, the shorter one is lower.
    """

    def __init__(self, version_str: str) -> None:
        self.version_str = version_str
        self.segments = tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in _SEGMENT_SPLIT.split(version_str.strip())
            if part
        )

    def __str__(self) -> str:
        return self.version_str

    def __repr__(self) -> str:
        return f"Version('{self.version_str}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.segments == other.segments

    def __lt__(self, other: Version) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.segments < other.segments

    def __hash__(self) -> int:
        return hash(self.segments)


class VersionResolutionError(Exception):
    """Raised by resolvers when the latest version cannot be determined."""

    def __init__(self, message: str, code: str = "version_resolution_error") -> None:
        super().__init__(message)
        self.code = code


class VersionResolver(Protocol):
    """Resolves the latest published version of an image."""

    def latest_version(self, ref: ACFullname) -> str | None:
        """Return the latest version of ``ref``'s name, or None if unknown."""
        ...


class DependencyVersionChecker:
    """Emit advisory warnings for dependencies with newer versions.

    Args:
        resolver: Source of latest versions.
    """

    def __init__(self, resolver: VersionResolver) -> None:
        self.resolver = resolver

    def check_latest(self, dependencies: Iterable[ACFullname], label: str) -> int:
        """Check pinned dependencies against their latest versions.

        Args:
            dependencies: Dependency references.
            label: Dependency class used in the warning text.

        Returns:
            Number of advisory warnings emitted.
        """
        warnings = 0
        for dep in dependencies:
            if not dep.version:
                continue
            try:
                latest = self.resolver.latest_version(dep)
            except VersionResolutionError as e:
                logger.debug("Cannot resolve latest version of %s: %s", dep, e)
                continue
            if latest and Version(dep.version) < Version(latest):
                logger.warning(
                    "Newer %s version [current=%s newer=%s:%s]",
                    label,
                    dep,
                    dep.name,
                    latest,
                )
                warnings += 1
        return warnings

    def check_manifest(self, manifest: AciManifest) -> int:
        """Check every dependency class declared by a manifest.

        Returns:
            Total number of advisory warnings emitted.
        """
        warnings = self.check_latest(manifest.aci.dependencies, LABEL_DEPENDENCY)
        warnings += self.check_latest(
            manifest.builder.dependencies, LABEL_BUILDER_DEPENDENCY
        )
        if manifest.tester is not None:
            warnings += self.check_latest(
                manifest.tester.builder.dependencies,
                LABEL_TESTER_BUILDER_DEPENDENCY,
            )
            warnings += self.check_latest(
                manifest.tester.aci.dependencies, LABEL_TESTER_DEPENDENCY
            )
        return warnings


__all__ = [
    "LABEL_BUILDER_DEPENDENCY",
    "LABEL_DEPENDENCY",
    "LABEL_TESTER_BUILDER_DEPENDENCY",
    "LABEL_TESTER_DEPENDENCY",
    "DependencyVersionChecker",
    "Version",
    "VersionResolutionError",
    "VersionResolver",
]
