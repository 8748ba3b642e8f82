"""Manifest template rendering.

Turns the raw text of ``aci-manifest.yml`` into a validated ``AciManifest``.
Rendering is pure: it reads neither the environment nor the filesystem.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from aci_imagegen.errors import AciBuildError, ManifestError
from aci_imagegen.manifest.schema import AciManifest
from aci_imagegen.types import ErrorReason

MANIFEST_FILE_NAME = "aci-manifest.yml"

# Keep diagnostics readable when a huge template fails to parse
MAX_CONTENT_IN_ERROR = 2048


def _excerpt(template: str) -> str:
    if len(template) <= MAX_CONTENT_IN_ERROR:
        return template
    return template[:MAX_CONTENT_IN_ERROR] + "..."


def parse_template(template: str) -> dict[str, Any]:
    """Parse template text as a YAML mapping.

    Args:
        template: Raw manifest text.

    Returns:
        Parsed mapping (empty for an empty document).

    Raises:
        ManifestError: If the text is not valid YAML or not a mapping.
    """
    try:
        data = yaml.safe_load(template)
    except yaml.YAMLError as e:
        raise ManifestError(
            "Manifest is not valid YAML",
            reason=ErrorReason.MANIFEST_MALFORMED,
            fields={"content": _excerpt(template)},
        ) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManifestError(
            f"Expected a YAML mapping, got {type(data).__name__}",
            reason=ErrorReason.MANIFEST_MALFORMED,
            fields={"content": _excerpt(template)},
        )
    return data


def render(template: str) -> AciManifest:
    """Render a manifest template into an ``AciManifest``.

    Args:
        template: Raw manifest text.

    Returns:
        Validated, immutable manifest.

    Raises:
        ManifestError: ``MANIFEST_MISSING_NAME`` when the name is absent,
            ``MANIFEST_MALFORMED`` on any parse or validation error.
    """
    data = parse_template(template)

    name = data.get("name")
    if name is None or (isinstance(name, str) and not name.strip()):
        raise ManifestError(
            "name is mandatory in manifest",
            reason=ErrorReason.MANIFEST_MISSING_NAME,
        )

    try:
        return AciManifest.model_validate(data)
    except ValidationError as e:
        raise ManifestError(
            f"Invalid manifest: {e.error_count()} validation error(s)",
            reason=ErrorReason.MANIFEST_MALFORMED,
            fields={"content": _excerpt(template)},
        ) from e


def load_manifest_template(project_path: Path) -> str:
    """Read the raw manifest template of a project.

    Args:
        project_path: Project directory.

    Returns:
        Template text.

    Raises:
        AciBuildError: If the manifest file cannot be read.
    """
    path = project_path / MANIFEST_FILE_NAME
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise AciBuildError(
            "Cannot read manifest",
            reason=ErrorReason.FILESYSTEM,
            fields={"path": str(path)},
        ) from e


__all__ = [
    "MANIFEST_FILE_NAME",
    "load_manifest_template",
    "parse_template",
    "render",
]
