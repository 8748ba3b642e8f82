"""ACI image manifest (``ImageManifest`` JSON) generation and parsing.

The build manifest is converted to the JSON document stored as ``manifest``
at the root of an ACI archive, and the name/version of a built image is
recovered from that document.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from aci_imagegen.manifest.schema import AciManifest, ACFullname, Isolator

logger = logging.getLogger(__name__)

AC_KIND_IMAGE = "ImageManifest"
AC_VERSION = "0.8.11"

LABEL_VERSION = "version"
LABEL_OS = "os"
LABEL_ARCH = "arch"

CAPABILITIES_RETAIN_SET = "os/linux/capabilities-retain-set"
TOOL_VERSION_ANNOTATION = "acigen-version"


def all_capabilities_isolator() -> Isolator:
    """Isolator retaining every Linux capability."""
    return Isolator(name=CAPABILITIES_RETAIN_SET, value={"set": ["all"]})


def dependency_entries(refs: Iterable[ACFullname]) -> list[dict[str, Any]]:
    """Convert image references to ACI dependency objects, preserving order.

    Args:
        refs: Fully-qualified image references.

    Returns:
        List of ``{"imageName": ..., "labels": [...]}`` dicts.
    """
    entries: list[dict[str, Any]] = []
    for ref in refs:
        entry: dict[str, Any] = {"imageName": ref.name}
        if ref.version:
            entry["labels"] = [{"name": LABEL_VERSION, "value": ref.version}]
        entries.append(entry)
    return entries


def _app_section(manifest: AciManifest) -> dict[str, Any]:
    app = manifest.aci.app
    section: dict[str, Any] = {
        "exec": list(app.exec),
        "user": app.user or "0",
        "group": app.group or "0",
    }
    if app.working_directory:
        section["workingDirectory"] = app.working_directory
    if app.supplementary_gids:
        section["supplementaryGIDs"] = list(app.supplementary_gids)
    if app.environment:
        section["environment"] = [e.model_dump() for e in app.environment]
    if app.isolators:
        section["isolators"] = [i.model_dump() for i in app.isolators]
    if app.mount_points:
        section["mountPoints"] = [
            m.model_dump(by_alias=True) for m in app.mount_points
        ]
    if app.ports:
        section["ports"] = [p.model_dump(by_alias=True) for p in app.ports]
    return section


def to_image_manifest(
    manifest: AciManifest,
    name: str,
    tool_version: str,
) -> dict[str, Any]:
    """Build the ACI ``ImageManifest`` document for a manifest.

    Args:
        manifest: Rendered build manifest.
        name: Image name to write (may differ from the manifest's own name
            for derived builder images).
        tool_version: Version of this tool, recorded as an annotation.

    Returns:
        ImageManifest as a JSON-serializable dict.
    """
    labels = [
        {"name": LABEL_OS, "value": "linux"},
        {"name": LABEL_ARCH, "value": "amd64"},
    ]
    version = manifest.name_and_version.version
    if version:
        labels.insert(0, {"name": LABEL_VERSION, "value": version})

    annotations = [a.model_dump() for a in manifest.aci.annotations]
    annotations.append({"name": TOOL_VERSION_ANNOTATION, "value": tool_version})

    doc: dict[str, Any] = {
        "acKind": AC_KIND_IMAGE,
        "acVersion": AC_VERSION,
        "name": name,
        "labels": labels,
        "app": _app_section(manifest),
        "annotations": annotations,
    }
    if manifest.aci.dependencies:
        doc["dependencies"] = dependency_entries(manifest.aci.dependencies)
    if manifest.aci.path_whitelist:
        doc["pathWhitelist"] = list(manifest.aci.path_whitelist)
    return doc


def version_label(doc: dict[str, Any]) -> str | None:
    """Return the ``version`` label of an ImageManifest document, if any.

    Raises:
        ValueError: If the document or its labels are malformed.
    """
    if not isinstance(doc, dict):
        raise ValueError(f"image manifest is not an object: {type(doc).__name__}")
    labels = doc.get("labels") or []
    if not isinstance(labels, list):
        raise ValueError("image manifest labels is not a list")
    for label in labels:
        if not isinstance(label, dict):
            raise ValueError(f"image manifest label is not an object: {label!r}")
        if label.get("name") == LABEL_VERSION and label.get("value"):
            return str(label["value"])
    return None


def name_and_version_from_image_manifest(doc: dict[str, Any]) -> str:
    """Recover ``name[:version]`` from an ImageManifest document.

    Args:
        doc: Parsed ImageManifest.

    Returns:
        Fully-qualified name string.

    Raises:
        ValueError: If the document carries no name or has malformed labels.
    """
    version = version_label(doc)
    name = doc.get("name")
    if not name:
        raise ValueError("image manifest has no name")
    if version:
        return f"{name}:{version}"
    return str(name)


def write_image_manifest(doc: dict[str, Any], path: Path) -> Path:
    """Write an ImageManifest document as indented JSON.

    Args:
        doc: ImageManifest dict.
        path: Output file path.

    Returns:
        Path to the written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(doc, indent=2), encoding="utf-8")
    logger.debug("Wrote image manifest to %s", path)
    return path


__all__ = [
    "AC_KIND_IMAGE",
    "AC_VERSION",
    "CAPABILITIES_RETAIN_SET",
    "LABEL_VERSION",
    "TOOL_VERSION_ANNOTATION",
    "all_capabilities_isolator",
    "dependency_entries",
    "name_and_version_from_image_manifest",
    "to_image_manifest",
    "version_label",
    "write_image_manifest",
]
