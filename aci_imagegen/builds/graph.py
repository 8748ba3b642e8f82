"""Dependency graph export (Graphviz DOT, optional PNG)."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from aci_imagegen.manifest.schema import AciManifest

logger = logging.getLogger(__name__)


def _quote(value: str) -> str:
    return '"' + value.replace('"', '\\"') + '"'


def render_dot(manifest: AciManifest, builder_image: str | None = None) -> str:
    """Render the dependency graph of an image as DOT.

    Args:
        manifest: Rendered manifest.
        builder_image: Builder image name when the manifest does not set one.

    Returns:
        DOT source.
    """
    image = _quote(str(manifest.name_and_version))
    lines = ["digraph {", f"  {image} [shape=box, style=bold];"]
    for dep in manifest.aci.dependencies:
        lines.append(f"  {image} -> {_quote(str(dep))};")

    builder = manifest.builder.image or builder_image
    if builder:
        lines.append(f"  {_quote(str(builder))} -> {image} [style=dashed];")
        for dep in manifest.builder.dependencies:
            lines.append(
                f"  {_quote(str(dep))} -> {_quote(str(builder))} [style=dotted];"
            )
    lines.append("}")
    return "\n".join(lines) + "\n"


def write_graph(
    manifest: AciManifest,
    dot_path: Path,
    png_path: Path | None = None,
    builder_image: str | None = None,
) -> list[Path]:
    """Write the DOT graph and, when Graphviz is installed, a PNG rendering.

    Returns:
        Written files.

    Raises:
        OSError: If the DOT file cannot be written.
        subprocess.CalledProcessError: If ``dot`` fails.
    """
    dot_path.parent.mkdir(parents=True, exist_ok=True)
    dot_path.write_text(render_dot(manifest, builder_image), encoding="utf-8")
    written = [dot_path]

    if png_path is not None:
        dot_bin = shutil.which("dot")
        if dot_bin is None:
            logger.warning("Graphviz 'dot' not found, skipping %s", png_path)
        else:
            subprocess.run(
                [dot_bin, "-Tpng", str(dot_path), "-o", str(png_path)],
                check=True,
                capture_output=True,
            )
            written.append(png_path)
    return written


__all__ = ["render_dot", "write_graph"]
