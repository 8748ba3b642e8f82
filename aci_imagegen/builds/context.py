"""Per-build context and on-disk artifact layout.

A ``BuildContext`` is created once per build invocation and never shared
between builds. It carries the rendered manifest, the build options, the
resolved source and target paths and the structured log context.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from aci_imagegen.logs import ContextLogger
from aci_imagegen.manifest.schema import AciManifest
from aci_imagegen.manifest.template import load_manifest_template, render

logger = logging.getLogger("aci_imagegen.build")

TARGET_DIR_NAME = "target"
TESTS_DIR_NAME = "tests"

# Fixed relative layout under the target directory
IMAGE_ACI = "image.aci"
IMAGE_ACI_ASC = "image.aci.asc"
IMAGE_GZ_ACI = "image.gz.aci"
IMAGE_GZ_ACI_ASC = "image.gz.aci.asc"
MANIFEST_JSON = "manifest.json"
VERSION_FILE = "version"
GRAPH_PNG = "graph.png"
GRAPH_DOT = "graph.dot"
STAGE1_DIR = "stage1"
BUILDER_DIR = "builder"
BUILDER_UUID = "builder.uuid"
TESTER_UUID = "tester.uuid"
MANIFEST_TEMPLATE_COPY = "manifest.yml.tmpl"

# Layout of a staged image directory (stage1/, builder/)
STAGED_MANIFEST = "manifest"
STAGED_ROOTFS = "rootfs"

PREFIX_BUILDER = "builder/"
PREFIX_BUILDER_STAGE1 = "builder-stage1/"
PREFIX_TEST = "test/"


@dataclass
class BuildOptions:
    """Options of a build invocation.

    Attributes:
        keep_builder: Keep the builder instance after exit.
        trap_on_error: Builder traps into a shell when a step fails.
        trap_on_step: Builder traps into a shell on every step.
        parallel_build: Run dependency checks concurrently.
        set_env: Extra ``NAME=value`` assignments passed to the builder.
        no_test_fail: Fail when the project has no tests.
        test: Run tests before install or push.
    """

    keep_builder: bool = False
    trap_on_error: bool = False
    trap_on_step: bool = False
    parallel_build: bool = True
    set_env: list[str] = field(default_factory=list)
    no_test_fail: bool = False
    test: bool = False


@dataclass(frozen=True)
class ArtifactPaths:
    """Paths of every artifact under a target directory."""

    target: Path

    @property
    def image(self) -> Path:
        return self.target / IMAGE_ACI

    @property
    def image_signature(self) -> Path:
        return self.target / IMAGE_ACI_ASC

    @property
    def compressed_image(self) -> Path:
        return self.target / IMAGE_GZ_ACI

    @property
    def compressed_image_signature(self) -> Path:
        return self.target / IMAGE_GZ_ACI_ASC

    @property
    def manifest_json(self) -> Path:
        return self.target / MANIFEST_JSON

    @property
    def version(self) -> Path:
        return self.target / VERSION_FILE

    @property
    def graph_png(self) -> Path:
        return self.target / GRAPH_PNG

    @property
    def graph_dot(self) -> Path:
        return self.target / GRAPH_DOT

    @property
    def stage1(self) -> Path:
        return self.target / STAGE1_DIR

    @property
    def builder(self) -> Path:
        return self.target / BUILDER_DIR

    @property
    def builder_uuid(self) -> Path:
        return self.target / BUILDER_UUID

    @property
    def tester_uuid(self) -> Path:
        return self.target / TESTER_UUID

    @property
    def manifest_template(self) -> Path:
        return self.target / MANIFEST_TEMPLATE_COPY


def resolve_target_path(
    source_path: Path,
    manifest: AciManifest,
    target_work_dir: Path | None = None,
) -> Path:
    """Resolve where build artifacts are written.

    Args:
        source_path: Absolute project path.
        manifest: Rendered manifest.
        target_work_dir: Optional directory redirecting all targets.

    Returns:
        ``<source>/target`` or ``<target_work_dir>/<image short name>``.
    """
    if target_work_dir is not None:
        return (target_work_dir / manifest.name_and_version.short_name).absolute()
    return source_path / TARGET_DIR_NAME


@dataclass(frozen=True)
class BuildContext:
    """Immutable per-build value.

    Attributes:
        source_path: Absolute path of the project being built.
        target_path: Absolute path where artifacts are written.
        manifest_template: Raw manifest text.
        manifest: Rendered manifest.
        options: Build options.
        log: Logger carrying the image name and project path.
    """

    source_path: Path
    target_path: Path
    manifest_template: str
    manifest: AciManifest
    options: BuildOptions
    log: ContextLogger

    @property
    def paths(self) -> ArtifactPaths:
        return ArtifactPaths(self.target_path)

    @property
    def name(self) -> str:
        """Fully-qualified name and version of the image."""
        return str(self.manifest.name_and_version)

    @classmethod
    def create(
        cls,
        source_path: Path,
        manifest_template: str,
        options: BuildOptions | None = None,
        target_work_dir: Path | None = None,
    ) -> BuildContext:
        """Render the manifest and resolve paths for a build.

        Raises:
            ManifestError: If the template cannot be rendered.
        """
        manifest = render(manifest_template)
        full_path = source_path.absolute()
        target = resolve_target_path(full_path, manifest, target_work_dir)
        log = ContextLogger(
            logger, {"aci": str(manifest.name_and_version), "path": str(full_path)}
        )
        log.debug("New aci [target=%s]", target)
        return cls(
            source_path=full_path,
            target_path=target,
            manifest_template=manifest_template,
            manifest=manifest,
            options=options or BuildOptions(),
            log=log,
        )

    @classmethod
    def from_project(
        cls,
        source_path: Path,
        options: BuildOptions | None = None,
        target_work_dir: Path | None = None,
    ) -> BuildContext:
        """Create a context from a project directory's ``aci-manifest.yml``."""
        template = load_manifest_template(source_path)
        return cls.create(source_path, template, options, target_work_dir)


__all__ = [
    "PREFIX_BUILDER",
    "PREFIX_BUILDER_STAGE1",
    "PREFIX_TEST",
    "ArtifactPaths",
    "BuildContext",
    "BuildOptions",
    "resolve_target_path",
]
