"""Build orchestration.

This module provides the build pipeline of an image:
- Dependency checks (compatibility fetch + latest version advisories)
- Stage1 preparation when the builder declares dependencies
- Builder image preparation
- Builder invocation inside rkt
- Result extraction (manifest.json, version marker)
- Guaranteed cleanup (ownership, builder instance, builder/stage1 images)

and the idempotent "ensure" staging operations built on it (built, signed,
compressed, compressed+signed), keyed only on file presence.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from aci_imagegen import __version__
from aci_imagegen.builds.archive import (
    ArchiveError,
    compress,
    package_directory,
    read_archive_manifest,
)
from aci_imagegen.builds.context import (
    PREFIX_BUILDER,
    PREFIX_BUILDER_STAGE1,
    PREFIX_TEST,
    STAGED_MANIFEST,
    STAGED_ROOTFS,
    TESTS_DIR_NAME,
    BuildContext,
)
from aci_imagegen.builds.discovery import DiscoveryVersionResolver
from aci_imagegen.builds.graph import write_graph
from aci_imagegen.builds.ownership import give_back_user_rights
from aci_imagegen.builds.versions import DependencyVersionChecker, VersionResolver
from aci_imagegen.config import Settings
from aci_imagegen.errors import AciBuildError
from aci_imagegen.logs import current_level_name, is_debug_enabled
from aci_imagegen.manifest.image import (
    all_capabilities_isolator,
    dependency_entries,
    name_and_version_from_image_manifest,
    to_image_manifest,
    write_image_manifest,
)
from aci_imagegen.manifest.schema import ACFullname, AciManifest, AciSpec, BuilderSpec
from aci_imagegen.publish.pusher import Pusher
from aci_imagegen.publish.signer import GpgSigner, Signer
from aci_imagegen.runtime.bridge import RuntimeBridge
from aci_imagegen.types import ArtifactSet, BuilderCommand, BuildState, ErrorReason

# Environment passed to the builder
ENV_TOOL_VERSION = "ACIGEN_VERSION"
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_ACI_PATH = "ACI_PATH"
ENV_ACI_TARGET = "ACI_TARGET"
ENV_BUILDER_COMMAND = "BUILDER_COMMAND"
ENV_CATCH_ON_ERROR = "CATCH_ON_ERROR"
ENV_CATCH_ON_STEP = "CATCH_ON_STEP"

KEEP_FILE = ".keep"


def stage1_dependencies(
    builder: BuilderSpec, builder_image: ACFullname
) -> list[ACFullname]:
    """Dependencies of the stage1 image: builder dependencies, then the builder image."""
    return [*builder.dependencies, builder_image]


@dataclass(frozen=True)
class BuilderRun:
    """What a single builder invocation builds with.

    Attributes:
        command: Sub-command executed by the builder.
        builder: Builder spec (main or tester).
        builder_image: Resolved builder base image.
        aci: Application spec the builder image is derived from.
        uuid_file: Where rkt saves the instance UUID.
        name_prefix: Extra prefix for derived image names.
    """

    command: BuilderCommand
    builder: BuilderSpec
    builder_image: ACFullname
    aci: AciSpec
    uuid_file: Path
    name_prefix: str = ""


class BuildOrchestrator:
    """Runs and stages the build of one image.

    Args:
        context: Per-build context.
        runtime: Isolation runtime.
        settings: Process settings (read-only).
        resolver: Latest-version resolver for advisory checks.
        signer: Signer used by the sign operations.
    """

    def __init__(
        self,
        context: BuildContext,
        runtime: RuntimeBridge,
        settings: Settings,
        resolver: VersionResolver | None = None,
        signer: Signer | None = None,
    ) -> None:
        self.context = context
        self.runtime = runtime
        self.settings = settings
        self.version_checker = DependencyVersionChecker(
            resolver or DiscoveryVersionResolver(timeout=settings.discovery_timeout)
        )
        self.signer = signer or GpgSigner(
            settings.gpg_path, settings.signing_key, settings.signing_keyring
        )
        self.state = BuildState.IDLE
        self.log = context.log
        self.paths = context.paths

    @property
    def manifest(self) -> AciManifest:
        return self.context.manifest

    def _fields(self, **extra: Any) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "aci": self.context.name,
            "path": str(self.context.target_path),
        }
        fields.update(extra)
        return fields

    # Ensure operations

    def ensure_built(self) -> ArtifactSet:
        """Build unless the uncompressed image already exists."""
        if not self.paths.image.exists():
            self.clean_and_build()
        return self.artifacts()

    def ensure_sign(self) -> ArtifactSet:
        """Sign the uncompressed image unless its signature exists."""
        if not self.paths.image_signature.exists():
            self.sign()
        return self.artifacts()

    def ensure_zip(self) -> ArtifactSet:
        """Compress the image unless the compressed image exists."""
        if not self.paths.compressed_image.exists():
            self.ensure_built()
            self._zip()
        return self.artifacts()

    def ensure_zip_sign(self) -> ArtifactSet:
        """Sign the compressed image unless its signature exists."""
        if not self.paths.compressed_image_signature.exists():
            self.zip_sign()
        return self.artifacts()

    # Commands

    def clean(self) -> None:
        """Remove the target directory; never fails."""
        self.log.info("Cleaning")
        try:
            shutil.rmtree(self.context.target_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log.warning("Failed to clean target directory: %s", e)

    def build(self) -> ArtifactSet:
        """Check dependencies and run the full build pipeline."""
        try:
            self.check_dependencies()
        except AciBuildError:
            self.state = BuildState.FAILED
            raise
        self.run_builder_command(self._main_run(BuilderCommand.BUILD))
        return self.artifacts()

    def clean_and_build(self) -> ArtifactSet:
        self.clean()
        return self.build()

    def clean_and_try(self) -> None:
        """Run the builder in templater ``try`` mode on a clean target."""
        self.clean()
        self.run_builder_command(self._main_run(BuilderCommand.TRY))

    def sign(self) -> ArtifactSet:
        self.ensure_built()
        self.signer.sign(self.paths.image)
        return self.artifacts()

    def zip_sign(self) -> ArtifactSet:
        self.ensure_zip()
        self.signer.sign(self.paths.compressed_image)
        return self.artifacts()

    def test(self) -> None:
        """Build if needed, then run the tester against the image.

        Raises:
            AciBuildError: ``NO_TESTS`` when the project has no tests and
                ``no_test_fail`` is set; any pipeline failure otherwise.
        """
        self.ensure_built()
        tests_dir = self.context.source_path / TESTS_DIR_NAME
        if not tests_dir.is_dir():
            if self.context.options.no_test_fail:
                raise AciBuildError(
                    "No tests found",
                    reason=ErrorReason.NO_TESTS,
                    fields=self._fields(tests=str(tests_dir)),
                )
            self.log.warning("No tests found [tests=%s]", tests_dir)
            return
        self.run_builder_command(self._tester_run())

    def install(self) -> ArtifactSet:
        """Import the compressed image into the local runtime store."""
        if self.context.options.test:
            self.test()
        artifacts = self.ensure_zip()
        try:
            image_hash = self.runtime.fetch_insecure(self.paths.compressed_image)
        except AciBuildError as e:
            raise AciBuildError(
                "Failed to install image",
                reason=ErrorReason.RUNTIME,
                fields=self._fields(),
            ) from e
        self.log.info("Installed [hash=%s]", image_hash)
        artifacts.imported_hashes.append(image_hash)
        return artifacts

    def push(self, pusher: Pusher) -> list[str]:
        """Upload the compressed, signed image."""
        if self.context.options.test:
            self.test()
        self.ensure_zip()
        artifacts = self.ensure_zip_sign()
        return pusher.push(artifacts)

    def graph(self) -> list[Path]:
        """Write the dependency graph (DOT, plus PNG when Graphviz exists)."""
        try:
            return write_graph(
                self.manifest,
                self.paths.graph_dot,
                self.paths.graph_png,
                builder_image=self.settings.default_builder_image,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            raise AciBuildError(
                "Failed to write dependency graph",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(self.paths.graph_dot)),
            ) from e

    def artifacts(self) -> ArtifactSet:
        """Describe the artifacts currently present under the target."""
        paths = self.paths

        def present(path: Path) -> str | None:
            return str(path) if path.exists() else None

        name_and_version = None
        if paths.version.is_file():
            name_and_version = paths.version.read_text(encoding="utf-8").strip()
        return ArtifactSet(
            target_path=str(paths.target),
            image=present(paths.image),
            image_signature=present(paths.image_signature),
            compressed_image=present(paths.compressed_image),
            compressed_image_signature=present(paths.compressed_image_signature),
            manifest_json=present(paths.manifest_json),
            version_file=present(paths.version),
            name_and_version=name_and_version,
        )

    # Dependency checks

    def check_dependencies(self) -> None:
        """Run compatibility and latest-version checks, then join.

        Both checks run concurrently when ``parallel_build`` is set,
        sequentially otherwise. Only compatibility failures are raised.
        """
        if self.context.options.parallel_build:
            with ThreadPoolExecutor(max_workers=2) as executor:
                compatibility = executor.submit(self._check_compatibility)
                latest = executor.submit(self._check_latest_versions)
                latest_error = latest.exception()
                compatibility.result()
        else:
            latest_error = None
            self._check_compatibility()
            try:
                self._check_latest_versions()
            except Exception as e:
                latest_error = e

        if latest_error is not None:
            self.log.warning("Latest version check failed: %s", latest_error)
        self.state = BuildState.DEPENDENCIES_CHECKED

    def _check_compatibility(self) -> None:
        for dep in self.manifest.aci.dependencies:
            self.log.info("Fetching dependency [dependency=%s]", dep)
            try:
                self.runtime.fetch(str(dep))
            except AciBuildError as e:
                raise AciBuildError(
                    "Cannot fetch dependency",
                    reason=ErrorReason.DEPENDENCY,
                    fields=self._fields(dependency=str(dep)),
                ) from e

    def _check_latest_versions(self) -> int:
        return self.version_checker.check_manifest(self.manifest)

    # Pipeline

    def _main_run(self, command: BuilderCommand) -> BuilderRun:
        builder = self.manifest.builder
        return BuilderRun(
            command=command,
            builder=builder,
            builder_image=builder.image
            or ACFullname(self.settings.default_builder_image),
            aci=self.manifest.aci,
            uuid_file=self.paths.builder_uuid,
        )

    def _tester_run(self) -> BuilderRun:
        tester = self.manifest.tester
        builder = tester.builder if tester is not None else BuilderSpec()
        aci = tester.aci if tester is not None else AciSpec()
        # The tester sees the built image as a dependency
        aci = aci.model_copy(
            update={
                "dependencies": (*aci.dependencies, self.manifest.name_and_version)
            }
        )
        return BuilderRun(
            command=BuilderCommand.TEST,
            builder=builder,
            builder_image=builder.image
            or ACFullname(self.settings.default_tester_image),
            aci=aci,
            uuid_file=self.paths.tester_uuid,
            name_prefix=PREFIX_TEST,
        )

    def run_builder_command(self, run: BuilderRun) -> None:
        """Stage the builder, run it and extract the result.

        Ownership restoration, builder instance removal and image eviction
        run on every exit path; their failures are logged, never raised.

        Raises:
            AciBuildError: On any fatal pipeline failure.
        """
        self.log.info("Running builder [command=%s]", run.command.value)
        try:
            with ExitStack() as cleanup:
                self._create_target()
                cleanup.callback(self._give_back_user_rights)
                self._write_manifest_template()

                stage1_hash = self.prepare_stage1(run)
                if stage1_hash:
                    cleanup.callback(self._remove_image, stage1_hash, "stage1")

                builder_hash = self.prepare_builder(run)
                cleanup.callback(self._remove_image, builder_hash, "builder")
                if not self.context.options.keep_builder:
                    cleanup.callback(self._remove_instance, run.uuid_file)

                self._invoke(run, builder_hash, stage1_hash)
                if run.command == BuilderCommand.BUILD:
                    self.extract_result()
        except Exception:
            self.state = BuildState.FAILED
            raise
        self.state = BuildState.DONE

    def _create_target(self) -> None:
        try:
            self.context.target_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AciBuildError(
                "Cannot create target directory",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(),
            ) from e

    def _write_manifest_template(self) -> None:
        path = self.paths.manifest_template
        try:
            path.write_text(self.context.manifest_template, encoding="utf-8")
        except OSError as e:
            raise AciBuildError(
                "Failed to write manifest template",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(path)),
            ) from e

    def _package_and_import(self, directory: Path, what: str) -> str:
        try:
            archive = package_directory(directory)
        except ArchiveError as e:
            raise AciBuildError(
                f"Failed to package {what} image",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(e.path)),
            ) from e

        self.log.info("Importing %s image [file=%s]", what, archive)
        try:
            return self.runtime.fetch_insecure(archive)
        except AciBuildError as e:
            raise AciBuildError(
                f"Import of {what} image failed",
                reason=ErrorReason.RUNTIME,
                fields=self._fields(file=str(archive)),
            ) from e

    def _make_image_dir(self, directory: Path) -> None:
        rootfs = directory / STAGED_ROOTFS
        try:
            rootfs.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AciBuildError(
                "Failed to create image directory",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(directory)),
            ) from e

    def prepare_stage1(self, run: BuilderRun) -> str | None:
        """Build and import the custom stage1 image, if one is needed.

        The stage1 image is the builder base image with its dependency list
        replaced by the builder dependencies followed by the base image.

        Returns:
            Content hash of the imported stage1, or None when the runtime's
            default stage1 is used.
        """
        if not run.builder.dependencies:
            return None

        self.log.debug("Preparing stage1")
        stage1_dir = self.paths.stage1
        self._make_image_dir(stage1_dir)

        image = str(run.builder_image)
        try:
            self.runtime.fetch(image)
            content = self.runtime.read_manifest(image)
        except AciBuildError as e:
            raise AciBuildError(
                "Failed to read stage1 image manifest",
                reason=ErrorReason.DEPENDENCY,
                fields=self._fields(image=image),
            ) from e

        try:
            doc = json.loads(content)
        except json.JSONDecodeError as e:
            raise AciBuildError(
                "Failed to unmarshal stage1 manifest received from runtime",
                reason=ErrorReason.RUNTIME,
                fields=self._fields(content=content),
            ) from e

        name = (
            PREFIX_BUILDER_STAGE1 + run.name_prefix + self.manifest.name_and_version.name
        )
        try:
            ACFullname(name)
        except ValueError as e:
            raise AciBuildError(
                "aci name is not a valid identifier for the runtime",
                reason=ErrorReason.MANIFEST_MALFORMED,
                fields=self._fields(name=name),
            ) from e

        doc["name"] = name
        doc["dependencies"] = dependency_entries(
            stage1_dependencies(run.builder, run.builder_image)
        )
        manifest_path = stage1_dir / STAGED_MANIFEST
        try:
            write_image_manifest(doc, manifest_path)
        except OSError as e:
            raise AciBuildError(
                "Failed to write builder's stage1 manifest to file",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(manifest_path)),
            ) from e

        image_hash = self._package_and_import(stage1_dir, "stage1")
        self.state = BuildState.STAGE1_PREPARED
        return image_hash

    def prepare_builder(self, run: BuilderRun) -> str:
        """Build and import the fully privileged builder image.

        Returns:
            Content hash of the imported builder image.
        """
        self.log.debug("Preparing builder")
        builder_dir = self.paths.builder
        self._make_image_dir(builder_dir)

        keep_file = builder_dir / STAGED_ROOTFS / KEEP_FILE
        try:
            keep_file.write_bytes(b"")
        except OSError as e:
            raise AciBuildError(
                "Failed to write keep file",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(keep_file)),
            ) from e

        app = run.aci.app.model_copy(update={"isolators": (all_capabilities_isolator(),)})
        builder_manifest = self.manifest.model_copy(
            update={"aci": run.aci.model_copy(update={"app": app})}
        )
        name = PREFIX_BUILDER + run.name_prefix + self.manifest.name_and_version.name
        doc = to_image_manifest(builder_manifest, name, __version__)

        manifest_path = builder_dir / STAGED_MANIFEST
        try:
            write_image_manifest(doc, manifest_path)
        except OSError as e:
            raise AciBuildError(
                "Failed to write builder manifest",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(manifest_path)),
            ) from e

        image_hash = self._package_and_import(builder_dir, "builder")
        self.state = BuildState.BUILDER_PREPARED
        return image_hash

    def prepare_run_arguments(
        self,
        run: BuilderRun,
        builder_hash: str,
        stage1_hash: str | None,
    ) -> list[str]:
        """Compose the ``rkt run`` arguments for a builder invocation."""
        options = self.context.options
        args: list[str] = []
        if is_debug_enabled():
            args.append("--debug")

        env = {
            ENV_TOOL_VERSION: __version__,
            ENV_LOG_LEVEL: current_level_name(),
            ENV_ACI_PATH: str(self.context.source_path),
            ENV_ACI_TARGET: str(self.context.target_path),
            ENV_BUILDER_COMMAND: run.command.value,
            ENV_CATCH_ON_ERROR: str(options.trap_on_error).lower(),
            ENV_CATCH_ON_STEP: str(options.trap_on_step).lower(),
        }
        args.extend(f"--set-env={k}={v}" for k, v in env.items())
        args += [
            "--net=host",
            "--insecure-options=image",
            f"--uuid-file-save={run.uuid_file}",
            "--interactive",
        ]
        if stage1_hash:
            args.append(f"--stage1-hash={stage1_hash}")
        else:
            args.append(f"--stage1-name={run.builder_image}")

        args.extend(f"--set-env={assignment}" for assignment in options.set_env)
        args.append(builder_hash)
        return args

    def _invoke(
        self, run: BuilderRun, builder_hash: str, stage1_hash: str | None
    ) -> None:
        args = self.prepare_run_arguments(run, builder_hash, stage1_hash)
        self.log.info("Calling runtime to start %s", run.command.value)
        options = self.context.options
        try:
            status = self.runtime.run(args)
        except AciBuildError as e:
            raise AciBuildError(
                "Failed to start builder container",
                reason=ErrorReason.INVOCATION,
                fields=self._fields(command=run.command.value),
            ) from e
        if status != 0:
            raise AciBuildError(
                "Builder container return with failed status",
                reason=ErrorReason.INVOCATION,
                fields=self._fields(
                    command=run.command.value,
                    status=status,
                    trap_on_error=options.trap_on_error,
                    trap_on_step=options.trap_on_step,
                ),
            )
        self.state = BuildState.INVOKED

    def extract_result(self) -> str:
        """Persist manifest.json and the version marker of the built image.

        The builder must have left ``image.aci`` in the target. Failing to
        read or write manifest.json from it only logs a warning; the version
        marker then falls back to the manifest's own name.

        Returns:
            The fully-qualified name and version written to the marker.

        Raises:
            AciBuildError: If the image is missing, its manifest is
                unparsable or the version marker cannot be written.
        """
        if not self.paths.image.is_file():
            raise AciBuildError(
                "Builder did not produce an image",
                reason=ErrorReason.EXTRACTION,
                fields=self._fields(file=str(self.paths.image)),
            )
        fullname = str(self.manifest.name_and_version)
        content: bytes | None = None
        try:
            content = read_archive_manifest(self.paths.image)
        except ArchiveError as e:
            self.log.warning("Failed to extract manifest.json: %s", e)

        if content is not None:
            try:
                self.paths.manifest_json.write_bytes(content)
            except OSError as e:
                self.log.warning("Failed to write manifest.json: %s", e)
            try:
                fullname = name_and_version_from_image_manifest(json.loads(content))
            except ValueError as e:
                raise AciBuildError(
                    "Cannot unmarshall json content",
                    reason=ErrorReason.EXTRACTION,
                    fields=self._fields(content=content.decode("utf-8", "replace")),
                ) from e

        self.log.info("Finished building aci [fullname=%s]", fullname)
        try:
            self.paths.version.write_text(fullname, encoding="utf-8")
        except OSError as e:
            raise AciBuildError(
                "Failed to write version file in target",
                reason=ErrorReason.VERSION_MARKER,
                fields=self._fields(file=str(self.paths.version)),
            ) from e
        self.state = BuildState.EXTRACTED
        return fullname

    def _zip(self) -> None:
        self.log.info("Gzipping aci")
        try:
            compress(
                self.paths.image,
                self.paths.compressed_image,
                threads=self.settings.compression_threads,
                block_size=self.settings.compression_block_size,
            )
        except ArchiveError as e:
            raise AciBuildError(
                "Failed to zip aci",
                reason=ErrorReason.FILESYSTEM,
                fields=self._fields(file=str(e.path)),
            ) from e

    # Cleanup

    def _give_back_user_rights(self) -> None:
        try:
            give_back_user_rights(self.context.target_path)
        except OSError as e:
            self.log.warning("Failed to give back user rights on target: %s", e)

    def _remove_instance(self, uuid_file: Path) -> None:
        if not uuid_file.exists():
            self.log.debug("No builder instance to remove [file=%s]", uuid_file)
            return
        try:
            self.runtime.remove_instance_from_file(uuid_file)
        except AciBuildError as e:
            self.log.warning("Failed to remove build container: %s", e)

    def _remove_image(self, image_hash: str, what: str) -> None:
        try:
            self.runtime.remove_image(image_hash)
        except AciBuildError as e:
            self.log.warning(
                "Failed to remove %s container image [hash=%s]: %s",
                what,
                image_hash,
                e,
            )


__all__ = [
    "ENV_ACI_PATH",
    "ENV_ACI_TARGET",
    "ENV_BUILDER_COMMAND",
    "ENV_CATCH_ON_ERROR",
    "ENV_CATCH_ON_STEP",
    "ENV_LOG_LEVEL",
    "ENV_TOOL_VERSION",
    "BuildOrchestrator",
    "BuilderRun",
    "stage1_dependencies",
]
