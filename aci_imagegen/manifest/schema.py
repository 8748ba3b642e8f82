"""Pydantic models for the build manifest (``aci-manifest.yml``).

The manifest declares the image identity, the application spec, the builder
used to produce the image and an optional tester. Models are frozen: a
rendered manifest is never mutated, derived manifests are built with
``model_copy(update=...)``.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, GetCoreSchemaHandler
from pydantic_core import core_schema

# AC identifier: lowercase alphanumerics separated by -._~/
AC_IDENTIFIER_PATTERN = re.compile(r"^[a-z0-9]+([-._~/][a-z0-9]+)*$")


class ACFullname(str):
    """Fully-qualified image reference: ``name`` or ``name:version``.

    A missing version means "latest at resolution time"; it is never pinned.
    """

    def __new__(cls, value: str) -> ACFullname:
        value = value.strip()
        name, sep, version = value.partition(":")
        if not AC_IDENTIFIER_PATTERN.match(name):
            raise ValueError(f"invalid image name '{name}'")
        if sep and not version:
            raise ValueError(f"empty version in '{value}'")
        return super().__new__(cls, value)

    @property
    def name(self) -> str:
        """Image name without version."""
        return self.partition(":")[0]

    @property
    def version(self) -> str:
        """Pinned version, or empty string when unpinned."""
        return self.partition(":")[2]

    @property
    def short_name(self) -> str:
        """Last path segment of the name."""
        return self.name.rsplit("/", 1)[-1]

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls, core_schema.str_schema()
        )


class _Spec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class NameValue(_Spec):
    """Name/value pair (annotations, environment entries)."""

    name: str
    value: str


class Isolator(_Spec):
    """Runtime isolator, e.g. ``os/linux/capabilities-retain-set``."""

    name: str
    value: Any = None


class MountPoint(_Spec):
    """Mount point declared by the application."""

    name: str
    path: str
    read_only: bool = Field(default=False, alias="readOnly")


class Port(_Spec):
    """Port exposed by the application."""

    name: str
    protocol: str = "tcp"
    port: int
    count: int = 1
    socket_activated: bool = Field(default=False, alias="socketActivated")


class AppSpec(_Spec):
    """Application execution spec."""

    exec: tuple[str, ...] = ()
    user: str | None = None
    group: str | None = None
    working_directory: str | None = Field(default=None, alias="workingDirectory")
    supplementary_gids: tuple[int, ...] = Field(default=(), alias="supplementaryGIDs")
    environment: tuple[NameValue, ...] = ()
    isolators: tuple[Isolator, ...] = ()
    mount_points: tuple[MountPoint, ...] = Field(default=(), alias="mountPoints")
    ports: tuple[Port, ...] = ()


class AciSpec(_Spec):
    """Application spec: app, annotations and image dependencies."""

    app: AppSpec = Field(default_factory=AppSpec)
    annotations: tuple[NameValue, ...] = ()
    dependencies: tuple[ACFullname, ...] = ()
    path_whitelist: tuple[str, ...] = Field(default=(), alias="pathWhitelist")


class BuilderSpec(_Spec):
    """Builder base image and the dependencies it needs at build time."""

    image: ACFullname | None = None
    dependencies: tuple[ACFullname, ...] = ()


class TesterSpec(_Spec):
    """Builder and application sub-specs used for test runs."""

    builder: BuilderSpec = Field(default_factory=BuilderSpec)
    aci: AciSpec = Field(default_factory=AciSpec)


class AciManifest(_Spec):
    """Complete rendered build manifest.

    Attributes:
        name_and_version: Image identity, primary key for artifact naming.
        aci: Application spec.
        builder: Builder spec.
        tester: Tester spec, or None when no tester is configured.
    """

    name_and_version: ACFullname = Field(alias="name")
    aci: AciSpec = Field(default_factory=AciSpec)
    builder: BuilderSpec = Field(default_factory=BuilderSpec)
    tester: TesterSpec | None = None


__all__ = [
    "AC_IDENTIFIER_PATTERN",
    "ACFullname",
    "AciManifest",
    "AciSpec",
    "AppSpec",
    "BuilderSpec",
    "Isolator",
    "MountPoint",
    "NameValue",
    "Port",
    "TesterSpec",
]
