"""Tests for ImageManifest generation."""

import json
from pathlib import Path

import pytest

from aci_imagegen.manifest.image import (
    AC_KIND_IMAGE,
    TOOL_VERSION_ANNOTATION,
    all_capabilities_isolator,
    dependency_entries,
    name_and_version_from_image_manifest,
    to_image_manifest,
    version_label,
    write_image_manifest,
)
from aci_imagegen.manifest.schema import ACFullname
from aci_imagegen.manifest.template import render


class TestToImageManifest:
    """Tests for to_image_manifest function."""

    def test_basic_document(self) -> None:
        """Should produce a complete ImageManifest."""
        manifest = render(
            """name: example.com/app:1.0
aci:
  app:
    exec: [/bin/app]
  dependencies: [example.com/base:1, example.com/tools]
  pathWhitelist: [/bin/app]
"""
        )
        doc = to_image_manifest(manifest, "builder/example.com/app", "9.9.9")

        assert doc["acKind"] == AC_KIND_IMAGE
        assert doc["name"] == "builder/example.com/app"
        assert {"name": "version", "value": "1.0"} in doc["labels"]
        assert doc["app"]["exec"] == ["/bin/app"]
        assert doc["app"]["user"] == "0"
        assert doc["dependencies"] == [
            {"imageName": "example.com/base", "labels": [{"name": "version", "value": "1"}]},
            {"imageName": "example.com/tools"},
        ]
        assert doc["pathWhitelist"] == ["/bin/app"]
        assert {"name": TOOL_VERSION_ANNOTATION, "value": "9.9.9"} in doc["annotations"]

    def test_no_version_label_when_unpinned(self) -> None:
        """Unpinned images get no version label."""
        doc = to_image_manifest(render("name: example.com/app\n"), "x.com/a", "1")
        assert all(label["name"] != "version" for label in doc["labels"])
        assert "dependencies" not in doc

    def test_isolator_serialization(self) -> None:
        """The capabilities isolator keeps its value."""
        isolator = all_capabilities_isolator()
        assert isolator.model_dump() == {
            "name": "os/linux/capabilities-retain-set",
            "value": {"set": ["all"]},
        }


class TestDependencyEntries:
    """Tests for dependency_entries function."""

    def test_preserves_order(self) -> None:
        """Entries keep the input order."""
        refs = [ACFullname(r) for r in ("x.com/x:1", "y.com/y:2", "z.com/z:3")]
        names = [entry["imageName"] for entry in dependency_entries(refs)]
        assert names == ["x.com/x", "y.com/y", "z.com/z"]


class TestNameAndVersion:
    """Tests for name_and_version_from_image_manifest function."""

    def test_with_version(self) -> None:
        doc = {"name": "example.com/app", "labels": [{"name": "version", "value": "2"}]}
        assert name_and_version_from_image_manifest(doc) == "example.com/app:2"

    def test_without_version(self) -> None:
        assert name_and_version_from_image_manifest({"name": "example.com/app"}) == (
            "example.com/app"
        )

    def test_missing_name(self) -> None:
        with pytest.raises(ValueError):
            name_and_version_from_image_manifest({"labels": []})

    def test_not_an_object(self) -> None:
        with pytest.raises(ValueError):
            name_and_version_from_image_manifest(["a"])  # type: ignore[arg-type]

    @pytest.mark.parametrize("labels", [["version"], {"version": "2"}])
    def test_malformed_labels(self, labels: object) -> None:
        with pytest.raises(ValueError, match="label"):
            name_and_version_from_image_manifest(
                {"name": "example.com/app", "labels": labels}
            )

    def test_version_label(self) -> None:
        doc = {"labels": [{"name": "os", "value": "linux"}, {"name": "version", "value": "3"}]}
        assert version_label(doc) == "3"
        assert version_label({"labels": []}) is None


def test_write_image_manifest(tmp_path: Path) -> None:
    """Should write indented JSON, creating parent directories."""
    path = write_image_manifest({"name": "a"}, tmp_path / "sub" / "manifest")
    assert json.loads(path.read_text()) == {"name": "a"}
