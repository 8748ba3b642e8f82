"""Tests for manifest template rendering."""

from pathlib import Path

import pytest

from aci_imagegen.errors import AciBuildError, ManifestError
from aci_imagegen.manifest.schema import ACFullname
from aci_imagegen.manifest.template import (
    load_manifest_template,
    parse_template,
    render,
)
from aci_imagegen.types import ErrorReason


class TestRender:
    """Tests for render function."""

    @pytest.mark.parametrize(
        "template",
        [
            "name: example.com/name:1",
            """name: example.com/name:2
aci:
  app:
    exec:
      - /bin/bash""",
            """name: example.com/aci-test:3-1
aci:
  app:
    supplementaryGIDs: [42, 43]
  annotations:
    - {name: test, value: test2}
    - {name: test42, value: test43}
""",
        ],
    )
    def test_valid_manifests_render(self, template: str) -> None:
        """Representative manifests should render."""
        manifest = render(template)
        assert manifest.name_and_version.name.startswith("example.com/")

    def test_fields_are_mapped(self) -> None:
        """Aliased keys should land on the model fields."""
        manifest = render(
            """name: example.com/aci-test:3-1
aci:
  app:
    exec: [/bin/sh, -c, /bin/true]
    workingDirectory: /srv
    supplementaryGIDs: [42, 43]
  dependencies:
    - example.com/base:1
builder:
  dependencies:
    - example.com/tools
"""
        )
        assert manifest.name_and_version == "example.com/aci-test:3-1"
        assert manifest.name_and_version.version == "3-1"
        assert manifest.aci.app.exec == ("/bin/sh", "-c", "/bin/true")
        assert manifest.aci.app.working_directory == "/srv"
        assert manifest.aci.app.supplementary_gids == (42, 43)
        assert manifest.aci.dependencies == (ACFullname("example.com/base:1"),)
        assert manifest.builder.image is None
        assert manifest.builder.dependencies[0].version == ""
        assert manifest.tester is None

    def test_missing_name(self) -> None:
        """A manifest without name should fail with MANIFEST_MISSING_NAME."""
        with pytest.raises(ManifestError) as exc_info:
            render("aci:\n  app:\n    exec: [/bin/true]\n")
        assert exc_info.value.reason == ErrorReason.MANIFEST_MISSING_NAME

    def test_blank_name(self) -> None:
        """A blank name is treated as missing."""
        with pytest.raises(ManifestError) as exc_info:
            render("name: '  '\n")
        assert exc_info.value.reason == ErrorReason.MANIFEST_MISSING_NAME

    def test_empty_document(self) -> None:
        """An empty document has no name."""
        with pytest.raises(ManifestError) as exc_info:
            render("")
        assert exc_info.value.code == "manifest_missing_name"

    def test_invalid_yaml(self) -> None:
        """Broken YAML should fail with MANIFEST_MALFORMED and carry the content."""
        template = "name: [unclosed\n"
        with pytest.raises(ManifestError) as exc_info:
            render(template)
        assert exc_info.value.reason == ErrorReason.MANIFEST_MALFORMED
        assert exc_info.value.context()["content"] == template

    def test_unknown_key(self) -> None:
        """Unknown keys are rejected."""
        with pytest.raises(ManifestError) as exc_info:
            render("name: example.com/a\nunknown: 1\n")
        assert exc_info.value.reason == ErrorReason.MANIFEST_MALFORMED

    def test_invalid_name(self) -> None:
        """Names must be valid AC identifiers."""
        with pytest.raises(ManifestError):
            render("name: Example.com/UPPER\n")

    def test_render_is_deterministic(self) -> None:
        """Rendering the same text twice gives equal manifests."""
        template = "name: example.com/a:1\naci:\n  app:\n    exec: [/x]\n"
        assert render(template) == render(template)


class TestParseTemplate:
    """Tests for parse_template function."""

    def test_non_mapping(self) -> None:
        """A YAML list is not a manifest."""
        with pytest.raises(ManifestError, match="mapping"):
            parse_template("- a\n- b\n")

    def test_long_content_is_truncated(self) -> None:
        """Huge templates are truncated in the error context."""
        template = "- " + "x" * 5000
        with pytest.raises(ManifestError) as exc_info:
            parse_template(template)
        assert exc_info.value.context()["content"].endswith("...")


class TestLoadManifestTemplate:
    """Tests for load_manifest_template function."""

    def test_reads_file(self, project: Path) -> None:
        """Should return the raw text of aci-manifest.yml."""
        assert load_manifest_template(project).startswith("name: example.com/app")

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing manifest is a filesystem error."""
        with pytest.raises(AciBuildError) as exc_info:
            load_manifest_template(tmp_path)
        assert exc_info.value.reason == ErrorReason.FILESYSTEM


class TestACFullname:
    """Tests for ACFullname parsing."""

    def test_name_and_version(self) -> None:
        """Should split name, version and short name."""
        ref = ACFullname("aci.example.com/dgr/aci-builder:1.2-3")
        assert ref.name == "aci.example.com/dgr/aci-builder"
        assert ref.version == "1.2-3"
        assert ref.short_name == "aci-builder"

    def test_unpinned(self) -> None:
        """A missing version is empty, never 'latest'."""
        assert ACFullname("example.com/a").version == ""

    def test_empty_version(self) -> None:
        """A trailing colon is invalid."""
        with pytest.raises(ValueError):
            ACFullname("example.com/a:")
