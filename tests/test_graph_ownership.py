"""Tests for graph export and ownership restoration."""

import os
from pathlib import Path
from unittest.mock import call, patch

from aci_imagegen.builds.graph import render_dot, write_graph
from aci_imagegen.builds.ownership import give_back_user_rights, invoking_user_ids
from aci_imagegen.manifest.template import render

MANIFEST = """name: example.com/app:1
aci:
  dependencies: [example.com/base:1]
builder:
  image: example.com/builder:2
  dependencies: [example.com/tools]
"""


class TestGraph:
    """Tests for dependency graph export."""

    def test_render_dot(self) -> None:
        dot = render_dot(render(MANIFEST))
        assert dot.startswith("digraph {")
        assert '"example.com/app:1" -> "example.com/base:1";' in dot
        assert '"example.com/builder:2" -> "example.com/app:1" [style=dashed];' in dot
        assert '"example.com/tools" -> "example.com/builder:2" [style=dotted];' in dot

    def test_default_builder(self) -> None:
        dot = render_dot(render("name: example.com/app\n"), "example.com/default")
        assert '"example.com/default" -> "example.com/app"' in dot

    def test_write_without_graphviz(self, tmp_path: Path) -> None:
        """Only the DOT file is written when dot is missing."""
        with patch("shutil.which", return_value=None):
            written = write_graph(
                render(MANIFEST), tmp_path / "graph.dot", tmp_path / "graph.png"
            )
        assert written == [tmp_path / "graph.dot"]
        assert (tmp_path / "graph.dot").read_text().startswith("digraph")


class TestOwnership:
    """Tests for give_back_user_rights."""

    def test_not_under_sudo(self, tmp_path: Path) -> None:
        assert invoking_user_ids() is None
        assert give_back_user_rights(tmp_path) == 0

    def test_invalid_ids(self, monkeypatch) -> None:
        monkeypatch.setenv("SUDO_UID", "abc")
        monkeypatch.setenv("SUDO_GID", "1")
        assert invoking_user_ids() is None

    def test_recursive_lchown(self, tmp_path: Path, monkeypatch) -> None:
        """Every entry, symlinks included, is handed back."""
        monkeypatch.setenv("SUDO_UID", "1000")
        monkeypatch.setenv("SUDO_GID", "1001")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "file").write_text("x")
        os.symlink("/nonexistent", tmp_path / "link")

        with patch("os.lchown") as lchown:
            assert give_back_user_rights(tmp_path) == 4

        assert call(tmp_path, 1000, 1001) in lchown.call_args_list
        assert call(os.path.join(tmp_path, "link"), 1000, 1001) in lchown.call_args_list
