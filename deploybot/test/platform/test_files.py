from __future__ import annotations

from pathlib import Path

from deploybot.core.result import Ok
from deploybot.platform.files import atomic_write_text, make_workspace_dir, remove_tree


def test_atomic_write_replaces_content(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "version.txt"
    atomic_write_text(target, "1.0.0\n")
    atomic_write_text(target, "1.0.1\n")
    assert target.read_text(encoding="utf-8") == "1.0.1\n"
    assert [p.name for p in target.parent.iterdir()] == ["version.txt"]


def test_workspace_dir_lifecycle(tmp_path: Path) -> None:
    made = make_workspace_dir(tmp_path / "parent", "release-20260218")
    assert isinstance(made, Ok)
    path = made.value
    assert path.is_dir()
    assert path.name.startswith("release-20260218-")
    (path / "file").write_text("x", encoding="utf-8")

    assert remove_tree(path) == Ok(None)
    assert not path.exists()
    assert remove_tree(path) == Ok(None)
