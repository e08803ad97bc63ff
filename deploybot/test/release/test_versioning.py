from __future__ import annotations

import json
from pathlib import Path

import pytest

from deploybot.core.config import VersionPolicy
from deploybot.core.result import Err, Ok
from deploybot.release.errors import ErrorKind
from deploybot.release.versioning import (
    Version,
    bump_version_files,
    parse_version,
    restore_version_files,
)

_PACKAGE = '{\n  "name": "shop-web",\n  "version": "2.4.10",\n  "private": true\n}\n'


def _seed(root: Path) -> None:
    (root / "backend").mkdir()
    (root / "frontend").mkdir()
    (root / "version.txt").write_text("2.4.10\n", encoding="utf-8")
    (root / "backend" / "version.txt").write_text("2.4.10", encoding="utf-8")
    (root / "frontend" / "package.json").write_text(_PACKAGE, encoding="utf-8")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1.2.3", Version(1, 2, 3)),
        (" 10.0.9\n", Version(10, 0, 9)),
        ("1.2", None),
        ("01.2.3", None),
        ("v1.2.3", None),
    ],
)
def test_parse_version(text: str, expected: Version | None) -> None:
    assert parse_version(text) == expected


def test_bump_updates_every_file(tmp_path: Path) -> None:
    _seed(tmp_path)

    result = bump_version_files(tmp_path, VersionPolicy())

    assert isinstance(result, Ok)
    bump = result.value
    assert (bump.old_version, bump.new_version) == ("2.4.10", "2.4.11")
    assert bump.files == ("version.txt", "backend/version.txt", "frontend/package.json")
    assert (tmp_path / "version.txt").read_text(encoding="utf-8") == "2.4.11\n"
    assert (tmp_path / "backend" / "version.txt").read_text(encoding="utf-8") == "2.4.11"
    package = json.loads((tmp_path / "frontend" / "package.json").read_text(encoding="utf-8"))
    assert package == {"name": "shop-web", "version": "2.4.11", "private": True}
    assert list(package) == ["name", "version", "private"]


def test_restore_puts_back_exact_bytes(tmp_path: Path) -> None:
    _seed(tmp_path)
    result = bump_version_files(tmp_path, VersionPolicy())
    assert isinstance(result, Ok)

    assert restore_version_files(tmp_path, result.value) == Ok(None)

    assert (tmp_path / "version.txt").read_text(encoding="utf-8") == "2.4.10\n"
    assert (tmp_path / "frontend" / "package.json").read_text(encoding="utf-8") == _PACKAGE


def test_malformed_mirror_leaves_files_untouched(tmp_path: Path) -> None:
    _seed(tmp_path)
    (tmp_path / "frontend" / "package.json").write_text("[1, 2]", encoding="utf-8")

    result = bump_version_files(tmp_path, VersionPolicy())

    assert isinstance(result, Err)
    assert result.error.kind is ErrorKind.INVALID_INPUT
    assert (tmp_path / "version.txt").read_text(encoding="utf-8") == "2.4.10\n"


def test_missing_or_invalid_canonical(tmp_path: Path) -> None:
    missing = bump_version_files(tmp_path, VersionPolicy())
    assert isinstance(missing, Err)
    assert "version file missing: version.txt" in missing.error.message

    (tmp_path / "version.txt").write_text("latest\n", encoding="utf-8")
    invalid = bump_version_files(tmp_path, VersionPolicy(mirrors=(), json_files=()))
    assert isinstance(invalid, Err)
    assert invalid.error.kind is ErrorKind.INVALID_INPUT
