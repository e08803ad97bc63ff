"""Patch-version bump across the canonical version file and its mirrors.

All files are read and validated before anything is written, so a malformed
mirror never leaves the workspace half-bumped. The original bytes of every
file are kept in the returned ``VersionBump`` for compensation.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

from deploybot.core.config import VersionPolicy
from deploybot.core.result import Err, Ok, Result
from deploybot.core.structured import as_str_dict
from deploybot.platform.files import atomic_write_text
from deploybot.release.errors import DeployError

__all__ = [
    "Version",
    "VersionBump",
    "parse_version",
    "read_version",
    "bump_version_files",
    "restore_version_files",
]

_VERSION_RE = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


@dataclass(frozen=True, slots=True, order=True)
class Version:
    major: int
    minor: int
    patch: int

    def next_patch(self) -> Version:
        return Version(self.major, self.minor, self.patch + 1)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(text: str) -> Version | None:
    m = _VERSION_RE.match(text.strip())
    if m is None:
        return None
    return Version(int(m.group(1)), int(m.group(2)), int(m.group(3)))


@dataclass(frozen=True, slots=True)
class VersionBump:
    old_version: str
    new_version: str
    # (path relative to the workspace, content before the bump)
    originals: tuple[tuple[str, str], ...]

    @property
    def files(self) -> tuple[str, ...]:
        return tuple(rel for rel, _ in self.originals)


def _read(root: Path, rel: str) -> Result[str, DeployError]:
    try:
        return Ok((root / rel).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return Err(DeployError.invalid_input(f"version file missing: {rel}"))
    except OSError as e:
        return Err(DeployError.command_failed(f"failed to read {rel}: {e}"))


def read_version(root: Path, policy: VersionPolicy) -> Result[Version, DeployError]:
    text = _read(root, policy.canonical)
    if isinstance(text, Err):
        return text
    version = parse_version(text.value)
    if version is None:
        return Err(
            DeployError.invalid_input(
                f"{policy.canonical} does not hold a MAJOR.MINOR.PATCH version",
                hint=text.value.strip()[:40] or "(empty)",
            )
        )
    return Ok(version)


def _plain(old: str, version: str) -> str:
    return version + ("\n" if old.endswith("\n") else "")


def _json_with_version(rel: str, old: str, version: str) -> Result[str, DeployError]:
    try:
        obj: object = json.loads(old)
    except json.JSONDecodeError as e:
        return Err(DeployError.invalid_input(f"invalid JSON in {rel}: {e}"))
    data = as_str_dict(obj)
    if data is None:
        return Err(DeployError.invalid_input(f"{rel} must hold a JSON object"))
    data["version"] = version
    return Ok(json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def bump_version_files(root: Path, policy: VersionPolicy) -> Result[VersionBump, DeployError]:
    """Increment the patch number and write it to every version file."""
    current = read_version(root, policy)
    if isinstance(current, Err):
        return current
    new_version = str(current.value.next_patch())

    originals: list[tuple[str, str]] = []
    updated: list[tuple[str, str]] = []
    for rel in (policy.canonical, *policy.mirrors):
        old = _read(root, rel)
        if isinstance(old, Err):
            return old
        originals.append((rel, old.value))
        updated.append((rel, _plain(old.value, new_version)))
    for rel in policy.json_files:
        old = _read(root, rel)
        if isinstance(old, Err):
            return old
        new = _json_with_version(rel, old.value, new_version)
        if isinstance(new, Err):
            return new
        originals.append((rel, old.value))
        updated.append((rel, new.value))

    bump = VersionBump(old_version=str(current.value), new_version=new_version, originals=tuple(originals))
    written: list[tuple[str, str]] = []
    for (rel, content), original in zip(updated, originals, strict=True):
        try:
            atomic_write_text(root / rel, content)
        except OSError as e:
            restore_version_files(root, VersionBump(bump.old_version, new_version, tuple(written)))
            return Err(DeployError.command_failed(f"failed to write {rel}: {e}"))
        written.append(original)
    return Ok(bump)


def restore_version_files(root: Path, bump: VersionBump) -> Result[None, DeployError]:
    """Put back the exact content every file had before ``bump``."""
    failed: list[str] = []
    for rel, content in bump.originals:
        try:
            atomic_write_text(root / rel, content)
        except OSError as e:
            failed.append(f"{rel}: {e}")
    if failed:
        return Err(DeployError.command_failed("failed to restore version files", hint="; ".join(failed)))
    return Ok(None)
