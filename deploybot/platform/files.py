"""File-system helpers for the release workspace."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from deploybot.core.result import Err, Ok, Result

__all__ = ["atomic_write_text", "make_workspace_dir", "remove_tree"]


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``content`` via a synced temp file in the same directory."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


def make_workspace_dir(parent: Path | None, prefix: str) -> Result[Path, str]:
    """Create a fresh, uniquely named directory under ``parent`` (system temp if None)."""
    base = parent if parent is not None else Path(tempfile.gettempdir())
    try:
        base.mkdir(parents=True, exist_ok=True)
        return Ok(Path(tempfile.mkdtemp(prefix=f"{prefix}-", dir=str(base))))
    except OSError as e:
        return Err(f"cannot create workspace under {base}: {e}")


def remove_tree(path: Path) -> Result[None, str]:
    """Delete a directory tree; a missing directory is not an error."""
    if not path.exists():
        return Ok(None)
    try:
        shutil.rmtree(path)
    except OSError as e:
        return Err(f"cannot remove {path}: {e}")
    return Ok(None)
