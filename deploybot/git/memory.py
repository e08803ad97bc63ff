"""Recording ``LocalVCS`` for tests.

Nothing is executed: each call is appended to ``calls`` and succeeds unless a
failure was registered with ``fail_on``. ``clone`` creates the destination and
writes ``seed_files`` so file-level steps (version bumps) work for real.
``on_push`` / ``on_delete_remote`` let a test keep an ``InMemoryHost`` in sync.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from itertools import count
from pathlib import Path

from deploybot.core.config import GitIdentity
from deploybot.core.result import Err, Ok, Result
from deploybot.git.workspace import GitError

__all__ = ["RecordingGit"]


@dataclass
class RecordingGit:
    seed_files: dict[str, str] = field(default_factory=dict)
    failures: dict[str, GitError] = field(default_factory=dict)
    on_push: Callable[[str], None] | None = None
    on_delete_remote: Callable[[str], None] | None = None
    calls: list[tuple[str, ...]] = field(default_factory=list)
    head: str = "base-tip"
    _shas: count[int] = field(default_factory=lambda: count(1), repr=False)

    def fail_on(self, operation: str, message: str = "refused", *, transient: bool = False) -> None:
        self.failures[operation] = GitError(command=operation, message=message, transient=transient)

    def _record(self, *call: str) -> Result[None, GitError]:
        self.calls.append(call)
        error = self.failures.get(call[0])
        return Err(error) if error is not None else Ok(None)

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def clone(self, url: str, dest: Path, *, branch: str) -> Result[None, GitError]:
        result = self._record("clone", url, str(dest), branch)
        if isinstance(result, Ok):
            dest.mkdir(parents=True, exist_ok=True)
            for rel, content in self.seed_files.items():
                target = dest / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
        return result

    def configure_identity(self, repo: Path, identity: GitIdentity) -> Result[None, GitError]:
        return self._record("configure_identity", identity.name, identity.email)

    def fetch(self, repo: Path, ref: str) -> Result[None, GitError]:
        return self._record("fetch", ref)

    def reset_hard(self, repo: Path, ref: str) -> Result[None, GitError]:
        result = self._record("reset_hard", ref)
        if isinstance(result, Ok) and not ref.startswith("origin/"):
            self.head = ref
        return result

    def checkout(self, repo: Path, ref: str) -> Result[None, GitError]:
        return self._record("checkout", ref)

    def checkout_new(self, repo: Path, branch: str, *, start: str) -> Result[None, GitError]:
        return self._record("checkout_new", branch, start)

    def delete_local_branch(self, repo: Path, branch: str) -> Result[None, GitError]:
        return self._record("delete_local_branch", branch)

    def add(self, repo: Path, paths: Sequence[str]) -> Result[None, GitError]:
        return self._record("add", *paths)

    def commit(self, repo: Path, message: str) -> Result[None, GitError]:
        result = self._record("commit", message)
        if isinstance(result, Ok):
            self.head = f"commit-{next(self._shas)}"
        return result

    def rev_parse(self, repo: Path, ref: str = "HEAD") -> Result[str, GitError]:
        result = self._record("rev_parse", ref)
        if isinstance(result, Err):
            return result
        return Ok(self.head)

    def push(self, repo: Path, branch: str, *, set_upstream: bool = False) -> Result[None, GitError]:
        result = self._record("push", branch)
        if isinstance(result, Ok) and self.on_push is not None:
            self.on_push(branch)
        return result

    def push_force_with_lease(
        self, repo: Path, branch: str, *, target: str, expected: str
    ) -> Result[None, GitError]:
        return self._record("push_force_with_lease", branch, target, expected)

    def delete_remote_branch(self, repo: Path, branch: str) -> Result[None, GitError]:
        result = self._record("delete_remote_branch", branch)
        if isinstance(result, Ok) and self.on_delete_remote is not None:
            self.on_delete_remote(branch)
        return result

    def pull(self, repo: Path, branch: str) -> Result[None, GitError]:
        return self._record("pull", branch)
