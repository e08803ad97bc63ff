"""Git operations against the release workspace.

``LocalVCS`` is what the release phases depend on; ``GitWorkspace`` implements
it with the ``git`` executable. Every method takes the working directory
explicitly because the workspace is only created while a run is in progress.

Usage:
    vcs = GitWorkspace(secrets=(token,), console=console)
    match vcs.clone(clone_url, dest, branch="staging"):
        case Ok(_):
            ...
        case Err(e):
            console.error(e.message)
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from deploybot.core.config import GitIdentity
from deploybot.core.result import Err, Ok, Result
from deploybot.output.console import ConsoleProtocol, Style
from deploybot.platform.process import is_transient_failure, redact
from deploybot.platform.process import run as run_process
from deploybot.platform.timeouts import GIT_NETWORK_TIMEOUT_SECONDS, GIT_TIMEOUT_SECONDS

__all__ = ["GitError", "LocalVCS", "GitWorkspace"]

_NETWORK_COMMANDS = frozenset({"clone", "fetch", "pull", "push"})


@dataclass(frozen=True, slots=True)
class GitError:
    """A git command failed.

    Attributes:
        command: The git subcommand line, secrets redacted.
        message: Last lines of git's output.
        returncode: Process exit code (-1 when git could not run or timed out).
        transient: Whether the failure looks like a network blip.
    """

    command: str
    message: str
    returncode: int = 1
    transient: bool = False

    def __str__(self) -> str:
        return f"git {self.command}: {self.message}"


class LocalVCS(Protocol):
    """Version-control commands the release phases need."""

    def clone(self, url: str, dest: Path, *, branch: str) -> Result[None, GitError]: ...

    def configure_identity(self, repo: Path, identity: GitIdentity) -> Result[None, GitError]: ...

    def fetch(self, repo: Path, ref: str) -> Result[None, GitError]: ...

    def reset_hard(self, repo: Path, ref: str) -> Result[None, GitError]: ...

    def checkout(self, repo: Path, ref: str) -> Result[None, GitError]: ...

    def checkout_new(self, repo: Path, branch: str, *, start: str) -> Result[None, GitError]: ...

    def delete_local_branch(self, repo: Path, branch: str) -> Result[None, GitError]: ...

    def add(self, repo: Path, paths: Sequence[str]) -> Result[None, GitError]: ...

    def commit(self, repo: Path, message: str) -> Result[None, GitError]: ...

    def rev_parse(self, repo: Path, ref: str = "HEAD") -> Result[str, GitError]: ...

    def push(self, repo: Path, branch: str, *, set_upstream: bool = False) -> Result[None, GitError]: ...

    def push_force_with_lease(
        self, repo: Path, branch: str, *, target: str, expected: str
    ) -> Result[None, GitError]:
        """Move remote ``branch`` to ``target`` only if it still points at ``expected``."""
        ...

    def delete_remote_branch(self, repo: Path, branch: str) -> Result[None, GitError]: ...

    def pull(self, repo: Path, branch: str) -> Result[None, GitError]: ...


class GitWorkspace:
    """``LocalVCS`` backed by the ``git`` executable."""

    def __init__(
        self,
        *,
        secrets: Iterable[str] = (),
        console: ConsoleProtocol | None = None,
    ) -> None:
        self._secrets = tuple(s for s in secrets if s)
        self._console = console

    def _git(self, cwd: Path, args: list[str]) -> Result[str, GitError]:
        shown = redact(" ".join(args), self._secrets)
        if self._console is not None:
            self._console.print(f"git {shown}", Style.DIM)
        timeout = GIT_NETWORK_TIMEOUT_SECONDS if args[0] in _NETWORK_COMMANDS else GIT_TIMEOUT_SECONDS
        result = run_process(
            ["git", *args],
            cwd=cwd,
            env=None,
            timeout=timeout,
            secrets=self._secrets,
        )
        match result:
            case Ok(stdout):
                return Ok(stdout)
            case Err(e):
                lines = e.output.splitlines()
                message = "\n".join(lines[-3:]) if lines else f"exit {e.returncode}"
                return Err(
                    GitError(
                        command=shown,
                        message=message,
                        returncode=e.returncode,
                        transient=is_transient_failure(e),
                    )
                )

    def _unit(self, cwd: Path, args: list[str]) -> Result[None, GitError]:
        return self._git(cwd, args).map(lambda _: None)

    def clone(self, url: str, dest: Path, *, branch: str) -> Result[None, GitError]:
        return self._unit(dest.parent, ["clone", "--branch", branch, url, str(dest)])

    def configure_identity(self, repo: Path, identity: GitIdentity) -> Result[None, GitError]:
        named = self._unit(repo, ["config", "user.name", identity.name])
        if isinstance(named, Err):
            return named
        return self._unit(repo, ["config", "user.email", identity.email])

    def fetch(self, repo: Path, ref: str) -> Result[None, GitError]:
        return self._unit(repo, ["fetch", "origin", ref])

    def reset_hard(self, repo: Path, ref: str) -> Result[None, GitError]:
        return self._unit(repo, ["reset", "--hard", ref])

    def checkout(self, repo: Path, ref: str) -> Result[None, GitError]:
        return self._unit(repo, ["checkout", ref])

    def checkout_new(self, repo: Path, branch: str, *, start: str) -> Result[None, GitError]:
        return self._unit(repo, ["checkout", "-b", branch, start])

    def delete_local_branch(self, repo: Path, branch: str) -> Result[None, GitError]:
        return self._unit(repo, ["branch", "-D", branch])

    def add(self, repo: Path, paths: Sequence[str]) -> Result[None, GitError]:
        return self._unit(repo, ["add", "--", *paths])

    def commit(self, repo: Path, message: str) -> Result[None, GitError]:
        return self._unit(repo, ["commit", "-m", message])

    def rev_parse(self, repo: Path, ref: str = "HEAD") -> Result[str, GitError]:
        return self._git(repo, ["rev-parse", ref]).map(str.strip)

    def push(self, repo: Path, branch: str, *, set_upstream: bool = False) -> Result[None, GitError]:
        args = ["push", "-u", "origin", branch] if set_upstream else ["push", "origin", branch]
        return self._unit(repo, args)

    def push_force_with_lease(
        self, repo: Path, branch: str, *, target: str, expected: str
    ) -> Result[None, GitError]:
        return self._unit(
            repo,
            [
                "push",
                f"--force-with-lease=refs/heads/{branch}:{expected}",
                "origin",
                f"{target}:refs/heads/{branch}",
            ],
        )

    def delete_remote_branch(self, repo: Path, branch: str) -> Result[None, GitError]:
        return self._unit(repo, ["push", "origin", "--delete", branch])

    def pull(self, repo: Path, branch: str) -> Result[None, GitError]:
        return self._unit(repo, ["pull", "--ff-only", "origin", branch])
