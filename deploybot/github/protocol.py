"""The pull-request host as seen by the release core."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from deploybot.core.result import Result
from deploybot.github.models import (
    CheckRun,
    CompareStatus,
    HostError,
    MergedPull,
    OpenedPull,
    PullRequest,
    Review,
)

__all__ = ["RemoteHost"]


class RemoteHost(Protocol):
    """Operations on the repository's pull requests and branches.

    Every call returns a Result; read-only calls may be retried by the
    implementation on transient failures, writes never are.
    """

    def get_pull(self, number: int) -> Result[PullRequest, HostError]: ...

    def list_open_pulls(self, *, base: str) -> Result[list[PullRequest], HostError]: ...

    def retarget(self, number: int, *, base: str) -> Result[None, HostError]: ...

    def request_branch_update(self, number: int) -> Result[None, HostError]:
        """Ask the host to merge the base branch into the pull's head."""
        ...

    def merge(self, number: int) -> Result[str, HostError]:
        """Squash-merge; returns the merge commit sha."""
        ...

    def open_pull(
        self, *, title: str, head: str, base: str, body: str = ""
    ) -> Result[OpenedPull, HostError]: ...

    def set_description(self, number: int, body: str) -> Result[None, HostError]: ...

    def close_pull(self, number: int) -> Result[None, HostError]: ...

    def request_review(self, number: int, reviewers: Sequence[str]) -> Result[None, HostError]: ...

    def list_reviews(self, number: int) -> Result[list[Review], HostError]: ...

    def list_check_runs(self, ref: str) -> Result[list[CheckRun], HostError]: ...

    def branch_exists(self, name: str) -> Result[bool, HostError]: ...

    def delete_branch(self, name: str) -> Result[bool, HostError]:
        """Delete a remote branch; Ok(False) when it was already absent."""
        ...

    def list_merged_into(self, branch: str) -> Result[list[MergedPull], HostError]:
        """Merged pulls whose base was ``branch``, oldest merge first."""
        ...

    def find_open_pull(self, *, head: str, base: str) -> Result[OpenedPull | None, HostError]: ...

    def compare(self, base: str, head: str) -> Result[CompareStatus, HostError]: ...
