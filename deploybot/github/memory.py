"""In-memory ``RemoteHost`` for tests and dry runs.

Branches are linear commit histories (oldest first). Merging a pull appends a
squash commit to its base branch, so ``compare`` answers ancestry questions the
way the real host would. Any operation can be made to fail with ``fail_on``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from itertools import count

from deploybot.core.result import Err, Ok, Result
from deploybot.github.models import (
    CheckRun,
    CompareStatus,
    HostError,
    MergedPull,
    OpenedPull,
    PullRequest,
    Review,
)

__all__ = ["InMemoryHost"]


def _not_found(what: str) -> HostError:
    return HostError("not_found", f"{what} not found", status=404)


@dataclass
class InMemoryHost:
    owner: str = "acme"
    repo: str = "shop"
    pulls: dict[int, PullRequest] = field(default_factory=dict)
    branches: dict[str, list[str]] = field(default_factory=dict)
    reviews: dict[int, list[Review]] = field(default_factory=dict)
    checks: dict[str, list[CheckRun]] = field(default_factory=dict)
    # Successive answers for ``mergeable``; the last one repeats.
    mergeable: dict[int, list[bool | None]] = field(default_factory=dict)
    descriptions: dict[int, str] = field(default_factory=dict)
    requested_reviewers: dict[int, list[str]] = field(default_factory=dict)
    merged: dict[int, MergedPull] = field(default_factory=dict)
    failures: dict[str, HostError] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    _clock: count[int] = field(default_factory=lambda: count(1), repr=False)

    # ------------------------------------------------------------------
    # scenario setup

    def add_branch(self, name: str, history: Sequence[str] | None = None) -> None:
        self.branches[name] = list(history) if history is not None else [f"{name}-root"]

    def add_pull(
        self,
        number: int,
        *,
        title: str | None = None,
        head: str | None = None,
        base: str = "staging",
        approved_by: Sequence[str] = ("reviewer",),
        checks: Sequence[CheckRun] | None = None,
    ) -> PullRequest:
        """Register an open pull; approved and green unless told otherwise."""
        head_ref = head or f"feature-{number}"
        pull = PullRequest(
            number=number,
            title=title or f"Feature {number}",
            head_ref=head_ref,
            base_ref=base,
            url=f"https://github.com/{self.owner}/{self.repo}/pull/{number}",
        )
        self.pulls[number] = pull
        self.branches.setdefault(head_ref, [f"{head_ref}-tip"])
        self.reviews[number] = [
            Review(reviewer=r, state="APPROVED", submitted_at=f"2026-01-01T00:00:{i:02d}Z")
            for i, r in enumerate(approved_by)
        ]
        self.checks[head_ref] = (
            list(checks)
            if checks is not None
            else [CheckRun(name="test", status="completed", conclusion="success")]
        )
        return pull

    def fail_on(self, operation: str, error: HostError | None = None) -> None:
        """Make ``operation`` (e.g. ``"merge"`` or ``"merge:13"``) fail."""
        self.failures[operation] = error or HostError("rejected", f"{operation} refused", status=500)

    def _check(self, operation: str, key: object = None) -> HostError | None:
        entry = operation if key is None else f"{operation}:{key}"
        self.calls.append(entry)
        if key is not None and entry in self.failures:
            return self.failures[entry]
        return self.failures.get(operation)

    def _tick(self) -> str:
        return f"2026-01-01T01:{next(self._clock):04d}Z"

    # ------------------------------------------------------------------
    # RemoteHost

    def get_pull(self, number: int) -> Result[PullRequest, HostError]:
        if error := self._check("get_pull", number):
            return Err(error)
        pull = self.pulls.get(number)
        if pull is None:
            return Err(_not_found(f"#{number}"))
        script = self.mergeable.get(number)
        value: bool | None = True
        if script:
            value = script.pop(0) if len(script) > 1 else script[0]
        return Ok(replace(pull, mergeable=value if pull.is_open else None))

    def list_open_pulls(self, *, base: str) -> Result[list[PullRequest], HostError]:
        if error := self._check("list_open_pulls", base):
            return Err(error)
        found = [p for p in self.pulls.values() if p.is_open and p.base_ref == base]
        return Ok(sorted(found, key=lambda p: p.number))

    def retarget(self, number: int, *, base: str) -> Result[None, HostError]:
        if error := self._check("retarget", number):
            return Err(error)
        pull = self.pulls.get(number)
        if pull is None:
            return Err(_not_found(f"#{number}"))
        if base not in self.branches:
            return Err(HostError("unprocessable", f"base {base} does not exist", status=422))
        self.pulls[number] = replace(pull, base_ref=base)
        return Ok(None)

    def request_branch_update(self, number: int) -> Result[None, HostError]:
        if error := self._check("request_branch_update", number):
            return Err(error)
        if number not in self.pulls:
            return Err(_not_found(f"#{number}"))
        return Ok(None)

    def merge(self, number: int) -> Result[str, HostError]:
        if error := self._check("merge", number):
            return Err(error)
        pull = self.pulls.get(number)
        if pull is None:
            return Err(_not_found(f"#{number}"))
        if not pull.is_open:
            return Err(HostError("rejected", f"#{number} is not open", status=405))
        sha = f"squash-{number}"
        self.branches.setdefault(pull.base_ref, []).append(sha)
        self.pulls[number] = replace(pull, state="closed", merged=True)
        self.merged[number] = MergedPull(
            number=number, title=pull.title, merge_sha=sha, merged_at=self._tick()
        )
        return Ok(sha)

    def open_pull(
        self, *, title: str, head: str, base: str, body: str = ""
    ) -> Result[OpenedPull, HostError]:
        if error := self._check("open_pull", head):
            return Err(error)
        if head not in self.branches or base not in self.branches:
            return Err(HostError("unprocessable", f"cannot open {head} -> {base}", status=422))
        number = max(self.pulls, default=0) + 1
        url = f"https://github.com/{self.owner}/{self.repo}/pull/{number}"
        self.pulls[number] = PullRequest(
            number=number, title=title, head_ref=head, base_ref=base, url=url
        )
        self.descriptions[number] = body
        return Ok(OpenedPull(number=number, url=url))

    def set_description(self, number: int, body: str) -> Result[None, HostError]:
        if error := self._check("set_description", number):
            return Err(error)
        if number not in self.pulls:
            return Err(_not_found(f"#{number}"))
        self.descriptions[number] = body
        return Ok(None)

    def close_pull(self, number: int) -> Result[None, HostError]:
        if error := self._check("close_pull", number):
            return Err(error)
        pull = self.pulls.get(number)
        if pull is None:
            return Err(_not_found(f"#{number}"))
        self.pulls[number] = replace(pull, state="closed")
        return Ok(None)

    def request_review(self, number: int, reviewers: Sequence[str]) -> Result[None, HostError]:
        if error := self._check("request_review", number):
            return Err(error)
        self.requested_reviewers.setdefault(number, []).extend(reviewers)
        return Ok(None)

    def list_reviews(self, number: int) -> Result[list[Review], HostError]:
        if error := self._check("list_reviews", number):
            return Err(error)
        return Ok(list(self.reviews.get(number, [])))

    def list_check_runs(self, ref: str) -> Result[list[CheckRun], HostError]:
        if error := self._check("list_check_runs", ref):
            return Err(error)
        return Ok(list(self.checks.get(ref, [])))

    def branch_exists(self, name: str) -> Result[bool, HostError]:
        if error := self._check("branch_exists", name):
            return Err(error)
        return Ok(name in self.branches)

    def delete_branch(self, name: str) -> Result[bool, HostError]:
        if error := self._check("delete_branch", name):
            return Err(error)
        return Ok(self.branches.pop(name, None) is not None)

    def list_merged_into(self, branch: str) -> Result[list[MergedPull], HostError]:
        if error := self._check("list_merged_into", branch):
            return Err(error)
        records = [m for n, m in self.merged.items() if self.pulls[n].base_ref == branch]
        return Ok(sorted(records, key=lambda m: m.merged_at))

    def find_open_pull(self, *, head: str, base: str) -> Result[OpenedPull | None, HostError]:
        if error := self._check("find_open_pull", head):
            return Err(error)
        for pull in self.pulls.values():
            if pull.is_open and pull.head_ref == head and pull.base_ref == base:
                return Ok(OpenedPull(number=pull.number, url=pull.url))
        return Ok(None)

    def compare(self, base: str, head: str) -> Result[CompareStatus, HostError]:
        if error := self._check("compare", f"{base}...{head}"):
            return Err(error)
        base_history = self._history(base)
        head_history = self._history(head)
        if base_history is None or head_history is None:
            return Err(_not_found(f"{base}...{head}"))
        if base_history[-1] == head_history[-1]:
            return Ok(CompareStatus.IDENTICAL)
        if base_history[-1] in head_history:
            return Ok(CompareStatus.AHEAD)
        if head_history[-1] in base_history:
            return Ok(CompareStatus.BEHIND)
        return Ok(CompareStatus.DIVERGED)

    def _history(self, ref: str) -> list[str] | None:
        if ref in self.branches:
            history = self.branches[ref]
            return history if history else None
        for history in self.branches.values():
            if ref in history:
                return history[: history.index(ref) + 1]
        return None
