"""PublishRelease: bump versions, commit, push and open the release pull.

Everything up to the description is undoable. The commit is undone by
resetting to the recorded parent; the push by moving the remote branch back
with ``--force-with-lease`` pinned to the sha this run pushed.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from deploybot.core.result import Err, Ok, Result
from deploybot.release.deps import ReleaseDeps
from deploybot.release.errors import DeployError, from_git, from_host
from deploybot.release.model import MergedRecord, ReleasePull, release_title
from deploybot.release.saga import Saga, Step, StepContext
from deploybot.release.versioning import VersionBump, bump_version_files, restore_version_files

__all__ = ["PUBLISH", "CommitRecord", "describe_release", "publish_saga"]

PUBLISH = "publish"


@dataclass(frozen=True, slots=True)
class CommitRecord:
    sha: str
    parent: str
    version: str


def describe_release(merged: Sequence[MergedRecord]) -> str:
    """Release pull body: ``PRs`` then one ``#N`` line per merged candidate."""
    return "\n".join(["PRs", *(f"#{r.number}" for r in merged)])


def _bump_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        bumped = bump_version_files(ctx.value("workspace", Path), deps.config.versions)
        if isinstance(bumped, Ok):
            deps.console.info(f"version {bumped.value.old_version} -> {bumped.value.new_version}")
        return bumped

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, VersionBump)
        return restore_version_files(ctx.value("workspace", Path), prior)

    return Step("bump_versions", run, undo=undo, requires=("workspace",))


def _commit_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        bump = ctx.value("bump_versions", VersionBump)
        parent = deps.vcs.rev_parse(workspace, "HEAD")
        if isinstance(parent, Err):
            return Err(from_git(parent.error))
        added = deps.vcs.add(workspace, bump.files)
        if isinstance(added, Err):
            return Err(from_git(added.error, "failed to stage version files"))
        committed = deps.vcs.commit(workspace, f"Bump version to {bump.new_version}")
        if isinstance(committed, Err):
            return Err(from_git(committed.error, "failed to commit the version bump"))
        head = deps.vcs.rev_parse(workspace, "HEAD")
        if isinstance(head, Err):
            return Err(from_git(head.error))
        return Ok(CommitRecord(sha=head.value, parent=parent.value, version=bump.new_version))

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, CommitRecord)
        reset = deps.vcs.reset_hard(ctx.value("workspace", Path), prior.parent)
        if isinstance(reset, Err):
            return Err(from_git(reset.error))
        return Ok(None)

    return Step("commit", run, undo=undo, requires=("workspace", "bump_versions"))


def _push_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = ctx.value("release_key", str)
        pushed = deps.vcs.push(workspace, branch)
        if isinstance(pushed, Err):
            return Err(from_git(pushed.error, f"failed to push the version bump to {branch}"))
        return Ok(ctx.value("commit", CommitRecord))

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, CommitRecord)
        branch = ctx.value("release_key", str)
        reverted = deps.vcs.push_force_with_lease(
            ctx.value("workspace", Path), branch, target=prior.parent, expected=prior.sha
        )
        if isinstance(reverted, Err):
            return Err(from_git(reverted.error, f"failed to move {branch} back to {prior.parent[:10]}"))
        return Ok(None)

    return Step("push", run, undo=undo, requires=("workspace", "release_key", "commit"))


def _open_pull_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        key = ctx.value("release_key", str)
        opened = deps.host.open_pull(title=release_title(key), head=key, base=deps.config.base_branch)
        if isinstance(opened, Err):
            return Err(from_host(opened.error, f"failed to open the release pull request for {key}"))
        pull = ReleasePull(number=opened.value.number, url=opened.value.url)
        deps.console.success(f"opened release pull request #{pull.number} {pull.url}")
        return Ok(pull)

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, ReleasePull)
        closed = deps.host.close_pull(prior.number)
        if isinstance(closed, Err):
            return Err(from_host(closed.error))
        return Ok(None)

    return Step("open_release_pull", run, undo=undo, requires=("release_key", "push"))


def _describe_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        pull = ctx.value("open_release_pull", ReleasePull)
        body = describe_release(ctx.value("merged", tuple))
        described = deps.host.set_description(pull.number, body)
        if isinstance(described, Err):
            return Err(from_host(described.error))
        return Ok(body)

    # closing the pull request is what undoes its description
    return Step("describe", run, requires=("open_release_pull", "merged"))


def _review_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        reviewers = tuple(str(r) for r in ctx.value("reviewers", tuple))
        if not reviewers:
            return Ok(())
        pull = ctx.value("open_release_pull", ReleasePull)
        requested = deps.host.request_review(pull.number, reviewers)
        if isinstance(requested, Err):
            return Err(from_host(requested.error, f"failed to request review from {', '.join(reviewers)}"))
        deps.console.info(f"review requested from {', '.join(reviewers)}")
        return Ok(reviewers)

    return Step("request_review", run, requires=("open_release_pull", "reviewers", "describe"))


def publish_saga(deps: ReleaseDeps) -> Saga:
    return Saga(
        PUBLISH,
        [
            _bump_step(deps),
            _commit_step(deps),
            _push_step(deps),
            _open_pull_step(deps),
            _describe_step(deps),
            _review_step(deps),
        ],
        inputs=("workspace", "release_key", "merged", "reviewers"),
        returns="open_release_pull",
    )
