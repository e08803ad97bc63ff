"""Reconstruct release progress from the remote host alone.

There is no local ledger: whether a candidate counts as merged is decided by
asking the host whether its merge commit is contained in the current tip of
the integration branch. A branch that was deleted and recreated therefore
forgets the merges of its previous incarnation.
"""

from __future__ import annotations

from collections.abc import Sequence

from deploybot.core.result import Err, Ok, Result
from deploybot.github.models import CompareStatus
from deploybot.github.protocol import RemoteHost
from deploybot.output.console import ConsoleProtocol
from deploybot.release.errors import DeployError, from_host
from deploybot.release.model import MergedRecord, ReleasePull, ResumePoint, StateSnapshot

__all__ = ["resume_point_for", "verified_merges", "reconstruct"]

_CONTAINED = (CompareStatus.IDENTICAL, CompareStatus.BEHIND)


def resume_point_for(
    *,
    exists: bool,
    requested: Sequence[int],
    merged: Sequence[int],
    has_release_pull: bool,
) -> ResumePoint:
    """Pick where a run continues.

    Only requested candidates decide between merging and releasing: a merge of
    some other pull request into the branch does not count as progress. With
    nothing requested (discovery), any verified merge means the batch was
    already taken and the run goes on to the release pull request.
    """
    if not exists:
        return ResumePoint.SETUP
    if has_release_pull:
        return ResumePoint.DONE
    done = set(merged)
    if not requested:
        return ResumePoint.CREATE_RELEASE if done else ResumePoint.CHANGE_BASES
    hit = [n for n in requested if n in done]
    if len(hit) == len(requested):
        return ResumePoint.CREATE_RELEASE
    if hit:
        return ResumePoint.MERGE_REMAINING
    return ResumePoint.CHANGE_BASES


def verified_merges(
    host: RemoteHost,
    branch: str,
) -> Result[tuple[tuple[MergedRecord, ...], tuple[MergedRecord, ...]], DeployError]:
    """Split pulls merged into ``branch`` into (contained in its tip, stale)."""
    listed = host.list_merged_into(branch)
    if isinstance(listed, Err):
        return Err(from_host(listed.error, f"failed to list pull requests merged into {branch}"))

    verified: list[MergedRecord] = []
    stale: list[MergedRecord] = []
    for pull in listed.value:
        if pull.merge_sha is None:
            stale.append(MergedRecord(pull.number, pull.title, ""))
            continue
        record = MergedRecord(pull.number, pull.title, pull.merge_sha)
        status = host.compare(branch, pull.merge_sha)
        if isinstance(status, Err):
            if status.error.kind == "not_found":
                stale.append(record)
                continue
            return Err(from_host(status.error, f"failed to check whether #{pull.number} is in {branch}"))
        (verified if status.value in _CONTAINED else stale).append(record)
    return Ok((tuple(verified), tuple(stale)))


def reconstruct(
    host: RemoteHost,
    *,
    release_key: str,
    base_branch: str,
    console: ConsoleProtocol,
    requested: Sequence[int] = (),
    force: bool = False,
) -> Result[StateSnapshot, DeployError]:
    """Derive the resume point for ``release_key``.

    With ``force`` the integration branch is deleted first and the run starts
    over from setup.
    """
    exists = host.branch_exists(release_key)
    if isinstance(exists, Err):
        return Err(from_host(exists.error, f"failed to look up {release_key}"))
    if not exists.value:
        return Ok(StateSnapshot(release_key=release_key, exists=False, resume_point=ResumePoint.SETUP))

    if force:
        deleted = host.delete_branch(release_key)
        if isinstance(deleted, Err):
            return Err(from_host(deleted.error, f"failed to delete {release_key}"))
        console.warning(f"deleted {release_key}; starting over")
        return Ok(StateSnapshot(release_key=release_key, exists=False, resume_point=ResumePoint.SETUP))

    merges = verified_merges(host, release_key)
    if isinstance(merges, Err):
        return merges
    verified, stale = merges.value
    for record in stale:
        console.warning(f"#{record.number} was merged into an earlier {release_key}; ignoring it")

    found = host.find_open_pull(head=release_key, base=base_branch)
    if isinstance(found, Err):
        return Err(from_host(found.error, f"failed to look up the release pull request for {release_key}"))
    release_pull = ReleasePull(found.value.number, found.value.url) if found.value else None

    merged_numbers = [r.number for r in verified]
    done = set(merged_numbers)
    return Ok(
        StateSnapshot(
            release_key=release_key,
            exists=True,
            resume_point=resume_point_for(
                exists=True,
                requested=requested,
                merged=merged_numbers,
                has_release_pull=release_pull is not None,
            ),
            merged=verified,
            stale=stale,
            remaining=tuple(n for n in requested if n not in done),
            release_pull=release_pull,
        )
    )
