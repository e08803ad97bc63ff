"""Sequential merge engine.

Candidates are merged one by one in the caller's order. Every merge moves the
integration branch, so each later candidate is first brought up to date and
re-checked before it is merged. Mergeability is tri-state (``True``,
``False``, ``None`` while the host computes it); anything short of ``True``
within the polling budget is treated as a conflict.

The first successful merge is the point of no return: from then on a failure
is reported as ``IRREVERSIBLE`` together with every merged record.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import replace

from deploybot.core.config import PollingPolicy
from deploybot.core.result import Err, Ok, Result
from deploybot.github.protocol import RemoteHost
from deploybot.output.console import ConsoleProtocol
from deploybot.release.errors import DeployError, from_host
from deploybot.release.events import NULL_BUS, EventBus, EventKind
from deploybot.release.model import CandidateChange, MergedRecord

__all__ = ["wait_until_updated", "wait_for_mergeability", "merge_sequentially"]

Sleep = Callable[[float], None]


def wait_until_updated(
    host: RemoteHost,
    candidate: CandidateChange,
    polling: PollingPolicy,
    *,
    sleep: Sleep = time.sleep,
) -> Result[None, DeployError]:
    """Merge the moved base into ``candidate`` and wait until it is mergeable."""
    requested = host.request_branch_update(candidate.number)
    # 422 is returned for an already up-to-date head; the polls below decide
    if isinstance(requested, Err) and requested.error.kind != "unprocessable":
        message = f"failed to update {candidate.label()} with {candidate.base_ref}"
        return Err(from_host(requested.error, message))

    attempts = max(1, polling.update_attempts)
    last: bool | None = None
    for attempt in range(attempts):
        pull = host.get_pull(candidate.number)
        if isinstance(pull, Err):
            return Err(from_host(pull.error, f"failed to poll {candidate.label()} after branch update"))
        last = pull.value.mergeable
        if last is True:
            return Ok(None)
        if attempt < attempts - 1:
            sleep(polling.update_interval_seconds)

    if last is False:
        return Err(
            DeployError.conflict(
                candidate, f"{candidate.label()} conflicts with {candidate.base_ref} after update"
            )
        )
    return Err(
        DeployError.command_failed(
            f"{candidate.label()} did not become mergeable after a branch update",
            hint=f"polled {attempts} times",
        )
    )


def wait_for_mergeability(
    host: RemoteHost,
    candidate: CandidateChange,
    polling: PollingPolicy,
    *,
    sleep: Sleep = time.sleep,
) -> Result[None, DeployError]:
    """Ok only once the host says ``mergeable == True``."""
    attempts = max(1, polling.mergeable_attempts)
    for attempt in range(attempts):
        pull = host.get_pull(candidate.number)
        if isinstance(pull, Err):
            return Err(from_host(pull.error, f"failed to check mergeability of {candidate.label()}"))
        match pull.value.mergeable:
            case True:
                return Ok(None)
            case False:
                return Err(DeployError.conflict(candidate, f"{candidate.label()} has merge conflicts"))
            case None:
                if attempt < attempts - 1:
                    sleep(polling.mergeable_interval_seconds)
    return Err(
        DeployError.conflict(
            candidate,
            f"mergeability of {candidate.label()} still unknown after {attempts} checks",
        )
    )


def _merge_one(
    host: RemoteHost,
    candidate: CandidateChange,
    *,
    needs_update: bool,
    skip_conflicts: bool,
    polling: PollingPolicy,
    sleep: Sleep,
) -> Result[MergedRecord, DeployError]:
    if needs_update:
        updated = wait_until_updated(host, candidate, polling, sleep=sleep)
        if isinstance(updated, Err):
            return updated
    if not skip_conflicts:
        ready = wait_for_mergeability(host, candidate, polling, sleep=sleep)
        if isinstance(ready, Err):
            return ready
    merged = host.merge(candidate.number)
    if isinstance(merged, Err):
        return Err(from_host(merged.error, f"failed to merge {candidate.label()}"))
    return Ok(MergedRecord(number=candidate.number, title=candidate.title, merge_sha=merged.value))


def merge_sequentially(
    host: RemoteHost,
    candidates: Sequence[CandidateChange],
    *,
    polling: PollingPolicy,
    console: ConsoleProtocol,
    skip_conflicts: bool = False,
    events: EventBus = NULL_BUS,
    sleep: Sleep = time.sleep,
) -> Result[tuple[MergedRecord, ...], DeployError]:
    """Squash-merge ``candidates`` in order, stopping at the first failure."""
    merged: list[MergedRecord] = []
    for index, candidate in enumerate(candidates):
        result = _merge_one(
            host,
            candidate,
            needs_update=index > 0,
            skip_conflicts=skip_conflicts,
            polling=polling,
            sleep=sleep,
        )
        if isinstance(result, Err):
            error = replace(result.error, failed_candidate=candidate)
            if not merged:
                return Err(error)
            console.warning(
                f"stopped at {candidate.label()} after merging "
                + ", ".join(f"#{r.number}" for r in merged)
                + "; merged pull requests cannot be unmerged"
            )
            return Err(error.past_point_of_no_return(merged))

        record = result.value
        merged.append(record)
        events.emit(EventKind.CANDIDATE_MERGED, candidate=record.number, detail=record.merge_sha)
        console.success(f"merged {candidate.label()} as {record.merge_sha[:10]}")
    return Ok(tuple(merged))
