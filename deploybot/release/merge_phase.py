"""MergeBatch: collect, validate, retarget and merge the candidates.

Retargeting is compensated (every pull goes back to the base it had); the
merge step is the point of no return and nothing after it is undone.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from deploybot.core.result import Err, Ok, Result
from deploybot.release.deps import ReleaseDeps
from deploybot.release.errors import DeployError, from_git, from_host
from deploybot.release.merging import merge_sequentially
from deploybot.release.model import CandidateChange, RunOptions
from deploybot.release.saga import Saga, Step, StepContext, retry
from deploybot.release.validation import approval_state, validate_candidates

__all__ = ["MERGE_BATCH", "Retargeted", "fetch_candidates", "merge_saga"]

MERGE_BATCH = "merge_batch"


@dataclass(frozen=True, slots=True)
class Retargeted:
    candidates: tuple[CandidateChange, ...]
    # (number, base before retargeting) for the pulls this step actually moved
    moved: tuple[tuple[int, str], ...]


def _discover(
    deps: ReleaseDeps,
    release_key: str,
    options: RunOptions,
) -> Result[list[CandidateChange], DeployError]:
    base = deps.config.base_branch
    listed = deps.host.list_open_pulls(base=base)
    if isinstance(listed, Err):
        return Err(from_host(listed.error, f"failed to list open pull requests into {base}"))
    found: list[CandidateChange] = []
    for pull in listed.value:
        if pull.head_ref == release_key:
            continue
        if not (options.skip_reviews or options.skip_all):
            reviews = deps.host.list_reviews(pull.number)
            if isinstance(reviews, Err):
                return Err(from_host(reviews.error, f"failed to list reviews of #{pull.number}"))
            if not approval_state(reviews.value).ok:
                continue
        found.append(CandidateChange.from_pull(pull))
    return Ok(found)


def fetch_candidates(
    deps: ReleaseDeps,
    requested: tuple[int, ...],
    release_key: str,
    options: RunOptions,
) -> Result[tuple[CandidateChange, ...], DeployError]:
    """Load the requested pulls, or discover approved open ones when none are given."""
    if not requested:
        discovered = _discover(deps, release_key, options)
        if isinstance(discovered, Err):
            return discovered
        if not discovered.value:
            return Err(
                DeployError.invalid_input(
                    f"no approved open pull requests target {deps.config.base_branch}",
                    hint="pass pull request numbers explicitly",
                )
            )
        deps.console.info("discovered " + ", ".join(f"#{c.number}" for c in discovered.value))
        return Ok(tuple(discovered.value))

    candidates: list[CandidateChange] = []
    for number in requested:
        pull = deps.host.get_pull(number)
        if isinstance(pull, Err):
            return Err(from_host(pull.error, f"failed to fetch #{number}"))
        if not pull.value.is_open:
            state = "merged" if pull.value.merged else pull.value.state
            return Err(DeployError.invalid_input(f"#{number} is {state}, not open"))
        candidates.append(CandidateChange.from_pull(pull.value))
    return Ok(tuple(candidates))


def _candidates_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        requested = ctx.value("requested", tuple)
        return fetch_candidates(
            deps,
            tuple(int(n) for n in requested),
            ctx.value("release_key", str),
            ctx.value("options", RunOptions),
        )

    return Step(
        "candidates",
        run,
        requires=("requested", "release_key", "options"),
        on_self_failure=retry(2, delay_seconds=1.0),
    )


def _validate_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        candidates = ctx.value("candidates", tuple)
        result = validate_candidates(deps.host, candidates, ctx.value("options", RunOptions))
        if isinstance(result, Ok):
            deps.console.success(f"{len(result.value)} candidate(s) ready")
        return result

    return Step("validate", run, requires=("candidates", "options"))


def _restore_bases(deps: ReleaseDeps, moved: tuple[tuple[int, str], ...]) -> list[str]:
    failed: list[str] = []
    for number, previous in reversed(moved):
        restored = deps.host.retarget(number, base=previous)
        if isinstance(restored, Err):
            deps.console.warning(f"could not retarget #{number} back to {previous}: {restored.error}")
            failed.append(f"#{number}")
    return failed


def _retarget_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        branch = ctx.value("release_key", str)
        candidates: list[CandidateChange] = []
        moved: list[tuple[int, str]] = []
        for candidate in ctx.value("validate", tuple):
            if candidate.base_ref == branch:
                candidates.append(candidate)
                continue
            result = deps.host.retarget(candidate.number, base=branch)
            if isinstance(result, Err):
                _restore_bases(deps, tuple(moved))
                return Err(from_host(result.error, f"failed to retarget {candidate.label()} onto {branch}"))
            moved.append((candidate.number, candidate.base_ref))
            candidates.append(candidate.retargeted(branch))
        return Ok(Retargeted(tuple(candidates), tuple(moved)))

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, Retargeted)
        failed = _restore_bases(deps, prior.moved)
        if failed:
            return Err(DeployError.command_failed(f"could not restore the base of {', '.join(failed)}"))
        return Ok(None)

    return Step("retarget", run, undo=undo, requires=("validate", "release_key"))


def _merge_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        retargeted = ctx.value("retarget", Retargeted)
        options = ctx.value("options", RunOptions)
        return merge_sequentially(
            deps.host,
            retargeted.candidates,
            polling=deps.config.polling,
            console=deps.console,
            skip_conflicts=options.skips_conflicts,
            events=deps.events,
            sleep=deps.sleep,
        )

    return Step("merge", run, requires=("retarget", "options"), irreversible=True)


def _sync_local_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = ctx.value("release_key", str)
        pulled = deps.vcs.pull(workspace, branch)
        if isinstance(pulled, Err):
            return Err(from_git(pulled.error, f"failed to pull {branch} after merging"))
        return Ok(branch)

    return Step(
        "sync_local",
        run,
        requires=("workspace", "release_key", "merge"),
        on_self_failure=retry(3, delay_seconds=2.0),
    )


def merge_saga(deps: ReleaseDeps) -> Saga:
    return Saga(
        MERGE_BATCH,
        [
            _candidates_step(deps),
            _validate_step(deps),
            _retarget_step(deps),
            _merge_step(deps),
            _sync_local_step(deps),
        ],
        inputs=("workspace", "release_key", "requested", "options"),
        returns="merge",
    )
