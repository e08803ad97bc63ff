"""Deploy orchestrator: the façade over the release phases.

``deploy`` starts a new release, ``resume`` continues (or, with
``ResumeMode.FORCE``, restarts) one, and ``check_state`` reports what the
remote host says about a release key. A run is one top-level saga whose steps
are the phases; which phases it contains depends on the resume point::

    SETUP           setup   -> merge_batch(requested)  -> publish
    CHANGE_BASES    attach  -> merge_batch(requested)  -> publish
    MERGE_REMAINING attach  -> merge_batch(remaining)  -> publish
    CREATE_RELEASE  attach  -> publish
    DONE            nothing
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from pathlib import Path

from deploybot.core.config import DeployConfig
from deploybot.core.result import Err, Ok, Result
from deploybot.git.workspace import LocalVCS
from deploybot.github.protocol import RemoteHost
from deploybot.output.console import ConsoleProtocol
from deploybot.release.deps import ReleaseDeps
from deploybot.release.errors import DeployError, ErrorKind, from_host
from deploybot.release.events import DeployEvent, EventBus, EventHook, EventKind
from deploybot.release.merge_phase import MERGE_BATCH, merge_saga
from deploybot.release.model import (
    DeployReport,
    MergedRecord,
    ReleasePull,
    ReleaseRun,
    ResumeMode,
    ResumePoint,
    RunOptions,
    StateSnapshot,
    is_valid_release_key,
    release_key_for,
)
from deploybot.release.publish_phase import PUBLISH, publish_saga
from deploybot.release.resume import reconstruct
from deploybot.release.saga import Saga, SagaRun, Step, StepContext
from deploybot.release.setup_phase import attach_saga, setup_saga

__all__ = ["DeployOrchestrator"]

_RUN = "deploy"


def _utc_today() -> date:
    return datetime.now(UTC).date()


@dataclass
class _MergeLedger:
    """Remembers merges as they happen, for errors raised after the merge phase."""

    records: list[MergedRecord] = field(default_factory=list)

    def __call__(self, event: DeployEvent) -> None:
        if event.kind is EventKind.CANDIDATE_MERGED and event.candidate is not None:
            self.records.append(MergedRecord(event.candidate, "", event.detail))


class DeployOrchestrator:
    def __init__(
        self,
        *,
        config: DeployConfig,
        vcs: LocalVCS,
        host: RemoteHost,
        console: ConsoleProtocol,
        hooks: Iterable[EventHook] = (),
        sleep: Callable[[float], None] = time.sleep,
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._config = config
        self._vcs = vcs
        self._host = host
        self._console = console
        self._events = EventBus(hooks, console=console)
        self._sleep = sleep
        self._today = today

    # ------------------------------------------------------------------
    # façade

    def deploy(
        self,
        candidates: Sequence[int],
        options: RunOptions | None = None,
    ) -> Result[DeployReport, DeployError]:
        """Start a new release; fails if its integration branch already exists."""
        return self._execute(candidates, options or RunOptions(), ResumeMode.FRESH)

    def resume(
        self,
        candidates: Sequence[int],
        options: RunOptions | None = None,
        mode: ResumeMode = ResumeMode.RESUME,
    ) -> Result[DeployReport, DeployError]:
        """Continue a release from wherever the remote host says it stopped.

        The candidates given here are authoritative: candidates from an earlier
        run that are not listed again are not merged, although any that were
        already merged stay in the release.
        """
        return self._execute(candidates, options or RunOptions(), mode)

    def check_state(
        self,
        release_key: str,
        candidates: Sequence[int] = (),
    ) -> Result[StateSnapshot, DeployError]:
        if not is_valid_release_key(release_key):
            return Err(DeployError.invalid_input(f"invalid release key: {release_key!r}"))
        return reconstruct(
            self._host,
            release_key=release_key,
            base_branch=self._config.base_branch,
            console=self._console,
            requested=tuple(candidates),
        )

    # ------------------------------------------------------------------
    # run

    def _release_run(self, candidates: Sequence[int], options: RunOptions) -> Result[ReleaseRun, DeployError]:
        key = options.release_key or release_key_for(self._today())
        if not is_valid_release_key(key):
            return Err(DeployError.invalid_input(f"invalid release key: {key!r}"))
        if key == self._config.base_branch:
            return Err(DeployError.invalid_input(f"release key {key!r} is the base branch"))
        numbers = tuple(candidates)
        bad = [n for n in numbers if isinstance(n, bool) or not isinstance(n, int) or n <= 0]
        if bad:
            return Err(DeployError.invalid_input(f"not pull request numbers: {bad}"))
        if len(set(numbers)) != len(numbers):
            return Err(DeployError.invalid_input("pull request numbers must not repeat"))
        return Ok(ReleaseRun(release_key=key, candidates=numbers, options=options))

    def _snapshot(self, run: ReleaseRun, mode: ResumeMode) -> Result[StateSnapshot, DeployError]:
        if mode is not ResumeMode.FRESH:
            return reconstruct(
                self._host,
                release_key=run.release_key,
                base_branch=self._config.base_branch,
                console=self._console,
                requested=run.candidates,
                force=mode is ResumeMode.FORCE,
            )
        exists = self._host.branch_exists(run.branch)
        if isinstance(exists, Err):
            return Err(from_host(exists.error, f"failed to look up {run.branch}"))
        if exists.value:
            return Err(
                DeployError.invalid_input(
                    f"{run.branch} already exists",
                    hint="continue it with --resume, or delete it and start over with --force",
                )
            )
        return Ok(StateSnapshot(release_key=run.release_key, exists=False, resume_point=ResumePoint.SETUP))

    def _execute(
        self,
        candidates: Sequence[int],
        options: RunOptions,
        mode: ResumeMode,
    ) -> Result[DeployReport, DeployError]:
        built = self._release_run(candidates, options)
        if isinstance(built, Err):
            return built
        run = built.value
        ledger = _MergeLedger()
        events = self._events.for_release(run.release_key, ledger)
        deps = ReleaseDeps(
            config=self._config,
            vcs=self._vcs,
            host=self._host,
            console=self._console,
            events=events,
            sleep=self._sleep,
        )

        self._console.header(f"{run.release_key} ({mode})")
        events.emit(EventKind.DEPLOY_STARTED, detail=str(mode))

        snapshot = self._snapshot(run, mode)
        if isinstance(snapshot, Err):
            events.emit(EventKind.DEPLOY_FAILED, detail=snapshot.error.message)
            return snapshot
        state = snapshot.value
        point = state.resume_point
        if point is not ResumePoint.SETUP:
            self._console.info(
                f"resuming at {point}; already merged: "
                + (", ".join(f"#{r.number}" for r in state.merged) or "none")
            )

        if point is ResumePoint.DONE:
            events.emit(EventKind.DEPLOY_COMPLETED, detail="nothing to do")
            if state.release_pull is not None:
                self._console.success(
                    f"{run.release_key} already has release pull request #{state.release_pull.number}"
                )
            return Ok(
                DeployReport(
                    release_key=run.release_key,
                    started_at=point,
                    merged=state.merged,
                    release_pull=state.release_pull,
                )
            )

        saga = self._plan(point, deps)
        requested = state.remaining if point is ResumePoint.MERGE_REMAINING else run.candidates
        outcome = saga.execute(
            {
                "release_key": run.release_key,
                "requested": requested,
                "options": run.options,
                "reviewers": run.options.reviewers,
                "prior_merged": state.merged,
            },
            console=self._console,
            events=events,
            sleep=self._sleep,
        )

        if isinstance(outcome, Err):
            error = self._final_error(outcome.error.to_error(), state.merged, ledger.records)
            events.emit(EventKind.DEPLOY_FAILED, step=error.step, detail=error.message)
            return Err(error)

        result = outcome.value
        newly: tuple[MergedRecord, ...] = ()
        if MERGE_BATCH in result.values:
            merged_now = self._phase_value(result, MERGE_BATCH)
            assert isinstance(merged_now, tuple)
            newly = merged_now
        release_pull = self._phase_value(result, PUBLISH)
        assert isinstance(release_pull, ReleasePull)
        workspace = self._phase_value(result, saga.steps[0].name)
        report = DeployReport(
            release_key=run.release_key,
            started_at=point,
            merged=(*state.merged, *newly),
            newly_merged=newly,
            release_pull=release_pull,
            workspace=workspace if isinstance(workspace, Path) else None,
        )
        events.emit(EventKind.DEPLOY_COMPLETED, detail=release_pull.url)
        self._console.success(f"{run.release_key} ready for review: #{release_pull.number}")
        return Ok(report)

    @staticmethod
    def _phase_value(result: SagaRun, name: str) -> object:
        phase = result.output(name)
        assert isinstance(phase, SagaRun)
        return phase.value

    @staticmethod
    def _final_error(
        error: DeployError,
        prior: Sequence[MergedRecord],
        ledger: Sequence[MergedRecord],
    ) -> DeployError:
        """Attach everything merged so far; any merge makes a failure irreversible."""
        seen = {r.number for r in prior}
        current = [r for r in (error.merged or tuple(ledger)) if r.number not in seen]
        merged = (*prior, *current)
        if not merged:
            return error
        if error.kind is ErrorKind.IRREVERSIBLE:
            return replace(error, merged=merged)
        return error.past_point_of_no_return(merged)

    # ------------------------------------------------------------------
    # plan

    def _plan(self, point: ResumePoint, deps: ReleaseDeps) -> Saga:
        first = setup_saga(deps) if point is ResumePoint.SETUP else attach_saga(deps)
        workspace = first.name

        def workspace_of(ctx: StepContext) -> Path:
            path = ctx.value(workspace, SagaRun).value
            assert isinstance(path, Path)
            return path

        steps = [
            self._phase(
                first,
                deps,
                requires=("release_key",),
                inputs=lambda ctx: {"release_key": ctx.get("release_key")},
            )
        ]

        publish_requires: tuple[str, ...] = (workspace, "release_key", "reviewers", "prior_merged")
        if point is not ResumePoint.CREATE_RELEASE:
            steps.append(
                self._phase(
                    merge_saga(deps),
                    deps,
                    requires=(workspace, "release_key", "requested", "options"),
                    inputs=lambda ctx: {
                        "workspace": workspace_of(ctx),
                        "release_key": ctx.get("release_key"),
                        "requested": ctx.get("requested"),
                        "options": ctx.get("options"),
                    },
                    irreversible=True,
                )
            )
            publish_requires += (MERGE_BATCH,)

        def publish_inputs(ctx: StepContext) -> Mapping[str, object]:
            merged = tuple(ctx.value("prior_merged", tuple))
            if MERGE_BATCH in publish_requires:
                merged_now = ctx.value(MERGE_BATCH, SagaRun).value
                assert isinstance(merged_now, tuple)
                merged += merged_now
            return {
                "workspace": workspace_of(ctx),
                "release_key": ctx.get("release_key"),
                "merged": merged,
                "reviewers": ctx.get("reviewers"),
            }

        steps.append(
            self._phase(
                publish_saga(deps),
                deps,
                requires=publish_requires,
                inputs=publish_inputs,
                compensable=False,
            )
        )
        return Saga(
            _RUN,
            steps,
            inputs=("release_key", "requested", "options", "reviewers", "prior_merged"),
        )

    @staticmethod
    def _phase(
        saga: Saga,
        deps: ReleaseDeps,
        *,
        requires: tuple[str, ...],
        inputs: Callable[[StepContext], Mapping[str, object]],
        irreversible: bool = False,
        compensable: bool = True,
    ) -> Step:
        def run(ctx: StepContext) -> Result[object, DeployError]:
            deps.console.header(saga.name)
            deps.events.emit(EventKind.PHASE_STARTED, phase=saga.name)
            outcome = saga.execute(inputs(ctx), console=deps.console, events=deps.events, sleep=deps.sleep)
            if isinstance(outcome, Err):
                error = outcome.error.to_error()
                deps.events.emit(EventKind.PHASE_FAILED, phase=saga.name, detail=error.message)
                return Err(error)
            deps.events.emit(EventKind.PHASE_COMPLETED, phase=saga.name)
            return Ok(outcome.value)

        def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
            assert isinstance(prior, SagaRun)
            return prior.unwind(console=deps.console, events=deps.events)

        return Step(
            saga.name,
            run,
            undo=undo if compensable and not irreversible else None,
            requires=requires,
            irreversible=irreversible,
        )
