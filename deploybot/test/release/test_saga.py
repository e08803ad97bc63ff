from __future__ import annotations

from dataclasses import replace

import pytest

from deploybot.core.result import Err, Ok, Result
from deploybot.output.console import MockConsole
from deploybot.release.errors import DeployError, ErrorKind
from deploybot.release.events import EventBus, EventKind, RecordingHook
from deploybot.release.saga import Saga, SagaRun, Step, StepContext, retry


def _no_sleep(seconds: float) -> None:
    del seconds


class _Journal:
    def __init__(self) -> None:
        self.entries: list[str] = []

    def step(self, name: str, output: object = None) -> Step:
        def run(ctx: StepContext) -> Result[object, DeployError]:
            del ctx
            self.entries.append(f"run {name}")
            return Ok(output if output is not None else name)

        def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
            del ctx
            self.entries.append(f"undo {name}:{prior}")
            return Ok(None)

        return Step(name, run, undo=undo)

    def failing(self, name: str, kind: ErrorKind = ErrorKind.COMMAND_FAILED) -> Step:
        def run(ctx: StepContext) -> Result[object, DeployError]:
            del ctx
            self.entries.append(f"run {name}")
            return Err(DeployError(kind=kind, message=f"{name} broke"))

        def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
            del prior, ctx
            self.entries.append(f"undo {name}")
            return Ok(None)

        return Step(name, run, undo=undo)


def test_success_returns_last_output_and_records() -> None:
    journal = _Journal()
    saga = Saga("demo", [journal.step("a", 1), journal.step("b", 2)])

    result = saga.execute({}, console=MockConsole(), sleep=_no_sleep)

    assert isinstance(result, Ok)
    assert result.value.value == 2
    assert result.value.output("a") == 1
    assert journal.entries == ["run a", "run b"]


def test_failure_undoes_completed_steps_newest_first() -> None:
    journal = _Journal()
    hook = RecordingHook()
    saga = Saga("demo", [journal.step("a"), journal.step("b"), journal.failing("c"), journal.step("d")])

    result = saga.execute({}, console=MockConsole(), events=EventBus([hook]), sleep=_no_sleep)

    assert isinstance(result, Err)
    failure = result.error
    assert failure.failed_step == "c"
    assert failure.undone == ("b", "a")
    assert journal.entries == ["run a", "run b", "run c", "undo b:b", "undo a:a"]
    error = failure.to_error()
    assert error.step == "c"
    assert error.undone == ("b", "a")
    assert hook.kinds().count(EventKind.STEP_UNDONE) == 2


def test_failing_undo_is_collected_and_unwind_continues() -> None:
    journal = _Journal()

    def broken_undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        del prior, ctx
        raise RuntimeError("disk gone")

    def ok_run(ctx: StepContext) -> Result[object, DeployError]:
        del ctx
        return Ok("b")

    saga = Saga("demo", [journal.step("a"), Step("b", ok_run, undo=broken_undo), journal.failing("c")])
    console = MockConsole()

    result = saga.execute({}, console=console, sleep=_no_sleep)

    assert isinstance(result, Err)
    assert result.error.undone == ("a",)
    [comp] = result.error.compensation_errors
    assert comp.kind is ErrorKind.COMPENSATION_FAILURE
    assert "undo of b failed" in comp.message
    assert "disk gone" in comp.message
    assert console.has_warning()


def test_transient_self_failure_is_retried_without_undo() -> None:
    attempts: list[int] = []

    def flaky(ctx: StepContext) -> Result[object, DeployError]:
        del ctx
        attempts.append(1)
        if len(attempts) < 3:
            return Err(DeployError(kind=ErrorKind.TRANSIENT, message="blip"))
        return Ok("done")

    def never(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        raise AssertionError("undo must not run for the failing step")

    saga = Saga("demo", [Step("flaky", flaky, undo=never, on_self_failure=retry(3))])
    delays: list[float] = []

    result = saga.execute({}, console=MockConsole(), sleep=delays.append)

    assert isinstance(result, Ok)
    assert len(attempts) == 3
    assert len(delays) == 2


def test_non_transient_failure_is_not_retried() -> None:
    attempts: list[int] = []

    def broken(ctx: StepContext) -> Result[object, DeployError]:
        del ctx
        attempts.append(1)
        return Err(DeployError.command_failed("no"))

    saga = Saga("demo", [Step("broken", broken, on_self_failure=retry(5))])
    result = saga.execute({}, console=MockConsole(), sleep=_no_sleep)

    assert isinstance(result, Err)
    assert len(attempts) == 1


def test_failure_after_irreversible_step_unwinds_nothing() -> None:
    journal = _Journal()

    def merge(ctx: StepContext) -> Result[object, DeployError]:
        del ctx
        return Ok("merged")

    saga = Saga(
        "demo",
        [
            journal.step("prepare"),
            Step("merge", merge, irreversible=True),
            replace(journal.failing("after"), undo=None),
        ],
    )
    console = MockConsole()

    result = saga.execute({}, console=console, sleep=_no_sleep)

    assert isinstance(result, Err)
    failure = result.error
    assert failure.past_point_of_no_return
    assert failure.undone == ()
    assert failure.error.kind is ErrorKind.IRREVERSIBLE
    assert failure.error.cause is ErrorKind.COMMAND_FAILED
    assert "undo prepare:prepare" not in journal.entries
    assert console.find("point of no return")


def test_irreversible_error_blocks_unwind() -> None:
    journal = _Journal()
    saga = Saga("demo", [journal.step("a"), journal.failing("b", ErrorKind.IRREVERSIBLE)])

    result = saga.execute({}, console=MockConsole(), sleep=_no_sleep)

    assert isinstance(result, Err)
    assert result.error.past_point_of_no_return
    assert journal.entries == ["run a", "run b"]


def test_requires_scopes_context() -> None:
    seen: list[object] = []

    def first(ctx: StepContext) -> Result[object, DeployError]:
        return Ok(ctx.value("key", str).upper())

    def second(ctx: StepContext) -> Result[object, DeployError]:
        seen.append(ctx.get("first"))
        with pytest.raises(KeyError):
            ctx.get("key")
        return Ok(None)

    saga = Saga(
        "demo",
        [Step("first", first, requires=("key",)), Step("second", second, requires=("first",))],
        inputs=("key",),
        returns="first",
    )

    result = saga.execute({"key": "abc"}, console=MockConsole(), sleep=_no_sleep)

    assert isinstance(result, Ok)
    assert result.value.value == "ABC"
    assert seen == ["ABC"]


def test_construction_rejects_bad_sagas() -> None:
    journal = _Journal()

    def run(ctx: StepContext) -> Result[object, DeployError]:
        del ctx
        return Ok(None)

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        del prior, ctx
        return Ok(None)

    with pytest.raises(ValueError, match="requires"):
        Saga("demo", [Step("a", run, requires=("missing",))])
    with pytest.raises(ValueError, match="duplicate"):
        Saga("demo", [journal.step("a"), journal.step("a")])
    with pytest.raises(ValueError, match="irreversible"):
        Saga("demo", [Step("merge", run, undo=undo, irreversible=True)])
    with pytest.raises(ValueError, match="after irreversible"):
        Saga("demo", [Step("merge", run, irreversible=True), journal.step("later")])
    with pytest.raises(ValueError):
        retry(0)


def test_missing_inputs_raise() -> None:
    saga = Saga("demo", [], inputs=("release_key",))
    with pytest.raises(ValueError, match="release_key"):
        saga.execute({}, console=MockConsole(), sleep=_no_sleep)


def test_completed_saga_can_be_unwound_later() -> None:
    journal = _Journal()
    saga = Saga("inner", [journal.step("x"), journal.step("y")])

    result = saga.execute({}, console=MockConsole(), sleep=_no_sleep)
    assert isinstance(result, Ok)
    run: SagaRun = result.value

    assert run.unwind(console=MockConsole()) == Ok(None)
    assert journal.entries[-2:] == ["undo y:y", "undo x:x"]
