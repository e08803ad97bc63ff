"""Step and saga engine.

A ``Saga`` is a fixed, ordered list of ``Step``s. Steps read run inputs and the
outputs of earlier steps by name and return a ``Result``. On the first failure
every earlier step that declared an ``undo`` is undone, newest first. Undo is
best effort: a failing undo is reported and collected, and the unwind goes on.

Two failure responses are kept apart on purpose:

- ``on_self_failure`` decides what happens when a step's own ``run`` fails
  (retry a transient read, or give up). It never calls ``undo``.
- ``undo`` reverses a step that *succeeded* because a later step failed.

A step marked ``irreversible`` is the point of no return: neither it nor any
later step may declare an ``undo`` (construction raises ``ValueError``), and
once it has completed, or a step fails with an ``IRREVERSIBLE`` error, the
saga reports the failure without unwinding anything.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TypeVar

from deploybot.core.result import Err, Ok, Result
from deploybot.output.console import ConsoleProtocol, Style
from deploybot.release.errors import DeployError, ErrorKind
from deploybot.release.events import NULL_BUS, EventBus, EventKind

__all__ = [
    "SelfFailurePolicy",
    "GIVE_UP",
    "retry",
    "StepContext",
    "Step",
    "StepRecord",
    "SagaFailure",
    "SagaRun",
    "Saga",
]

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class SelfFailurePolicy:
    attempts: int = 1
    delay_seconds: float = 0.0


GIVE_UP = SelfFailurePolicy()


def retry(attempts: int, *, delay_seconds: float = 0.0) -> SelfFailurePolicy:
    """Re-run a failing step up to ``attempts`` times in total (TRANSIENT errors only)."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    return SelfFailurePolicy(attempts=attempts, delay_seconds=delay_seconds)


class StepContext:
    """Read access to the values a step declared in ``requires``."""

    __slots__ = ("_values", "_allowed")

    def __init__(self, values: Mapping[str, object], allowed: Iterable[str]) -> None:
        self._values = values
        self._allowed = frozenset(allowed)

    def get(self, name: str) -> object:
        if name not in self._allowed:
            raise KeyError(f"{name!r} was not declared in requires")
        return self._values[name]

    def value(self, name: str, kind: type[T]) -> T:
        found = self.get(name)
        if not isinstance(found, kind):
            raise TypeError(f"{name!r} is {type(found).__name__}, expected {kind.__name__}")
        return found


StepRun = Callable[[StepContext], Result[object, DeployError]]
StepUndo = Callable[[object, StepContext], Result[None, DeployError]]


@dataclass(frozen=True, slots=True)
class Step:
    name: str
    run: StepRun
    undo: StepUndo | None = None
    requires: tuple[str, ...] = ()
    on_self_failure: SelfFailurePolicy = GIVE_UP
    irreversible: bool = False


@dataclass(frozen=True, slots=True)
class StepRecord:
    name: str
    output: object


@dataclass(frozen=True, slots=True)
class SagaFailure:
    error: DeployError
    failed_step: str
    undone: tuple[str, ...] = ()
    compensation_errors: tuple[DeployError, ...] = ()
    past_point_of_no_return: bool = False

    def to_error(self) -> DeployError:
        """Fold the unwind report into the error itself."""
        return replace(
            self.error,
            undone=(*self.error.undone, *self.undone),
            compensation_errors=(*self.error.compensation_errors, *self.compensation_errors),
        )


@dataclass(frozen=True, slots=True)
class SagaRun:
    """A saga that completed; an enclosing saga may still compensate it."""

    saga: Saga
    value: object
    records: tuple[StepRecord, ...]
    values: Mapping[str, object] = field(repr=False)

    def output(self, step: str) -> object:
        for record in self.records:
            if record.name == step:
                return record.output
        raise KeyError(step)

    def unwind(self, *, console: ConsoleProtocol, events: EventBus = NULL_BUS) -> Result[None, DeployError]:
        _, errors = self.saga.compensate(self.records, self.values, console=console, events=events)
        if errors:
            return Err(
                DeployError(
                    kind=ErrorKind.COMPENSATION_FAILURE,
                    message=f"{len(errors)} undo step(s) of {self.saga.name} failed",
                    compensation_errors=tuple(errors),
                )
            )
        return Ok(None)


class Saga:
    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        *,
        inputs: Iterable[str] = (),
        returns: str | None = None,
    ) -> None:
        self.name = name
        self.inputs = tuple(inputs)
        self.steps = tuple(steps)
        self._returns = returns
        self._by_name: dict[str, Step] = {}
        self._validate()

    def _validate(self) -> None:
        known = set(self.inputs)
        point_of_no_return: str | None = None
        for step in self.steps:
            if step.name in self._by_name or step.name in self.inputs:
                raise ValueError(f"{self.name}: duplicate name {step.name!r}")
            for required in step.requires:
                if required not in known:
                    raise ValueError(
                        f"{self.name}: step {step.name!r} requires {required!r}, "
                        "which is neither an input nor an earlier step"
                    )
            if step.undo is not None and step.irreversible:
                raise ValueError(f"{self.name}: irreversible step {step.name!r} cannot have an undo")
            if step.undo is not None and point_of_no_return is not None:
                raise ValueError(
                    f"{self.name}: step {step.name!r} comes after irreversible step "
                    f"{point_of_no_return!r} and cannot have an undo"
                )
            if step.irreversible and point_of_no_return is None:
                point_of_no_return = step.name
            self._by_name[step.name] = step
            known.add(step.name)
        if self._returns is not None and self._returns not in self._by_name:
            raise ValueError(f"{self.name}: unknown result step {self._returns!r}")

    @property
    def step_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.steps)

    def execute(
        self,
        inputs: Mapping[str, object],
        *,
        console: ConsoleProtocol,
        events: EventBus = NULL_BUS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Result[SagaRun, SagaFailure]:
        missing = [name for name in self.inputs if name not in inputs]
        if missing:
            raise ValueError(f"{self.name}: missing inputs {', '.join(missing)}")

        values: dict[str, object] = {name: inputs[name] for name in self.inputs}
        completed: list[StepRecord] = []
        crossed = False

        for step in self.steps:
            events.emit(EventKind.STEP_STARTED, phase=self.name, step=step.name)
            console.print(f"[{self.name}] {step.name}", Style.DIM)
            result = self._run_step(step, values, console=console, sleep=sleep)

            if isinstance(result, Err):
                error = result.error.at_step(step.name)
                events.emit(EventKind.STEP_FAILED, phase=self.name, step=step.name, detail=error.message)
                if crossed or error.kind is ErrorKind.IRREVERSIBLE:
                    console.warning(
                        f"[{self.name}] {step.name} failed past the point of no return; "
                        "merged work stays in place and nothing is rolled back"
                    )
                    return Err(
                        SagaFailure(
                            error=error.past_point_of_no_return(),
                            failed_step=step.name,
                            past_point_of_no_return=True,
                        )
                    )
                undone, errors = self.compensate(completed, values, console=console, events=events)
                return Err(
                    SagaFailure(
                        error=error,
                        failed_step=step.name,
                        undone=undone,
                        compensation_errors=errors,
                    )
                )

            values[step.name] = result.value
            completed.append(StepRecord(step.name, result.value))
            crossed = crossed or step.irreversible
            events.emit(EventKind.STEP_COMPLETED, phase=self.name, step=step.name)

        if self._returns is not None:
            value = values[self._returns]
        else:
            value = completed[-1].output if completed else None
        return Ok(SagaRun(saga=self, value=value, records=tuple(completed), values=dict(values)))

    def _run_step(
        self,
        step: Step,
        values: Mapping[str, object],
        *,
        console: ConsoleProtocol,
        sleep: Callable[[float], None],
    ) -> Result[object, DeployError]:
        ctx = StepContext(values, step.requires)
        attempts = max(1, step.on_self_failure.attempts)
        attempt = 1
        while True:
            result = step.run(ctx)
            if isinstance(result, Ok):
                return result
            if attempt >= attempts or result.error.kind is not ErrorKind.TRANSIENT:
                return result
            attempt += 1
            console.warning(f"[{self.name}] {step.name}: {result.error.message}; retry {attempt}/{attempts}")
            sleep(step.on_self_failure.delay_seconds)

    def compensate(
        self,
        records: Sequence[StepRecord],
        values: Mapping[str, object],
        *,
        console: ConsoleProtocol,
        events: EventBus = NULL_BUS,
    ) -> tuple[tuple[str, ...], tuple[DeployError, ...]]:
        """Undo ``records`` newest first; returns (undone step names, undo errors)."""
        undone: list[str] = []
        errors: list[DeployError] = []
        for record in reversed(records):
            step = self._by_name[record.name]
            if step.undo is None:
                continue
            console.info(f"[{self.name}] undo {step.name}")
            try:
                result = step.undo(record.output, StepContext(values, step.requires))
            except Exception as e:  # noqa: BLE001
                result = Err(DeployError.command_failed(f"{type(e).__name__}: {e}"))
            if isinstance(result, Err):
                failure = DeployError.compensation_failed(step.name, result.error)
                console.warning(failure.message)
                errors.append(failure)
                continue
            undone.append(step.name)
            events.emit(EventKind.STEP_UNDONE, phase=self.name, step=step.name)
        return tuple(undone), tuple(errors)
