"""Progress events for external observers (dashboards, chat bots, audit).

The core emits; nothing in the core consumes. A hook that raises is reported
on the console and otherwise ignored, so observers can never change the
outcome of a run.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

from deploybot.output.console import ConsoleProtocol

__all__ = [
    "EventKind",
    "DeployEvent",
    "EventHook",
    "EventBus",
    "RecordingHook",
    "NULL_BUS",
]


class EventKind(StrEnum):
    DEPLOY_STARTED = "deploy_started"
    DEPLOY_COMPLETED = "deploy_completed"
    DEPLOY_FAILED = "deploy_failed"
    PHASE_STARTED = "phase_started"
    PHASE_COMPLETED = "phase_completed"
    PHASE_FAILED = "phase_failed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_UNDONE = "step_undone"
    CANDIDATE_MERGED = "candidate_merged"


@dataclass(frozen=True, slots=True)
class DeployEvent:
    kind: EventKind
    release_key: str = ""
    phase: str | None = None
    step: str | None = None
    detail: str = ""
    candidate: int | None = None


class EventHook(Protocol):
    def __call__(self, event: DeployEvent) -> None: ...


class EventBus:
    """Fans events out to hooks; a failing hook never affects the run."""

    def __init__(
        self,
        hooks: Iterable[EventHook] = (),
        *,
        console: ConsoleProtocol | None = None,
        release_key: str = "",
    ) -> None:
        self._hooks = tuple(hooks)
        self._console = console
        self._release_key = release_key

    def for_release(self, release_key: str, *extra: EventHook) -> EventBus:
        return EventBus((*self._hooks, *extra), console=self._console, release_key=release_key)

    def emit(
        self,
        kind: EventKind,
        *,
        phase: str | None = None,
        step: str | None = None,
        detail: str = "",
        candidate: int | None = None,
    ) -> None:
        event = DeployEvent(
            kind=kind,
            release_key=self._release_key,
            phase=phase,
            step=step,
            detail=detail,
            candidate=candidate,
        )
        for hook in self._hooks:
            try:
                hook(event)
            except Exception as e:  # noqa: BLE001
                if self._console is not None:
                    self._console.warning(f"event hook failed on {kind}: {e}")


@dataclass
class RecordingHook:
    events: list[DeployEvent] = field(default_factory=list)

    def __call__(self, event: DeployEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]


NULL_BUS = EventBus()
