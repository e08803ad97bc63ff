from __future__ import annotations

from deploybot.output.console import MockConsole
from deploybot.release.events import DeployEvent, EventBus, EventKind, RecordingHook


def test_events_carry_release_key() -> None:
    hook = RecordingHook()
    bus = EventBus([hook]).for_release("release-20260218")

    bus.emit(EventKind.CANDIDATE_MERGED, phase="merge_batch", candidate=12, detail="abc")

    [event] = hook.events
    assert event == DeployEvent(
        kind=EventKind.CANDIDATE_MERGED,
        release_key="release-20260218",
        phase="merge_batch",
        detail="abc",
        candidate=12,
    )


def test_failing_hook_is_reported_and_ignored() -> None:
    def broken(event: DeployEvent) -> None:
        raise RuntimeError("webhook down")

    hook = RecordingHook()
    console = MockConsole()
    bus = EventBus([broken, hook], console=console)

    bus.emit(EventKind.DEPLOY_STARTED)

    assert hook.kinds() == [EventKind.DEPLOY_STARTED]
    assert console.find("webhook down")
