"""The single error type of the release core and its rendering.

Steps, the merge engine and the orchestrator all fail with ``DeployError``.
``kind`` is a closed set; structured payloads (validation failures, merged
records, undone steps) ride along so that ``render_error`` can explain the
whole situation once, at the boundary.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import StrEnum

from deploybot.core.errors import ErrorCode
from deploybot.git.workspace import GitError
from deploybot.github.models import HostError
from deploybot.release.model import CandidateChange, MergedRecord, ValidationFailure

__all__ = [
    "ErrorKind",
    "DeployError",
    "from_host",
    "from_git",
    "render_error",
    "exit_code_for",
]


class ErrorKind(StrEnum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    IRREVERSIBLE = "irreversible"
    COMPENSATION_FAILURE = "compensation_failure"
    COMMAND_FAILED = "command_failed"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True, slots=True)
class DeployError:
    kind: ErrorKind
    message: str
    hint: str | None = None
    # for IRREVERSIBLE: the kind of the failure that happened past the point of no return
    cause: ErrorKind | None = None
    failures: tuple[ValidationFailure, ...] = ()
    merged: tuple[MergedRecord, ...] = ()
    failed_candidate: CandidateChange | None = None
    step: str | None = None
    undone: tuple[str, ...] = ()
    compensation_errors: tuple[DeployError, ...] = ()

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    @property
    def root_kind(self) -> ErrorKind:
        return self.cause if self.kind is ErrorKind.IRREVERSIBLE and self.cause else self.kind

    def pretty(self) -> str:
        if self.hint:
            return f"{self.message}\nhint: {self.hint}"
        return self.message

    def at_step(self, step: str) -> DeployError:
        """Record the failing step unless an inner saga already did."""
        return self if self.step else replace(self, step=step)

    def past_point_of_no_return(self, merged: Sequence[MergedRecord] = ()) -> DeployError:
        """Re-label as IRREVERSIBLE, keeping the original kind as ``cause``."""
        records = self.merged or tuple(merged)
        if self.kind is ErrorKind.IRREVERSIBLE:
            return replace(self, merged=records)
        return replace(self, kind=ErrorKind.IRREVERSIBLE, cause=self.kind, merged=records)

    @classmethod
    def validation(cls, failures: Sequence[ValidationFailure]) -> DeployError:
        count = len(failures)
        noun = "candidate" if count == 1 else "candidates"
        return cls(
            kind=ErrorKind.VALIDATION,
            message=f"{count} {noun} failed validation",
            failures=tuple(failures),
            hint="fix the listed pull requests or pass the matching --skip-* flag",
        )

    @classmethod
    def conflict(cls, candidate: CandidateChange, message: str) -> DeployError:
        return cls(kind=ErrorKind.CONFLICT, message=message, failed_candidate=candidate)

    @classmethod
    def invalid_input(cls, message: str, hint: str | None = None) -> DeployError:
        return cls(kind=ErrorKind.INVALID_INPUT, message=message, hint=hint)

    @classmethod
    def command_failed(cls, message: str, hint: str | None = None) -> DeployError:
        return cls(kind=ErrorKind.COMMAND_FAILED, message=message, hint=hint)

    @classmethod
    def compensation_failed(cls, step: str, error: DeployError) -> DeployError:
        return cls(
            kind=ErrorKind.COMPENSATION_FAILURE,
            message=f"undo of {step} failed: {error.message}",
            hint=error.hint,
            cause=error.kind,
            step=step,
        )


def from_host(error: HostError, message: str | None = None) -> DeployError:
    kind = ErrorKind.TRANSIENT if error.is_transient else ErrorKind.COMMAND_FAILED
    return DeployError(kind=kind, message=message or error.message, hint=error.detail)


def from_git(error: GitError, message: str | None = None) -> DeployError:
    kind = ErrorKind.TRANSIENT if error.transient else ErrorKind.COMMAND_FAILED
    return DeployError(
        kind=kind,
        message=message or f"git {error.command} failed",
        hint=error.message,
    )


def _records(records: Sequence[MergedRecord]) -> str:
    return ", ".join(f"#{r.number}" for r in records) or "none"


def render_error(error: DeployError) -> str:
    """Human-readable, multi-line description of a failed run."""
    lines: list[str] = []
    step = f" (step {error.step})" if error.step else ""

    if error.kind is ErrorKind.IRREVERSIBLE:
        where = f" at {error.failed_candidate.label()}" if error.failed_candidate else ""
        lines.append(f"release stopped past the point of no return{where}{step}: {error.message}")
        lines.append(f"already merged: {_records(error.merged)}")
        lines.append(
            "these merges cannot be undone; resume the integration branch "
            "or abandon it and start over with a new release key"
        )
    else:
        lines.append(f"{error.message}{step}")
        for failure in error.failures:
            lines.append(f"  {failure.describe()}")
        if error.failed_candidate is not None and error.kind is ErrorKind.CONFLICT:
            lines.append(f"  {error.failed_candidate.label()}: merge conflict")

    if error.undone:
        lines.append(f"rolled back: {', '.join(error.undone)}")
    for comp in error.compensation_errors:
        lines.append(f"warning: {comp.message}")
    if error.hint:
        lines.append(f"hint: {error.hint}")
    return "\n".join(lines)


def exit_code_for(error: DeployError) -> ErrorCode:
    match error.kind:
        case ErrorKind.IRREVERSIBLE:
            return ErrorCode.IRREVERSIBLE
        case ErrorKind.VALIDATION:
            return ErrorCode.VALIDATION_ERROR
        case ErrorKind.CONFLICT:
            return ErrorCode.CONFLICT
        case ErrorKind.INVALID_INPUT:
            return ErrorCode.USER_ERROR
        case ErrorKind.TRANSIENT:
            return ErrorCode.NETWORK_ERROR
        case ErrorKind.COMMAND_FAILED | ErrorKind.COMPENSATION_FAILURE:
            return ErrorCode.COMMAND_ERROR
