from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

__all__ = [
    "HostErrorKind",
    "HostError",
    "PullRequest",
    "Review",
    "CheckRun",
    "CompareStatus",
    "MergedPull",
    "OpenedPull",
]

HostErrorKind = Literal["transient", "not_found", "unprocessable", "rejected", "invalid_payload"]


@dataclass(frozen=True, slots=True)
class HostError:
    """A host call failed.

    ``status`` is the HTTP status when the host reported one.
    """

    kind: HostErrorKind
    message: str
    status: int | None = None
    detail: str | None = None

    @property
    def is_transient(self) -> bool:
        return self.kind == "transient"

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


@dataclass(frozen=True, slots=True)
class PullRequest:
    number: int
    title: str
    head_ref: str
    base_ref: str
    state: str = "open"
    # None while the host is still computing it
    mergeable: bool | None = None
    merged: bool = False
    url: str = ""

    @property
    def is_open(self) -> bool:
        return self.state == "open" and not self.merged


@dataclass(frozen=True, slots=True)
class Review:
    reviewer: str
    state: str  # APPROVED, CHANGES_REQUESTED, COMMENTED, DISMISSED
    submitted_at: str  # ISO-8601, compares lexically


@dataclass(frozen=True, slots=True)
class CheckRun:
    name: str
    status: str  # queued, in_progress, completed
    conclusion: str | None = None

    @property
    def finished(self) -> bool:
        return self.status == "completed"


class CompareStatus(StrEnum):
    """How ``head`` relates to ``base`` in a ``base...head`` comparison."""

    IDENTICAL = "identical"
    AHEAD = "ahead"
    BEHIND = "behind"
    DIVERGED = "diverged"


@dataclass(frozen=True, slots=True)
class MergedPull:
    number: int
    title: str
    merge_sha: str | None
    merged_at: str


@dataclass(frozen=True, slots=True)
class OpenedPull:
    number: int
    url: str
