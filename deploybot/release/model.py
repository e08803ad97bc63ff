from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date
from enum import StrEnum
from pathlib import Path

from deploybot.github.models import PullRequest

__all__ = [
    "RunOptions",
    "ReleaseRun",
    "CandidateChange",
    "ReasonCode",
    "ValidationReason",
    "ValidationFailure",
    "MergedRecord",
    "ReleasePull",
    "ResumePoint",
    "ResumeMode",
    "StateSnapshot",
    "DeployReport",
    "release_key_for",
    "is_valid_release_key",
    "release_title",
]

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")
_DATED_KEY = re.compile(r"^release-(\d{4})(\d{2})(\d{2})$")


def release_key_for(day: date) -> str:
    """``release-YYYYMMDD``; the key doubles as the integration branch name."""
    return f"release-{day:%Y%m%d}"


def is_valid_release_key(key: str) -> bool:
    return bool(_KEY_PATTERN.match(key)) and ".." not in key and not key.endswith((".lock", "/"))


def release_title(key: str) -> str:
    """``Release 2026-02-18`` for dated keys, ``Release <key>`` otherwise."""
    match = _DATED_KEY.match(key)
    if match:
        return "Release {}-{}-{}".format(*match.groups())
    return f"Release {key}"


@dataclass(frozen=True, slots=True)
class RunOptions:
    skip_reviews: bool = False
    skip_ci: bool = False
    skip_conflicts: bool = False
    # bypasses every check, including the pre-merge conflict poll
    skip_all: bool = False
    reviewers: tuple[str, ...] = ()
    release_key: str | None = None

    @property
    def skips_conflicts(self) -> bool:
        return self.skip_all or self.skip_conflicts


@dataclass(frozen=True, slots=True)
class ReleaseRun:
    release_key: str
    candidates: tuple[int, ...]
    options: RunOptions = field(default_factory=RunOptions)

    @property
    def branch(self) -> str:
        return self.release_key


@dataclass(frozen=True, slots=True)
class CandidateChange:
    """A pull request being batched into the release."""

    number: int
    title: str
    head_ref: str
    base_ref: str

    @classmethod
    def from_pull(cls, pull: PullRequest) -> CandidateChange:
        return cls(number=pull.number, title=pull.title, head_ref=pull.head_ref, base_ref=pull.base_ref)

    def retargeted(self, base: str) -> CandidateChange:
        return replace(self, base_ref=base)

    def label(self) -> str:
        return f"#{self.number} ({self.title})" if self.title else f"#{self.number}"


class ReasonCode(StrEnum):
    NOT_APPROVED = "not_approved"
    CHANGES_REQUESTED = "changes_requested"
    CI_PENDING = "ci_pending"
    CI_FAILED = "ci_failed"
    HAS_CONFLICT = "has_conflict"
    APPROVAL_CHECK_FAILED = "approval_check_failed"
    CI_CHECK_FAILED = "ci_check_failed"


@dataclass(frozen=True, slots=True)
class ValidationReason:
    code: ReasonCode
    # failing check names for CI_FAILED, host error text for *_CHECK_FAILED
    details: tuple[str, ...] = ()

    def describe(self) -> str:
        match self.code:
            case ReasonCode.NOT_APPROVED:
                return "not approved"
            case ReasonCode.CHANGES_REQUESTED:
                return "changes requested"
            case ReasonCode.CI_PENDING:
                return "CI checks pending"
            case ReasonCode.CI_FAILED:
                if self.details:
                    return f"CI failed: {', '.join(self.details)}"
                return "CI failed"
            case ReasonCode.HAS_CONFLICT:
                return "has merge conflicts"
            case ReasonCode.APPROVAL_CHECK_FAILED:
                return "could not check approval" + (f" ({self.details[0]})" if self.details else "")
            case ReasonCode.CI_CHECK_FAILED:
                return "could not check CI" + (f" ({self.details[0]})" if self.details else "")


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    candidate: CandidateChange
    reasons: tuple[ValidationReason, ...]

    def describe(self) -> str:
        return f"{self.candidate.label()}: {'; '.join(r.describe() for r in self.reasons)}"


@dataclass(frozen=True, slots=True)
class MergedRecord:
    number: int
    title: str
    merge_sha: str


@dataclass(frozen=True, slots=True)
class ReleasePull:
    number: int
    url: str


class ResumePoint(StrEnum):
    SETUP = "setup"
    CHANGE_BASES = "change_bases"
    MERGE_REMAINING = "merge_remaining"
    CREATE_RELEASE = "create_release"
    DONE = "done"


class ResumeMode(StrEnum):
    FRESH = "fresh"
    RESUME = "resume"
    FORCE = "force"


@dataclass(frozen=True, slots=True)
class StateSnapshot:
    """What the remote host says about a release key right now."""

    release_key: str
    exists: bool
    resume_point: ResumePoint
    merged: tuple[MergedRecord, ...] = ()
    # merged into a previous incarnation of the branch; ignored
    stale: tuple[MergedRecord, ...] = ()
    remaining: tuple[int, ...] = ()
    release_pull: ReleasePull | None = None


@dataclass(frozen=True, slots=True)
class DeployReport:
    release_key: str
    started_at: ResumePoint
    merged: tuple[MergedRecord, ...] = ()
    newly_merged: tuple[MergedRecord, ...] = ()
    release_pull: ReleasePull | None = None
    workspace: Path | None = None
