"""Pre-merge checks: approval and CI.

Mergeability is deliberately not checked here; it changes after every merge
and is polled right before each one by the merge engine. Every candidate is
checked and every failure is reported together, in one ``VALIDATION`` error.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

from deploybot.core.result import Err, Ok, Result
from deploybot.github.models import CheckRun, Review
from deploybot.github.protocol import RemoteHost
from deploybot.release.errors import DeployError
from deploybot.release.model import (
    CandidateChange,
    ReasonCode,
    RunOptions,
    ValidationFailure,
    ValidationReason,
)

__all__ = [
    "ApprovalState",
    "CiState",
    "latest_reviews",
    "approval_state",
    "ci_state",
    "check_candidate",
    "validate_candidates",
]

CiOutcome = Literal["success", "pending", "failed"]


@dataclass(frozen=True, slots=True)
class ApprovalState:
    approved: bool
    changes_requested: bool

    @property
    def ok(self) -> bool:
        return self.approved and not self.changes_requested


@dataclass(frozen=True, slots=True)
class CiState:
    outcome: CiOutcome
    failed: tuple[str, ...] = ()


def latest_reviews(reviews: Iterable[Review]) -> dict[str, Review]:
    """Most recent review per reviewer, by ``submitted_at``."""
    latest: dict[str, Review] = {}
    for review in reviews:
        current = latest.get(review.reviewer)
        if current is None or review.submitted_at >= current.submitted_at:
            latest[review.reviewer] = review
    return latest


def approval_state(reviews: Iterable[Review]) -> ApprovalState:
    states = {r.state for r in latest_reviews(reviews).values()}
    return ApprovalState(
        approved="APPROVED" in states,
        changes_requested="CHANGES_REQUESTED" in states,
    )


def ci_state(runs: Sequence[CheckRun]) -> CiState:
    if not runs or any(not r.finished for r in runs):
        return CiState("pending")
    failed = tuple(r.name for r in runs if r.conclusion != "success")
    if failed:
        return CiState("failed", failed)
    return CiState("success")


def check_candidate(
    host: RemoteHost,
    candidate: CandidateChange,
    options: RunOptions,
) -> tuple[ValidationReason, ...]:
    """Every reason ``candidate`` may not be merged (empty when it may)."""
    if options.skip_all:
        return ()
    reasons: list[ValidationReason] = []

    if not options.skip_reviews:
        reviews = host.list_reviews(candidate.number)
        if isinstance(reviews, Err):
            reasons.append(ValidationReason(ReasonCode.APPROVAL_CHECK_FAILED, (str(reviews.error),)))
        else:
            state = approval_state(reviews.value)
            if state.changes_requested:
                reasons.append(ValidationReason(ReasonCode.CHANGES_REQUESTED))
            if not state.approved:
                reasons.append(ValidationReason(ReasonCode.NOT_APPROVED))

    if not options.skip_ci:
        runs = host.list_check_runs(candidate.head_ref)
        if isinstance(runs, Err):
            reasons.append(ValidationReason(ReasonCode.CI_CHECK_FAILED, (str(runs.error),)))
        else:
            ci = ci_state(runs.value)
            if ci.outcome == "pending":
                reasons.append(ValidationReason(ReasonCode.CI_PENDING))
            elif ci.outcome == "failed":
                reasons.append(ValidationReason(ReasonCode.CI_FAILED, ci.failed))

    return tuple(reasons)


def validate_candidates(
    host: RemoteHost,
    candidates: Sequence[CandidateChange],
    options: RunOptions,
) -> Result[tuple[CandidateChange, ...], DeployError]:
    """Return ``candidates`` unchanged, or one error listing every failure."""
    if options.skip_all:
        return Ok(tuple(candidates))
    failures: list[ValidationFailure] = []
    for candidate in candidates:
        reasons = check_candidate(host, candidate, options)
        if reasons:
            failures.append(ValidationFailure(candidate, reasons))
    if failures:
        return Err(DeployError.validation(failures))
    return Ok(tuple(candidates))
