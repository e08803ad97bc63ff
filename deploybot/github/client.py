"""GitHub implementation of ``RemoteHost`` on top of ``gh api``.

The token is handed to ``gh`` through ``GH_TOKEN`` and redacted from anything
the subprocess layer records. Reads retry on transient failures with a linear
backoff; writes run exactly once.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Sequence
from pathlib import Path
from time import sleep
from urllib.parse import quote, urlencode

from deploybot.core.config import PollingPolicy
from deploybot.core.result import Err, Ok, Result
from deploybot.core.structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_bool,
    get_int,
    get_list,
    get_nested_str,
    get_str,
)
from deploybot.github.models import (
    CheckRun,
    CompareStatus,
    HostError,
    MergedPull,
    OpenedPull,
    PullRequest,
    Review,
)
from deploybot.platform.process import ProcessError, is_transient_failure
from deploybot.platform.process import run as run_process
from deploybot.platform.timeouts import GH_TIMEOUT_SECONDS

__all__ = ["GitHubHost"]

_HTTP_STATUS = re.compile(r"HTTP (\d{3})")
_PAGE = 100


def _status_of(error: ProcessError) -> int | None:
    match = _HTTP_STATUS.search(f"{error.stderr}\n{error.stdout}")
    return int(match.group(1)) if match else None


def _host_error(error: ProcessError, message: str) -> HostError:
    status = _status_of(error)
    detail = error.output.splitlines()[-1] if error.output else None
    if is_transient_failure(error):
        return HostError("transient", message, status=status, detail=detail)
    if status == 404:
        return HostError("not_found", message, status=status, detail=detail)
    if status == 422:
        return HostError("unprocessable", message, status=status, detail=detail)
    return HostError("rejected", message, status=status, detail=detail)


def _parse_pull(obj: object) -> PullRequest | None:
    data = as_str_dict(obj)
    if data is None:
        return None
    number = get_int(data, "number")
    head = get_nested_str(data, "head", "ref")
    base = get_nested_str(data, "base", "ref")
    if number is None or head is None or base is None:
        return None
    mergeable = data.get("mergeable")
    merged = get_bool(data, "merged") or data.get("merged_at") is not None
    return PullRequest(
        number=number,
        title=get_str(data, "title") or "",
        head_ref=head,
        base_ref=base,
        state=get_str(data, "state") or "open",
        mergeable=mergeable if isinstance(mergeable, bool) else None,
        merged=merged,
        url=get_str(data, "html_url") or "",
    )


class GitHubHost:
    """``RemoteHost`` for one GitHub repository."""

    def __init__(
        self,
        *,
        owner: str,
        repo: str,
        token: str,
        cwd: Path,
        polling: PollingPolicy | None = None,
    ) -> None:
        policy = polling or PollingPolicy()
        self._repo = f"{owner}/{repo}"
        self._owner = owner
        self._token = token
        self._cwd = cwd
        self._read_attempts = max(1, policy.read_retry_attempts)
        self._read_delay = policy.read_retry_delay_seconds

    # ------------------------------------------------------------------
    # transport

    def _env(self) -> dict[str, str] | None:
        if not self._token:
            return None
        return {**os.environ, "GH_TOKEN": self._token, "GH_PROMPT_DISABLED": "1"}

    def _call(self, args: list[str], *, message: str, read: bool) -> Result[str, HostError]:
        cmd = ["gh", "api", *args]
        attempts = self._read_attempts if read else 1
        last: ProcessError | None = None
        for attempt in range(attempts):
            result = run_process(
                cmd,
                cwd=self._cwd,
                env=self._env(),
                timeout=GH_TIMEOUT_SECONDS,
                secrets=(self._token,),
            )
            if isinstance(result, Ok):
                return result
            last = result.error
            if attempt < attempts - 1 and is_transient_failure(last):
                sleep(self._read_delay * (attempt + 1))
                continue
            break
        assert last is not None
        return Err(_host_error(last, message))

    def _read_json(self, endpoint: str, *, message: str) -> Result[object, HostError]:
        raw = self._call([endpoint], message=message, read=True)
        if isinstance(raw, Err):
            return raw
        return self._decode(raw.value, message)

    def _write(
        self,
        method: str,
        endpoint: str,
        fields: Sequence[tuple[str, str]] = (),
        *,
        message: str,
    ) -> Result[str, HostError]:
        args = ["--method", method, endpoint]
        for key, value in fields:
            args += ["-f", f"{key}={value}"]
        return self._call(args, message=message, read=False)

    @staticmethod
    def _decode(text: str, message: str) -> Result[object, HostError]:
        if not text.strip():
            return Ok(None)
        try:
            return Ok(json.loads(text))
        except json.JSONDecodeError as e:
            return Err(HostError("invalid_payload", message, detail=f"invalid JSON: {e}"))

    def _endpoint(self, path: str, **query: str | int) -> str:
        endpoint = f"repos/{self._repo}/{path}"
        if query:
            endpoint += "?" + urlencode(query)
        return endpoint

    # ------------------------------------------------------------------
    # pull requests

    def get_pull(self, number: int) -> Result[PullRequest, HostError]:
        message = f"failed to fetch #{number}"
        obj = self._read_json(self._endpoint(f"pulls/{number}"), message=message)
        if isinstance(obj, Err):
            return obj
        pull = _parse_pull(obj.value)
        if pull is None:
            return Err(HostError("invalid_payload", message, detail="unexpected pull payload"))
        return Ok(pull)

    def _list_pulls(self, message: str, **query: str | int) -> Result[list[StrDict], HostError]:
        obj = self._read_json(self._endpoint("pulls", per_page=_PAGE, **query), message=message)
        if isinstance(obj, Err):
            return obj
        items = as_obj_list(obj.value)
        if items is None:
            return Err(HostError("invalid_payload", message, detail="expected a list"))
        out: list[StrDict] = []
        for item in items:
            data = as_str_dict(item)
            if data is not None:
                out.append(data)
        return Ok(out)

    def list_open_pulls(self, *, base: str) -> Result[list[PullRequest], HostError]:
        listed = self._list_pulls(f"failed to list open pulls into {base}", state="open", base=base)
        if isinstance(listed, Err):
            return listed
        pulls = [p for p in (_parse_pull(d) for d in listed.value) if p is not None]
        return Ok(sorted(pulls, key=lambda p: p.number))

    def retarget(self, number: int, *, base: str) -> Result[None, HostError]:
        result = self._write(
            "PATCH",
            self._endpoint(f"pulls/{number}"),
            [("base", base)],
            message=f"failed to retarget #{number} onto {base}",
        )
        return result.map(lambda _: None)

    def request_branch_update(self, number: int) -> Result[None, HostError]:
        result = self._write(
            "PUT",
            self._endpoint(f"pulls/{number}/update-branch"),
            message=f"failed to request a branch update for #{number}",
        )
        return result.map(lambda _: None)

    def merge(self, number: int) -> Result[str, HostError]:
        message = f"failed to merge #{number}"
        raw = self._write(
            "PUT",
            self._endpoint(f"pulls/{number}/merge"),
            [("merge_method", "squash")],
            message=message,
        )
        if isinstance(raw, Err):
            return raw
        decoded = self._decode(raw.value, message)
        if isinstance(decoded, Err):
            return decoded
        data = as_str_dict(decoded.value) or {}
        sha = get_str(data, "sha")
        if get_bool(data, "merged") is False or sha is None:
            detail = get_str(data, "message") or "host did not report a merge commit"
            return Err(HostError("rejected", message, detail=detail))
        return Ok(sha)

    def open_pull(
        self, *, title: str, head: str, base: str, body: str = ""
    ) -> Result[OpenedPull, HostError]:
        message = f"failed to open pull {head} -> {base}"
        raw = self._write(
            "POST",
            self._endpoint("pulls"),
            [("title", title), ("head", head), ("base", base), ("body", body)],
            message=message,
        )
        if isinstance(raw, Err):
            return raw
        decoded = self._decode(raw.value, message)
        if isinstance(decoded, Err):
            return decoded
        data = as_str_dict(decoded.value) or {}
        number = get_int(data, "number")
        if number is None:
            return Err(HostError("invalid_payload", message, detail="no pull number in response"))
        return Ok(OpenedPull(number=number, url=get_str(data, "html_url") or ""))

    def set_description(self, number: int, body: str) -> Result[None, HostError]:
        result = self._write(
            "PATCH",
            self._endpoint(f"pulls/{number}"),
            [("body", body)],
            message=f"failed to update the description of #{number}",
        )
        return result.map(lambda _: None)

    def close_pull(self, number: int) -> Result[None, HostError]:
        result = self._write(
            "PATCH",
            self._endpoint(f"pulls/{number}"),
            [("state", "closed")],
            message=f"failed to close #{number}",
        )
        return result.map(lambda _: None)

    def request_review(self, number: int, reviewers: Sequence[str]) -> Result[None, HostError]:
        if not reviewers:
            return Ok(None)
        result = self._write(
            "POST",
            self._endpoint(f"pulls/{number}/requested_reviewers"),
            [("reviewers[]", r) for r in reviewers],
            message=f"failed to request review on #{number}",
        )
        return result.map(lambda _: None)

    def list_reviews(self, number: int) -> Result[list[Review], HostError]:
        message = f"failed to list reviews of #{number}"
        obj = self._read_json(self._endpoint(f"pulls/{number}/reviews", per_page=_PAGE), message=message)
        if isinstance(obj, Err):
            return obj
        items = as_obj_list(obj.value)
        if items is None:
            return Err(HostError("invalid_payload", message, detail="expected a list"))
        reviews: list[Review] = []
        for item in items:
            data = as_str_dict(item)
            if data is None:
                continue
            login = get_nested_str(data, "user", "login")
            state = get_str(data, "state")
            if login is None or state is None:
                continue
            reviews.append(
                Review(reviewer=login, state=state, submitted_at=get_str(data, "submitted_at") or "")
            )
        return Ok(reviews)

    def list_check_runs(self, ref: str) -> Result[list[CheckRun], HostError]:
        message = f"failed to list check runs for {ref}"
        endpoint = self._endpoint(f"commits/{quote(ref, safe='')}/check-runs", per_page=_PAGE)
        obj = self._read_json(endpoint, message=message)
        if isinstance(obj, Err):
            return obj
        data = as_str_dict(obj.value)
        items = get_list(data, "check_runs") if data is not None else None
        if items is None:
            return Err(HostError("invalid_payload", message, detail="missing check_runs"))
        runs: list[CheckRun] = []
        for item in items:
            run = as_str_dict(item)
            if run is None:
                continue
            runs.append(
                CheckRun(
                    name=get_str(run, "name") or "(unnamed)",
                    status=get_str(run, "status") or "queued",
                    conclusion=get_str(run, "conclusion"),
                )
            )
        return Ok(runs)

    # ------------------------------------------------------------------
    # branches and history

    def branch_exists(self, name: str) -> Result[bool, HostError]:
        endpoint = self._endpoint(f"branches/{quote(name, safe='')}")
        result = self._call([endpoint], message=f"failed to look up branch {name}", read=True)
        if isinstance(result, Ok):
            return Ok(True)
        if result.error.kind == "not_found":
            return Ok(False)
        return result

    def delete_branch(self, name: str) -> Result[bool, HostError]:
        result = self._write(
            "DELETE",
            self._endpoint(f"git/refs/heads/{name}"),
            message=f"failed to delete branch {name}",
        )
        if isinstance(result, Ok):
            return Ok(True)
        if result.error.kind in ("not_found", "unprocessable"):
            return Ok(False)
        return result

    def list_merged_into(self, branch: str) -> Result[list[MergedPull], HostError]:
        listed = self._list_pulls(
            f"failed to list pulls merged into {branch}", state="closed", base=branch
        )
        if isinstance(listed, Err):
            return listed
        merged: list[MergedPull] = []
        for data in listed.value:
            number = get_int(data, "number")
            merged_at = get_str(data, "merged_at")
            if number is None or merged_at is None:
                continue
            merged.append(
                MergedPull(
                    number=number,
                    title=get_str(data, "title") or "",
                    merge_sha=get_str(data, "merge_commit_sha"),
                    merged_at=merged_at,
                )
            )
        return Ok(sorted(merged, key=lambda m: m.merged_at))

    def find_open_pull(self, *, head: str, base: str) -> Result[OpenedPull | None, HostError]:
        listed = self._list_pulls(
            f"failed to look up pull {head} -> {base}",
            state="open",
            head=f"{self._owner}:{head}",
            base=base,
        )
        if isinstance(listed, Err):
            return listed
        for data in listed.value:
            number = get_int(data, "number")
            if number is not None:
                return Ok(OpenedPull(number=number, url=get_str(data, "html_url") or ""))
        return Ok(None)

    def compare(self, base: str, head: str) -> Result[CompareStatus, HostError]:
        message = f"failed to compare {base}...{head}"
        endpoint = self._endpoint(f"compare/{quote(base, safe='')}...{quote(head, safe='')}")
        obj = self._read_json(endpoint, message=message)
        if isinstance(obj, Err):
            return obj
        data = as_str_dict(obj.value) or {}
        status = get_str(data, "status")
        try:
            return Ok(CompareStatus(status or ""))
        except ValueError:
            return Err(HostError("invalid_payload", message, detail=f"unknown status {status!r}"))
