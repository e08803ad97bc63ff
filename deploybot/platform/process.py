"""Subprocess execution with Result-based errors and secret redaction.

Commands routinely carry the access token (clone URLs, ``GH_TOKEN``), so
``run`` scrubs every value passed in ``secrets`` from the recorded command
line and the captured output before either can reach an error or the console:

    result = run(["git", "clone", url, "ws"], cwd=parent, secrets=(token,))
    match result:
        case Ok(stdout):
            ...
        case Err(error):
            console.error(error.summary())
"""

from __future__ import annotations

import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from deploybot.core.result import Err, Ok, Result

__all__ = ["REDACTED", "ProcessError", "redact", "run", "is_transient_failure"]

REDACTED = "[REDACTED]"

_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "tls handshake timeout",
    "network is unreachable",
    "could not resolve host",
    "remote end hung up unexpectedly",
    "http 429",
    "http 500",
    "http 502",
    "http 503",
    "http 504",
)


@dataclass(frozen=True, slots=True)
class ProcessError:
    """A command exited non-zero, timed out or could not be started.

    All fields are already redacted.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        """stderr if present, otherwise stdout, stripped."""
        return self.stderr.strip() or self.stdout.strip()

    def summary(self) -> str:
        detail = self.output.splitlines()
        tail = f": {detail[-1]}" if detail else ""
        return f"{self}{tail}"

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every non-empty secret in ``text`` with ``[REDACTED]``."""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _error(
    cmd: list[str],
    returncode: int,
    stdout: str,
    stderr: str,
    secrets: tuple[str, ...],
) -> ProcessError:
    return ProcessError(
        command=tuple(redact(part, secrets) for part in cmd),
        returncode=returncode,
        stdout=redact(stdout, secrets),
        stderr=redact(stderr, secrets),
    )


def run(
    cmd: list[str],
    cwd: Path,
    env: Mapping[str, str] | None = None,
    *,
    timeout: float | None = None,
    secrets: Iterable[str] = (),
) -> Result[str, ProcessError]:
    """Execute a command and return its stdout.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        env: Full environment for the child (inherits ours if None).
        timeout: Maximum seconds to wait (None for no limit).
        secrets: Values to scrub from the returned output and errors.

    Returns:
        Ok(stdout) on exit code 0, Err(ProcessError) otherwise.
    """
    hidden = tuple(s for s in secrets if s)
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=dict(env) if env is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        partial = e.stdout if isinstance(e.stdout, str) else ""
        return Err(_error(cmd, -1, partial, f"Command timed out after {timeout}s", hidden))
    except OSError as e:
        return Err(_error(cmd, -1, "", str(e), hidden))

    if proc.returncode != 0:
        return Err(_error(cmd, proc.returncode, proc.stdout, proc.stderr, hidden))
    return Ok(redact(proc.stdout, hidden))


def is_transient_failure(error: ProcessError) -> bool:
    """Whether a failure looks like a network blip worth retrying."""
    text = f"{error.stderr}\n{error.stdout}".lower()
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in _TRANSIENT_MARKERS)
