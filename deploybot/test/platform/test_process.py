from __future__ import annotations

import sys
from pathlib import Path

from deploybot.core.result import Err, Ok
from deploybot.platform.process import REDACTED, ProcessError, is_transient_failure, redact, run


def test_redact_replaces_every_secret() -> None:
    assert redact("a tok b tok", ["tok"]) == f"a {REDACTED} b {REDACTED}"
    assert redact("nothing here", ["", "x1"]) == "nothing here"


def test_run_returns_stdout(tmp_path: Path) -> None:
    result = run([sys.executable, "-c", "print('hello')"], cwd=tmp_path)
    assert isinstance(result, Ok)
    assert result.value.strip() == "hello"


def test_run_redacts_command_and_output(tmp_path: Path) -> None:
    script = "import sys; print('token=s3cret'); sys.stderr.write('bad s3cret'); sys.exit(3)"
    result = run([sys.executable, "-c", script, "s3cret"], cwd=tmp_path, secrets=("s3cret",))
    assert isinstance(result, Err)
    error = result.error
    assert error.returncode == 3
    assert "s3cret" not in " ".join(error.command)
    assert "s3cret" not in error.stdout
    assert error.stderr == f"bad {REDACTED}"
    assert error.output == f"bad {REDACTED}"


def test_run_reports_missing_executable(tmp_path: Path) -> None:
    result = run(["definitely-not-a-real-binary-xyz"], cwd=tmp_path)
    assert isinstance(result, Err)
    assert result.error.returncode == -1


def test_run_timeout(tmp_path: Path) -> None:
    result = run([sys.executable, "-c", "import time; time.sleep(5)"], cwd=tmp_path, timeout=0.2)
    assert isinstance(result, Err)
    assert is_transient_failure(result.error)


def test_transient_markers() -> None:
    def err(stderr: str, code: int = 1) -> ProcessError:
        return ProcessError(command=("gh", "api", "x"), returncode=code, stdout="", stderr=stderr)

    assert is_transient_failure(err("gh: HTTP 502 Bad Gateway"))
    assert is_transient_failure(err("fatal: unable to access: Could not resolve host: github.com"))
    assert not is_transient_failure(err("gh: Not Found (HTTP 404)"))


def test_error_summary() -> None:
    error = ProcessError(
        command=("git", "push", "origin", "release"),
        returncode=1,
        stdout="",
        stderr="first\nrejected",
    )
    assert str(error) == "git push origin ... failed (exit 1)"
    assert error.summary() == "git push origin ... failed (exit 1): rejected"
