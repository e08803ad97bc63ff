from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import typer

from deploybot import __version__
from deploybot.core.config import DeployConfig, load_config
from deploybot.core.errors import ErrorCode
from deploybot.core.result import Err
from deploybot.git.workspace import GitWorkspace
from deploybot.github.client import GitHubHost
from deploybot.output.console import ConsoleProtocol, RedactingConsole, RichConsole
from deploybot.release.errors import DeployError, exit_code_for, render_error
from deploybot.release.model import ResumeMode, RunOptions, StateSnapshot, release_key_for
from deploybot.release.orchestrator import DeployOrchestrator

__all__ = ["app", "main", "build_orchestrator"]


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _exit(err: str, *, code: ErrorCode) -> NoReturn:
    typer.echo(f"error: {err}", err=True)
    raise typer.Exit(code=int(code))


def _fail(error: DeployError) -> NoReturn:
    typer.echo(f"error: {render_error(error)}", err=True)
    raise typer.Exit(code=int(exit_code_for(error)))


def _load(config_path: Path | None) -> DeployConfig:
    loaded = load_config(config_path)
    if isinstance(loaded, Err):
        _exit(loaded.error.message, code=ErrorCode.CONFIG_ERROR)
    return loaded.value


def _release_key(date_arg: str | None) -> str | None:
    if date_arg is None:
        return None
    try:
        day = datetime.strptime(date_arg, "%Y%m%d").date()
    except ValueError:
        _exit(f"--date must be YYYYMMDD, got {date_arg!r}", code=ErrorCode.USER_ERROR)
    return release_key_for(day)


def _reviewers(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(name.strip() for name in raw.split(",") if name.strip())


def build_orchestrator(config: DeployConfig, console: ConsoleProtocol) -> DeployOrchestrator:
    """Wire the real git and GitHub adapters behind the orchestrator."""
    return DeployOrchestrator(
        config=config,
        vcs=GitWorkspace(secrets=config.secrets, console=console),
        host=GitHubHost(
            owner=config.owner,
            repo=config.repo,
            token=config.token,
            cwd=Path.cwd(),
            polling=config.polling,
        ),
        console=console,
    )


def _console(config: DeployConfig) -> ConsoleProtocol:
    return RedactingConsole(RichConsole(), config.secrets)


def _print_snapshot(console: ConsoleProtocol, snapshot: StateSnapshot) -> None:
    console.header(snapshot.release_key)
    if not snapshot.exists:
        console.info("integration branch does not exist")
    console.print(f"resume point: {snapshot.resume_point}")
    merged = ", ".join(f"#{r.number}" for r in snapshot.merged) or "none"
    console.print(f"merged: {merged}")
    if snapshot.stale:
        stale = ", ".join(f"#{r.number}" for r in snapshot.stale)
        console.warning(f"merged into an older branch with the same name (ignored): {stale}")
    if snapshot.remaining:
        console.print("remaining: " + ", ".join(f"#{n}" for n in snapshot.remaining))
    if snapshot.release_pull is not None:
        console.print(f"release pull request: #{snapshot.release_pull.number} {snapshot.release_pull.url}")


@app.callback()
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)


@app.command()
def deploy(
    candidates: list[int] | None = typer.Argument(
        None, help="Pull request numbers to release (default: every approved open one)"
    ),
    skip_reviews: bool = typer.Option(False, "--skip-reviews", help="Do not require approvals"),
    skip_ci: bool = typer.Option(False, "--skip-ci", help="Do not require green checks"),
    skip_conflicts: bool = typer.Option(
        False, "--skip-conflicts", help="Do not poll mergeability before merging"
    ),
    skip_validation: bool = typer.Option(False, "--skip-validation", help="Skip every check"),
    reviewers: str | None = typer.Option(
        None, "--reviewers", help="Comma-separated reviewers for the release pull request"
    ),
    date: str | None = typer.Option(None, "--date", help="Release date (YYYYMMDD), default today"),
    resume: bool = typer.Option(False, "--resume", help="Continue an existing release"),
    force: bool = typer.Option(False, "--force", help="Delete the release branch and start over"),
    config_path: Path | None = typer.Option(None, "--config", help="Path to a TOML config file"),
) -> None:
    """Merge approved pull requests into a dated release and open its pull request."""
    if resume and force:
        _exit("--resume and --force are mutually exclusive", code=ErrorCode.USER_ERROR)

    config = _load(config_path)
    console = _console(config)
    options = RunOptions(
        skip_reviews=skip_reviews,
        skip_ci=skip_ci,
        skip_conflicts=skip_conflicts,
        skip_all=skip_validation,
        reviewers=_reviewers(reviewers),
        release_key=_release_key(date),
    )
    numbers = candidates or []
    orchestrator = build_orchestrator(config, console)

    if resume:
        result = orchestrator.resume(numbers, options, ResumeMode.RESUME)
    elif force:
        result = orchestrator.resume(numbers, options, ResumeMode.FORCE)
    else:
        result = orchestrator.deploy(numbers, options)

    if isinstance(result, Err):
        _fail(result.error)

    report = result.value
    if report.release_pull is not None:
        typer.echo(report.release_pull.url)


@app.command()
def status(
    candidates: list[int] | None = typer.Argument(None, help="Pull request numbers of the release"),
    date: str | None = typer.Option(None, "--date", help="Release date (YYYYMMDD), default today"),
    config_path: Path | None = typer.Option(None, "--config", help="Path to a TOML config file"),
) -> None:
    """Show how far a release got, as reported by GitHub."""
    config = _load(config_path)
    console = _console(config)
    orchestrator = build_orchestrator(config, console)
    key = _release_key(date) or release_key_for(datetime.now(UTC).date())

    result = orchestrator.check_state(key, candidates or ())
    if isinstance(result, Err):
        _fail(result.error)
    _print_snapshot(console, result.value)


def main() -> None:
    app()
