from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from typer.testing import CliRunner

from deploybot import __version__
from deploybot.core.config import DeployConfig
from deploybot.git.memory import RecordingGit
from deploybot.github.memory import InMemoryHost
from deploybot.output.console import ConsoleProtocol
from deploybot.release.orchestrator import DeployOrchestrator

runner = CliRunner()

_ENV = {
    "DEPLOY_REPO_URL": "https://github.com/acme/shop.git",
    "GITHUB_TOKEN": "s3cret",
    "DEPLOY_BASE_BRANCH": "staging",
}

_SEED = {
    "version.txt": "1.0.0\n",
    "backend/version.txt": "1.0.0\n",
    "frontend/package.json": '{"version": "1.0.0"}\n',
}


def _install(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> InMemoryHost:
    import deploybot.cli.app as app_mod

    host = InMemoryHost()
    host.add_branch("staging", ["staging-root"])

    def pushed(branch: str) -> None:
        host.branches.setdefault(branch, list(host.branches["staging"]))

    def deleted(branch: str) -> None:
        host.branches.pop(branch, None)

    def fake_build(config: DeployConfig, console: ConsoleProtocol) -> DeployOrchestrator:
        return DeployOrchestrator(
            config=DeployConfig(
                repo_url=config.repo_url,
                owner=config.owner,
                repo=config.repo,
                token=config.token,
                base_branch=config.base_branch,
                workspace_parent=tmp_path,
            ),
            vcs=RecordingGit(seed_files=dict(_SEED), on_push=pushed, on_delete_remote=deleted),
            host=host,
            console=console,
            sleep=lambda seconds: None,
            today=lambda: date(2026, 2, 18),
        )

    monkeypatch.setattr(app_mod, "build_orchestrator", fake_build)
    return host


def test_version() -> None:
    from deploybot.cli.app import app

    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_deploy_prints_release_url(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    host = _install(monkeypatch, tmp_path)
    host.add_pull(12)

    result = runner.invoke(app, ["deploy", "12", "--reviewers", "ann, bob"], env=_ENV)

    assert result.exit_code == 0, result.output
    assert "https://github.com/acme/shop/pull/13" in result.output
    assert host.requested_reviewers[13] == ["ann", "bob"]
    assert "release-20260218" in host.branches


def test_date_option_picks_release_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    host = _install(monkeypatch, tmp_path)
    host.add_pull(12)

    result = runner.invoke(app, ["deploy", "12", "--date", "20260301"], env=_ENV)

    assert result.exit_code == 0, result.output
    assert "release-20260301" in host.branches


def test_validation_failure_exit_code(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    host = _install(monkeypatch, tmp_path)
    host.add_pull(12, approved_by=())

    result = runner.invoke(app, ["deploy", "12"], env=_ENV)

    assert result.exit_code == 3
    assert "not approved" in result.output

    result = runner.invoke(app, ["deploy", "12", "--skip-reviews"], env=_ENV)
    assert result.exit_code == 0, result.output


def test_existing_branch_needs_resume(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    host = _install(monkeypatch, tmp_path)
    host.add_pull(12)
    host.add_branch("release-20260218", ["staging-root"])

    refused = runner.invoke(app, ["deploy", "12"], env=_ENV)
    assert refused.exit_code == 1

    resumed = runner.invoke(app, ["deploy", "12", "--resume"], env=_ENV)
    assert resumed.exit_code == 0, resumed.output


def test_flag_and_config_errors(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    _install(monkeypatch, tmp_path)

    both = runner.invoke(app, ["deploy", "1", "--resume", "--force"], env=_ENV)
    assert both.exit_code == 1

    bad_date = runner.invoke(app, ["deploy", "1", "--date", "2026-02-18"], env=_ENV)
    assert bad_date.exit_code == 1
    assert "YYYYMMDD" in bad_date.output

    no_token = runner.invoke(app, ["deploy", "1"], env={**_ENV, "GITHUB_TOKEN": None})
    assert no_token.exit_code == 2
    assert "GITHUB_TOKEN" in no_token.output


def test_status_reports_resume_point(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    from deploybot.cli.app import app

    host = _install(monkeypatch, tmp_path)
    host.add_pull(12)
    host.add_branch("release-20260218", ["staging-root"])

    result = runner.invoke(app, ["status", "12", "--date", "20260218"], env=_ENV)

    assert result.exit_code == 0, result.output
    assert "change_bases" in result.output
