"""Typed deploy configuration.

Configuration is one immutable ``DeployConfig`` built once at startup from an
optional TOML file plus environment overrides, then injected everywhere. The
token never lives in the TOML file; it comes from ``GITHUB_TOKEN``.

Example ``deploybot.toml``::

    [repository]
    url = "https://github.com/acme/shop.git"
    base_branch = "staging"

    [git]
    user_name = "Deploy Bot"
    user_email = "deploy-bot@example.com"

    [versions]
    canonical = "version.txt"
    mirrors = ["backend/version.txt"]
    json = ["frontend/package.json"]

    [polling]
    update_interval_seconds = 2.0
    update_attempts = 10
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_float,
    get_int,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "ConfigError",
    "GitIdentity",
    "VersionPolicy",
    "PollingPolicy",
    "DeployConfig",
    "DEFAULT_BASE_BRANCH",
    "ENV_REPO_URL",
    "ENV_TOKEN",
    "ENV_BASE_BRANCH",
    "parse_repo_slug",
    "authenticated_url",
    "load_config",
]

DEFAULT_BASE_BRANCH = "staging"

ENV_REPO_URL = "DEPLOY_REPO_URL"
ENV_TOKEN = "GITHUB_TOKEN"
ENV_BASE_BRANCH = "DEPLOY_BASE_BRANCH"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Configuration could not be loaded or is incomplete."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class GitIdentity:
    """Author identity for the version-bump commit."""

    name: str = "Deploy Bot"
    email: str = "deploy-bot@example.com"


@dataclass(frozen=True, slots=True)
class VersionPolicy:
    """Which files carry the release version.

    ``canonical`` is the source of truth (plain text). ``mirrors`` are plain
    text copies; ``json_files`` carry the version under a top-level
    ``"version"`` key.
    """

    canonical: str = "version.txt"
    mirrors: tuple[str, ...] = ("backend/version.txt",)
    json_files: tuple[str, ...] = ("frontend/package.json",)

    @property
    def all_files(self) -> tuple[str, ...]:
        return (self.canonical, *self.mirrors, *self.json_files)


@dataclass(frozen=True, slots=True)
class PollingPolicy:
    """Bounded waits used while merging and on read-only host calls."""

    update_interval_seconds: float = 2.0
    update_attempts: int = 10
    mergeable_interval_seconds: float = 1.0
    mergeable_attempts: int = 5
    read_retry_attempts: int = 3
    read_retry_delay_seconds: float = 1.0


@dataclass(frozen=True, slots=True)
class DeployConfig:
    """Everything a deploy run needs to know about its environment."""

    repo_url: str
    owner: str
    repo: str
    token: str = field(repr=False)
    base_branch: str = DEFAULT_BASE_BRANCH
    identity: GitIdentity = field(default_factory=GitIdentity)
    workspace_parent: Path | None = None
    versions: VersionPolicy = field(default_factory=VersionPolicy)
    polling: PollingPolicy = field(default_factory=PollingPolicy)

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never appear in console output or errors."""
        return (self.token,) if self.token else ()

    @property
    def clone_url(self) -> str:
        return authenticated_url(self.repo_url, self.token)


def parse_repo_slug(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from an https repository URL."""
    parts = urlsplit(url.strip())
    if parts.scheme not in ("https", "http") or not parts.hostname:
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) != 2:
        return None
    owner, repo = segments
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not owner or not repo:
        return None
    return owner, repo


def authenticated_url(url: str, token: str) -> str:
    """Return ``url`` with the token injected as userinfo."""
    if not token:
        return url
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    netloc = f"x-access-token:{token}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data = as_str_dict(tomllib.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def _versions(table: StrDict, path: Path | None) -> Result[VersionPolicy, ConfigError]:
    default = VersionPolicy()
    mirrors = default.mirrors
    json_files = default.json_files
    if "mirrors" in table:
        parsed = get_str_list(table, "mirrors")
        if parsed is None:
            return Err(ConfigError("[versions] mirrors must be a list of paths", path=path))
        mirrors = tuple(parsed)
    if "json" in table:
        parsed = get_str_list(table, "json")
        if parsed is None:
            return Err(ConfigError("[versions] json must be a list of paths", path=path))
        json_files = tuple(parsed)
    return Ok(
        VersionPolicy(
            canonical=get_str(table, "canonical") or default.canonical,
            mirrors=mirrors,
            json_files=json_files,
        )
    )


def _polling(table: StrDict, path: Path | None) -> Result[PollingPolicy, ConfigError]:
    default = PollingPolicy()
    policy = PollingPolicy(
        update_interval_seconds=_pick_float(
            table, "update_interval_seconds", default.update_interval_seconds
        ),
        update_attempts=_pick_int(table, "update_attempts", default.update_attempts),
        mergeable_interval_seconds=_pick_float(
            table, "mergeable_interval_seconds", default.mergeable_interval_seconds
        ),
        mergeable_attempts=_pick_int(table, "mergeable_attempts", default.mergeable_attempts),
        read_retry_attempts=_pick_int(table, "read_retry_attempts", default.read_retry_attempts),
        read_retry_delay_seconds=_pick_float(
            table, "read_retry_delay_seconds", default.read_retry_delay_seconds
        ),
    )
    if min(policy.update_attempts, policy.mergeable_attempts, policy.read_retry_attempts) < 1:
        return Err(ConfigError("[polling] attempt counts must be at least 1", path=path))
    if min(
        policy.update_interval_seconds,
        policy.mergeable_interval_seconds,
        policy.read_retry_delay_seconds,
    ) < 0:
        return Err(ConfigError("[polling] intervals must not be negative", path=path))
    return Ok(policy)


def _pick_int(table: StrDict, key: str, default: int) -> int:
    value = get_int(table, key)
    return default if value is None else value


def _pick_float(table: StrDict, key: str, default: float) -> float:
    value = get_float(table, key)
    return default if value is None else value


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Result[DeployConfig, ConfigError]:
    """Build the deploy configuration.

    Args:
        path: Optional TOML file. ``None`` means environment only.
        env: Environment mapping (defaults to ``os.environ``).

    Returns:
        Ok(DeployConfig), or Err(ConfigError) when the repository URL or token
        is missing or a value has the wrong shape.
    """
    environ = os.environ if env is None else env
    data: StrDict = {}
    if path is not None:
        parsed = _parse_toml(path)
        if isinstance(parsed, Err):
            return parsed
        data = parsed.value

    repository = get_table(data, "repository") or {}
    git = get_table(data, "git") or {}
    workspace = get_table(data, "workspace") or {}

    url = (environ.get(ENV_REPO_URL) or "").strip() or get_str(repository, "url")
    if not url:
        return Err(ConfigError(f"Repository URL missing: set {ENV_REPO_URL} or [repository] url", path=path))
    slug = parse_repo_slug(url)
    if slug is None:
        return Err(ConfigError(f"Not an https repository URL: {url}", path=path))

    token = (environ.get(ENV_TOKEN) or "").strip()
    if not token:
        return Err(ConfigError(f"Token missing: set {ENV_TOKEN}", path=path))

    versions = _versions(get_table(data, "versions") or {}, path)
    if isinstance(versions, Err):
        return versions
    polling = _polling(get_table(data, "polling") or {}, path)
    if isinstance(polling, Err):
        return polling

    default_identity = GitIdentity()
    parent = get_str(workspace, "parent")
    return Ok(
        DeployConfig(
            repo_url=url,
            owner=slug[0],
            repo=slug[1],
            token=token,
            base_branch=(environ.get(ENV_BASE_BRANCH) or "").strip()
            or get_str(repository, "base_branch")
            or DEFAULT_BASE_BRANCH,
            identity=GitIdentity(
                name=get_str(git, "user_name") or default_identity.name,
                email=get_str(git, "user_email") or default_identity.email,
            ),
            workspace_parent=Path(parent).expanduser() if parent else None,
            versions=versions.value,
            polling=polling.value,
        )
    )
