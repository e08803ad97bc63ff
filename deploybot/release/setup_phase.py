"""Setup: a fresh workspace with the integration branch created and pushed.

``attach_saga`` is the resume-time variant: same workspace and clone, but it
checks out the integration branch that already exists on the remote.
"""

from __future__ import annotations

from pathlib import Path

from deploybot.core.result import Err, Ok, Result
from deploybot.platform.files import make_workspace_dir, remove_tree
from deploybot.release.deps import ReleaseDeps
from deploybot.release.errors import DeployError, from_git
from deploybot.release.saga import Saga, Step, StepContext, retry

__all__ = ["SETUP", "ATTACH", "setup_saga", "attach_saga"]

SETUP = "setup"
ATTACH = "attach"


def _workspace_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        key = ctx.value("release_key", str)
        made = make_workspace_dir(deps.config.workspace_parent, f"deploybot-{key}")
        if isinstance(made, Err):
            return Err(DeployError.command_failed(made.error))
        deps.console.print(f"workspace: {made.value}")
        return Ok(made.value)

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        assert isinstance(prior, Path)
        removed = remove_tree(prior)
        if isinstance(removed, Err):
            return Err(DeployError.command_failed(removed.error))
        return Ok(None)

    return Step("workspace", run, undo=undo, requires=("release_key",))


def _clone_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        config = deps.config
        cloned = deps.vcs.clone(config.clone_url, workspace, branch=config.base_branch)
        if isinstance(cloned, Err):
            return Err(from_git(cloned.error, f"failed to clone {config.slug}"))
        identity = deps.vcs.configure_identity(workspace, config.identity)
        if isinstance(identity, Err):
            return Err(from_git(identity.error, "failed to configure the commit identity"))
        return Ok(workspace)

    # removing the workspace discards the clone
    return Step("clone", run, requires=("workspace",), on_self_failure=retry(2, delay_seconds=1.0))


def _sync_base_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        base = deps.config.base_branch
        fetched = deps.vcs.fetch(workspace, base)
        if isinstance(fetched, Err):
            return Err(from_git(fetched.error, f"failed to fetch {base}"))
        reset = deps.vcs.reset_hard(workspace, f"origin/{base}")
        if isinstance(reset, Err):
            return Err(from_git(reset.error, f"failed to reset to origin/{base}"))
        return Ok(base)

    return Step(
        "sync_base",
        run,
        requires=("workspace", "clone"),
        on_self_failure=retry(2, delay_seconds=1.0),
    )


def _create_branch_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = ctx.value("release_key", str)
        created = deps.vcs.checkout_new(workspace, branch, start=deps.config.base_branch)
        if isinstance(created, Err):
            return Err(from_git(created.error, f"failed to create branch {branch}"))
        return Ok(branch)

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = str(prior)
        left = deps.vcs.checkout(workspace, deps.config.base_branch)
        if isinstance(left, Err):
            return Err(from_git(left.error))
        deleted = deps.vcs.delete_local_branch(workspace, branch)
        if isinstance(deleted, Err):
            return Err(from_git(deleted.error))
        return Ok(None)

    return Step(
        "create_branch",
        run,
        undo=undo,
        requires=("workspace", "release_key", "sync_base"),
    )


def _push_branch_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = ctx.value("create_branch", str)
        pushed = deps.vcs.push(workspace, branch, set_upstream=True)
        if isinstance(pushed, Err):
            return Err(from_git(pushed.error, f"failed to push {branch}"))
        deps.console.success(f"created {branch} from {deps.config.base_branch}")
        return Ok(branch)

    def undo(prior: object, ctx: StepContext) -> Result[None, DeployError]:
        workspace = ctx.value("workspace", Path)
        deleted = deps.vcs.delete_remote_branch(workspace, str(prior))
        if isinstance(deleted, Err):
            return Err(from_git(deleted.error, f"failed to delete remote branch {prior}"))
        return Ok(None)

    return Step("push_branch", run, undo=undo, requires=("workspace", "create_branch"))


def setup_saga(deps: ReleaseDeps) -> Saga:
    return Saga(
        SETUP,
        [
            _workspace_step(deps),
            _clone_step(deps),
            _sync_base_step(deps),
            _create_branch_step(deps),
            _push_branch_step(deps),
        ],
        inputs=("release_key",),
        returns="workspace",
    )


def _checkout_existing_step(deps: ReleaseDeps) -> Step:
    def run(ctx: StepContext) -> Result[object, DeployError]:
        workspace = ctx.value("workspace", Path)
        branch = ctx.value("release_key", str)
        fetched = deps.vcs.fetch(workspace, branch)
        if isinstance(fetched, Err):
            return Err(from_git(fetched.error, f"failed to fetch {branch}"))
        tracked = deps.vcs.checkout_new(workspace, branch, start=f"origin/{branch}")
        if isinstance(tracked, Err):
            return Err(from_git(tracked.error, f"failed to check out {branch}"))
        return Ok(branch)

    return Step(
        "checkout_branch",
        run,
        requires=("workspace", "release_key", "clone"),
        on_self_failure=retry(2, delay_seconds=1.0),
    )


def attach_saga(deps: ReleaseDeps) -> Saga:
    return Saga(
        ATTACH,
        [_workspace_step(deps), _clone_step(deps), _checkout_existing_step(deps)],
        inputs=("release_key",),
        returns="workspace",
    )
