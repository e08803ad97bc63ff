from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from deploybot.core.config import DeployConfig
from deploybot.git.workspace import LocalVCS
from deploybot.github.protocol import RemoteHost
from deploybot.output.console import ConsoleProtocol
from deploybot.release.events import NULL_BUS, EventBus

__all__ = ["ReleaseDeps"]


@dataclass(frozen=True, slots=True)
class ReleaseDeps:
    """Collaborators shared by every phase of one run."""

    config: DeployConfig
    vcs: LocalVCS
    host: RemoteHost
    console: ConsoleProtocol
    events: EventBus = NULL_BUS
    sleep: Callable[[float], None] = field(default=time.sleep)
