"""Process exit codes for the ``deploybot`` command."""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    Values are part of the command's contract and must stay stable:
    - 0: Success
    - 1: User error (bad arguments, release branch already exists)
    - 2: Configuration error (missing repository URL or token)
    - 3: Validation error (candidates not approved, CI not green)
    - 4: Network error (transient git or host failure, retries exhausted)
    - 5: Merge conflict before anything was merged
    - 6: Failure past the point of no return (something already merged)
    - 7: Command error (git, host or file operation refused, rollback failed)
    """

    OK = 0
    USER_ERROR = 1
    CONFIG_ERROR = 2
    VALIDATION_ERROR = 3
    NETWORK_ERROR = 4
    CONFLICT = 5
    IRREVERSIBLE = 6
    COMMAND_ERROR = 7

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
