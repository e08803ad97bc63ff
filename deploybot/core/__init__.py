"""Core primitives shared by every layer: results, config, exit codes."""

from deploybot.core.result import Err, Ok, Result, is_err, is_ok

__all__ = ["Err", "Ok", "Result", "is_err", "is_ok"]
