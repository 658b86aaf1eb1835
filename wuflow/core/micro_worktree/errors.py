"""Typed failures of the micro-worktree primitive."""

from __future__ import annotations

import re

_RETRY_EXHAUSTION_PATTERN = re.compile(r"Push failed after \d+ attempts")


class MicroWorktreeError(RuntimeError):
    """Base class for micro-worktree failures."""


class RetryExhaustionError(MicroWorktreeError):
    """A bounded fetch-rebase-retry loop ran out of attempts."""

    def __init__(self, message: str, *, operation: str, attempts: int) -> None:
        super().__init__(message)
        self.operation = operation
        self.attempts = attempts


class MergeExhaustionError(RetryExhaustionError):
    """Fast-forward merge into local main kept being rejected."""

    def __init__(self, operation: str, attempts: int, last_error: str | None = None) -> None:
        message = (
            f"FF-only merge failed after {attempts} attempts. "
            f"Main branch may have significant divergence during {operation}."
        )
        if last_error:
            message += f"\nError: {last_error}"
        super().__init__(message, operation=operation, attempts=attempts)


class PushExhaustionError(RetryExhaustionError):
    """Pushes to the remote main ref kept being rejected."""

    def __init__(self, operation: str, attempts: int, last_error: str | None = None) -> None:
        message = (
            f"Push failed after {attempts} attempts. "
            f"Origin main may have significant traffic during {operation}."
        )
        if last_error:
            message += f"\nError: {last_error}"
        super().__init__(message, operation=operation, attempts=attempts)


class LocalMainLockError(MicroWorktreeError):
    """The per-repository local main lock could not be acquired in time."""


def is_retry_exhaustion_error(error: object) -> bool:
    """True for typed exhaustion errors and for messages in the legacy push format."""
    if isinstance(error, RetryExhaustionError):
        return True
    if isinstance(error, BaseException):
        return bool(_RETRY_EXHAUSTION_PATTERN.search(str(error)))
    return False


def format_retry_exhaustion_error(error: BaseException, *, command: str) -> str:
    """Render an exhaustion error with actionable next steps."""
    return (
        f"{error}\n\n"
        "Next steps:\n"
        "  1. Wait a few seconds and retry the operation:\n"
        f"     {command}\n"
        "  2. If the issue persists, check if another agent is rapidly pushing changes\n"
        "  3. Consider increasing git.push_retry.retries (or git.merge_retries) in .wuflow.yaml"
    )
