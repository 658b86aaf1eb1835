"""Micro-worktree transaction primitive."""

from wuflow.core.micro_worktree.errors import (
    LocalMainLockError,
    MergeExhaustionError,
    MicroWorktreeError,
    PushExhaustionError,
    RetryExhaustionError,
    format_retry_exhaustion_error,
    is_retry_exhaustion_error,
)
from wuflow.core.micro_worktree.lock import local_main_lock
from wuflow.core.micro_worktree.retry import (
    compute_backoff_delay,
    merge_with_retry,
    push_refspec_with_retry,
    push_with_retry,
)
from wuflow.core.micro_worktree.shared import (
    cleanup_micro_worktree,
    cleanup_orphaned_micro_worktree,
    format_files,
    get_temp_branch_name,
    protect_main_bypass,
)
from wuflow.core.micro_worktree.transaction import (
    ExecuteFn,
    ExecuteResult,
    MicroWorktreeContext,
    MicroWorktreeResult,
    MicroWorktreeTransaction,
    with_micro_worktree,
)

__all__ = [
    "ExecuteFn",
    "ExecuteResult",
    "LocalMainLockError",
    "MergeExhaustionError",
    "MicroWorktreeContext",
    "MicroWorktreeError",
    "MicroWorktreeResult",
    "MicroWorktreeTransaction",
    "PushExhaustionError",
    "RetryExhaustionError",
    "cleanup_micro_worktree",
    "cleanup_orphaned_micro_worktree",
    "compute_backoff_delay",
    "format_files",
    "format_retry_exhaustion_error",
    "get_temp_branch_name",
    "is_retry_exhaustion_error",
    "local_main_lock",
    "merge_with_retry",
    "protect_main_bypass",
    "push_refspec_with_retry",
    "push_with_retry",
    "with_micro_worktree",
]
