"""Git adapter package."""

from wuflow.core.git.adapter import (
    GitAdapter,
    GitAdapterFactory,
    GitPythonAdapter,
    WorktreeEntry,
    create_git_adapter,
    find_worktree_by_branch,
    parse_worktree_porcelain,
)

__all__ = [
    "GitAdapter",
    "GitAdapterFactory",
    "GitPythonAdapter",
    "WorktreeEntry",
    "create_git_adapter",
    "find_worktree_by_branch",
    "parse_worktree_porcelain",
]
