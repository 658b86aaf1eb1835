"""Helpers shared by the micro-worktree transaction steps."""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from git.exc import GitCommandError
from structlog import get_logger

from wuflow.config import GitSettings
from wuflow.constants import FORCE_ENV, FORCE_REASON_ENV, TEMP_BRANCH_PREFIX, WU_TOOL_ENV
from wuflow.core.git import GitAdapter, find_worktree_by_branch

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrphanCleanupResult:
    cleaned_worktree: bool
    cleaned_branch: bool


def get_temp_branch_name(operation: str, wu_id: str, prefix: str = TEMP_BRANCH_PREFIX) -> str:
    """Deterministic temp branch for one (operation, id) pair."""
    return f"{prefix}{operation}/{wu_id.lower()}"


def create_micro_worktree_dir(operation: str) -> Path:
    return Path(tempfile.mkdtemp(prefix=f"wuflow-{operation}-"))


def sync_preamble(
    main_git: GitAdapter,
    settings: GitSettings,
    *,
    push_only: bool,
    log_prefix: str,
) -> str:
    """Sync with the remote before branching and return the base ref.

    Standard mode fast-forwards local main to the remote; push-only mode
    leaves local main alone and bases on the remote-tracking ref.
    """
    remote_main = f"{settings.remote}/{settings.main_branch}"
    if not settings.require_remote:
        logger.info("%s Local-only mode (git.require_remote=false): skipping remote sync", log_prefix)
        return settings.main_branch

    logger.info("%s Fetching %s before starting...", log_prefix, remote_main)
    main_git.fetch(settings.remote, settings.main_branch)
    if push_only:
        logger.info("%s Push-only mode bases on %s; local %s unchanged", log_prefix, remote_main, settings.main_branch)
        return remote_main

    main_git.fast_forward_branch(settings.main_branch, remote_main)
    logger.info("%s Local %s synced with %s", log_prefix, settings.main_branch, remote_main)
    return settings.main_branch


def cleanup_orphaned_micro_worktree(
    main_git: GitAdapter,
    temp_branch: str,
    log_prefix: str,
) -> OrphanCleanupResult:
    """Remove a worktree and branch left behind by a crashed attempt."""
    cleaned_worktree = False
    cleaned_branch = False

    try:
        orphan = find_worktree_by_branch(main_git.worktree_list(), temp_branch)
    except GitCommandError as exc:
        logger.warning("%s Could not check worktree list: %s", log_prefix, exc)
        orphan = None
    if orphan is not None:
        logger.info("%s Found orphaned worktree for %s: %s", log_prefix, temp_branch, orphan.path)
        remove_worktree_safe(main_git, Path(orphan.path), log_prefix)
        cleaned_worktree = True

    try:
        if main_git.branch_exists(temp_branch):
            logger.info("%s Found orphaned temp branch: %s", log_prefix, temp_branch)
            main_git.delete_branch(temp_branch, force=True)
            cleaned_branch = True
    except GitCommandError as exc:
        logger.warning("%s Could not delete orphaned branch %s: %s", log_prefix, temp_branch, exc)

    return OrphanCleanupResult(cleaned_worktree=cleaned_worktree, cleaned_branch=cleaned_branch)


def cleanup_micro_worktree(
    main_git: GitAdapter,
    worktree_path: Path | None,
    temp_branch: str,
    log_prefix: str,
) -> None:
    """Remove the worktree, any other worktree registered for the branch, then the branch.

    Never raises; failures are logged.
    """
    logger.info("%s Cleaning up micro-worktree...", log_prefix)
    if worktree_path is not None and worktree_path.exists():
        remove_worktree_safe(main_git, worktree_path, log_prefix)

    try:
        registered = find_worktree_by_branch(main_git.worktree_list(), temp_branch)
    except GitCommandError as exc:
        logger.warning("%s Could not check worktree list: %s", log_prefix, exc)
        registered = None
    if registered is not None and (worktree_path is None or not _same_path(registered.path, worktree_path)):
        logger.info("%s Found additional registered worktree: %s", log_prefix, registered.path)
        remove_worktree_safe(main_git, Path(registered.path), log_prefix)

    try:
        main_git.worktree_prune()
    except GitCommandError as exc:
        logger.warning("%s Could not prune worktrees: %s", log_prefix, exc)

    try:
        if main_git.branch_exists(temp_branch):
            main_git.delete_branch(temp_branch, force=True)
    except GitCommandError as exc:
        logger.warning("%s Could not delete branch %s: %s", log_prefix, temp_branch, exc)

    logger.info("%s Cleanup complete", log_prefix)


def remove_worktree_safe(main_git: GitAdapter, worktree_path: Path, log_prefix: str) -> None:
    try:
        main_git.worktree_remove(worktree_path, force=True)
    except GitCommandError as exc:
        logger.warning("%s Could not remove worktree %s: %s", log_prefix, worktree_path, exc)
    if worktree_path.exists():
        shutil.rmtree(worktree_path, ignore_errors=True)


def format_files(worktree_path: Path, files: Sequence[str], command: Sequence[str], log_prefix: str) -> bool:
    """Run the configured formatter over `files`; returns False when skipped or failed.

    Formatting is cosmetic: a missing binary or non-zero exit only warns.
    """
    existing = [name for name in files if (worktree_path / name).exists()]
    if not command or not existing:
        return False
    try:
        completed = subprocess.run(
            [*command, *existing],
            cwd=worktree_path,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        logger.warning("%s Formatter %s not available; continuing without formatting", log_prefix, command[0])
        return False
    if completed.returncode != 0:
        logger.warning(
            "%s Formatter exited with %d; continuing: %s",
            log_prefix,
            completed.returncode,
            completed.stderr.strip(),
        )
        return False
    logger.info("%s Formatted %d file(s)", log_prefix, len(existing))
    return True


@contextmanager
def protect_main_bypass(reason: str, operation: str) -> Iterator[None]:
    """Set the audited protect-main bypass variables, restoring previous values on exit."""
    overrides = {FORCE_ENV: "1", FORCE_REASON_ENV: reason, WU_TOOL_ENV: operation}
    previous = {name: os.environ.get(name) for name in overrides}
    os.environ.update(overrides)
    try:
        yield
    finally:
        for name, value in previous.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value


def _same_path(left: str, right: Path) -> bool:
    try:
        return Path(left).resolve() == right.resolve()
    except OSError:
        return False
