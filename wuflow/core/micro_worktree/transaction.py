"""Micro-worktree transactions: isolated commit, then land on main.

A transaction runs a caller's mutation inside a throwaway worktree on a
temp branch, commits exactly the files it names, and lands the commit on
the shared main branch:

- standard mode fast-forwards local main and pushes it;
- push-only mode pushes the temp branch directly to the remote main ref
  and never touches local main;
- local-only mode (`git.require_remote: false`) fast-forwards local main
  and stops there.

Each step is a method so a resumable caller can persist progress between
them; `with_micro_worktree()` runs them all. Cleanup runs on every exit.
"""

from __future__ import annotations

import random
import time
from contextlib import ExitStack, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Callable, ContextManager, Literal, Mapping, Sequence

from git.exc import GitCommandError
from structlog import get_logger

from wuflow.config import WuflowConfig, load_wuflow_config, resolve_push_retry_config
from wuflow.core.git import GitAdapter, GitAdapterFactory, create_git_adapter, find_worktree_by_branch
from wuflow.core.micro_worktree.errors import MicroWorktreeError
from wuflow.core.micro_worktree.lock import local_main_lock
from wuflow.core.micro_worktree.retry import (
    RandomFn,
    SleepFn,
    merge_with_retry,
    push_refspec_with_retry,
    push_with_retry,
)
from wuflow.core.micro_worktree.shared import (
    cleanup_micro_worktree,
    cleanup_orphaned_micro_worktree,
    create_micro_worktree_dir,
    format_files,
    get_temp_branch_name,
    sync_preamble,
)

logger = get_logger(__name__)

TransactionPhase = Literal["new", "prepared", "applied", "committed", "merged", "landed", "cleaned"]


@dataclass(frozen=True)
class MicroWorktreeContext:
    """What the execute callback gets: the worktree and a git handle bound to it."""

    worktree_path: Path
    git: GitAdapter


@dataclass(frozen=True)
class ExecuteResult:
    commit_message: str
    files: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class MicroWorktreeResult:
    """Outcome of a landed transaction.

    `ref` is the local main branch in standard and local-only mode, or the
    remote-tracking ref of main in push-only mode.
    """

    commit_message: str
    files: tuple[str, ...]
    ref: str


ExecuteFn = Callable[[MicroWorktreeContext], ExecuteResult]


class MicroWorktreeTransaction:
    """One (operation, WU id) transaction against the repository at `repo_root`."""

    def __init__(
        self,
        *,
        operation: str,
        wu_id: str,
        repo_root: Path,
        push_only: bool = False,
        config: WuflowConfig | None = None,
        push_retry_override: Mapping[str, object] | None = None,
        log_prefix: str | None = None,
        git_factory: GitAdapterFactory = create_git_adapter,
        sleep: SleepFn = time.sleep,
        rng: RandomFn = random.random,
    ) -> None:
        self.operation = operation
        self.wu_id = wu_id
        self.repo_root = Path(repo_root)
        self.push_only = push_only
        self._config = config if config is not None else load_wuflow_config(self.repo_root)
        self._settings = self._config.git
        self._push_retry = resolve_push_retry_config(
            self._settings.push_retry, dict(push_retry_override) if push_retry_override else None
        )
        self.log_prefix = log_prefix or f"[{operation}]"
        self._git_factory = git_factory
        self._sleep = sleep
        self._rng = rng

        self.temp_branch = get_temp_branch_name(operation, wu_id, self._settings.temp_branch_prefix)
        self.worktree_path: Path | None = None
        self.base_ref: str | None = None
        self.result: ExecuteResult | None = None
        self.phase: TransactionPhase = "new"

        self._main_git: GitAdapter | None = None
        self._worktree_git: GitAdapter | None = None
        self._lock_stack = ExitStack()
        self._started = False

    @property
    def local_only(self) -> bool:
        return not self._settings.require_remote

    @property
    def main_git(self) -> GitAdapter:
        if self._main_git is None:
            self._main_git = self._git_factory(self.repo_root)
        return self._main_git

    @property
    def worktree_git(self) -> GitAdapter:
        if self._worktree_git is None:
            raise MicroWorktreeError(f"{self.log_prefix} micro-worktree is not prepared")
        return self._worktree_git

    def __enter__(self) -> MicroWorktreeTransaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    def prepare(self) -> Path:
        """Pre-clean leftovers, sync, then create the temp branch and its worktree."""
        self._require_phase("new", "prepare")
        self._started = True
        cleanup_orphaned_micro_worktree(self.main_git, self.temp_branch, self.log_prefix)
        with self._preamble_lock():
            self.base_ref = sync_preamble(
                self.main_git, self._settings, push_only=self.push_only, log_prefix=self.log_prefix
            )

        self.worktree_path = create_micro_worktree_dir(self.operation)
        logger.info("%s Temp branch: %s", self.log_prefix, self.temp_branch)
        logger.info("%s Micro-worktree: %s", self.log_prefix, self.worktree_path)
        if self.push_only:
            logger.info("%s Push-only mode: local %s will not be modified", self.log_prefix, self._settings.main_branch)

        self.main_git.create_branch_no_checkout(self.temp_branch, self.base_ref)
        self.main_git.worktree_add_existing(self.worktree_path, self.temp_branch)
        self._worktree_git = self._git_factory(self.worktree_path)
        self.phase = "prepared"
        return self.worktree_path

    def apply(self, execute: ExecuteFn) -> ExecuteResult:
        """Invoke the caller's mutation exactly once."""
        self._require_phase("prepared", "apply")
        assert self.worktree_path is not None
        result = execute(MicroWorktreeContext(worktree_path=self.worktree_path, git=self.worktree_git))
        self.result = ExecuteResult(commit_message=result.commit_message, files=tuple(result.files))
        self.phase = "applied"
        return self.result

    def commit(self) -> None:
        """Format, stage exactly the named files (including deletions), commit."""
        self._require_phase("applied", "commit")
        assert self.worktree_path is not None and self.result is not None
        format_files(self.worktree_path, self.result.files, self._config.formatter.command, self.log_prefix)
        logger.info("%s Staging changes (including deletions)...", self.log_prefix)
        self.worktree_git.add_with_deletions(self.result.files)
        self.worktree_git.commit(self.result.commit_message)
        logger.info("%s Committed: %s", self.log_prefix, self.result.commit_message)
        self.phase = "committed"

    def merge(self) -> None:
        """Fast-forward local main to the temp branch (skipped in push-only mode).

        Standard mode takes the local main lock here and holds it until the
        push finishes or the transaction is cleaned up.
        """
        self._require_phase("committed", "merge")
        if self.push_only and not self.local_only:
            self.phase = "merged"
            return

        self._lock_stack.enter_context(
            local_main_lock(self.main_git.git_common_dir(), self._settings.local_lock, sleep=self._sleep)
        )
        merge_with_retry(
            self.main_git,
            self.worktree_git,
            self.temp_branch,
            settings=self._settings,
            operation=self.operation,
            log_prefix=self.log_prefix,
            local_only=self.local_only,
        )
        self.phase = "merged"

    def push(self) -> MicroWorktreeResult:
        """Land the commit on the remote and return the transaction result."""
        self._require_phase("merged", "push")
        assert self.result is not None
        try:
            if self.local_only:
                logger.info(
                    "%s Local-only mode: merged to local %s, skipping push", self.log_prefix, self._settings.main_branch
                )
                ref = self._settings.main_branch
            elif self.push_only:
                push_refspec_with_retry(
                    self.main_git,
                    self.worktree_git,
                    self.temp_branch,
                    settings=self._settings,
                    retry=self._push_retry,
                    operation=self.operation,
                    log_prefix=self.log_prefix,
                    force_reason=f"micro-worktree push for {self.operation} (automated)",
                    sleep=self._sleep,
                    rng=self._rng,
                )
                ref = f"{self._settings.remote}/{self._settings.main_branch}"
                try:
                    self.main_git.fetch(self._settings.remote, self._settings.main_branch)
                except GitCommandError as exc:
                    logger.warning("%s Could not refresh %s after push: %s", self.log_prefix, ref, exc)
            else:
                push_with_retry(
                    self.main_git,
                    self.worktree_git,
                    self.temp_branch,
                    settings=self._settings,
                    retry=self._push_retry,
                    operation=self.operation,
                    log_prefix=self.log_prefix,
                    sleep=self._sleep,
                    rng=self._rng,
                )
                ref = self._settings.main_branch
        finally:
            self._lock_stack.close()
        self.phase = "landed"
        return MicroWorktreeResult(
            commit_message=self.result.commit_message, files=tuple(self.result.files), ref=ref
        )

    def cleanup(self) -> None:
        """Release the lock, remove the worktree and delete the temp branch. Safe to repeat."""
        self._lock_stack.close()
        if self.phase == "cleaned" or not self._started:
            self.phase = "cleaned"
            return
        cleanup_micro_worktree(self.main_git, self.worktree_path, self.temp_branch, self.log_prefix)
        self.phase = "cleaned"

    def reattach(self, result: ExecuteResult | None = None) -> Path:
        """Resume a committed transaction left behind by a crashed process.

        Finds the temp branch from the deterministic (operation, id) key and
        binds to its worktree, re-adding one when the directory is gone.
        """
        self._require_phase("new", "reattach")
        self._started = True
        if not self.main_git.branch_exists(self.temp_branch):
            raise MicroWorktreeError(
                f"{self.log_prefix} No temp branch {self.temp_branch} to resume; restart the operation instead."
            )

        existing = find_worktree_by_branch(self.main_git.worktree_list(), self.temp_branch)
        if existing is not None and Path(existing.path).exists():
            self.worktree_path = Path(existing.path)
        else:
            self.main_git.worktree_prune()
            self.worktree_path = create_micro_worktree_dir(self.operation)
            self.main_git.worktree_add_existing(self.worktree_path, self.temp_branch)

        self._worktree_git = self._git_factory(self.worktree_path)
        if result is None:
            result = ExecuteResult(
                commit_message=self.main_git.commit_message(self.temp_branch),
                files=tuple(self.main_git.commit_files(self.temp_branch)),
            )
        self.result = ExecuteResult(commit_message=result.commit_message, files=tuple(result.files))
        self.phase = "committed"
        logger.info("%s Reattached to %s at %s", self.log_prefix, self.temp_branch, self.worktree_path)
        return self.worktree_path

    def _preamble_lock(self) -> ContextManager[object]:
        # Only the standard-mode preamble fast-forwards local main.
        if self.push_only or self.local_only:
            return nullcontext()
        return local_main_lock(self.main_git.git_common_dir(), self._settings.local_lock, sleep=self._sleep)

    def _require_phase(self, expected: TransactionPhase, step: str) -> None:
        if self.phase != expected:
            raise MicroWorktreeError(
                f"{self.log_prefix} cannot {step} from phase {self.phase!r} (expected {expected!r})"
            )


def with_micro_worktree(
    *,
    operation: str,
    wu_id: str,
    execute: ExecuteFn,
    repo_root: Path,
    push_only: bool = False,
    config: WuflowConfig | None = None,
    push_retry_override: Mapping[str, object] | None = None,
    log_prefix: str | None = None,
    git_factory: GitAdapterFactory = create_git_adapter,
    sleep: SleepFn = time.sleep,
    rng: RandomFn = random.random,
) -> MicroWorktreeResult:
    """Run `execute` in an isolated micro-worktree and land its commit on main."""
    with MicroWorktreeTransaction(
        operation=operation,
        wu_id=wu_id,
        repo_root=repo_root,
        push_only=push_only,
        config=config,
        push_retry_override=push_retry_override,
        log_prefix=log_prefix,
        git_factory=git_factory,
        sleep=sleep,
        rng=rng,
    ) as transaction:
        transaction.prepare()
        transaction.apply(execute)
        transaction.commit()
        transaction.merge()
        return transaction.push()
