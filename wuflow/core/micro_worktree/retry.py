"""Bounded fetch-rebase-retry loops for landing a temp branch on main."""

from __future__ import annotations

import random
import time
from typing import Callable

from git.exc import GitCommandError
from structlog import get_logger

from wuflow.config import GitSettings, PushRetryConfig
from wuflow.core.git import GitAdapter
from wuflow.core.micro_worktree.errors import MergeExhaustionError, PushExhaustionError
from wuflow.core.micro_worktree.shared import protect_main_bypass

logger = get_logger(__name__)

SleepFn = Callable[[float], None]
RandomFn = Callable[[], float]


def compute_backoff_delay(attempt: int, config: PushRetryConfig, rng: RandomFn = random.random) -> float:
    """Seconds to wait after failed attempt `attempt` (1-based).

    Exponential from `min_delay_ms`, randomized by a factor in [1, 2) when
    jitter is on, capped at `max_delay_ms`.
    """
    delay_ms = config.min_delay_ms * (2 ** max(attempt - 1, 0))
    if config.jitter:
        delay_ms *= 1 + rng()
    return min(delay_ms, config.max_delay_ms) / 1000.0


def merge_with_retry(
    main_git: GitAdapter,
    worktree_git: GitAdapter,
    temp_branch: str,
    *,
    settings: GitSettings,
    operation: str,
    log_prefix: str,
    local_only: bool = False,
) -> int:
    """Fast-forward local main to the temp branch; returns attempts used.

    On rejection, local main is caught up with the remote (unless
    local-only) and the temp branch is rebased onto it. Never merges
    with a merge commit.
    """
    main_branch = settings.main_branch
    remote_main = f"{settings.remote}/{main_branch}"
    ceiling = settings.merge_retries
    for attempt in range(1, ceiling + 1):
        try:
            logger.info("%s Merging to %s (attempt %d/%d)...", log_prefix, main_branch, attempt, ceiling)
            main_git.fast_forward_branch(main_branch, temp_branch)
            logger.info("%s Merged to %s", log_prefix, main_branch)
            return attempt
        except GitCommandError as exc:
            if attempt >= ceiling:
                raise MergeExhaustionError(operation, ceiling, _short_error(exc)) from exc
            logger.warning("%s FF-only merge rejected (%s moved). Rebasing...", log_prefix, main_branch)
            try:
                if not local_only:
                    main_git.fetch(settings.remote, main_branch)
                    main_git.fast_forward_branch(main_branch, remote_main)
                worktree_git.rebase(main_branch)
            except GitCommandError as rebase_exc:
                logger.warning("%s Catch-up before merge retry failed: %s", log_prefix, _short_error(rebase_exc))
    raise MergeExhaustionError(operation, ceiling)


def push_with_retry(
    main_git: GitAdapter,
    worktree_git: GitAdapter,
    temp_branch: str,
    *,
    settings: GitSettings,
    retry: PushRetryConfig,
    operation: str,
    log_prefix: str,
    sleep: SleepFn = time.sleep,
    rng: RandomFn = random.random,
) -> int:
    """Push local main to the remote; returns attempts used.

    On rejection the temp branch is rebased onto the fetched remote main
    and local main is moved to it without resetting the working tree.
    """
    main_branch = settings.main_branch
    remote_main = f"{settings.remote}/{main_branch}"
    ceiling = retry.retries if retry.enabled else 1
    for attempt in range(1, ceiling + 1):
        try:
            logger.info(
                "%s Pushing to %s (attempt %d/%d)...", log_prefix, remote_main, attempt, ceiling
            )
            main_git.push(settings.remote, main_branch)
            logger.info("%s Pushed to %s", log_prefix, remote_main)
            return attempt
        except GitCommandError as exc:
            if attempt >= ceiling:
                raise PushExhaustionError(operation, ceiling, _short_error(exc)) from exc
            logger.warning("%s Push rejected (%s moved). Rebasing and retrying...", log_prefix, remote_main)
            try:
                main_git.fetch(settings.remote, main_branch)
                worktree_git.rebase(remote_main)
                main_git.move_branch(main_branch, temp_branch)
            except GitCommandError as rebase_exc:
                logger.warning("%s Catch-up before push retry failed: %s", log_prefix, _short_error(rebase_exc))
            if retry.enabled:
                sleep(compute_backoff_delay(attempt, retry, rng))
    raise PushExhaustionError(operation, ceiling)


def push_refspec_with_retry(
    main_git: GitAdapter,
    worktree_git: GitAdapter,
    temp_branch: str,
    *,
    settings: GitSettings,
    retry: PushRetryConfig,
    operation: str,
    log_prefix: str,
    force_reason: str,
    sleep: SleepFn = time.sleep,
    rng: RandomFn = random.random,
) -> int:
    """Push the temp branch straight to the remote main ref; returns attempts used.

    Local main is never touched. Each push runs under the protect-main
    bypass environment.
    """
    main_branch = settings.main_branch
    remote_main = f"{settings.remote}/{main_branch}"
    ceiling = retry.retries if retry.enabled else 1
    for attempt in range(1, ceiling + 1):
        try:
            logger.info(
                "%s Pushing %s to %s (attempt %d/%d)...", log_prefix, temp_branch, remote_main, attempt, ceiling
            )
            with protect_main_bypass(force_reason, operation):
                worktree_git.push_refspec(settings.remote, temp_branch, main_branch)
            logger.info("%s Pushed %s to %s", log_prefix, temp_branch, remote_main)
            return attempt
        except GitCommandError as exc:
            if attempt >= ceiling:
                raise PushExhaustionError(operation, ceiling, _short_error(exc)) from exc
            logger.warning("%s Push rejected (%s moved). Rebasing and retrying...", log_prefix, remote_main)
            try:
                main_git.fetch(settings.remote, main_branch)
                worktree_git.rebase(remote_main)
            except GitCommandError as rebase_exc:
                logger.warning("%s Catch-up before push retry failed: %s", log_prefix, _short_error(rebase_exc))
            if retry.enabled:
                sleep(compute_backoff_delay(attempt, retry, rng))
    raise PushExhaustionError(operation, ceiling)


def _short_error(exc: GitCommandError) -> str:
    stderr = getattr(exc, "stderr", None)
    if isinstance(stderr, str) and stderr.strip():
        return stderr.strip()
    return str(exc)
