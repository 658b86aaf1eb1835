"""Per-repository advisory lock around standard-mode merges into local main."""

from __future__ import annotations

import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from structlog import get_logger

from wuflow.config import LocalLockConfig
from wuflow.core.micro_worktree.errors import LocalMainLockError

logger = get_logger(__name__)

LOCK_DIR_NAME = "wuflow-main.lock"

SleepFn = Callable[[float], None]


@contextmanager
def local_main_lock(
    git_common_dir: Path,
    config: LocalLockConfig,
    *,
    sleep: SleepFn = time.sleep,
) -> Iterator[None]:
    """Hold a mkdir lock under the git common dir for the duration of the block.

    A lock directory older than `stale_seconds` is treated as abandoned
    and removed.
    """
    if not config.enabled:
        yield
        return

    lock_path = git_common_dir / LOCK_DIR_NAME
    start = time.monotonic()
    while True:
        try:
            lock_path.mkdir(parents=True, exist_ok=False)
            break
        except FileExistsError:
            _break_stale_lock_if_needed(lock_path, config.stale_seconds)
            if time.monotonic() - start > config.wait_seconds:
                raise LocalMainLockError(
                    f"timed out after {config.wait_seconds}s waiting for local main lock: {lock_path}. "
                    "Another local process is merging into main; retry, or remove the lock if no such process exists."
                ) from None
            sleep(config.retry_seconds)

    logger.debug("Acquired local main lock %s", lock_path)
    try:
        yield
    finally:
        try:
            lock_path.rmdir()
        except FileNotFoundError:
            logger.warning("Local main lock %s vanished before release", lock_path)


def _break_stale_lock_if_needed(lock_path: Path, stale_seconds: float) -> None:
    try:
        stat_result = lock_path.stat()
    except FileNotFoundError:
        return

    age_seconds = time.time() - stat_result.st_mtime
    if age_seconds <= stale_seconds:
        return

    try:
        lock_path.rmdir()
    except FileNotFoundError:
        return
    except OSError:
        # Holder may have created files inside.
        return
    logger.warning("Removed stale local main lock %s (age %.0fs)", lock_path, age_seconds)
