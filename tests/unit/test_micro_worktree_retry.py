"""Unit tests for the merge and push retry loops."""

import os
from pathlib import Path

import pytest

from tests.git_fakes import FakeGitAdapter, FakeGitRepo
from wuflow.config import GitSettings, PushRetryConfig, WuflowConfig
from wuflow.core.micro_worktree import (
    MergeExhaustionError,
    PushExhaustionError,
    compute_backoff_delay,
    format_retry_exhaustion_error,
    is_retry_exhaustion_error,
    merge_with_retry,
    push_refspec_with_retry,
    push_with_retry,
)

TEMP = "tmp/wu-done/wu-1"


def _adapters(repo: FakeGitRepo) -> tuple[FakeGitAdapter, FakeGitAdapter]:
    return repo.factory(repo.root), repo.factory(repo.root.parent / "wt")


def test_backoff_doubles_and_caps() -> None:
    config = PushRetryConfig(min_delay_ms=100, max_delay_ms=1000, jitter=False)

    delays = [compute_backoff_delay(attempt, config) for attempt in (1, 2, 3, 4, 5)]

    assert delays == [0.1, 0.2, 0.4, 0.8, 1.0]


def test_backoff_jitter_scales_delay() -> None:
    config = PushRetryConfig(min_delay_ms=100, max_delay_ms=1000, jitter=True)

    assert compute_backoff_delay(1, config, rng=lambda: 0.5) == pytest.approx(0.15)
    assert compute_backoff_delay(4, config, rng=lambda: 0.9) == 1.0


def test_merge_retries_with_fetch_and_rebase(fake_repo: FakeGitRepo, fast_config: WuflowConfig) -> None:
    fake_repo.merge_rejections = 2
    main_git, worktree_git = _adapters(fake_repo)

    attempts = merge_with_retry(
        main_git, worktree_git, TEMP, settings=fast_config.git, operation="wu-done", log_prefix="[test]"
    )

    assert attempts == 3
    assert fake_repo.count("fetch") == 2
    assert fake_repo.count("rebase") == 2
    assert [call.args for call in fake_repo.calls_to("rebase")] == [("main",), ("main",)]
    assert "merge" not in fake_repo.methods()


def test_merge_exhaustion_raises_typed_error(fake_repo: FakeGitRepo, fast_config: WuflowConfig) -> None:
    fake_repo.merge_rejections = 10
    main_git, worktree_git = _adapters(fake_repo)

    with pytest.raises(MergeExhaustionError) as exc:
        merge_with_retry(main_git, worktree_git, TEMP, settings=fast_config.git, operation="wu-done", log_prefix="")

    assert exc.value.attempts == 3
    assert exc.value.operation == "wu-done"
    assert "FF-only merge failed after 3 attempts" in str(exc.value)
    assert fake_repo.count("rebase") == 2


def test_local_only_merge_never_fetches(fake_repo: FakeGitRepo, fast_config: WuflowConfig) -> None:
    fake_repo.merge_rejections = 1
    main_git, worktree_git = _adapters(fake_repo)

    merge_with_retry(
        main_git, worktree_git, TEMP, settings=fast_config.git, operation="wu-done", log_prefix="", local_only=True
    )

    assert fake_repo.count("fetch") == 0
    assert fake_repo.count("rebase") == 1


def test_merge_keeps_going_when_catch_up_fails(fake_repo: FakeGitRepo, fast_config: WuflowConfig) -> None:
    fake_repo.merge_rejections = 1
    fake_repo.rebase_fails = True
    main_git, worktree_git = _adapters(fake_repo)

    attempts = merge_with_retry(
        main_git, worktree_git, TEMP, settings=fast_config.git, operation="wu-done", log_prefix=""
    )

    assert attempts == 2


def test_push_retry_rebases_moves_main_and_backs_off(fake_repo: FakeGitRepo) -> None:
    fake_repo.push_rejections = 2
    main_git, worktree_git = _adapters(fake_repo)
    retry = PushRetryConfig(retries=4, min_delay_ms=100, max_delay_ms=1000, jitter=False)
    sleeps: list[float] = []

    attempts = push_with_retry(
        main_git,
        worktree_git,
        TEMP,
        settings=GitSettings(),
        retry=retry,
        operation="wu-done",
        log_prefix="",
        sleep=sleeps.append,
    )

    assert attempts == 3
    assert sleeps == [0.1, 0.2]
    assert [call.args for call in fake_repo.calls_to("rebase")] == [("origin/main",), ("origin/main",)]
    assert [call.args for call in fake_repo.calls_to("move_branch")] == [("main", TEMP), ("main", TEMP)]


def test_push_exhaustion_after_configured_attempts(fake_repo: FakeGitRepo) -> None:
    fake_repo.push_rejections = 10
    main_git, worktree_git = _adapters(fake_repo)
    retry = PushRetryConfig(retries=3, min_delay_ms=0, max_delay_ms=0, jitter=False)

    with pytest.raises(PushExhaustionError) as exc:
        push_with_retry(
            main_git,
            worktree_git,
            TEMP,
            settings=GitSettings(),
            retry=retry,
            operation="wu-create",
            log_prefix="",
            sleep=lambda _seconds: None,
        )

    assert exc.value.attempts == 3
    assert fake_repo.count("push") == 3
    assert fake_repo.count("rebase") == 2
    assert "Push failed after 3 attempts" in str(exc.value)


def test_push_with_retry_disabled_tries_once(fake_repo: FakeGitRepo) -> None:
    fake_repo.push_rejections = 1
    main_git, worktree_git = _adapters(fake_repo)
    sleeps: list[float] = []

    with pytest.raises(PushExhaustionError) as exc:
        push_with_retry(
            main_git,
            worktree_git,
            TEMP,
            settings=GitSettings(),
            retry=PushRetryConfig(enabled=False, retries=5),
            operation="wu-done",
            log_prefix="",
            sleep=sleeps.append,
        )

    assert exc.value.attempts == 1
    assert sleeps == []
    assert fake_repo.count("rebase") == 0


def test_refspec_push_sets_bypass_env_only_during_push(
    fake_repo: FakeGitRepo, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("WUFLOW_FORCE", raising=False)
    monkeypatch.setenv("WUFLOW_FORCE_REASON", "earlier")
    fake_repo.refspec_rejections = 1
    main_git, worktree_git = _adapters(fake_repo)

    attempts = push_refspec_with_retry(
        main_git,
        worktree_git,
        TEMP,
        settings=GitSettings(),
        retry=PushRetryConfig(retries=2, min_delay_ms=0, max_delay_ms=0, jitter=False),
        operation="wu-create",
        log_prefix="",
        force_reason="micro-worktree push for wu-create (automated)",
        sleep=lambda _seconds: None,
    )

    assert attempts == 2
    assert fake_repo.env_during_refspec_push[0] == {
        "WUFLOW_FORCE": "1",
        "WUFLOW_FORCE_REASON": "micro-worktree push for wu-create (automated)",
        "WUFLOW_WU_TOOL": "wu-create",
    }
    assert "WUFLOW_FORCE" not in os.environ
    assert os.environ["WUFLOW_FORCE_REASON"] == "earlier"
    refspec_call = fake_repo.calls_to("push_refspec")[0]
    assert refspec_call.path == Path(fake_repo.root.parent / "wt")
    assert refspec_call.args == ("origin", TEMP, "main")
    assert "move_branch" not in fake_repo.methods()
    assert "fast_forward_branch" not in fake_repo.methods()


def test_retry_exhaustion_detection_and_formatting() -> None:
    error = PushExhaustionError("wu-done", 3)

    assert is_retry_exhaustion_error(error)
    assert is_retry_exhaustion_error(RuntimeError("Push failed after 5 attempts. Origin main moved"))
    assert not is_retry_exhaustion_error(RuntimeError("merge conflict"))
    assert not is_retry_exhaustion_error("Push failed after 5 attempts")

    rendered = format_retry_exhaustion_error(error, command="wuflow done WU-1")
    assert rendered.startswith("Push failed after 3 attempts")
    assert "Next steps:" in rendered
    assert "wuflow done WU-1" in rendered
