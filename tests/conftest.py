"""Pytest configuration for wuflow tests."""

from pathlib import Path

import pytest

from tests.git_fakes import FakeGitRepo
from wuflow.config import FormatterConfig, GitSettings, LocalLockConfig, PushRetryConfig, WuflowConfig


def pytest_collection_modifyitems(config, items):
    """Set per-directory timeouts: unit=5s, integration=30s."""
    for item in items:
        if "unit" in item.keywords:
            item.add_marker(pytest.mark.timeout(5))
        elif "integration" in item.keywords:
            item.add_marker(pytest.mark.timeout(30))


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeGitRepo:
    root = tmp_path / "repo"
    common_dir = root / ".git"
    common_dir.mkdir(parents=True)
    return FakeGitRepo(root=root, common_dir=common_dir)


@pytest.fixture
def fast_config() -> WuflowConfig:
    """Config without formatter or backoff delays."""
    return WuflowConfig(
        git=GitSettings(
            merge_retries=3,
            push_retry=PushRetryConfig(retries=3, min_delay_ms=0, max_delay_ms=0, jitter=False),
            local_lock=LocalLockConfig(wait_seconds=1.0, retry_seconds=0.01),
        ),
        formatter=FormatterConfig(command=[]),
    )
