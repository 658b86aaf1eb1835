"""Completion pipeline and `.wuflow.yaml` handling against real git repositories.

The seed commit carries `.wuflow.yaml` and an event log with WU-1 claimed,
so the pipeline runs with its default config, transaction and recorder.
"""

import json
from pathlib import Path

import pytest
from git import Repo

from wuflow.core.micro_worktree import ExecuteResult, MicroWorktreeContext, with_micro_worktree
from wuflow.core.pipeline import CompletionPipeline, PipelineState
from wuflow.core.state import WUStateStore

EVENTS_FILE = ".wuflow/state/wu-events.jsonl"
CONFIG_YAML = """\
formatter:
  command: []
git:
  push_retry:
    retries: 3
    min_delay_ms: 0
    max_delay_ms: 0
    jitter: false
"""


def _configure(repo: Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Wuflow Test")
        writer.set_value("user", "email", "wuflow@example.com")
        writer.set_value("commit", "gpgsign", "false")


def _commit_file(repo: Repo, name: str, content: str, message: str) -> None:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    repo.git.add("--", name)
    repo.git.commit("-m", message)


def _write_status(context: MicroWorktreeContext) -> ExecuteResult:
    status = context.worktree_path / "docs" / "status.md"
    status.parent.mkdir(parents=True, exist_ok=True)
    status.write_text("WU-1 done\n", encoding="utf-8")
    return ExecuteResult(commit_message="wu-done: WU-1", files=["docs/status.md"])


@pytest.fixture
def origin(tmp_path: Path) -> Path:
    remote_path = tmp_path / "origin.git"
    remote = Repo.init(remote_path, bare=True)
    remote.git.symbolic_ref("HEAD", "refs/heads/main")

    seed = Repo.init(tmp_path / "seed")
    _configure(seed)
    seed.git.symbolic_ref("HEAD", "refs/heads/main")
    seed_root = Path(seed.working_tree_dir)
    (seed_root / ".wuflow.yaml").write_text(CONFIG_YAML, encoding="utf-8")
    store = WUStateStore(seed_root / ".wuflow" / "state")
    store.load()
    store.claim("WU-1", "Core", "Ship it")
    seed.git.add("--", ".wuflow.yaml", EVENTS_FILE)
    seed.git.commit("-m", "wu-claim: WU-1")
    seed.git.remote("add", "origin", str(remote_path))
    seed.git.push("origin", "main")
    return remote_path


@pytest.fixture
def clone(origin: Path, tmp_path: Path) -> Repo:
    repo = Repo.clone_from(str(origin), str(tmp_path / "work"))
    _configure(repo)
    return repo


def _remote_event_types(origin: Path) -> list[str]:
    raw = Repo(origin).git.show(f"main:{EVENTS_FILE}")
    return [json.loads(line)["type"] for line in raw.splitlines() if line.strip()]


def test_standard_run_lands_completion_on_remote_main(origin: Path, clone: Repo) -> None:
    root = Path(clone.working_tree_dir)
    pipeline = CompletionPipeline(repo_root=root, execute=_write_status)

    outcome = pipeline.run("WU-1", root)

    assert outcome.succeeded
    assert outcome.landed is not None
    assert outcome.landed.files == ("docs/status.md", EVENTS_FILE)
    assert _remote_event_types(origin) == ["claim", "complete"]
    assert clone.git.status("--porcelain") == ""
    assert clone.git.rev_parse("main") == Repo(origin).git.rev_parse("main")
    assert pipeline.snapshot_store.load("WU-1").value is PipelineState.DONE  # type: ignore[union-attr]

    local = WUStateStore(root / ".wuflow" / "state")
    local.load()
    assert local.get_wu_state("WU-1").status == "done"  # type: ignore[union-attr]


def test_push_only_run_lands_completion_without_touching_local_main(origin: Path, clone: Repo) -> None:
    root = Path(clone.working_tree_dir)
    local_main_before = clone.git.rev_parse("main")
    pipeline = CompletionPipeline(repo_root=root, execute=_write_status, push_only=True)

    outcome = pipeline.run("WU-1", root)

    assert outcome.succeeded
    assert outcome.landed is not None
    assert outcome.landed.ref == "origin/main"
    assert _remote_event_types(origin) == ["claim", "complete"]
    assert clone.git.status("--porcelain") == ""
    assert clone.git.rev_parse("main") == local_main_before
    assert clone.git.branch("--list", "tmp/*").strip() == ""


def test_repository_config_selects_local_only_mode(tmp_path: Path) -> None:
    repo = Repo.init(tmp_path / "solo")
    _configure(repo)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    _commit_file(
        repo, ".wuflow.yaml", "git:\n  require_remote: false\nformatter:\n  command: []\n", "configure wuflow"
    )

    result = with_micro_worktree(
        operation="wu-edit",
        wu_id="WU-9",
        execute=_write_status,
        repo_root=Path(repo.working_tree_dir),
    )

    assert result.ref == "main"
    assert repo.git.log("-1", "--format=%s", "main") == "wu-done: WU-1"
    assert repo.git.status("--porcelain") == ""
    assert repo.git.branch("--list", "tmp/*").strip() == ""
