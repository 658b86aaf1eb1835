"""Unit tests for worktree porcelain parsing."""

from wuflow.core.git import WorktreeEntry, find_worktree_by_branch, parse_worktree_porcelain

PORCELAIN = """worktree /repo
HEAD 1111111111111111111111111111111111111111
branch refs/heads/main

worktree /tmp/wuflow-wu-done-abc
HEAD 2222222222222222222222222222222222222222
branch refs/heads/tmp/wu-done/wu-7

worktree /tmp/detached
HEAD 3333333333333333333333333333333333333333
detached
"""


def test_parse_worktree_porcelain_reads_every_block() -> None:
    entries = parse_worktree_porcelain(PORCELAIN)

    assert entries == [
        WorktreeEntry(path="/repo", head="1" * 40, branch="main"),
        WorktreeEntry(path="/tmp/wuflow-wu-done-abc", head="2" * 40, branch="tmp/wu-done/wu-7"),
        WorktreeEntry(path="/tmp/detached", head="3" * 40, branch=None, detached=True),
    ]


def test_parse_handles_blocks_without_blank_separator() -> None:
    output = "worktree /a\nHEAD aaa\nbranch refs/heads/main\nworktree /b\nHEAD bbb\nbranch refs/heads/feature"

    entries = parse_worktree_porcelain(output)

    assert [entry.path for entry in entries] == ["/a", "/b"]
    assert entries[1].branch == "feature"


def test_find_worktree_by_branch() -> None:
    entry = find_worktree_by_branch(PORCELAIN, "tmp/wu-done/wu-7")

    assert entry is not None
    assert entry.path == "/tmp/wuflow-wu-done-abc"
    assert find_worktree_by_branch(PORCELAIN, "tmp/wu-done/wu-8") is None


def test_empty_output_has_no_entries() -> None:
    assert parse_worktree_porcelain("") == []
